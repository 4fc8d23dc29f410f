"""Checkout orchestration through POST /cart/checkout and start_checkout directly."""
import asyncio
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import func, select

from storefront.models import Cart, CartStatus, Order, OrderStatus, Reservation
from storefront.utils.checkout import start_checkout
from storefront.utils.events import system_event
from tests.helpers import actions, stock_of

BODY = {"success_url": "https://shop.test/success", "cancel_url": "https://shop.test/cancel"}


def _checkout(client, session_id):
    return client.post("/cart/checkout", json=BODY, headers={"X-Session-ID": session_id})


def _reservations(db):
    return db.execute(select(func.count(Reservation.id))).scalar_one()


def _cart_status(db, cart_id):
    return db.execute(select(Cart.status).where(Cart.id == cart_id)).scalar_one()


class TestCheckoutSuccess:
    def test_reserves_stock_and_creates_pending_order(self, client, db, make_variant, make_cart, payment_client):
        a, b = make_variant(stock=5, price_cents=2500), make_variant(stock=2, price_cents=900)
        cart = make_cart([(a, 3), (b, 2)])

        response = _checkout(client, cart.session_id)

        assert response.status_code == 200
        data = response.json()
        assert data == {"checkout_url": "https://checkout.stripe.test/pay/cs_test_1", "session_id": "cs_test_1"}

        assert stock_of(db, a.id) == 2
        assert stock_of(db, b.id) == 0
        assert _reservations(db) == 2
        assert _cart_status(db, cart.id) == CartStatus.ORDERED

        order = db.query(Order).filter(Order.cart_id == cart.id).one()
        assert order.status == OrderStatus.PENDING
        assert order.checkout_session_id == "cs_test_1"
        assert actions(db)[-2:] == ["STOCK_RESERVE", "CHECKOUT_START"]

    def test_remote_session_gets_prices_and_metadata(self, client, make_variant, make_cart, payment_client):
        variant = make_variant(stock=5, price_cents=2500)
        cart = make_cart([(variant, 2)])

        response = _checkout(client, cart.session_id)
        assert response.status_code == 200

        call = payment_client.calls[0]
        assert call["line_items"][0]["price_data"]["unit_amount"] == 2500
        assert call["line_items"][0]["quantity"] == 2
        assert call["metadata"]["cart_id"] == cart.id
        assert call["metadata"]["session_id"] == cart.session_id
        assert call["metadata"]["request_id"] == response.headers["X-Request-ID"]
        assert call["client_reference_id"] == str(cart.id)

    def test_session_uses_the_cart_currency(self, client, db, make_variant, make_cart, payment_client):
        variant = make_variant(stock=5)
        variant.currency = "usd"
        db.commit()
        cart = make_cart([(variant, 1)])

        response = _checkout(client, cart.session_id)
        assert response.status_code == 200

        call = payment_client.calls[0]
        assert call["currency"] == "usd"
        assert call["line_items"][0]["price_data"]["currency"] == "usd"
        assert db.query(Order).one().currency == "usd"

    def test_refreshes_cart_expiry(self, client, db, make_variant, make_cart):
        variant = make_variant(stock=5)
        cart = make_cart([(variant, 1)], expires_in=timedelta(minutes=2))
        before = cart.expires_at

        assert _checkout(client, cart.session_id).status_code == 200
        db.expire_all()
        assert db.get(Cart, cart.id).expires_at > before + timedelta(minutes=20)


class TestCheckoutRejections:
    def test_unknown_cart(self, client):
        response = _checkout(client, "no-such-session")
        assert response.status_code == 404

    def test_missing_session_header(self, client):
        response = client.post("/cart/checkout", json=BODY)
        assert response.status_code == 400

    def test_empty_cart(self, client, make_cart):
        cart = make_cart()
        response = _checkout(client, cart.session_id)
        assert response.status_code == 400
        assert response.json()["error"] == "Cart is empty"

    def test_expired_cart(self, client, make_variant, make_cart, payment_client):
        variant = make_variant(stock=5)
        cart = make_cart([(variant, 1)], expires_in=timedelta(minutes=-1))
        response = _checkout(client, cart.session_id)
        assert response.status_code == 409
        assert payment_client.calls == []

    def test_cart_already_checked_out(self, client, db, make_variant, make_cart, payment_client):
        variant = make_variant(stock=5)
        cart = make_cart([(variant, 2)])
        assert _checkout(client, cart.session_id).status_code == 200

        response = _checkout(client, cart.session_id)

        assert response.status_code == 409
        assert stock_of(db, variant.id) == 3
        assert _reservations(db) == 1
        assert len(payment_client.calls) == 1

    def test_insufficient_stock_reports_each_item(self, client, db, make_variant, make_cart, payment_client):
        ok, short = make_variant(stock=5), make_variant(stock=1)
        cart = make_cart([(ok, 1), (short, 3)])

        response = _checkout(client, cart.session_id)

        assert response.status_code == 409
        body = response.json()
        assert body["request_id"] == response.headers["X-Request-ID"]
        assert [(i["variant_id"], i["requested"], i["available"]) for i in body["items"]] == [(short.id, 3, 1)]
        assert stock_of(db, ok.id) == 5
        assert _reservations(db) == 0
        assert payment_client.calls == []

    def test_two_checkouts_competing_for_the_same_units(self, client, db, make_variant, make_cart):
        variant = make_variant(stock=5)
        first = make_cart([(variant, 3)])
        second = make_cart([(variant, 3)])

        assert _checkout(client, first.session_id).status_code == 200
        response = _checkout(client, second.session_id)

        assert response.status_code == 409
        item = response.json()["items"][0]
        assert item["variant_id"] == variant.id
        assert item["requested"] == 3
        assert item["available"] == 2
        assert stock_of(db, variant.id) == 2
        assert _cart_status(db, second.id) == CartStatus.ACTIVE


class TestCompensation:
    def test_remote_error_restores_stock(self, client, db, make_variant, make_cart, payment_client):
        variant = make_variant(stock=5)
        cart = make_cart([(variant, 4)])
        payment_client.fail = httpx.ConnectError("connection refused")

        response = _checkout(client, cart.session_id)

        assert response.status_code == 503
        body = response.json()
        assert body["retriable"] is True
        assert "connection refused" not in body["error"]
        assert stock_of(db, variant.id) == 5
        assert _reservations(db) == 0
        assert _cart_status(db, cart.id) == CartStatus.ACTIVE
        assert db.query(Order).count() == 0
        assert actions(db)[-2:] == ["STOCK_RESERVE", "STOCK_RELEASE"]

    def test_timeout_restores_stock(self, client, db, make_variant, make_cart, payment_client):
        variant = make_variant(stock=5)
        cart = make_cart([(variant, 4)])
        payment_client.fail = httpx.ReadTimeout("timed out")

        assert _checkout(client, cart.session_id).status_code == 503
        assert stock_of(db, variant.id) == 5

    def test_session_without_redirect_url_restores_stock(self, client, db, make_variant, make_cart, payment_client):
        variant = make_variant(stock=5)
        cart = make_cart([(variant, 2)])
        payment_client.response = {"id": "cs_test_no_url", "url": None}

        assert _checkout(client, cart.session_id).status_code == 503
        assert stock_of(db, variant.id) == 5
        assert _reservations(db) == 0

    def test_cancellation_restores_stock(self, db, make_variant, make_cart, payment_client):
        variant = make_variant(stock=5)
        cart = make_cart([(variant, 5)])
        payment_client.fail = asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(start_checkout(
                db,
                session_id=cart.session_id,
                success_url=BODY["success_url"],
                cancel_url=BODY["cancel_url"],
                payment_client=payment_client,
                event=system_event("test-cancel"),
            ))

        assert stock_of(db, variant.id) == 5
        assert _reservations(db) == 0

    def test_order_insert_failure_restores_stock(self, client, db, make_variant, make_cart, payment_client):
        variant = make_variant(stock=5)
        taken = make_cart([(variant, 1)])
        assert _checkout(client, taken.session_id).status_code == 200

        # Stripe handing back a session id that is already bound to an order
        cart = make_cart([(variant, 2)])
        payment_client.response = {"id": "cs_test_1", "url": "https://checkout.stripe.test/pay/cs_test_1"}

        response = _checkout(client, cart.session_id)

        assert response.status_code == 500
        assert stock_of(db, variant.id) == 4
        assert _cart_status(db, cart.id) == CartStatus.ACTIVE
