"""Inventory, reservation and order endpoints, admin auth and the error envelope."""
from datetime import timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from storefront.database import utcnow
from storefront.errors import GENERIC_ERROR_MESSAGE, InternalError
from storefront.models import Reservation
from storefront.routes import webhooks
from storefront.utils.settlement import handle_checkout_completed
from storefront.utils.tokenJWT import create_access_token
from tests.helpers import actions, signed, stock_of


class TestAdminAuth:
    def test_missing_token(self, client, make_variant):
        variant = make_variant(stock=1)
        response = client.patch(f"/inventory/{variant.id}", json={"adjust": 1})
        assert response.status_code == 401

    def test_invalid_token(self, client, make_variant):
        variant = make_variant(stock=1)
        response = client.patch(
            f"/inventory/{variant.id}", json={"adjust": 1}, headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    def test_non_admin_role(self, client, make_variant):
        variant = make_variant(stock=1)
        token = create_access_token({"sub": "someone", "role": "CUSTOMER"})
        response = client.patch(
            f"/inventory/{variant.id}", json={"adjust": 1}, headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 403

    def test_expired_token(self, client, make_variant):
        variant = make_variant(stock=1)
        token = create_access_token({"sub": "tester", "role": "ADMIN"}, expires_delta=timedelta(minutes=-1))
        response = client.patch(
            f"/inventory/{variant.id}", json={"adjust": 1}, headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401


class TestInventory:
    def test_read_is_public(self, client, make_variant, checked_out):
        variant = make_variant(stock=10)
        checked_out([(variant, 4)])

        response = client.get(f"/inventory/{variant.id}")

        assert response.status_code == 200
        assert response.json() == {"variant_id": variant.id, "stock_quantity": 6, "reserved_quantity": 4, "available": 2}

    def test_read_unknown_variant(self, client):
        assert client.get("/inventory/999999").status_code == 404

    def test_create(self, client, db, admin_headers, make_variant):
        variant = make_variant(with_inventory=False)
        response = client.post("/inventory", json={"variant_id": variant.id, "stock_quantity": 7}, headers=admin_headers)
        assert response.status_code == 201
        assert response.json()["stock_quantity"] == 7
        assert "INVENTORY_CREATE" in actions(db)

    def test_create_twice_conflicts(self, client, admin_headers, make_variant):
        variant = make_variant(stock=1)
        response = client.post("/inventory", json={"variant_id": variant.id, "stock_quantity": 7}, headers=admin_headers)
        assert response.status_code == 409

    def test_set_absolute(self, client, db, admin_headers, make_variant):
        variant = make_variant(stock=3)
        response = client.patch(f"/inventory/{variant.id}", json={"stock_quantity": 20}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["stock_quantity"] == 20
        assert stock_of(db, variant.id) == 20

    def test_adjust(self, client, db, admin_headers, make_variant):
        variant = make_variant(stock=3)
        assert client.patch(f"/inventory/{variant.id}", json={"adjust": 4}, headers=admin_headers).status_code == 200
        assert client.patch(f"/inventory/{variant.id}", json={"adjust": -6}, headers=admin_headers).status_code == 200
        assert stock_of(db, variant.id) == 1

    def test_adjust_below_zero_is_rejected(self, client, db, admin_headers, make_variant):
        variant = make_variant(stock=3)
        response = client.patch(f"/inventory/{variant.id}", json={"adjust": -4}, headers=admin_headers)
        assert response.status_code == 400
        assert stock_of(db, variant.id) == 3
        assert "STOCK_ADJUST" not in actions(db)

    @pytest.mark.parametrize("body", [{}, {"stock_quantity": 1, "adjust": 1}, {"stock_quantity": -1}])
    def test_patch_body_validation(self, client, admin_headers, make_variant, body):
        variant = make_variant(stock=3)
        response = client.patch(f"/inventory/{variant.id}", json=body, headers=admin_headers)
        assert response.status_code == 422

    def test_list(self, client, admin_headers, make_variant):
        make_variant(stock=1)
        make_variant(stock=2)
        response = client.get("/inventory", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 2


class TestReservationEndpoints:
    def test_list_and_get(self, client, admin_headers, make_variant, checked_out):
        variant = make_variant(stock=10)
        cart_id, _, _ = checked_out([(variant, 2)])

        listing = client.get("/reservations", params={"cart_id": cart_id}, headers=admin_headers).json()
        assert listing["total"] == 1
        reservation = listing["items"][0]
        assert reservation["quantity"] == 2

        single = client.get(f"/reservations/{reservation['id']}", headers=admin_headers)
        assert single.status_code == 200
        assert single.json()["variant_id"] == variant.id

    def test_cancel_restores_stock(self, client, db, admin_headers, make_variant, checked_out):
        variant = make_variant(stock=10)
        checked_out([(variant, 2)])
        reservation_id = db.execute(select(Reservation.id)).scalar_one()

        response = client.delete(f"/reservations/{reservation_id}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["stock_restored"] == {"variant_id": variant.id, "quantity": 2}
        assert stock_of(db, variant.id) == 10
        assert client.delete(f"/reservations/{reservation_id}", headers=admin_headers).status_code == 404

    def test_sweep_endpoint(self, client, db, admin_headers, make_variant, checked_out):
        variant = make_variant(stock=10)
        cart_id, _, _ = checked_out([(variant, 2)])
        db.execute(update(Reservation).values(expires_at=utcnow() - timedelta(seconds=1)))
        db.commit()

        response = client.post("/reservations/sweep", headers=admin_headers)

        assert response.status_code == 200
        assert response.json() == {"carts": [cart_id], "released": 1}
        assert stock_of(db, variant.id) == 10


class TestOrders:
    def test_detail_decrypts_customer(self, client, db, admin_headers, make_variant, checked_out):
        variant = make_variant(stock=10, price_cents=1500)
        _, session_id, order_id = checked_out([(variant, 2)])
        handle_checkout_completed(db, {
            "id": session_id, "amount_total": 3000, "amount_subtotal": 3000, "currency": "eur",
            "customer_details": {"email": "grace@example.com", "name": "Grace Hopper"},
        })

        response = client.get(f"/orders/{order_id}", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "paid"
        assert data["customer"]["email"] == "grace@example.com"
        assert data["customer"]["name"] == "Grace Hopper"
        assert data["items"][0]["unit_price_cents"] == 1500
        assert data["payments"][0]["status"] == "succeeded"

    def test_list_filters_by_status(self, client, db, admin_headers, make_variant, checked_out):
        variant = make_variant(stock=10)
        checked_out([(variant, 1)])
        _, paid_session, _ = checked_out([(variant, 1)])
        handle_checkout_completed(db, {"id": paid_session, "amount_total": 1000})

        response = client.get("/orders", params={"status": "paid"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["items"][0]["checkout_session_id"] == paid_session

    def test_refund_paid_order(self, client, db, admin_headers, make_variant, checked_out):
        variant = make_variant(stock=10)
        _, session_id, order_id = checked_out([(variant, 1)])
        handle_checkout_completed(db, {"id": session_id, "amount_total": 1000})

        response = client.patch(f"/orders/{order_id}/status", json={"status": "refunded"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "refunded"
        assert "ORDER_STATUS_CHANGE" in actions(db)

    def test_pending_order_cannot_be_moved_by_admin(self, client, admin_headers, make_variant, checked_out):
        variant = make_variant(stock=10)
        _, _, order_id = checked_out([(variant, 1)])

        response = client.patch(f"/orders/{order_id}/status", json={"status": "paid"}, headers=admin_headers)

        assert response.status_code == 400

    def test_unknown_order(self, client, admin_headers):
        assert client.get("/orders/424242", headers=admin_headers).status_code == 404


def _raise_in_webhook(client, monkeypatch, error):
    def handler(db, session_obj, event):
        raise error

    monkeypatch.setitem(webhooks.HANDLERS, "checkout.session.completed", handler)
    body, header = signed({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}})
    return client.post("/webhooks/stripe", content=body, headers={"Stripe-Signature": header})


class TestEnvelope:
    def test_request_id_is_echoed(self, client):
        response = client.get("/cart", headers={"X-Session-ID": "nope", "X-Request-ID": "req-123"})
        assert response.status_code == 404
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json() == {"error": "Cart not found", "request_id": "req-123"}

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "ok"

    @pytest.mark.parametrize("error", [InternalError("order table exploded"), SQLAlchemyError("disk I/O error")])
    def test_server_errors_hide_their_message(self, client, monkeypatch, error):
        response = _raise_in_webhook(client, monkeypatch, error)

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == GENERIC_ERROR_MESSAGE
        assert body["request_id"] == response.headers["X-Request-ID"]
