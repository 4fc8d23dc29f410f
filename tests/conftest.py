import asyncio
from datetime import timedelta
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront.database import Base, get_db, utcnow
from storefront.main import app
from storefront.models import Cart, CartItem, CartStatus, Inventory, Product, Variant
from storefront.utils.checkout import start_checkout
from storefront.utils.events import system_event
from storefront.utils.stripe_client import get_payment_client
from storefront.utils.tokenJWT import create_access_token
from tests.helpers import FakePaymentClient

_ids = count(1)


@pytest.fixture()
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'storefront-test.db'}"


@pytest.fixture()
def engine(db_url):
    engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def payment_client():
    return FakePaymentClient()


@pytest.fixture()
def client(session_factory, payment_client):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_client] = lambda: payment_client
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def admin_headers():
    token = create_access_token({"sub": "tester", "role": "ADMIN"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def make_variant(db):
    def _make(stock=5, price_cents=1000, max_quantity=None, min_quantity=1, with_inventory=True):
        n = next(_ids)
        product = Product(title=f"Product {n}", slug=f"product-{n}", vendor="Acme", product_type="widgets")
        variant = Variant(
            title=f"Variant {n}", sku=f"SKU-{n}", option="Size: M", price_cents=price_cents,
            currency="eur", max_quantity=max_quantity, min_quantity=min_quantity,
        )
        product.variants.append(variant)
        if with_inventory:
            variant.inventory = Inventory(stock_quantity=stock)
        db.add(product)
        db.commit()
        return variant
    return _make


@pytest.fixture()
def make_cart(db):
    def _make(items=(), session_id=None, status=CartStatus.ACTIVE, expires_in=timedelta(minutes=30)):
        cart = Cart(
            session_id=session_id or f"sess-{next(_ids)}",
            status=status,
            expires_at=utcnow() + expires_in,
        )
        for variant, quantity in items:
            cart.items.append(CartItem(product_id=variant.product_id, variant_id=variant.id, quantity=quantity, currency="eur"))
        db.add(cart)
        db.commit()
        return cart
    return _make


@pytest.fixture()
def checked_out(db, make_cart, payment_client):
    """Run a real checkout for a fresh cart and return (cart_id, checkout session id, order id)."""
    def _checkout(items):
        cart = make_cart(items)
        result = asyncio.run(start_checkout(
            db,
            session_id=cart.session_id,
            success_url="https://shop.test/success",
            cancel_url="https://shop.test/cancel",
            payment_client=payment_client,
            event=system_event("test-checkout"),
        ))
        return cart.id, result.session_id, result.order_id
    return _checkout
