import json
import time

from sqlalchemy import create_engine, event, select

from storefront.models import Inventory, Log
from storefront.utils.stripe_client import StripeClient, compute_signature

WEBHOOK_SECRET = "whsec_test_secret"


class FakePaymentClient(StripeClient):
    """Records checkout session requests instead of calling Stripe."""

    def __init__(self):
        super().__init__(api_url="http://stripe.test", secret_key="sk_test", webhook_secret=WEBHOOK_SECRET)
        self.calls = []
        self.fail = None
        self.response = None

    async def create_checkout_session(self, **kwargs):
        self.calls.append(kwargs)
        if self.fail is not None:
            raise self.fail
        if self.response is not None:
            return self.response
        n = len(self.calls)
        return {"id": f"cs_test_{n}", "url": f"https://checkout.stripe.test/pay/cs_test_{n}"}


def serialized_engine(db_url):
    """Engine whose transactions start with BEGIN IMMEDIATE, one writer at a time like a server database."""
    engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": 30})

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def signed(payload: dict, timestamp=None, secret=WEBHOOK_SECRET):
    """Body and Stripe-Signature header for a webhook delivery."""
    body = json.dumps(payload).encode("utf-8")
    timestamp = int(time.time()) if timestamp is None else timestamp
    return body, f"t={timestamp},v1={compute_signature(secret, timestamp, body)}"


def stock_of(db, variant_id):
    return db.execute(select(Inventory.stock_quantity).where(Inventory.variant_id == variant_id)).scalar_one()


def actions(db):
    return [a for (a,) in db.execute(select(Log.action).order_by(Log.id)).all()]
