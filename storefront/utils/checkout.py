# storefront/utils/checkout.py
"""
Checkout orchestration: active cart -> stock reserved -> remote payment session -> ordered cart + pending order.

Once stock is reserved every exit path other than full success releases it
again before the error leaves this module.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from storefront.config import settings
from storefront.database import transaction, utcnow
from storefront.errors import (
    ConflictError, DependentServiceError, InsufficientStockError, InternalError, NotFoundError, ValidationError,
)
from storefront.models.cart import Cart, CartItem, CartStatus
from storefront.models.order import Order, OrderStatus
from storefront.models.product import Variant
from storefront.utils import inventory
from storefront.utils.audit import write_log
from storefront.utils.events import RequestEvent
from storefront.utils.stripe_client import StripeClient

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    checkout_url: str
    session_id: str
    order_id: int


def load_cart(db: Session, session_id: str) -> Optional[Cart]:
    return (
        db.query(Cart)
        .options(selectinload(Cart.items).selectinload(CartItem.variant).selectinload(Variant.product))
        .filter(Cart.session_id == session_id)
        .first()
    )


def _shortfalls(db: Session, cart: Cart):
    # Read-only pre-check; the conditional update in reserve_all stays authoritative
    stock = inventory.current_stock(db, [it.variant_id for it in cart.items])
    report = []
    for it in sorted(cart.items, key=lambda i: i.variant_id):
        available = stock.get(it.variant_id, 0)
        if available < it.quantity:
            report.append({
                "variant_id": it.variant_id,
                "product_name": it.variant.product.title if it.variant and it.variant.product else None,
                "variant_name": it.variant.title if it.variant else None,
                "requested": it.quantity,
                "available": available,
            })
    return report


def _line_items(cart: Cart):
    items = []
    for it in cart.items:
        variant = it.variant
        items.append({
            "price_data": {
                "currency": (variant.currency or settings.DEFAULT_CURRENCY).lower(),
                "product_data": {
                    "name": variant.product.title,
                    "description": variant.option or None,
                },
                "unit_amount": variant.price_cents,
            },
            "quantity": it.quantity,
        })
    return items


def _release(db: Session, cart_id: int, event: RequestEvent) -> None:
    db.rollback()
    try:
        with transaction(db):
            released = inventory.release_all(db, cart_id, event)
    except Exception:
        logger.exception("CRITICAL: could not release reservations for cart %s", cart_id)
        event.set(stock_restored=False)
        raise
    logger.info("Released %s reservation(s) for cart %s after failed checkout", released, cart_id)
    event.set(stock_restored=True, reservations_released=released)


async def start_checkout(
    db: Session,
    *,
    session_id: str,
    success_url: str,
    cancel_url: str,
    payment_client: StripeClient,
    event: RequestEvent,
) -> CheckoutResult:
    cart = load_cart(db, session_id)
    if not cart:
        event.error("NotFound", "Cart not found", session_id=session_id)
        raise NotFoundError("Cart not found")
    event.set(cart_id=cart.id, cart_status=cart.status.value)

    if not cart.items:
        event.error("BadRequest", "Cart is empty")
        raise ValidationError("Cart is empty")

    now = utcnow()
    if cart.expires_at < now:
        event.error("Conflict", "Cart has expired", expires_at=cart.expires_at)
        raise ConflictError("Cart has expired, please create a new cart")

    # Keep the cart alive for the length of the checkout, whatever happens next
    with transaction(db):
        cart.expires_at = now + timedelta(minutes=settings.CART_TTL_MINUTES)

    if cart.status != CartStatus.ACTIVE:
        event.error("Conflict", "Cart already checked out")
        raise ConflictError("Cart already checked out")

    shortfalls = _shortfalls(db, cart)
    if shortfalls:
        event.error("Conflict", "Insufficient stock", items=shortfalls)
        raise InsufficientStockError(shortfalls)

    cart_id = cart.id
    currency = (cart.items[0].variant.currency or settings.DEFAULT_CURRENCY).lower()
    hold_until = now + timedelta(minutes=settings.RESERVATION_TTL_MINUTES)
    result = inventory.reserve_all(db, cart_id, cart.items, hold_until, event)
    if not result.ok:
        if result.reason == "insufficient_stock":
            item = {"variant_id": result.failed_variant_id, "requested": result.requested, "available": result.available}
            event.error("Conflict", "Stock changed, please try again", **item)
            raise InsufficientStockError([item], "Stock changed, please try again")
        event.error("Conflict", "Cart already checked out", reason=result.reason)
        raise ConflictError("Cart already checked out")
    event.set(reserved_until=hold_until)

    completed = False
    try:
        try:
            session = await payment_client.create_checkout_session(
                line_items=_line_items(cart),
                success_url=success_url,
                cancel_url=cancel_url,
                metadata={"cart_id": cart_id, "session_id": session_id, "request_id": event.request_id},
                client_reference_id=str(cart_id),
                currency=currency,
                idempotency_key=f"checkout-{cart_id}-{event.request_id}",
            )
        except httpx.HTTPError as e:
            event.error("DependentService", "Failed to create checkout session", detail=str(e))
            raise DependentServiceError("stripe", "Failed to create checkout session") from e

        checkout_url = session.get("url") if isinstance(session, dict) else None
        checkout_session_id = session.get("id") if isinstance(session, dict) else None
        if not checkout_url or not checkout_session_id:
            event.error("DependentService", "Checkout session has no redirect url")
            raise DependentServiceError("stripe", "Checkout creation failed")
        event.set(checkout_session_id=checkout_session_id)

        try:
            with transaction(db):
                moved = db.execute(
                    update(Cart)
                    .where(Cart.id == cart_id, Cart.status == CartStatus.ACTIVE)
                    .values(status=CartStatus.ORDERED)
                    .execution_options(synchronize_session=False)
                )
                if moved.rowcount != 1:
                    raise InternalError("Failed to update cart status")
                order = Order(
                    cart_id=cart_id,
                    checkout_session_id=checkout_session_id,
                    status=OrderStatus.PENDING,
                    currency=currency,
                )
                db.add(order)
                db.flush()
                write_log(
                    db, action="CHECKOUT_START", resource="orders", request_id=event.request_id,
                    meta={"order_id": order.id, "cart_id": cart_id, "checkout_session_id": checkout_session_id},
                )
        except SQLAlchemyError as e:
            event.error("InsertionError", "Failed to create order", cart_id=cart_id)
            raise InternalError("Failed to create order") from e

        completed = True
        event.set(order_id=order.id)
        return CheckoutResult(checkout_url=checkout_url, session_id=checkout_session_id, order_id=order.id)
    finally:
        # Runs on errors, timeouts and cancellation alike
        if not completed:
            _release(db, cart_id, event)
