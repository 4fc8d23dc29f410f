# storefront/utils/settlement.py
"""
Settlement of payment outcomes reported by the provider.

Completion turns a cart's reservations into a permanent sale; expiration (and
the sweep of stale holds) puts the reserved stock back. Both are safe to run
more than once for the same checkout session: the order status only leaves
`pending` through a conditional update, so exactly one caller wins.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.database import transaction, utcnow
from storefront.errors import NotFoundError, ValidationError
from storefront.models.cart import Cart, CartItem, CartStatus
from storefront.models.order import Order, OrderItem, OrderStatus, Payment, PaymentStatus
from storefront.models.product import Variant
from storefront.utils import inventory
from storefront.utils.audit import write_log
from storefront.utils.crypto import encrypt_field
from storefront.utils.events import RequestEvent

logger = logging.getLogger(__name__)

PROVIDER_ACTOR = "provider"


@dataclass
class SettlementResult:
    order_id: Optional[int]
    outcome: str  # paid, failed, duplicate, ignored or released
    released: int = 0


@dataclass
class SweepResult:
    carts: List[int] = field(default_factory=list)
    released: int = 0


def _request_id(event: Optional[RequestEvent]) -> Optional[str]:
    return event.request_id if event else None


def _transition(db: Session, order_id: int, to_status: OrderStatus) -> bool:
    result = db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
        .values(status=to_status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _shipping_details(session_obj: Dict[str, Any]) -> Dict[str, Any]:
    # Newer API versions nest shipping under collected_information
    collected = session_obj.get("collected_information") or {}
    return collected.get("shipping_details") or session_obj.get("shipping_details") or {}


def _apply_customer_details(order: Order, session_obj: Dict[str, Any]) -> None:
    key = settings.ENCRYPTION_KEY
    customer = session_obj.get("customer_details") or {}
    shipping = _shipping_details(session_obj)
    address = shipping.get("address") or customer.get("address") or {}

    order.email = encrypt_field(customer.get("email"), key)
    order.customer_name = encrypt_field(customer.get("name"), key)
    order.shipping_name = encrypt_field(shipping.get("name") or customer.get("name"), key)
    order.shipping_address_line1 = encrypt_field(address.get("line1"), key)
    order.shipping_address_line2 = encrypt_field(address.get("line2"), key)
    order.shipping_city = encrypt_field(address.get("city"), key)
    order.shipping_state = encrypt_field(address.get("state"), key)
    order.shipping_postal_code = encrypt_field(address.get("postal_code"), key)
    order.shipping_country = encrypt_field(address.get("country"), key)


def handle_checkout_completed(db: Session, session_obj: Dict[str, Any], event: Optional[RequestEvent] = None) -> SettlementResult:
    """Finalize the order behind a completed checkout session."""
    checkout_session_id = session_obj.get("id")
    if not checkout_session_id:
        raise ValidationError("Checkout session id missing from event")

    order = db.query(Order).filter(Order.checkout_session_id == checkout_session_id).first()
    if not order:
        logger.warning("Completed checkout session %s has no order", checkout_session_id)
        raise NotFoundError("Order not found", {"checkout_session_id": checkout_session_id})

    order_id, cart_id = order.id, order.cart_id
    if event:
        event.set(order_id=order_id, cart_id=cart_id, checkout_session_id=checkout_session_id)

    with transaction(db):
        if not _transition(db, order_id, OrderStatus.PAID):
            current = db.execute(select(Order.status).where(Order.id == order_id)).scalar_one()
            logger.info("Ignoring completion for order %s, already %s", order_id, current.value)
            write_log(
                db, action="WEBHOOK_DUPLICATE", resource="orders", actor=PROVIDER_ACTOR,
                request_id=_request_id(event), status="IGNORED",
                meta={"order_id": order_id, "checkout_session_id": checkout_session_id, "order_status": current.value},
            )
            if event:
                event.set(settlement="duplicate", order_status=current.value)
            return SettlementResult(order_id=order_id, outcome="duplicate")

        db.refresh(order)
        currency = (session_obj.get("currency") or order.currency or settings.DEFAULT_CURRENCY).lower()
        shipping_cost = session_obj.get("shipping_cost") or {}
        payment_intent = session_obj.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")

        _apply_customer_details(order, session_obj)
        order.subtotal_cents = session_obj.get("amount_subtotal")
        order.shipping_cents = shipping_cost.get("amount_total", 0)
        order.total_cents = session_obj.get("amount_total")
        order.currency = currency
        order.payment_intent_id = payment_intent

        items = db.execute(
            select(CartItem, Variant).join(Variant, Variant.id == CartItem.variant_id).where(CartItem.cart_id == cart_id)
        ).all()
        for cart_item, variant in items:
            db.add(OrderItem(
                order_id=order_id,
                product_id=cart_item.product_id,
                variant_id=cart_item.variant_id,
                quantity=cart_item.quantity,
                unit_price_cents=variant.price_cents,
                currency=(variant.currency or currency).lower(),
            ))

        db.add(Payment(
            order_id=order_id,
            status=PaymentStatus.SUCCEEDED,
            checkout_session_id=checkout_session_id,
            payment_intent_id=payment_intent,
            amount_cents=order.total_cents or 0,
            currency=currency,
        ))

        cleared = inventory.clear_all(db, cart_id, event)
        write_log(
            db, action="ORDER_PAID", resource="orders", actor=PROVIDER_ACTOR, request_id=_request_id(event),
            meta={
                "order_id": order_id, "cart_id": cart_id, "checkout_session_id": checkout_session_id,
                "amount_total": order.total_cents, "currency": currency, "reservations_cleared": cleared,
            },
        )

    logger.info("Order %s paid (session %s)", order_id, checkout_session_id)
    if event:
        event.set(settlement="paid", items=len(items))
    return SettlementResult(order_id=order_id, outcome="paid")


def _expire_cart(db: Session, cart_id: int, order: Optional[Order], event: Optional[RequestEvent], reason: str) -> SettlementResult:
    """Fail the pending order (if any), put the held stock back and abandon the cart.

    Runs in one transaction. A paid order keeps its stock and its cart.
    """
    order_id = order.id if order else None
    with transaction(db):
        failed = False
        if order is not None:
            failed = _transition(db, order.id, OrderStatus.FAILED)
            if not failed:
                current = db.execute(select(Order.status).where(Order.id == order.id)).scalar_one()
                if current != OrderStatus.FAILED:
                    # Paid, or an administrative status that follows payment
                    logger.info("Order %s is already %s, nothing to release", order.id, current.value)
                    return SettlementResult(order_id=order_id, outcome="ignored")

        released = inventory.release_all(db, cart_id, event)
        db.execute(
            update(Cart)
            .where(Cart.id == cart_id)
            .values(status=CartStatus.ABANDONED)
            .execution_options(synchronize_session=False)
        )
        write_log(
            db, action="ORDER_FAILED", resource="orders", actor=PROVIDER_ACTOR if reason == "expired" else "system",
            request_id=_request_id(event),
            meta={"order_id": order_id, "cart_id": cart_id, "reason": reason, "reservations_released": released},
        )

    outcome = "failed" if failed else "released"
    logger.info("Cart %s abandoned (%s): order %s, %s reservation(s) released", cart_id, reason, order_id, released)
    return SettlementResult(order_id=order_id, outcome=outcome, released=released)


def _metadata_cart_id(session_obj: Dict[str, Any]) -> Optional[int]:
    raw = (session_obj.get("metadata") or {}).get("cart_id") or session_obj.get("client_reference_id")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _stale_expiration(db: Session, current: Order, checkout_session_id: Optional[str], event: Optional[RequestEvent]) -> SettlementResult:
    # The cart's order belongs to a later session; its holds are not ours to release
    logger.info(
        "Ignoring expiry of session %s, cart %s is on session %s",
        checkout_session_id, current.cart_id, current.checkout_session_id,
    )
    with transaction(db):
        write_log(
            db, action="WEBHOOK_DUPLICATE", resource="orders", actor=PROVIDER_ACTOR,
            request_id=_request_id(event), status="IGNORED",
            meta={
                "order_id": current.id, "cart_id": current.cart_id, "checkout_session_id": checkout_session_id,
                "order_checkout_session_id": current.checkout_session_id, "order_status": current.status.value,
            },
        )
    if event:
        event.set(
            order_id=current.id, cart_id=current.cart_id, checkout_session_id=checkout_session_id,
            settlement="duplicate", order_status=current.status.value,
        )
    return SettlementResult(order_id=current.id, outcome="duplicate")


def handle_checkout_expired(db: Session, session_obj: Dict[str, Any], event: Optional[RequestEvent] = None) -> SettlementResult:
    """Restore the stock held for a checkout session that was never paid."""
    checkout_session_id = session_obj.get("id")
    order = None
    if checkout_session_id:
        order = db.query(Order).filter(Order.checkout_session_id == checkout_session_id).first()

    cart_id = order.cart_id if order else _metadata_cart_id(session_obj)
    if cart_id is None:
        raise ValidationError("Cannot determine cart for expired session", {"checkout_session_id": checkout_session_id})
    if order is None:
        if db.get(Cart, cart_id) is None:
            raise NotFoundError("Cart not found", {"cart_id": cart_id})
        current = db.query(Order).filter(Order.cart_id == cart_id).first()
        if current is not None:
            return _stale_expiration(db, current, checkout_session_id, event)

    if event:
        event.set(order_id=order.id if order else None, cart_id=cart_id, checkout_session_id=checkout_session_id)

    result = _expire_cart(db, cart_id, order, event, reason="expired")
    if event:
        event.set(settlement=result.outcome, reservations_released=result.released)
    return result


def sweep_expired_reservations(db: Session, now: Optional[datetime] = None, event: Optional[RequestEvent] = None) -> SweepResult:
    """Release every cart whose holds are past their expiry."""
    now = now or utcnow()
    result = SweepResult()
    for cart_id in inventory.expired_cart_ids(db, now):
        order = db.query(Order).filter(Order.cart_id == cart_id).first()
        outcome = _expire_cart(db, cart_id, order, event, reason="reservation_timeout")
        if outcome.outcome != "ignored":
            result.carts.append(cart_id)
            result.released += outcome.released

    if result.carts:
        logger.info("Sweep released %s reservation(s) across %s cart(s)", result.released, len(result.carts))
    if event:
        event.set(swept_carts=result.carts, reservations_released=result.released)
    return result
