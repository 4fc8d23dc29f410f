# storefront/utils/inventory.py
"""
Inventory ledger and reservation store.

Stock is only ever changed through single conditional UPDATE statements, so the
database row lock is what serializes concurrent checkouts on a variant. Nothing
here reads a quantity and writes it back.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, NamedTuple, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from storefront.errors import ConflictError, NotFoundError, ValidationError
from storefront.models.cart import Cart, CartStatus
from storefront.models.order import Order
from storefront.models.stock import Inventory, Reservation
from storefront.utils.audit import write_log
from storefront.utils.events import RequestEvent

logger = logging.getLogger(__name__)


class StockItem(NamedTuple):
    variant_id: int
    quantity: int


@dataclass
class StockLevel:
    variant_id: int
    stock: int
    reserved: int

    @property
    def available(self) -> int:
        return self.stock - self.reserved


@dataclass
class ReserveResult:
    ok: bool
    reason: Optional[str] = None # insufficient_stock, cart_not_active or already_reserved
    failed_variant_id: Optional[int] = None
    requested: Optional[int] = None
    available: Optional[int] = None


def _request_id(event: Optional[RequestEvent]) -> Optional[str]:
    return event.request_id if event else None


# --- Ledger ---

def decrement_if_available(db: Session, variant_id: int, qty: int) -> bool:
    """Take `qty` off the variant's stock if at least that much is left.

    Returns False when the guard fails (or the variant has no inventory row);
    the caller decides what a declined decrement means.
    """
    if qty <= 0:
        raise ValidationError("Quantity must be positive")
    result = db.execute(
        update(Inventory)
        .where(Inventory.variant_id == variant_id, Inventory.stock_quantity >= qty)
        .values(stock_quantity=Inventory.stock_quantity - qty)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def increment(db: Session, variant_id: int, qty: int) -> None:
    if qty <= 0:
        raise ValidationError("Quantity must be positive")
    result = db.execute(
        update(Inventory)
        .where(Inventory.variant_id == variant_id)
        .values(stock_quantity=Inventory.stock_quantity + qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Restoring into a missing ledger row would silently lose stock
        raise NotFoundError("Inventory not found", {"variant_id": variant_id})


def set_absolute(db: Session, variant_id: int, qty: int) -> None:
    if qty < 0:
        raise ValidationError("stock_quantity cannot be negative")
    result = db.execute(
        update(Inventory)
        .where(Inventory.variant_id == variant_id)
        .values(stock_quantity=qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError("Inventory not found", {"variant_id": variant_id})


def adjust(db: Session, variant_id: int, delta: int) -> bool:
    """Apply a signed change. A negative delta uses the same guard as a reservation."""
    if delta < 0:
        return decrement_if_available(db, variant_id, -delta)
    if delta > 0:
        increment(db, variant_id, delta)
    return True


def sum_reserved(db: Session, variant_id: int) -> int:
    total = db.execute(
        select(func.coalesce(func.sum(Reservation.quantity), 0)).where(Reservation.variant_id == variant_id)
    ).scalar_one()
    return int(total)


def read(db: Session, variant_id: int) -> Optional[StockLevel]:
    stock = db.execute(
        select(Inventory.stock_quantity).where(Inventory.variant_id == variant_id)
    ).scalar_one_or_none()
    if stock is None:
        return None
    return StockLevel(variant_id=variant_id, stock=stock, reserved=sum_reserved(db, variant_id))


def current_stock(db: Session, variant_ids: Iterable[int]) -> dict:
    """Ledger quantities keyed by variant id; variants without a row are absent."""
    rows = db.execute(
        select(Inventory.variant_id, Inventory.stock_quantity).where(Inventory.variant_id.in_(list(variant_ids)))
    ).all()
    return {variant_id: stock for variant_id, stock in rows}


# --- Reservations ---

def reserve_all(
    db: Session,
    cart_id: int,
    items: Iterable,
    expires_at: datetime,
    event: Optional[RequestEvent] = None,
) -> ReserveResult:
    """
    Reserve every item or nothing.

    Runs as its own transaction, so anything pending on the session must be
    committed first. Items are processed in ascending variant id order, which
    makes the reported failing variant reproducible.

    The cart row is touched first with a conditional update; that row lock
    makes two checkouts of the same cart take turns, and the second one finds
    the first one's holds and backs off.
    """
    ordered: List[StockItem] = sorted(
        (StockItem(it.variant_id, it.quantity) for it in items), key=lambda it: it.variant_id
    )
    try:
        claimed = db.execute(
            update(Cart)
            .where(Cart.id == cart_id, Cart.status == CartStatus.ACTIVE)
            .values(updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.rollback()
            return ReserveResult(ok=False, reason="cart_not_active")

        held = db.execute(select(func.count(Reservation.id)).where(Reservation.cart_id == cart_id)).scalar_one()
        if held:
            db.rollback()
            return ReserveResult(ok=False, reason="already_reserved")

        for item in ordered:
            if not decrement_if_available(db, item.variant_id, item.quantity):
                db.rollback()
                level = read(db, item.variant_id)
                db.rollback()
                logger.info("Reservation declined for cart %s on variant %s", cart_id, item.variant_id)
                return ReserveResult(
                    ok=False,
                    reason="insufficient_stock",
                    failed_variant_id=item.variant_id,
                    requested=item.quantity,
                    # Read after the rollback, a release may have landed since the decline
                    available=min(level.stock, item.quantity - 1) if level else 0,
                )
            db.add(Reservation(cart_id=cart_id, variant_id=item.variant_id, quantity=item.quantity, expires_at=expires_at))

        write_log(
            db, action="STOCK_RESERVE", resource="reservations", request_id=_request_id(event),
            meta={"cart_id": cart_id, "items": [it._asdict() for it in ordered], "expires_at": expires_at.isoformat()},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ReserveResult(ok=True)


def release_all(db: Session, cart_id: int, event: Optional[RequestEvent] = None) -> int:
    """
    Restore stock for every live reservation of the cart and delete them.

    Does not commit; run it inside the caller's transaction. Each row is deleted
    by id before its stock is put back, so two concurrent releases of the same
    cart restore each reservation exactly once.
    """
    reservations = db.execute(
        select(Reservation.id, Reservation.variant_id, Reservation.quantity)
        .where(Reservation.cart_id == cart_id)
        .order_by(Reservation.variant_id)
    ).all()

    restored = []
    for reservation_id, variant_id, quantity in reservations:
        deleted = db.execute(
            delete(Reservation).where(Reservation.id == reservation_id).execution_options(synchronize_session=False)
        )
        if deleted.rowcount != 1:
            continue
        increment(db, variant_id, quantity)
        restored.append({"variant_id": variant_id, "quantity": quantity})

    if restored:
        write_log(
            db, action="STOCK_RELEASE", resource="reservations", request_id=_request_id(event),
            meta={"cart_id": cart_id, "items": restored},
        )
    return len(restored)


def clear_all(db: Session, cart_id: int, event: Optional[RequestEvent] = None) -> int:
    """Drop the cart's reservations without touching stock: the sale is final."""
    result = db.execute(
        delete(Reservation).where(Reservation.cart_id == cart_id).execution_options(synchronize_session=False)
    )
    if result.rowcount:
        write_log(
            db, action="STOCK_CLEAR", resource="reservations", request_id=_request_id(event),
            meta={"cart_id": cart_id, "count": result.rowcount},
        )
    return result.rowcount


def cancel_reservation(db: Session, reservation_id: int, actor: str = "system", event: Optional[RequestEvent] = None) -> Reservation:
    reservation = db.get(Reservation, reservation_id)
    if not reservation:
        raise NotFoundError("Reservation not found", {"reservation_id": reservation_id})

    variant_id, quantity, cart_id = reservation.variant_id, reservation.quantity, reservation.cart_id
    deleted = db.execute(
        delete(Reservation).where(Reservation.id == reservation_id).execution_options(synchronize_session=False)
    )
    if deleted.rowcount != 1:
        # Released by someone else in the meantime
        raise NotFoundError("Reservation not found", {"reservation_id": reservation_id})
    increment(db, variant_id, quantity)
    write_log(
        db, action="RESERVATION_CANCEL", resource="reservations", actor=actor, request_id=_request_id(event),
        meta={"reservation_id": reservation_id, "cart_id": cart_id, "variant_id": variant_id, "quantity": quantity},
    )
    return reservation


def expired_cart_ids(db: Session, now: datetime) -> List[int]:
    rows = db.execute(
        select(Reservation.cart_id).where(Reservation.expires_at < now).distinct().order_by(Reservation.cart_id)
    ).scalars().all()
    return list(rows)


def delete_cart(db: Session, cart: Cart, event: Optional[RequestEvent] = None) -> int:
    """
    Delete a cart together with its reservations, restoring their stock.

    Does not commit. Carts that already have an order are kept, since the order
    references them.
    """
    has_order = db.execute(select(Order.id).where(Order.cart_id == cart.id)).first()
    if has_order:
        raise ConflictError("Cart has an order and cannot be deleted", {"cart_id": cart.id})

    restored = release_all(db, cart.id, event)
    write_log(
        db, action="CART_DELETE", resource="carts", request_id=_request_id(event),
        meta={"cart_id": cart.id, "reservations_released": restored},
    )
    db.delete(cart)
    return restored
