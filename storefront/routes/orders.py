# storefront/routes/orders.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload

from storefront.config import settings
from storefront.database import get_db, transaction
from storefront.errors import ConflictError, NotFoundError, ValidationError
from storefront.models.order import Order, OrderStatus
from storefront.schemas.order import CustomerDetails, OrderDetail, OrderItemOut, OrderPage, OrderStatusUpdate, PaymentOut
from storefront.utils.audit import write_log
from storefront.utils.crypto import decrypt_field
from storefront.utils.events import get_event
from storefront.utils.tokenJWT import require_admin

router = APIRouter(prefix="/orders", tags=["Orders"])
logger = logging.getLogger(__name__)

# Administrative follow-ups; pending -> paid/failed belongs to settlement only
ALLOWED_TRANSITIONS = {
    OrderStatus.PAID: {OrderStatus.CANCELLED, OrderStatus.RETURNED, OrderStatus.REFUNDED},
    OrderStatus.RETURNED: {OrderStatus.REFUNDED},
}

def _load_order(db: Session, order_id: int) -> Order:
    order = (
        db.query(Order)
        .options(selectinload(Order.items), selectinload(Order.payments))
        .filter(Order.id == order_id)
        .first()
    )
    if not order:
        raise NotFoundError("Order not found", {"order_id": order_id})
    return order

# Map Order model to the admin detail view, decrypting PII
def _order_to_out(order: Order) -> OrderDetail:
    key = settings.ENCRYPTION_KEY
    customer = CustomerDetails(
        email=decrypt_field(order.email, key),
        name=decrypt_field(order.customer_name, key),
        shipping_name=decrypt_field(order.shipping_name, key),
        address_line1=decrypt_field(order.shipping_address_line1, key),
        address_line2=decrypt_field(order.shipping_address_line2, key),
        city=decrypt_field(order.shipping_city, key),
        state=decrypt_field(order.shipping_state, key),
        postal_code=decrypt_field(order.shipping_postal_code, key),
        country=decrypt_field(order.shipping_country, key),
    )
    return OrderDetail(
        id=order.id,
        cart_id=order.cart_id,
        status=order.status,
        checkout_session_id=order.checkout_session_id,
        payment_intent_id=order.payment_intent_id,
        subtotal_cents=order.subtotal_cents,
        shipping_cents=order.shipping_cents,
        total_cents=order.total_cents,
        currency=order.currency,
        created_at=order.created_at,
        customer=customer,
        items=[OrderItemOut.model_validate(it) for it in order.items],
        payments=[PaymentOut.model_validate(p) for p in order.payments],
    )


@router.get("", response_model=OrderPage)
def list_orders(
    status: Optional[OrderStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_by: str = "created_at",
    order: str = "desc",
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    query = db.query(Order)
    if status is not None:
        query = query.filter(Order.status == status)

    col = Order.created_at if sort_by == "created_at" else Order.id
    query = query.order_by(col.desc() if order == "desc" else col.asc(), Order.id.desc())

    total = query.count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/{order_id}", response_model=OrderDetail)
def get_order(order_id: int, db: Session = Depends(get_db), admin: str = Depends(require_admin)):
    return _order_to_out(_load_order(db, order_id))


@router.patch("/{order_id}/status", response_model=OrderDetail)
def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    event = get_event(request)
    order = _load_order(db, order_id)
    current = order.status
    if payload.status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValidationError(
            f"Cannot change order status from {current.value} to {payload.status.value}",
            {"order_id": order_id, "from": current.value, "to": payload.status.value},
        )

    with transaction(db):
        # Conditional on the status we validated against, so a concurrent change wins cleanly
        result = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == current)
            .values(status=payload.status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Order status changed concurrently, please retry", {"order_id": order_id})
        write_log(
            db, action="ORDER_STATUS_CHANGE", resource="orders", actor=admin, request_id=event.request_id,
            ip=request.client.host if request.client else None,
            meta={"order_id": order_id, "from": current.value, "to": payload.status.value, "reason": payload.reason},
        )

    event.set(order_id=order_id, status_from=current.value, status_to=payload.status.value)
    db.expire_all()
    return _order_to_out(_load_order(db, order_id))
