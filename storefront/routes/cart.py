# storefront/routes/cart.py
import logging
import uuid
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response
from sqlalchemy.orm import Session

from storefront.config import settings
from storefront.database import get_db, transaction, utcnow
from storefront.errors import ConflictError, NotFoundError, ValidationError
from storefront.models.cart import Cart, CartItem, CartStatus
from storefront.models.product import Variant
from storefront.schemas.cart import CartAddItem, CartItemOut, CartOut, CheckoutOut, CheckoutRequest
from storefront.utils import inventory
from storefront.utils.checkout import load_cart, start_checkout
from storefront.utils.events import get_event
from storefront.utils.stripe_client import StripeClient, get_payment_client

router = APIRouter(prefix="/cart", tags=["Cart"])
logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-ID"

def _require_session(session_id: Optional[str]) -> str:
    if not session_id:
        raise ValidationError(f"{SESSION_HEADER} header is required")
    return session_id

def _get_cart(db: Session, session_id: str) -> Cart:
    cart = load_cart(db, session_id)
    if not cart:
        raise NotFoundError("Cart not found")
    return cart

# Item changes are only allowed on a live, unexpired cart
def _get_open_cart(db: Session, session_id: str) -> Cart:
    cart = _get_cart(db, session_id)
    if cart.status != CartStatus.ACTIVE:
        raise ConflictError("Cart is no longer active")
    if cart.expires_at < utcnow():
        raise ConflictError("Cart has expired, please create a new cart")
    return cart

def _cart_to_out(cart: Cart) -> CartOut:
    items_out = []
    total = 0
    for it in cart.items:
        variant = it.variant
        unit_price = variant.price_cents if variant else 0
        line_total = unit_price * it.quantity
        total += line_total
        items_out.append(CartItemOut(
            id=it.id,
            product_id=it.product_id,
            variant_id=it.variant_id,
            product_name=variant.product.title if variant and variant.product else None,
            variant_name=variant.title if variant else None,
            quantity=it.quantity,
            unit_price_cents=unit_price,
            line_total_cents=line_total,
            currency=it.currency or (variant.currency if variant else None),
        ))
    return CartOut(
        id=cart.id,
        session_id=cart.session_id,
        status=cart.status,
        expires_at=cart.expires_at,
        items=items_out,
        total_cents=total,
    )


@router.post("", response_model=CartOut)
def create_cart(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    x_session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
):
    event = get_event(request)
    session_id = x_session_id or str(uuid.uuid4())
    response.headers[SESSION_HEADER] = session_id

    cart = load_cart(db, session_id)
    if cart:
        event.set(cart_id=cart.id, cart_created=False)
        return _cart_to_out(cart)

    with transaction(db):
        cart = Cart(
            session_id=session_id,
            status=CartStatus.ACTIVE,
            expires_at=utcnow() + timedelta(minutes=settings.CART_TTL_MINUTES),
        )
        db.add(cart)
    event.set(cart_id=cart.id, cart_created=True)
    return _cart_to_out(load_cart(db, session_id))


@router.get("", response_model=CartOut)
def get_cart(
    db: Session = Depends(get_db),
    x_session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
):
    return _cart_to_out(_get_cart(db, _require_session(x_session_id)))


@router.post("/items", response_model=CartOut)
def add_item(
    payload: CartAddItem,
    request: Request,
    db: Session = Depends(get_db),
    x_session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
):
    event = get_event(request)
    session_id = _require_session(x_session_id)
    cart = _get_open_cart(db, session_id)

    variant = db.get(Variant, payload.variant_id)
    if not variant or variant.product_id != payload.product_id:
        raise NotFoundError("Variant not found", {"variant_id": payload.variant_id})

    existing = next((it for it in cart.items if it.variant_id == variant.id), None)
    new_quantity = payload.quantity + (existing.quantity if existing else 0)

    # Purchase limits apply to the whole line, not just this addition
    if new_quantity < (variant.min_quantity or 1):
        raise ValidationError(f"Minimum quantity for this item is {variant.min_quantity}")
    if variant.max_quantity is not None and new_quantity > variant.max_quantity:
        raise ValidationError(
            f"Maximum quantity for this item is {variant.max_quantity}",
            {"variant_id": variant.id, "max_quantity": variant.max_quantity},
        )

    with transaction(db):
        if existing:
            existing.quantity = new_quantity
        else:
            db.add(CartItem(
                cart_id=cart.id,
                product_id=variant.product_id,
                variant_id=variant.id,
                quantity=new_quantity,
                currency=variant.currency,
            ))
        cart.expires_at = utcnow() + timedelta(minutes=settings.CART_TTL_MINUTES)

    event.set(cart_id=cart.id, variant_id=variant.id, quantity=new_quantity)
    db.expire_all()
    return _cart_to_out(_get_cart(db, session_id))


@router.delete("/items/{item_id}", response_model=CartOut)
def remove_item(
    item_id: int,
    request: Request,
    db: Session = Depends(get_db),
    x_session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
):
    session_id = _require_session(x_session_id)
    cart = _get_open_cart(db, session_id)
    item = next((it for it in cart.items if it.id == item_id), None)
    if not item:
        raise NotFoundError("Cart item not found", {"item_id": item_id})

    with transaction(db):
        cart.items.remove(item)
    get_event(request).set(cart_id=cart.id, removed_item_id=item_id)
    return _cart_to_out(_get_cart(db, session_id))


@router.delete("")
def delete_cart(
    request: Request,
    db: Session = Depends(get_db),
    x_session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
):
    event = get_event(request)
    cart = _get_cart(db, _require_session(x_session_id))
    cart_id = cart.id
    with transaction(db):
        released = inventory.delete_cart(db, cart, event)
    event.set(cart_id=cart_id, reservations_released=released)
    return {"deleted": True, "cart_id": cart_id, "reservations_released": released}


@router.post("/checkout", response_model=CheckoutOut)
async def checkout(
    payload: CheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
    payment_client: StripeClient = Depends(get_payment_client),
    x_session_id: Optional[str] = Header(None, alias=SESSION_HEADER),
):
    result = await start_checkout(
        db,
        session_id=_require_session(x_session_id),
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
        payment_client=payment_client,
        event=get_event(request),
    )
    return CheckoutOut(checkout_url=result.checkout_url, session_id=result.session_id)
