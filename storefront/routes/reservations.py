# storefront/routes/reservations.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from storefront.database import get_db, transaction, utcnow
from storefront.errors import NotFoundError
from storefront.models.stock import Reservation
from storefront.schemas.stock import ReservationOut, ReservationPage, SweepOut
from storefront.utils import inventory
from storefront.utils.events import get_event
from storefront.utils.settlement import sweep_expired_reservations
from storefront.utils.tokenJWT import require_admin

router = APIRouter(prefix="/reservations", tags=["Reservations"])
logger = logging.getLogger(__name__)


@router.get("", response_model=ReservationPage)
def list_reservations(
    cart_id: Optional[int] = Query(None),
    variant_id: Optional[int] = Query(None),
    expired: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    query = db.query(Reservation)
    if cart_id is not None:
        query = query.filter(Reservation.cart_id == cart_id)
    if variant_id is not None:
        query = query.filter(Reservation.variant_id == variant_id)
    if expired is not None:
        now = utcnow()
        query = query.filter(Reservation.expires_at < now if expired else Reservation.expires_at >= now)

    total = query.count()
    items = query.order_by(Reservation.expires_at.asc()).offset((page - 1) * page_size).limit(page_size).all()
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/{reservation_id}", response_model=ReservationOut)
def get_reservation(reservation_id: int, db: Session = Depends(get_db), admin: str = Depends(require_admin)):
    reservation = db.get(Reservation, reservation_id)
    if not reservation:
        raise NotFoundError("Reservation not found", {"reservation_id": reservation_id})
    return reservation


@router.delete("/{reservation_id}")
def cancel_reservation(
    reservation_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    event = get_event(request)
    with transaction(db):
        reservation = inventory.cancel_reservation(db, reservation_id, actor=admin, event=event)
        released = {"variant_id": reservation.variant_id, "quantity": reservation.quantity}
    event.set(reservation_id=reservation_id, **released)
    return {"deleted": True, "reservation_id": reservation_id, "stock_restored": released}


@router.post("/sweep", response_model=SweepOut)
def sweep(request: Request, db: Session = Depends(get_db), admin: str = Depends(require_admin)):
    result = sweep_expired_reservations(db, event=get_event(request))
    return SweepOut(carts=result.carts, released=result.released)
