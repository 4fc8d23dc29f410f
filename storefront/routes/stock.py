# storefront/routes/stock.py
import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.database import get_db, transaction
from storefront.errors import ConflictError, NotFoundError, ValidationError
from storefront.models.product import Variant
from storefront.models.stock import Inventory, Reservation
from storefront.schemas.stock import InventoryCreate, InventoryOut, InventoryUpdate
from storefront.utils import inventory
from storefront.utils.audit import write_log
from storefront.utils.events import get_event
from storefront.utils.tokenJWT import require_admin

router = APIRouter(prefix="/inventory", tags=["Inventory"])
logger = logging.getLogger(__name__)

def _level_out(db: Session, variant_id: int) -> InventoryOut:
    level = inventory.read(db, variant_id)
    if level is None:
        raise NotFoundError("Inventory not found", {"variant_id": variant_id})
    return InventoryOut(
        variant_id=variant_id,
        stock_quantity=level.stock,
        reserved_quantity=level.reserved,
        available=level.available,
    )


@router.get("")
def list_inventory(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    reserved = (
        db.query(Reservation.variant_id, func.sum(Reservation.quantity).label("reserved"))
        .group_by(Reservation.variant_id)
        .subquery()
    )
    query = (
        db.query(Inventory.variant_id, Inventory.stock_quantity, func.coalesce(reserved.c.reserved, 0))
        .outerjoin(reserved, reserved.c.variant_id == Inventory.variant_id)
        .order_by(Inventory.variant_id)
    )
    total = query.count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()

    items = [
        InventoryOut(variant_id=v, stock_quantity=s, reserved_quantity=int(r), available=s - int(r))
        for v, s, r in rows
    ]
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/{variant_id}", response_model=InventoryOut)
def get_inventory(variant_id: int, db: Session = Depends(get_db)):
    return _level_out(db, variant_id)


@router.post("", response_model=InventoryOut, status_code=201)
def create_inventory(
    payload: InventoryCreate,
    request: Request,
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    event = get_event(request)
    if not db.get(Variant, payload.variant_id):
        raise NotFoundError("Variant not found", {"variant_id": payload.variant_id})
    if db.query(Inventory).filter(Inventory.variant_id == payload.variant_id).first():
        raise ConflictError("Inventory already exists for this variant", {"variant_id": payload.variant_id})

    with transaction(db):
        db.add(Inventory(variant_id=payload.variant_id, stock_quantity=payload.stock_quantity))
        write_log(
            db, action="INVENTORY_CREATE", resource="inventory", actor=admin, request_id=event.request_id,
            ip=request.client.host if request.client else None,
            meta={"variant_id": payload.variant_id, "stock_quantity": payload.stock_quantity},
        )
    event.set(variant_id=payload.variant_id, stock_quantity=payload.stock_quantity)
    return _level_out(db, payload.variant_id)


@router.patch("/{variant_id}", response_model=InventoryOut)
def update_inventory(
    variant_id: int,
    payload: InventoryUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: str = Depends(require_admin),
):
    event = get_event(request)
    before = inventory.read(db, variant_id)
    if before is None:
        raise NotFoundError("Inventory not found", {"variant_id": variant_id})
    ip = request.client.host if request.client else None

    with transaction(db):
        if payload.stock_quantity is not None:
            inventory.set_absolute(db, variant_id, payload.stock_quantity)
            write_log(
                db, action="STOCK_SET", resource="inventory", actor=admin, request_id=event.request_id, ip=ip,
                meta={"variant_id": variant_id, "from": before.stock, "to": payload.stock_quantity, "reason": payload.reason},
            )
        else:
            # Negative adjustments go through the same guarded update as reservations
            if not inventory.adjust(db, variant_id, payload.adjust):
                current = inventory.read(db, variant_id)
                event.error("BadRequest", "Insufficient stock for adjustment", adjust=payload.adjust)
                raise ValidationError(
                    f"Insufficient stock. Current: {current.stock}, Adjustment: {payload.adjust}",
                    {"variant_id": variant_id, "current_stock": current.stock, "requested_adjustment": payload.adjust},
                )
            write_log(
                db, action="STOCK_ADJUST", resource="inventory", actor=admin, request_id=event.request_id, ip=ip,
                meta={"variant_id": variant_id, "adjust": payload.adjust, "reason": payload.reason},
            )

    event.set(variant_id=variant_id, stock_before=before.stock)
    return _level_out(db, variant_id)
