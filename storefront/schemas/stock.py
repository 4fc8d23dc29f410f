# storefront/schemas/stock.py
from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import datetime
from typing import List, Optional

# Ledger view of one variant
class InventoryOut(BaseModel):
    variant_id: int
    stock_quantity: int
    reserved_quantity: int
    available: int

# Schema for registering a variant in the ledger
class InventoryCreate(BaseModel):
    variant_id: int
    stock_quantity: int = Field(0, ge=0)

# Either an absolute quantity or a signed adjustment, not both
class InventoryUpdate(BaseModel):
    stock_quantity: Optional[int] = Field(None, ge=0)
    adjust: Optional[int] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one(self):
        if (self.stock_quantity is None) == (self.adjust is None):
            raise ValueError("Provide either stock_quantity or adjust")
        return self

# Schema for returning reservation details
class ReservationOut(BaseModel):
    id: int
    cart_id: int
    variant_id: int
    quantity: int
    expires_at: datetime
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

# Paginated response for reservations
class ReservationPage(BaseModel):
    items: List[ReservationOut]
    total: int
    page: int
    page_size: int

class SweepOut(BaseModel):
    carts: List[int]
    released: int
