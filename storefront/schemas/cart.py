# storefront/schemas/cart.py
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import List, Optional

from storefront.models.cart import CartStatus

# Request schema for adding a variant to the cart
class CartAddItem(BaseModel):
    product_id: int
    variant_id: int
    quantity: int = Field(1, gt=0)

# Response schema for a single cart line item
class CartItemOut(BaseModel):
    id: int
    product_id: int
    variant_id: int
    product_name: Optional[str] = None
    variant_name: Optional[str] = None
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    currency: Optional[str] = None

# Response schema for the entire cart
class CartOut(BaseModel):
    id: int
    session_id: str
    status: CartStatus
    expires_at: datetime
    items: List[CartItemOut]
    total_cents: int

    model_config = ConfigDict(from_attributes=True)

# Checkout request: where the hosted payment page sends the customer back to
class CheckoutRequest(BaseModel):
    success_url: str = Field(min_length=1)
    cancel_url: str = Field(min_length=1)

class CheckoutOut(BaseModel):
    checkout_url: str
    session_id: str
