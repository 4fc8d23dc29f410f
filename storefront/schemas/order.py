# storefront/schemas/order.py
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import List, Optional

from storefront.models.order import OrderStatus, PaymentStatus

class OrderItemOut(BaseModel):
    id: int
    product_id: int
    variant_id: int
    quantity: int
    unit_price_cents: int
    currency: str

    model_config = ConfigDict(from_attributes=True)

class PaymentOut(BaseModel):
    id: int
    status: PaymentStatus
    checkout_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    amount_cents: int
    currency: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

# Short order row for the admin list
class OrderSummary(BaseModel):
    id: int
    cart_id: int
    status: OrderStatus
    checkout_session_id: Optional[str] = None
    total_cents: Optional[int] = None
    currency: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

# Customer and shipping details, decrypted for the admin view
class CustomerDetails(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    shipping_name: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

class OrderDetail(OrderSummary):
    payment_intent_id: Optional[str] = None
    subtotal_cents: Optional[int] = None
    shipping_cents: Optional[int] = None
    customer: CustomerDetails
    items: List[OrderItemOut]
    payments: List[PaymentOut]

class OrderPage(BaseModel):
    items: List[OrderSummary]
    total: int
    page: int
    page_size: int

# Administrative follow-up of a paid order
class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = None
