# storefront/models/order.py
import enum
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, func
from sqlalchemy.orm import relationship
from storefront.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    # Administrative follow-ups of a paid order
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    INITIATED = "initiated"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), unique=True, index=True, nullable=False)
    status = Column(Enum(OrderStatus, name="order_status"), default=OrderStatus.PENDING, index=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Payment provider references
    checkout_session_id = Column(String, unique=True, index=True, nullable=True)
    payment_intent_id = Column(String, nullable=True)

    # Customer and shipping details, stored encrypted
    email = Column(String, nullable=True)
    customer_name = Column(String, nullable=True)
    shipping_name = Column(String, nullable=True)
    shipping_address_line1 = Column(String, nullable=True)
    shipping_address_line2 = Column(String, nullable=True)
    shipping_city = Column(String, nullable=True)
    shipping_state = Column(String, nullable=True)
    shipping_postal_code = Column(String, nullable=True)
    shipping_country = Column(String, nullable=True)

    # Totals in minor units, as reported by the provider
    subtotal_cents = Column(Integer, nullable=True)
    shipping_cents = Column(Integer, nullable=True)
    total_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=False, default="eur")

    cart = relationship("Cart", back_populates="order")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="order", cascade="all, delete-orphan")


# Permanent line item, created when the payment is confirmed
class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("variants.id"), index=True, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)

    order = relationship("Order", back_populates="items")
    variant = relationship("Variant")


# Receipt of a settled payment
class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    status = Column(Enum(PaymentStatus, name="payment_status"), default=PaymentStatus.INITIATED, nullable=False)
    checkout_session_id = Column(String, unique=True, nullable=True)
    payment_intent_id = Column(String, nullable=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    order = relationship("Order", back_populates="payments")
