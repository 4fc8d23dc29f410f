# storefront/models/cart.py
import enum
from sqlalchemy import Column, Integer, ForeignKey, String, DateTime, Enum, UniqueConstraint, CheckConstraint, func
from sqlalchemy.orm import relationship
from storefront.database import Base


class CartStatus(str, enum.Enum):
    ACTIVE = "active"
    ORDERED = "ordered"
    ABANDONED = "abandoned"


# Session-scoped shopping cart
class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, unique=True, index=True, nullable=False) # Caller-held X-Session-ID
    status = Column(Enum(CartStatus, name="cart_status"), default=CartStatus.ACTIVE, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan", order_by="CartItem.variant_id")
    reservations = relationship("Reservation", viewonly=True)
    order = relationship("Order", back_populates="cart", uselist=False)


# A single variant + quantity within a cart
class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("variants.id"), index=True, nullable=False)
    quantity = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=True)

    cart = relationship("Cart", back_populates="items")
    variant = relationship("Variant")

    __table_args__ = (
        # One line per variant; adding the same variant again bumps quantity
        UniqueConstraint("cart_id", "variant_id", name="uq_cartitem_cart_variant"),
        CheckConstraint("quantity > 0", name="ck_cart_item_quantity"),
    )
