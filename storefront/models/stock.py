# storefront/models/stock.py
from sqlalchemy import Column, Integer, ForeignKey, DateTime, CheckConstraint, func
from sqlalchemy.orm import relationship
from storefront.database import Base

# Ledger row: current stock for one variant
class Inventory(Base):
    __tablename__ = "inventory"

    id = Column(Integer, primary_key=True, index=True)
    variant_id = Column(Integer, ForeignKey("variants.id"), unique=True, index=True, nullable=False)

    # Never negative, enforced by the conditional updates and by the database
    stock_quantity = Column(Integer, CheckConstraint("stock_quantity >= 0", name="ck_inventory_stock"), nullable=False, default=0)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    variant = relationship("Variant", back_populates="inventory")


# Time-bounded hold. The quantity is already subtracted from Inventory.stock_quantity.
class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    # No ON DELETE CASCADE: carts are removed through delete_cart, which restores stock first
    cart_id = Column(Integer, ForeignKey("carts.id"), index=True, nullable=False)
    variant_id = Column(Integer, ForeignKey("variants.id"), index=True, nullable=False)
    quantity = Column(Integer, CheckConstraint("quantity > 0", name="ck_reservation_quantity"), nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    cart = relationship("Cart", viewonly=True)
    variant = relationship("Variant")
