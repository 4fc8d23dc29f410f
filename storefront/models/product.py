# storefront/models/product.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, CheckConstraint, func
from sqlalchemy.orm import relationship
from storefront.database import Base

# Catalog entry grouping one or more sellable variants
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    vendor = Column(String, nullable=False)
    product_type = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    variants = relationship("Variant", back_populates="product", cascade="all, delete-orphan")


# Sellable unit. Prices are kept in minor units (cents).
class Variant(Base):
    __tablename__ = "variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), index=True, nullable=False)
    title = Column(String, nullable=False)
    sku = Column(String, nullable=False, index=True)
    option = Column(String, nullable=True)
    price_cents = Column(Integer, CheckConstraint("price_cents >= 0"), nullable=False)
    currency = Column(String(3), nullable=True)

    # Purchase limits per cart line
    max_quantity = Column(Integer, nullable=True)
    min_quantity = Column(Integer, nullable=False, default=1)

    product = relationship("Product", back_populates="variants")
    inventory = relationship("Inventory", back_populates="variant", uselist=False)
