# Importing every model here registers it on Base.metadata before
# create_all() or Alembic autogeneration runs.

from storefront.models.product import Product, Variant
from storefront.models.stock import Inventory, Reservation
from storefront.models.cart import Cart, CartItem, CartStatus
from storefront.models.order import Order, OrderItem, OrderStatus, Payment, PaymentStatus
from storefront.models.log import Log

__all__ = [
    "Product",
    "Variant",
    "Inventory",
    "Reservation",
    "Cart",
    "CartItem",
    "CartStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "Log",
]
