from app.models.cart import Cart
from app.models.product import Product, ProductMapping
from app.models.store import Store

__all__ = ["Cart", "Product", "ProductMapping", "Store"]
