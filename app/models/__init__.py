from .base import TimestampMixin, UUIDMixin
from .master import Shop, AppUser
from .product import Product
from .stock import StockCounter, LedgerEntry, MovementKind
from .sale import Sale, SaleItem

__all__ = [
    # Base
    "TimestampMixin", "UUIDMixin",
    # Master
    "Shop", "AppUser",
    # Product
    "Product",
    # Stock
    "StockCounter", "LedgerEntry", "MovementKind",
    # Sale
    "Sale", "SaleItem",
]
