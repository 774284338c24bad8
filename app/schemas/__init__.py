# Pydantic Schemas Package
from .product import ProductCreate, ProductUpdate, ProductResponse
from .stock import (
    AdjustStockRequest, InventoryUpdate, StockMovementCreate, StockCounterResponse,
    LedgerEntryResponse, InventoryHistoryResponse, LowStockItemResponse, SalesStatsResponse
)
from .sale import SaleCreate, SaleItemCreate, SaleRefund, SaleResponse

__all__ = [
    "ProductCreate", "ProductUpdate", "ProductResponse",
    "AdjustStockRequest", "InventoryUpdate", "StockMovementCreate", "StockCounterResponse",
    "LedgerEntryResponse", "InventoryHistoryResponse", "LowStockItemResponse", "SalesStatsResponse",
    "SaleCreate", "SaleItemCreate", "SaleRefund", "SaleResponse",
]
