# Services Package
from .stock_service import StockService, MutationCoordinator, StockChangeRequest, ChangeResult
from .stock_report_service import StockReportService
from .ledger_store import LedgerStore
from .product_service import ProductService
from .sale_service import SaleService

__all__ = [
    "StockService",
    "MutationCoordinator",
    "StockChangeRequest",
    "ChangeResult",
    "StockReportService",
    "LedgerStore",
    "ProductService",
    "SaleService",
]
