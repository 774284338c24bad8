"""
Stock Schemas
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal

class AdjustStockRequest(BaseModel):
    quantity: int  # Signed; 0 is rejected
    note: Optional[str] = None
    shop_id: Optional[UUID] = None

class InventoryUpdate(BaseModel):
    stock_quantity: Optional[int] = Field(None, ge=0)
    available_quantity: Optional[int] = Field(None, ge=0)
    reserved_quantity: Optional[int] = Field(None, ge=0)
    reorder_level: Optional[int] = Field(None, ge=0)
    reorder_quantity: Optional[int] = Field(None, ge=0)
    location: Optional[str] = Field(None, max_length=100)
    adjustment_reason: Optional[str] = None
    shop_id: Optional[UUID] = None

class StockMovementCreate(BaseModel):
    """Receiving and customer returns"""
    quantity: int = Field(..., gt=0)
    reference_id: Optional[UUID] = None
    note: Optional[str] = None
    shop_id: Optional[UUID] = None

class StockCounterResponse(BaseModel):
    product_id: UUID
    shop_id: UUID
    stock_quantity: int
    available_quantity: int
    reserved_quantity: int
    reorder_level: Optional[int] = None
    reorder_quantity: Optional[int] = None
    location: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class LedgerEntryResponse(BaseModel):
    id: UUID
    product_id: UUID
    movement_kind: str
    quantity: int
    balance_after: int
    sequence: int
    reference_id: Optional[UUID] = None
    note: Optional[str] = None
    actor_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True

class ProductSummary(BaseModel):
    id: UUID
    sku: str
    name: str
    image_url: Optional[str] = None
    selling_price: Optional[Decimal] = None

    class Config:
        from_attributes = True

class InventoryHistoryResponse(BaseModel):
    product: ProductSummary
    entries: List[LedgerEntryResponse]
    total: int
    page: int
    limit: int
    pages: int

class LowStockItemResponse(BaseModel):
    product: ProductSummary
    inventory: StockCounterResponse
    ratio: float

class DailySales(BaseModel):
    date: str
    quantity: int
    revenue: Decimal

class SalesStatsResponse(BaseModel):
    product: ProductSummary
    total_quantity: int
    total_revenue: Decimal
    period_days: int
    daily_sales: List[DailySales]

class InventoryListItem(BaseModel):
    product: ProductSummary
    inventory: StockCounterResponse

class InventoryListResponse(BaseModel):
    data: List[InventoryListItem]
    count: int
    current_page: int
    total_pages: int

class InventorySummaryResponse(BaseModel):
    total_products: int
    total_items: int
    low_stock: int
    out_of_stock: int
    inventory_value: Decimal
