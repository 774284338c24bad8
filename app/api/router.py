"""
API Router - JSON Endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
from datetime import datetime
import math

from app.core import get_db
from app.core.errors import ProductNotFoundError, ShopIdRequiredError
from app.models import AppUser
from app.services import ProductService, SaleService, StockReportService, StockService
from app.schemas.product import ProductCreate, ProductResponse, ProductUpdate
from app.schemas.sale import SaleCreate, SaleRefund, SaleResponse
from app.schemas.stock import (
    AdjustStockRequest, InventoryHistoryResponse, InventoryListResponse, InventorySummaryResponse,
    InventoryUpdate, LowStockItemResponse, StockCounterResponse, StockMovementCreate,
    SalesStatsResponse
)

# Import sub-routers
from app.api.auth import router as auth_router, get_current_active_user, get_shop_scope

api_router = APIRouter(tags=["API"])

# Include sub-routers
api_router.include_router(auth_router)

# Handlers that write are plain ``def``: FastAPI runs them in its threadpool,
# so a caller waiting on a product lock never blocks the event loop.


def _scope(header_shop_id: Optional[UUID], body_shop_id: Optional[UUID] = None) -> Optional[UUID]:
    """Header wins over a shop_id in the body"""
    return header_shop_id or body_shop_id

# ===================== HEALTH & STATUS =====================

@api_router.get("/status")
async def api_status():
    return {"status": "ok", "version": "1.0.0", "timestamp": datetime.now().isoformat()}

# ===================== PRODUCTS =====================

@api_router.get("/products")
async def list_products(
    search: Optional[str] = Query(None),
    active_only: bool = Query(True),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    products, total = ProductService.get_products(db, shop_id, search, active_only, page, per_page)
    return {
        "products": [ProductResponse.model_validate(p) for p in products],
        "total": total,
        "page": page,
        "per_page": per_page
    }

@api_router.post("/products", response_model=ProductResponse, status_code=201)
def create_product(
    data: ProductCreate,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    scope = _scope(shop_id, data.shop_id)
    if scope is None:
        raise ShopIdRequiredError(None)
    product, result = ProductService.create_product(db, data, scope, current_user.id)
    result.unwrap()
    return product

# Declared before /products/{product_id} so "low-stock" is not taken for an id
@api_router.get("/products/low-stock", response_model=List[LowStockItemResponse])
async def low_stock_products(
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    items = StockReportService.get_low_stock(db, shop_id)
    return [
        {"product": item.product, "inventory": item.counter, "ratio": item.ratio}
        for item in items
    ]

@api_router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: UUID,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    product = ProductService.get_product_by_id(db, product_id, shop_id)
    if not product:
        raise ProductNotFoundError(product_id)
    return product

@api_router.put("/products/{product_id}", response_model=ProductResponse)
def update_product(
    product_id: UUID,
    data: ProductUpdate,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    product = ProductService.update_product(db, product_id, data, shop_id)
    if not product:
        raise ProductNotFoundError(product_id)
    return product

@api_router.delete("/products/{product_id}", response_model=ProductResponse)
def deactivate_product(
    product_id: UUID,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    product = ProductService.deactivate_product(db, product_id, shop_id)
    if not product:
        raise ProductNotFoundError(product_id)
    return product

# ===================== STOCK =====================

@api_router.get("/products/{product_id}/inventory", response_model=StockCounterResponse)
async def get_inventory(
    product_id: UUID,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    counter = StockService.get_counter(db, product_id, shop_id)
    if not counter:
        raise ProductNotFoundError(product_id)
    return counter

@api_router.post("/products/{product_id}/adjust-stock", response_model=StockCounterResponse)
def adjust_stock(
    product_id: UUID,
    data: AdjustStockRequest,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    result = StockService.adjust_stock(
        db, product_id, data.quantity, data.note,
        shop_id=_scope(shop_id, data.shop_id),
        actor_id=current_user.id
    )
    return result.unwrap()

@api_router.put("/products/{product_id}/inventory", response_model=StockCounterResponse)
def update_inventory(
    product_id: UUID,
    data: InventoryUpdate,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    fields = data.model_dump(exclude_unset=True, exclude={"adjustment_reason", "shop_id"})
    result = StockService.set_inventory_fields(
        db, product_id, fields, data.adjustment_reason,
        shop_id=_scope(shop_id, data.shop_id),
        actor_id=current_user.id
    )
    return result.unwrap()

@api_router.post("/products/{product_id}/receive", response_model=StockCounterResponse)
def receive_stock(
    product_id: UUID,
    data: StockMovementCreate,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    result = StockService.receive_stock(
        db, product_id, data.quantity, data.reference_id, data.note,
        shop_id=_scope(shop_id, data.shop_id),
        actor_id=current_user.id
    )
    return result.unwrap()

@api_router.post("/products/{product_id}/return", response_model=StockCounterResponse)
def return_stock(
    product_id: UUID,
    data: StockMovementCreate,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    result = StockService.record_return(
        db, product_id, data.quantity, data.reference_id, data.note,
        shop_id=_scope(shop_id, data.shop_id),
        actor_id=current_user.id
    )
    return result.unwrap()

@api_router.get("/products/{product_id}/inventory-history", response_model=InventoryHistoryResponse)
async def inventory_history(
    product_id: UUID,
    page: int = Query(1),
    limit: int = Query(20),
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    product, history = StockReportService.get_history(db, product_id, page, limit, shop_id)
    return {
        "product": product,
        "entries": history.entries,
        "total": history.total,
        "page": history.page,
        "limit": history.page_size,
        "pages": history.pages
    }

@api_router.get("/products/{product_id}/sales-stats", response_model=SalesStatsResponse)
async def sales_stats(
    product_id: UUID,
    days: int = Query(30),
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    stats = StockReportService.get_sales_stats(db, product_id, days, shop_id=shop_id)
    product = ProductService.get_product_by_id(db, product_id, shop_id)
    return {
        "product": product,
        "total_quantity": stats.total_quantity,
        "total_revenue": stats.total_revenue,
        "period_days": stats.period_days,
        "daily_sales": stats.daily_sales
    }

# ===================== INVENTORY =====================

@api_router.get("/inventory", response_model=InventoryListResponse)
async def list_inventory(
    search: Optional[str] = Query(None),
    low_stock: bool = Query(False),
    sort_by: str = Query("stock_quantity"),
    sort_order: str = Query("desc"),
    page: int = Query(1),
    limit: int = Query(10),
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    rows, total = StockReportService.list_inventory(
        db, shop_id, search, low_stock, sort_by, sort_order, page, limit
    )
    per_page = min(max(limit, 1), 100)
    return {
        "data": [{"product": product, "inventory": counter} for product, counter in rows],
        "count": total,
        "current_page": max(page, 1),
        "total_pages": math.ceil(total / per_page) if total else 0
    }

@api_router.get("/inventory/summary", response_model=InventorySummaryResponse)
async def inventory_summary(
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    return StockReportService.get_inventory_summary(db, shop_id)

# ===================== SALES =====================

@api_router.post("/sales", response_model=SaleResponse, status_code=201)
def complete_sale(
    data: SaleCreate,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    sale, result = SaleService.complete_sale(db, data, _scope(shop_id, data.shop_id), current_user.id)
    result.unwrap()
    return sale

@api_router.post("/sales/{sale_id}/refund", response_model=SaleResponse)
def refund_sale(
    sale_id: UUID,
    data: Optional[SaleRefund] = None,
    shop_id: Optional[UUID] = Depends(get_shop_scope),
    db: Session = Depends(get_db),
    current_user: AppUser = Depends(get_current_active_user)
):
    note = data.note if data else None
    sale, result = SaleService.refund_sale(db, sale_id, shop_id, current_user.id, note)
    result.unwrap()
    return sale
