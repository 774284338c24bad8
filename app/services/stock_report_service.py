"""
Stock Report Service - read-only views over counters and the ledger
"""
from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, NamedTuple, Optional, Tuple
from uuid import UUID

from sqlalchemy import Float, cast, func, or_
from sqlalchemy.orm import Session

from app.core import settings
from app.core.errors import ProductNotFoundError, ValidationError
from app.models import LedgerEntry, MovementKind, Product, Sale, SaleItem, StockCounter
from app.models.base import utcnow
from .ledger_store import HistoryPage, LedgerStore, clamp_page

SORTABLE_FIELDS = {
    "stock_quantity": StockCounter.stock_quantity,
    "available_quantity": StockCounter.available_quantity,
    "reserved_quantity": StockCounter.reserved_quantity,
    "updated_at": StockCounter.updated_at,
}


class LowStockItem(NamedTuple):
    product: Product
    counter: StockCounter
    ratio: float


class SalesStats(NamedTuple):
    total_quantity: int
    total_revenue: Decimal
    daily_sales: List[Dict]
    period_days: int


class CounterAudit(NamedTuple):
    """One counter checked against its own ledger"""
    product_id: UUID
    stock_quantity: int
    ledger_sum: int
    last_balance: Optional[int]
    reconciled: bool

    @property
    def drift(self) -> int:
        return self.stock_quantity - self.ledger_sum

    @property
    def ok(self) -> bool:
        balance_ok = self.last_balance is None or self.last_balance == self.stock_quantity
        return self.drift == 0 and balance_ok and self.reconciled


class StockReportService:
    """Inventory views; nothing here takes a lock or writes"""

    @staticmethod
    def _require_product(db: Session, product_id: UUID, shop_id: Optional[UUID] = None) -> Product:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product or (shop_id and product.shop_id != shop_id):
            raise ProductNotFoundError(product_id)
        return product

    @staticmethod
    def get_history(
        db: Session,
        product_id: UUID,
        page: int = 1,
        limit: int = 20,
        shop_id: Optional[UUID] = None
    ) -> Tuple[Product, HistoryPage]:
        product = StockReportService._require_product(db, product_id, shop_id)
        return product, LedgerStore(db).history(product_id, page, limit)

    @staticmethod
    def get_low_stock(db: Session, shop_id: Optional[UUID] = None) -> List[LowStockItem]:
        """
        Active products at or below a positive reorder level, most urgent first
        (lowest stock / reorder level), ties broken by product id.
        """
        ratio = (cast(StockCounter.stock_quantity, Float) / StockCounter.reorder_level).label("ratio")
        query = db.query(Product, StockCounter, ratio)\
            .join(StockCounter, StockCounter.product_id == Product.id)\
            .filter(
                Product.is_active == True,
                StockCounter.reorder_level > 0,
                StockCounter.stock_quantity <= StockCounter.reorder_level
            )

        if shop_id:
            query = query.filter(StockCounter.shop_id == shop_id)

        rows = query.order_by(ratio.asc(), Product.id.asc()).all()
        return [LowStockItem(product, counter, float(r)) for product, counter, r in rows]

    @staticmethod
    def get_sales_stats(
        db: Session,
        product_id: UUID,
        days: int = 30,
        now: Optional[datetime] = None,
        shop_id: Optional[UUID] = None
    ) -> SalesStats:
        """
        Units sold and revenue over the last ``days`` days.

        Counts ``sale`` ledger entries whose reference is a sale that has not
        been refunded; revenue comes from that sale's lines for the product.
        """
        StockReportService._require_product(db, product_id, shop_id)
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise ValidationError("days must be a positive integer", days=days)

        end_date = now or utcnow()
        start_date = end_date - timedelta(days=days)

        rows = db.query(LedgerEntry.reference_id, LedgerEntry.quantity, LedgerEntry.created_at)\
            .join(Sale, Sale.id == LedgerEntry.reference_id)\
            .filter(
                LedgerEntry.product_id == product_id,
                LedgerEntry.movement_kind == MovementKind.SALE.value,
                LedgerEntry.created_at >= start_date,
                LedgerEntry.created_at <= end_date,
                Sale.payment_status != "refunded"
            )\
            .order_by(LedgerEntry.created_at.asc())\
            .all()

        sale_ids = {r.reference_id for r in rows}
        revenue_map = {}
        if sale_ids:
            revenue_query = db.query(SaleItem.sale_id, func.sum(SaleItem.total))\
                .filter(SaleItem.product_id == product_id, SaleItem.sale_id.in_(sale_ids))\
                .group_by(SaleItem.sale_id)\
                .all()
            revenue_map = {sale_id: Decimal(str(total or 0)) for sale_id, total in revenue_query}

        daily = OrderedDict()
        counted = set()
        for sale_id, quantity, created_at in rows:
            day = created_at.date().isoformat()
            bucket = daily.setdefault(day, {"date": day, "quantity": 0, "revenue": Decimal("0")})
            bucket["quantity"] += -quantity
            # A sale may have several lines of the same product; its revenue counts once
            if sale_id not in counted:
                bucket["revenue"] += revenue_map.get(sale_id, Decimal("0"))
                counted.add(sale_id)

        daily_sales = list(daily.values())
        total_quantity = sum(d["quantity"] for d in daily_sales)
        total_revenue = sum((d["revenue"] for d in daily_sales), Decimal("0"))
        return SalesStats(total_quantity, total_revenue, daily_sales, days)

    @staticmethod
    def get_inventory_summary(db: Session, shop_id: Optional[UUID] = None, threshold: Optional[int] = None) -> Dict:
        """Headline numbers for the inventory dashboard"""
        if threshold is None:
            threshold = settings.LOW_STOCK_DEFAULT_THRESHOLD

        query = db.query(StockCounter)
        if shop_id:
            query = query.filter(StockCounter.shop_id == shop_id)

        total_products = query.count()
        total_items = query.with_entities(func.coalesce(func.sum(StockCounter.stock_quantity), 0)).scalar()
        low_stock = query.filter(
            StockCounter.stock_quantity <= func.coalesce(StockCounter.reorder_level, threshold)
        ).count()
        out_of_stock = query.filter(StockCounter.stock_quantity == 0).count()

        value_query = db.query(
            func.coalesce(func.sum(Product.selling_price * StockCounter.stock_quantity), 0)
        ).join(StockCounter, StockCounter.product_id == Product.id)
        if shop_id:
            value_query = value_query.filter(StockCounter.shop_id == shop_id)

        return {
            "total_products": total_products,
            "total_items": int(total_items or 0),
            "low_stock": low_stock,
            "out_of_stock": out_of_stock,
            "inventory_value": Decimal(str(value_query.scalar() or 0)),
        }

    @staticmethod
    def list_inventory(
        db: Session,
        shop_id: Optional[UUID] = None,
        search: Optional[str] = None,
        low_stock: bool = False,
        sort_by: str = "stock_quantity",
        sort_order: str = "desc",
        page: int = 1,
        per_page: int = 10
    ) -> Tuple[List[Tuple[Product, StockCounter]], int]:
        """Counters joined to their products, filtered and paginated"""
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by {sort_by}", allowed=", ".join(SORTABLE_FIELDS))
        if sort_order.lower() not in ("asc", "desc"):
            raise ValidationError("sort_order must be asc or desc")
        page, per_page = clamp_page(page, per_page, default_size=10)

        query = db.query(Product, StockCounter).join(StockCounter, StockCounter.product_id == Product.id)

        if shop_id:
            query = query.filter(StockCounter.shop_id == shop_id)

        if search:
            search_term = f"%{search}%"
            query = query.filter(
                or_(
                    Product.name.ilike(search_term),
                    Product.sku.ilike(search_term),
                    Product.barcode.ilike(search_term)
                )
            )

        if low_stock:
            query = query.filter(
                StockCounter.stock_quantity <= func.coalesce(StockCounter.reorder_level, settings.LOW_STOCK_DEFAULT_THRESHOLD)
            )

        total = query.count()

        column = SORTABLE_FIELDS[sort_by]
        ordering = column.asc() if sort_order.lower() == "asc" else column.desc()
        rows = query.order_by(ordering, Product.id)\
            .offset((page - 1) * per_page)\
            .limit(per_page)\
            .all()

        return rows, total

    @staticmethod
    def audit_counters(db: Session, shop_id: Optional[UUID] = None) -> List[CounterAudit]:
        """
        Compare every counter with its ledger: stock_quantity must equal the
        sum of entry quantities and the newest entry's balance_after, and
        available + reserved must not exceed stock.
        """
        sums = db.query(
            LedgerEntry.product_id.label("product_id"),
            func.coalesce(func.sum(LedgerEntry.quantity), 0).label("ledger_sum"),
            func.max(LedgerEntry.sequence).label("last_sequence")
        ).group_by(LedgerEntry.product_id).subquery()

        query = db.query(StockCounter, sums.c.ledger_sum, LedgerEntry.balance_after)\
            .outerjoin(sums, sums.c.product_id == StockCounter.product_id)\
            .outerjoin(
                LedgerEntry,
                (LedgerEntry.product_id == StockCounter.product_id) & (LedgerEntry.sequence == sums.c.last_sequence)
            )

        if shop_id:
            query = query.filter(StockCounter.shop_id == shop_id)

        audits = []
        for counter, ledger_sum, last_balance in query.order_by(StockCounter.product_id).all():
            audits.append(CounterAudit(
                product_id=counter.product_id,
                stock_quantity=counter.stock_quantity,
                ledger_sum=int(ledger_sum or 0),
                last_balance=last_balance,
                reconciled=counter.available_quantity + counter.reserved_quantity <= counter.stock_quantity,
            ))
        return audits
