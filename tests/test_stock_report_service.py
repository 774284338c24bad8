"""
Derived views: low stock, sales stats, summary, listing and the ledger audit
"""
import pytest
from datetime import timedelta
from decimal import Decimal

from app.core.errors import ValidationError
from app.schemas.sale import SaleCreate, SaleItemCreate
from app.services import SaleService, StockReportService, StockService
from app.services.stock_counter import get_counter
from app.models.base import utcnow


def sell(db, product, quantity, unit_price=None):
    sale, result = SaleService.complete_sale(
        db,
        SaleCreate(items=[SaleItemCreate(product_id=product.id, quantity=quantity, unit_price=unit_price)]),
        product.shop_id
    )
    assert result.ok, result.error
    return sale


def test_low_stock_ratio_after_overwrite(db, make_product):
    product = make_product(stock=50)
    StockService.set_inventory_fields(db, product.id, {"stock_quantity": 30, "reorder_level": 40})

    items = StockReportService.get_low_stock(db)

    assert [item.product.id for item in items] == [product.id]
    assert items[0].ratio == pytest.approx(0.75)
    assert items[0].counter.stock_quantity == 30


def test_low_stock_orders_by_urgency_and_skips_ineligible(db, make_product, other_shop):
    watched = make_product(stock=30, reorder_level=40)
    urgent = make_product(stock=2, reorder_level=10)
    make_product(stock=50, reorder_level=40)  # above its level
    make_product(stock=0, reorder_level=0)  # no level set
    inactive = make_product(stock=1, reorder_level=10)
    inactive.is_active = False
    db.commit()
    elsewhere = make_product(stock=1, reorder_level=5, shop_id=other_shop.id)

    items = StockReportService.get_low_stock(db, shop_id=watched.shop_id)
    assert [item.product.id for item in items] == [urgent.id, watched.id]
    assert [item.ratio for item in items] == pytest.approx([0.2, 0.75])

    everywhere = StockReportService.get_low_stock(db)
    assert elsewhere.id in {item.product.id for item in everywhere}


def test_sales_stats_skip_refunded_sales(db, make_product):
    product = make_product(stock=100, selling_price="12.50")
    sell(db, product, 3)
    refunded = sell(db, product, 5)
    sell(db, product, 2, unit_price=Decimal("10.00"))
    refund, result = SaleService.refund_sale(db, refunded.id, product.shop_id)
    assert result.ok

    stats = StockReportService.get_sales_stats(db, product.id)

    assert stats.period_days == 30
    assert stats.total_quantity == 5
    assert stats.total_revenue == Decimal("57.50")
    assert len(stats.daily_sales) == 1
    assert stats.daily_sales[0]["date"] == utcnow().date().isoformat()
    assert stats.daily_sales[0]["quantity"] == 5


def test_sales_stats_window(db, make_product):
    product = make_product(stock=10)
    sell(db, product, 1)

    later = StockReportService.get_sales_stats(db, product.id, days=7, now=utcnow() + timedelta(days=30))
    assert later.total_quantity == 0
    assert later.daily_sales == []


def test_sales_stats_validation(db, make_product, other_shop):
    from uuid import uuid4
    from app.core.errors import ProductNotFoundError

    product = make_product(stock=1)
    with pytest.raises(ValidationError):
        StockReportService.get_sales_stats(db, product.id, days=0)
    with pytest.raises(ProductNotFoundError):
        StockReportService.get_sales_stats(db, uuid4())
    with pytest.raises(ProductNotFoundError):
        StockReportService.get_sales_stats(db, product.id, shop_id=other_shop.id)
    with pytest.raises(ProductNotFoundError):
        StockReportService.get_history(db, product.id, shop_id=other_shop.id)


def test_inventory_summary(db, make_product):
    make_product(stock=0, selling_price="5.00")
    make_product(stock=8, selling_price="2.00")  # under the default threshold of 10
    make_product(stock=20, reorder_level=25, selling_price="1.00")
    make_product(stock=40, selling_price="1.00")

    summary = StockReportService.get_inventory_summary(db)

    assert summary["total_products"] == 4
    assert summary["total_items"] == 68
    assert summary["low_stock"] == 3
    assert summary["out_of_stock"] == 1
    assert summary["inventory_value"] == Decimal("76.00")


def test_list_inventory_sort_search_and_paging(db, make_product):
    make_product(sku="TEA-1", name="Green Tea", stock=5)
    make_product(sku="TEA-2", name="Black Tea", stock=50)
    make_product(sku="COF-1", name="Coffee Beans", stock=20)

    rows, total = StockReportService.list_inventory(db, sort_by="stock_quantity", sort_order="asc")
    assert total == 3
    assert [counter.stock_quantity for _, counter in rows] == [5, 20, 50]

    rows, total = StockReportService.list_inventory(db, search="tea")
    assert total == 2
    assert [product.sku for product, _ in rows] == ["TEA-2", "TEA-1"]

    rows, total = StockReportService.list_inventory(db, low_stock=True)
    assert [product.sku for product, _ in rows] == ["TEA-1"]

    rows, total = StockReportService.list_inventory(db, page=2, per_page=2)
    assert total == 3
    assert len(rows) == 1


def test_list_inventory_rejects_unknown_sort(db):
    with pytest.raises(ValidationError):
        StockReportService.list_inventory(db, sort_by="name")


def test_audit_flags_counter_drift(db, make_product):
    healthy = make_product(stock=10)
    drifted = make_product(stock=10)
    StockService.adjust_stock(db, drifted.id, -4, shop_id=drifted.shop_id)

    counter = get_counter(db, drifted.id)
    counter.stock_quantity = 9
    db.commit()

    audits = {a.product_id: a for a in StockReportService.audit_counters(db)}

    assert audits[healthy.id].ok
    assert not audits[drifted.id].ok
    assert audits[drifted.id].ledger_sum == 6
    assert audits[drifted.id].drift == 3
    assert audits[drifted.id].last_balance == 6
