"""
Counter arithmetic and validation, no database involved
"""
import pytest
from uuid import uuid4

from app.core.errors import InvalidQuantityError
from app.services.stock_counter import StockDelta, StockLevels, StockOverwrite, validate

PRODUCT = uuid4()


def test_delta_applies_to_every_quantity():
    levels = StockDelta(stock=-5, available=-3, reserved=2).apply(StockLevels(50, 40, 10))
    assert levels == StockLevels(45, 37, 12)


def test_overwrite_leaves_missing_fields_untouched():
    levels = StockOverwrite(stock=30).apply(StockLevels(50, 50, 0))
    assert levels == StockLevels(30, 50, 0)


def test_validate_accepts_non_negative_result():
    check = validate(PRODUCT, StockLevels(50, 50, 0), StockDelta(stock=-50, available=-50))
    assert check.ok
    assert check.levels == StockLevels(0, 0, 0)
    assert check.reason is None


def test_validate_rejects_negative_stock():
    current = StockLevels(50, 50, 0)
    check = validate(PRODUCT, current, StockDelta(stock=-60, available=-60))
    assert not check.ok
    assert check.reason == "INSUFFICIENT_STOCK"
    assert check.error.context["current"] == current.as_dict()


def test_validate_rejects_negative_available_alone():
    check = validate(PRODUCT, StockLevels(50, 5, 45), StockDelta(available=-6, reserved=6))
    assert check.reason == "INSUFFICIENT_STOCK"


def test_unreconciled_result_passes_unless_strict():
    current = StockLevels(50, 50, 0)
    change = StockOverwrite(stock=30)

    lenient = validate(PRODUCT, current, change)
    assert lenient.ok
    assert not lenient.levels.reconciled

    strict = validate(PRODUCT, current, change, strict=True)
    assert strict.reason == "RECONCILIATION_MISMATCH"


@pytest.mark.parametrize("change", [
    StockDelta(stock=1.5),
    StockDelta(available="3"),
    StockDelta(reserved=True),
    StockOverwrite(stock=-1),
    StockOverwrite(available=2.0),
])
def test_malformed_changes_are_rejected(change):
    with pytest.raises(InvalidQuantityError):
        change.check()


def test_touches_stock():
    assert StockDelta(stock=1).touches_stock
    assert not StockDelta(available=-1, reserved=1).touches_stock
    assert StockOverwrite(stock=0).touches_stock
    assert not StockOverwrite(available=0).touches_stock
