"""
Mutation coordinator and StockService behaviour against a real database
"""
import pytest

from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import PersistenceError
from app.core.locks import ProductLockRegistry
from app.models import LedgerEntry
from app.services import MutationCoordinator, StockChangeRequest, StockService
from app.services.ledger_store import LedgerStore
from app.services.stock_counter import StockDelta, StockLevels, get_counter


def ledger_count(db, product_id):
    return db.query(LedgerEntry).filter(LedgerEntry.product_id == product_id).count()


def levels_of(session_factory, product_id):
    """Read the committed counter through a fresh session"""
    session = session_factory()
    try:
        return StockLevels.of(get_counter(session, product_id))
    finally:
        session.close()


def test_adjust_creates_counter_and_entry(db, shop, user, bare_product):
    result = StockService.adjust_stock(db, bare_product.id, 50, "initial stock", shop_id=shop.id, actor_id=user.id)

    assert result.ok
    assert result.created == [bare_product.id]
    assert StockLevels.of(result.counter) == StockLevels(50, 50, 0)

    entry = result.entry
    assert entry.quantity == 50
    assert entry.movement_kind == "adjustment_in"
    assert entry.balance_after == 50
    assert entry.note == "initial stock"
    assert entry.actor_id == user.id
    assert ledger_count(db, bare_product.id) == 1


def test_adjust_below_zero_is_rejected_and_changes_nothing(db, session_factory, shop, bare_product):
    StockService.adjust_stock(db, bare_product.id, 50, shop_id=shop.id)

    result = StockService.adjust_stock(db, bare_product.id, -60, shop_id=shop.id)

    assert not result.ok
    assert result.error.code == "INSUFFICIENT_STOCK"
    assert result.error.status_code == 400
    assert levels_of(session_factory, bare_product.id) == StockLevels(50, 50, 0)
    assert ledger_count(db, bare_product.id) == 1


def test_negative_adjust_is_tagged_adjustment_out(db, shop, bare_product):
    StockService.adjust_stock(db, bare_product.id, 50, shop_id=shop.id)
    result = StockService.adjust_stock(db, bare_product.id, -20, shop_id=shop.id)

    assert result.entry.movement_kind == "adjustment_out"
    assert result.entry.quantity == -20
    assert result.entry.note == "Manual stock adjustment"
    assert StockLevels.of(result.counter) == StockLevels(30, 30, 0)


def test_overwrite_stock_leaves_available_alone(db, shop, bare_product):
    StockService.adjust_stock(db, bare_product.id, 50, shop_id=shop.id)

    result = StockService.set_inventory_fields(db, bare_product.id, {"stock_quantity": 30})

    assert result.ok
    assert StockLevels.of(result.counter) == StockLevels(30, 50, 0)
    assert result.entry.quantity == -20
    assert result.entry.movement_kind == "adjustment"
    assert result.entry.note == "Manual inventory adjustment"


def test_overwrite_in_strict_mode_rejects_unreconciled_state(db, session_factory, shop, bare_product):
    StockService.adjust_stock(db, bare_product.id, 50, shop_id=shop.id)

    result = StockService.set_inventory_fields(db, bare_product.id, {"stock_quantity": 30}, strict=True)

    assert result.error.code == "RECONCILIATION_MISMATCH"
    assert levels_of(session_factory, bare_product.id) == StockLevels(50, 50, 0)


def test_overwrite_without_stock_change_writes_no_entry(db, shop, bare_product):
    StockService.adjust_stock(db, bare_product.id, 50, shop_id=shop.id)

    result = StockService.set_inventory_fields(
        db, bare_product.id, {"reorder_level": 12, "location": "Aisle 4", "stock_quantity": 50}
    )

    assert result.ok
    assert result.entries == []
    assert result.counter.reorder_level == 12
    assert result.counter.location == "Aisle 4"
    assert ledger_count(db, bare_product.id) == 1


def test_adjust_requires_shop(db, bare_product):
    result = StockService.adjust_stock(db, bare_product.id, 5)
    assert result.error.code == "SHOP_ID_REQUIRED"


@pytest.mark.parametrize("quantity", [0, 1.5, "5", None, True])
def test_adjust_rejects_invalid_quantity(db, shop, bare_product, quantity):
    result = StockService.adjust_stock(db, bare_product.id, quantity, shop_id=shop.id)
    assert result.error.code == "INVALID_QUANTITY"


def test_adjust_unknown_or_foreign_product(db, shop, other_shop, bare_product):
    from uuid import uuid4

    assert StockService.adjust_stock(db, uuid4(), 5, shop_id=shop.id).error.code == "PRODUCT_NOT_FOUND"
    assert StockService.adjust_stock(db, bare_product.id, 5, shop_id=other_shop.id).error.code == "PRODUCT_NOT_FOUND"


def test_receive_and_return_add_to_stock(db, make_product):
    product = make_product(stock=10)

    received = StockService.receive_stock(db, product.id, 15, note="PO-1001")
    assert received.entry.movement_kind == "purchase"
    assert received.entry.note == "PO-1001"

    returned = StockService.record_return(db, product.id, 2)
    assert returned.entry.movement_kind == "return"
    assert StockLevels.of(returned.counter) == StockLevels(27, 27, 0)


def test_reservation_lifecycle(db, make_product):
    product = make_product(stock=20)

    reserved = StockService.reserve_stock(db, product.id, 5)
    assert StockLevels.of(reserved.counter) == StockLevels(20, 15, 5)
    assert reserved.entries == []

    released = StockService.release_reservation(db, product.id, 2)
    assert StockLevels.of(released.counter) == StockLevels(20, 17, 3)

    shipped = StockService.consume_reservation(db, product.id, 3)
    assert StockLevels.of(shipped.counter) == StockLevels(17, 17, 0)
    assert shipped.entry.movement_kind == "sale"
    assert shipped.entry.quantity == -3

    # Initial stock and the shipment only
    assert ledger_count(db, product.id) == 2


def test_reserving_more_than_available_fails(db, make_product):
    product = make_product(stock=4)
    result = StockService.reserve_stock(db, product.id, 5)
    assert result.error.code == "INSUFFICIENT_STOCK"


def test_rebalance_cannot_move_stock(db, make_product):
    product = make_product(stock=4)
    request = StockChangeRequest(product_id=product.id, change=StockDelta(stock=-1, available=-1))
    result = MutationCoordinator(db).apply_change(request)
    assert result.error.code == "VALIDATION_ERROR"


def test_sequence_and_balance_follow_every_entry(db, make_product):
    product = make_product(stock=10)
    for quantity in (5, -3, 7, -9):
        assert StockService.adjust_stock(db, product.id, quantity, shop_id=product.shop_id).ok

    entries = db.query(LedgerEntry)\
        .filter(LedgerEntry.product_id == product.id)\
        .order_by(LedgerEntry.sequence)\
        .all()

    sequences = [e.sequence for e in entries]
    assert sequences == sorted(set(sequences))
    assert [e.balance_after for e in entries] == [10, 15, 12, 19, 10]
    assert sum(e.quantity for e in entries) == 10


def test_ledger_failure_rolls_back_counter(db, session_factory, monkeypatch, make_product):
    product = make_product(stock=10)

    def broken_append(self, entry):
        raise PersistenceError("Failed to write ledger entry", product_id=entry.product_id)

    monkeypatch.setattr(LedgerStore, "append", broken_append)
    result = StockService.adjust_stock(db, product.id, 5, shop_id=product.shop_id)

    assert result.error.code == "PERSISTENCE_ERROR"
    assert levels_of(session_factory, product.id) == StockLevels(10, 10, 0)


def test_batch_is_all_or_nothing(db, session_factory, make_product):
    first = make_product(stock=10)
    second = make_product(stock=1)

    result = MutationCoordinator(db).apply_changes([
        StockChangeRequest(product_id=first.id, change=StockDelta(stock=-2, available=-2), movement_kind="sale"),
        StockChangeRequest(product_id=second.id, change=StockDelta(stock=-2, available=-2), movement_kind="sale"),
    ])

    assert result.error.code == "INSUFFICIENT_STOCK"
    assert levels_of(session_factory, first.id) == StockLevels(10, 10, 0)
    assert levels_of(session_factory, second.id) == StockLevels(1, 1, 0)


def test_concurrent_modification_is_retryable(db, monkeypatch, make_product):
    product = make_product(stock=10)

    def stale_commit(self):
        raise StaleDataError("UPDATE statement on table 'stock_counters' expected to update 1 row(s); 0 were matched.")

    monkeypatch.setattr(MutationCoordinator, "_commit", stale_commit)
    result = StockService.adjust_stock(db, product.id, 1, shop_id=product.shop_id)

    assert result.error.code == "TRANSACTION_ABORTED"
    assert result.error.retryable


def test_lock_timeout(db, session_factory, make_product):
    product = make_product(stock=10)
    registry = ProductLockRegistry()
    coordinator = MutationCoordinator(db, lock_timeout=0.05, locks=registry)
    request = StockChangeRequest(
        product_id=product.id, change=StockDelta(stock=1, available=1), movement_kind="adjustment_in"
    )

    with registry.hold([product.id], timeout=1):
        result = coordinator.apply_change(request)

    assert result.error.code == "LOCK_TIMEOUT"
    assert result.error.status_code == 503
    assert levels_of(session_factory, product.id) == StockLevels(10, 10, 0)

    # Lock released, the same request goes through
    assert coordinator.apply_change(request).ok


def test_result_shows_own_write_when_another_commit_follows(db, session_factory, monkeypatch, make_product):
    product = make_product(stock=10)
    product_id, shop_id = product.id, product.shop_id
    original = MutationCoordinator._after_commit
    interleaved = []

    def commit_another_change_first(self, result):
        if not interleaved:
            interleaved.append(True)
            other = session_factory()
            try:
                assert StockService.adjust_stock(other, product_id, 7, shop_id=shop_id).ok
            finally:
                other.close()
        original(self, result)

    monkeypatch.setattr(MutationCoordinator, "_after_commit", commit_another_change_first)

    result = StockService.adjust_stock(db, product_id, 1, shop_id=shop_id)

    assert interleaved
    assert result.entry.balance_after == 11
    assert result.counter.stock_quantity == 11
    assert result.unwrap().available_quantity == 11
    assert levels_of(session_factory, product_id) == StockLevels(18, 18, 0)


def test_unwrap_raises_carried_error(db, shop, bare_product):
    from app.core.errors import InsufficientStockError

    result = StockService.adjust_stock(db, bare_product.id, -1, shop_id=shop.id)
    with pytest.raises(InsufficientStockError):
        result.unwrap()
