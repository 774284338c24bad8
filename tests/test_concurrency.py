"""
Concurrent mutations from separate sessions, one per worker thread
"""
import threading

from app.models import LedgerEntry
from app.services import StockService
from app.services.stock_counter import StockLevels, get_counter


def run_in_threads(session_factory, count, work):
    """Start ``count`` workers together; each gets its own session"""
    barrier = threading.Barrier(count)
    results = [None] * count

    def worker(index):
        session = session_factory()
        try:
            barrier.wait()
            results[index] = work(session, index)
        finally:
            session.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def test_two_concurrent_decrements_both_land(db, session_factory, make_product):
    product = make_product(stock=50)
    product_id, shop_id = product.id, product.shop_id

    results = run_in_threads(
        session_factory, 2,
        lambda session, i: StockService.adjust_stock(session, product_id, -10, shop_id=shop_id).ok
    )

    assert results == [True, True]
    db.expire_all()
    assert StockLevels.of(get_counter(db, product_id)) == StockLevels(30, 30, 0)
    outs = db.query(LedgerEntry).filter(
        LedgerEntry.product_id == product_id,
        LedgerEntry.movement_kind == "adjustment_out"
    ).all()
    assert len(outs) == 2
    assert sorted(e.balance_after for e in outs) == [30, 40]


def test_oversubscription_never_goes_negative(db, session_factory, make_product):
    product = make_product(stock=5)
    product_id, shop_id = product.id, product.shop_id

    def take_two(session, i):
        result = StockService.adjust_stock(session, product_id, -2, shop_id=shop_id)
        return result.error.code if result.error else "OK"

    results = run_in_threads(session_factory, 4, take_two)

    assert results.count("OK") == 2
    assert results.count("INSUFFICIENT_STOCK") == 2
    db.expire_all()
    assert get_counter(db, product_id).stock_quantity == 1


def test_ledger_sequence_is_a_total_order(db, session_factory, make_product):
    product = make_product(stock=0)
    product_id, shop_id = product.id, product.shop_id

    run_in_threads(
        session_factory, 6,
        lambda session, i: StockService.adjust_stock(session, product_id, i + 1, shop_id=shop_id).ok
    )

    entries = db.query(LedgerEntry)\
        .filter(LedgerEntry.product_id == product_id)\
        .order_by(LedgerEntry.sequence)\
        .all()

    assert len(entries) == 6
    assert len({e.sequence for e in entries}) == 6
    running = 0
    for entry in entries:
        running += entry.quantity
        assert entry.balance_after == running
    assert running == 21
