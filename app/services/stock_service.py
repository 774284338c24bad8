"""
Stock Service - the only writer of stock counters

MutationCoordinator turns StockChangeRequests into committed state: it locks
the products, re-reads their counters, validates the resulting levels, writes
counter and ledger entry together and commits once. StockService is the
facade the API calls (adjust, overwrite, receive, return, reserve, release,
consume).
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core import settings
from app.core.errors import (
    InventoryError, InvalidQuantityError, LockTimeoutError, PersistenceError,
    ProductNotFoundError, ShopIdRequiredError, TransactionAbortedError, ValidationError
)
from app.core.locks import ProductLockRegistry, product_locks
from app.models import LedgerEntry, MovementKind, Product, StockCounter
from app.models.base import utcnow
from .ledger_store import EntrySnapshot, LedgerStore
from .stock_counter import (
    CounterSnapshot, StockChange, StockDelta, StockLevels, StockOverwrite,
    get_counter, get_or_create, validate
)

logger = logging.getLogger(__name__)

COUNTER_ATTRIBUTES = ("reorder_level", "reorder_quantity", "location")

# PostgreSQL SQLSTATE for lock_timeout expiry
PG_LOCK_NOT_AVAILABLE = "55P03"


@dataclass(frozen=True)
class StockChangeRequest:
    """
    One requested change to a product's counter.

    ``movement_kind`` None marks a rebalance between available and reserved,
    which may not touch stock_quantity and never writes a ledger entry.
    """
    product_id: UUID
    change: StockChange
    movement_kind: Optional[MovementKind] = None
    shop_id: Optional[UUID] = None
    reference_id: Optional[UUID] = None
    note: Optional[str] = None
    actor_id: Optional[UUID] = None
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChangeResult:
    """
    Typed outcome of a coordinator call; ``error`` is set on rejection.

    Counters and entries are snapshots taken inside the lock just before the
    commit, so they show exactly what this call wrote, whatever commits later.
    """
    counters: List[CounterSnapshot] = field(default_factory=list)
    entries: List[EntrySnapshot] = field(default_factory=list)
    created: List[UUID] = field(default_factory=list)
    error: Optional[InventoryError] = None

    @classmethod
    def failure(cls, error: InventoryError) -> "ChangeResult":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def counter(self) -> Optional[CounterSnapshot]:
        return self.counters[0] if self.counters else None

    @property
    def entry(self) -> Optional[EntrySnapshot]:
        return self.entries[0] if self.entries else None

    def unwrap(self) -> CounterSnapshot:
        """Return the (first) counter or raise the carried error"""
        if self.error is not None:
            raise self.error
        return self.counter


def _check_request(request: StockChangeRequest) -> None:
    """Shape checks that need no database access"""
    if request.product_id is None:
        raise ValidationError("product_id is required")

    if request.movement_kind is not None:
        try:
            MovementKind(request.movement_kind)
        except ValueError:
            raise ValidationError(
                f"Unknown movement kind: {request.movement_kind}",
                movement_kind=request.movement_kind
            )

    if not isinstance(request.change, (StockDelta, StockOverwrite)):
        raise ValidationError("change must be a StockDelta or StockOverwrite")
    request.change.check()

    if request.movement_kind is None and request.change.touches_stock:
        raise ValidationError(
            "A rebalance cannot change stock_quantity; give a movement kind",
            product_id=request.product_id
        )

    unknown = set(request.attributes) - set(COUNTER_ATTRIBUTES)
    if unknown:
        raise ValidationError(f"Unknown inventory fields: {', '.join(sorted(unknown))}")
    for name in ("reorder_level", "reorder_quantity"):
        value = request.attributes.get(name)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
            raise InvalidQuantityError(f"{name} must be a non-negative integer", field=name, value=value)
    location = request.attributes.get("location")
    if location is not None and (not isinstance(location, str) or len(location) > 100):
        raise ValidationError("location must be a string of at most 100 characters")


class MutationCoordinator:
    """Atomic, per-product serialized application of stock changes"""

    def __init__(
        self,
        db: Session,
        lock_timeout: Optional[float] = None,
        strict: Optional[bool] = None,
        locks: Optional[ProductLockRegistry] = None
    ):
        self.db = db
        self.ledger = LedgerStore(db)
        self.lock_timeout = settings.STOCK_LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout
        self.strict = settings.STOCK_STRICT_RECONCILIATION if strict is None else strict
        self.locks = locks or product_locks

    def apply_change(self, request: StockChangeRequest) -> ChangeResult:
        return self.apply_changes([request])

    def apply_changes(self, requests: Sequence[StockChangeRequest]) -> ChangeResult:
        """
        Apply all requests as one unit: every counter and ledger entry (plus
        anything else pending in the session) commits together, or nothing does.
        """
        if not requests:
            return ChangeResult.failure(ValidationError("No stock changes requested"))

        try:
            for request in requests:
                _check_request(request)
        except InventoryError as e:
            self.db.rollback()
            logger.info(f"Stock change rejected before locking: {e.code} {e.message}")
            return ChangeResult.failure(e)

        product_ids = [request.product_id for request in requests]
        try:
            with self.locks.hold(product_ids, self.lock_timeout):
                result = self._apply_locked(requests)
        except InventoryError as e:
            # Also discards caller rows pending in the same unit (e.g. the sale)
            self.db.rollback()
            if e.retryable:
                logger.warning(f"Stock change aborted for {product_ids}: {e.code} {e.message}")
            else:
                logger.info(f"Stock change rejected for {product_ids}: {e.code} {e.message}")
            return ChangeResult.failure(e)

        self._after_commit(result)
        return result

    # ---------- inside the critical section ----------

    def _apply_locked(self, requests: Sequence[StockChangeRequest]) -> ChangeResult:
        result = ChangeResult()
        counters: Dict[UUID, StockCounter] = {}
        entries: List[LedgerEntry] = []
        try:
            self._bound_row_lock_wait()
            for request in requests:
                counter = counters.get(request.product_id)
                if counter is None:
                    lookup = get_or_create(self.db, request.product_id, request.shop_id)
                    counter = lookup.counter
                    counters[request.product_id] = counter
                    if lookup.created:
                        result.created.append(request.product_id)

                entry = self._apply_one(counter, request)
                if entry is not None:
                    entries.append(entry)

            # Commit expires the ORM objects; capture what this unit wrote first
            result.counters = [CounterSnapshot.of(counter) for counter in counters.values()]
            result.entries = [EntrySnapshot.of(entry) for entry in entries]
            self._commit()
        except InventoryError:
            self.db.rollback()
            raise
        except StaleDataError as e:
            self.db.rollback()
            raise TransactionAbortedError("Counter was modified concurrently", detail=str(e)) from e
        except IntegrityError as e:
            self.db.rollback()
            raise TransactionAbortedError("Conflicting write to stock counter", detail=str(e.orig)) from e
        except OperationalError as e:
            self.db.rollback()
            if _is_lock_timeout(e):
                raise LockTimeoutError(requests[0].product_id, self.lock_timeout) from e
            raise TransactionAbortedError("Stock transaction aborted", detail=str(e.orig)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Unexpected storage failure", detail=str(e)) from e
        return result

    def _apply_one(self, counter: StockCounter, request: StockChangeRequest) -> Optional[LedgerEntry]:
        current = StockLevels.of(counter)
        check = validate(request.product_id, current, request.change, strict=self.strict)
        if not check.ok:
            raise check.error

        stock_delta = check.levels.stock - current.stock
        if request.movement_kind is None and stock_delta != 0:
            raise ValidationError("A rebalance cannot change stock_quantity", product_id=request.product_id)

        counter.stock_quantity = check.levels.stock
        counter.available_quantity = check.levels.available
        counter.reserved_quantity = check.levels.reserved
        for name, value in request.attributes.items():
            setattr(counter, name, value)
        counter.updated_at = utcnow()
        self.db.flush()  # bumps counter.version

        if stock_delta == 0:
            return None

        entry = LedgerEntry(
            product_id=request.product_id,
            shop_id=counter.shop_id,
            movement_kind=MovementKind(request.movement_kind).value,
            quantity=stock_delta,
            balance_after=counter.stock_quantity,
            sequence=counter.version,
            reference_id=request.reference_id,
            note=request.note,
            actor_id=request.actor_id,
            created_at=utcnow(),
        )
        return self.ledger.append(entry)

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TransactionAbortedError("Commit failed; no changes were applied", detail=str(e)) from e

    def _bound_row_lock_wait(self) -> None:
        bind = self.db.get_bind()
        if bind.dialect.name == "postgresql":
            timeout_ms = int(self.lock_timeout * 1000)
            self.db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))

    # ---------- after commit ----------

    def _after_commit(self, result: ChangeResult) -> None:
        for entry in result.entries:
            logger.info(
                f"Stock {entry.movement_kind} {entry.quantity:+d} for product {entry.product_id} "
                f"-> {entry.balance_after} (seq {entry.sequence})"
            )
        for counter in result.counters:
            if counter.is_low_stock:
                logger.warning(
                    f"Low inventory alert: product {counter.product_id} at {counter.stock_quantity} "
                    f"(reorder level {counter.reorder_level})"
                )
            if not counter.levels.reconciled:
                logger.warning(
                    f"Unreconciled counter for product {counter.product_id}: available "
                    f"{counter.available_quantity} + reserved {counter.reserved_quantity} "
                    f"> stock {counter.stock_quantity}"
                )


def _is_lock_timeout(error: OperationalError) -> bool:
    orig = getattr(error, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == PG_LOCK_NOT_AVAILABLE


def _require_positive(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantityError("Quantity must be a positive integer", value=quantity)
    return quantity


class StockService:
    """Stock/Inventory business logic"""

    @staticmethod
    def _find_product(db: Session, product_id: UUID, shop_id: Optional[UUID] = None) -> Product:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product or (shop_id and product.shop_id != shop_id):
            raise ProductNotFoundError(product_id)
        return product

    @staticmethod
    def _run(db: Session, request_factory, strict: Optional[bool] = None) -> ChangeResult:
        """Resolve caller errors into a failed ChangeResult, then hand over to the coordinator"""
        try:
            request = request_factory()
        except InventoryError as e:
            return ChangeResult.failure(e)
        return MutationCoordinator(db, strict=strict).apply_change(request)

    @staticmethod
    def get_counter(db: Session, product_id: UUID, shop_id: Optional[UUID] = None) -> Optional[StockCounter]:
        counter = get_counter(db, product_id)
        if counter is None or (shop_id and counter.shop_id != shop_id):
            return None
        return counter

    @staticmethod
    def adjust_stock(
        db: Session,
        product_id: UUID,
        quantity: int,
        note: Optional[str] = None,
        shop_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None
    ) -> ChangeResult:
        """Move stock and available together; tagged adjustment_in / adjustment_out"""
        def build():
            if shop_id is None:
                raise ShopIdRequiredError(product_id)
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity == 0:
                raise InvalidQuantityError("Quantity must be a valid number", value=quantity)
            StockService._find_product(db, product_id, shop_id)
            return StockChangeRequest(
                product_id=product_id,
                change=StockDelta(stock=quantity, available=quantity),
                movement_kind=MovementKind.ADJUSTMENT_IN if quantity > 0 else MovementKind.ADJUSTMENT_OUT,
                shop_id=shop_id,
                note=note or "Manual stock adjustment",
                actor_id=actor_id,
            )
        return StockService._run(db, build)

    @staticmethod
    def set_inventory_fields(
        db: Session,
        product_id: UUID,
        fields: Dict[str, Any],
        reason: Optional[str] = None,
        shop_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None,
        strict: Optional[bool] = None
    ) -> ChangeResult:
        """
        Overwrite quantities and reorder settings with absolute values.

        available_quantity is not derived from a new stock_quantity; it only
        changes when given. A stock change is recorded as one ``adjustment``.
        """
        def build():
            product = StockService._find_product(db, product_id, shop_id)
            overwrite = StockOverwrite(
                stock=fields.get("stock_quantity"),
                available=fields.get("available_quantity"),
                reserved=fields.get("reserved_quantity"),
            )
            attributes = {name: fields[name] for name in COUNTER_ATTRIBUTES if name in fields}
            unknown = set(fields) - set(COUNTER_ATTRIBUTES) - {"stock_quantity", "available_quantity", "reserved_quantity"}
            if unknown:
                raise ValidationError(f"Unknown inventory fields: {', '.join(sorted(unknown))}")
            return StockChangeRequest(
                product_id=product_id,
                change=overwrite,
                movement_kind=MovementKind.ADJUSTMENT,
                shop_id=shop_id or product.shop_id,
                note=reason or "Manual inventory adjustment",
                actor_id=actor_id,
                attributes=attributes,
            )
        return StockService._run(db, build, strict=strict)

    @staticmethod
    def receive_stock(
        db: Session,
        product_id: UUID,
        quantity: int,
        reference_id: Optional[UUID] = None,
        note: Optional[str] = None,
        shop_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None
    ) -> ChangeResult:
        """Goods received from a supplier"""
        def build():
            product = StockService._find_product(db, product_id, shop_id)
            q = _require_positive(quantity)
            return StockChangeRequest(
                product_id=product_id,
                change=StockDelta(stock=q, available=q),
                movement_kind=MovementKind.PURCHASE,
                shop_id=shop_id or product.shop_id,
                reference_id=reference_id,
                note=note or "Stock received",
                actor_id=actor_id,
            )
        return StockService._run(db, build)

    @staticmethod
    def record_return(
        db: Session,
        product_id: UUID,
        quantity: int,
        reference_id: Optional[UUID] = None,
        note: Optional[str] = None,
        shop_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None
    ) -> ChangeResult:
        """Customer return back into sellable stock"""
        def build():
            product = StockService._find_product(db, product_id, shop_id)
            q = _require_positive(quantity)
            return StockChangeRequest(
                product_id=product_id,
                change=StockDelta(stock=q, available=q),
                movement_kind=MovementKind.RETURN,
                shop_id=shop_id or product.shop_id,
                reference_id=reference_id,
                note=note or "Customer return",
                actor_id=actor_id,
            )
        return StockService._run(db, build)

    @staticmethod
    def reserve_stock(
        db: Session,
        product_id: UUID,
        quantity: int,
        reference_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None
    ) -> ChangeResult:
        """Hold available units against an open order (no ledger entry)"""
        def build():
            product = StockService._find_product(db, product_id)
            q = _require_positive(quantity)
            return StockChangeRequest(
                product_id=product_id,
                change=StockDelta(available=-q, reserved=q),
                shop_id=product.shop_id,
                reference_id=reference_id,
                actor_id=actor_id,
            )
        return StockService._run(db, build)

    @staticmethod
    def release_reservation(
        db: Session,
        product_id: UUID,
        quantity: int,
        reference_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None
    ) -> ChangeResult:
        """Order cancelled: reserved units become available again (no ledger entry)"""
        def build():
            product = StockService._find_product(db, product_id)
            q = _require_positive(quantity)
            return StockChangeRequest(
                product_id=product_id,
                change=StockDelta(available=q, reserved=-q),
                shop_id=product.shop_id,
                reference_id=reference_id,
                actor_id=actor_id,
            )
        return StockService._run(db, build)

    @staticmethod
    def consume_reservation(
        db: Session,
        product_id: UUID,
        quantity: int,
        reference_id: Optional[UUID] = None,
        note: Optional[str] = None,
        actor_id: Optional[UUID] = None
    ) -> ChangeResult:
        """Order shipped: reserved units leave the building"""
        def build():
            product = StockService._find_product(db, product_id)
            q = _require_positive(quantity)
            return StockChangeRequest(
                product_id=product_id,
                change=StockDelta(stock=-q, reserved=-q),
                movement_kind=MovementKind.SALE,
                shop_id=product.shop_id,
                reference_id=reference_id,
                note=note or "Order shipped",
                actor_id=actor_id,
            )
        return StockService._run(db, build)
