"""
Stock Counter - current levels, change application and validation

Changes are expressed either as signed deltas (``StockDelta``) or absolute
overwrites (``StockOverwrite``). Both apply to an immutable ``StockLevels``
value so validation runs against the whole resulting state before anything
is written.
"""
from dataclasses import dataclass, fields
from datetime import datetime
from typing import NamedTuple, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.errors import (
    InventoryError, InsufficientStockError, InvalidQuantityError,
    ReconciliationError, ShopIdRequiredError
)
from app.models import StockCounter


def _require_int(name: str, value, allow_none: bool = False, minimum: Optional[int] = None):
    if value is None and allow_none:
        return
    # bool is an int subclass but never a quantity
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQuantityError(f"{name} must be an integer", field=name, value=value)
    if minimum is not None and value < minimum:
        raise InvalidQuantityError(f"{name} cannot be less than {minimum}", field=name, value=value)


@dataclass(frozen=True)
class StockLevels:
    stock: int = 0
    available: int = 0
    reserved: int = 0

    @classmethod
    def of(cls, counter: StockCounter) -> "StockLevels":
        return cls(
            stock=counter.stock_quantity or 0,
            available=counter.available_quantity or 0,
            reserved=counter.reserved_quantity or 0,
        )

    @property
    def non_negative(self) -> bool:
        return self.stock >= 0 and self.available >= 0 and self.reserved >= 0

    @property
    def reconciled(self) -> bool:
        return self.available + self.reserved <= self.stock

    def as_dict(self) -> dict:
        return {
            "stock_quantity": self.stock,
            "available_quantity": self.available,
            "reserved_quantity": self.reserved,
        }


@dataclass(frozen=True)
class CounterSnapshot:
    """Column values of a counter as one unit of work committed them"""
    product_id: UUID
    shop_id: UUID
    stock_quantity: int
    available_quantity: int
    reserved_quantity: int
    reorder_level: Optional[int]
    reorder_quantity: Optional[int]
    location: Optional[str]
    version: int
    updated_at: Optional[datetime]

    @classmethod
    def of(cls, counter: StockCounter) -> "CounterSnapshot":
        return cls(**{f.name: getattr(counter, f.name) for f in fields(cls)})

    @property
    def levels(self) -> StockLevels:
        return StockLevels.of(self)

    @property
    def is_low_stock(self) -> bool:
        return bool(self.reorder_level) and self.stock_quantity <= self.reorder_level


@dataclass(frozen=True)
class StockDelta:
    """Signed change to each quantity"""
    stock: int = 0
    available: int = 0
    reserved: int = 0

    def check(self) -> None:
        _require_int("stock", self.stock)
        _require_int("available", self.available)
        _require_int("reserved", self.reserved)

    def apply(self, levels: StockLevels) -> StockLevels:
        return StockLevels(
            stock=levels.stock + self.stock,
            available=levels.available + self.available,
            reserved=levels.reserved + self.reserved,
        )

    @property
    def touches_stock(self) -> bool:
        return self.stock != 0


@dataclass(frozen=True)
class StockOverwrite:
    """New absolute values; None leaves the quantity untouched"""
    stock: Optional[int] = None
    available: Optional[int] = None
    reserved: Optional[int] = None

    def check(self) -> None:
        _require_int("stock_quantity", self.stock, allow_none=True, minimum=0)
        _require_int("available_quantity", self.available, allow_none=True, minimum=0)
        _require_int("reserved_quantity", self.reserved, allow_none=True, minimum=0)

    def apply(self, levels: StockLevels) -> StockLevels:
        return StockLevels(
            stock=levels.stock if self.stock is None else self.stock,
            available=levels.available if self.available is None else self.available,
            reserved=levels.reserved if self.reserved is None else self.reserved,
        )

    @property
    def touches_stock(self) -> bool:
        return self.stock is not None


StockChange = Union[StockDelta, StockOverwrite]


@dataclass(frozen=True)
class CounterCheck:
    """Outcome of validating a proposed change"""
    ok: bool
    levels: StockLevels
    error: Optional[InventoryError] = None

    @property
    def reason(self) -> Optional[str]:
        return self.error.code if self.error else None


def validate(product_id, current: StockLevels, change: StockChange, strict: bool = False) -> CounterCheck:
    """
    Check the state that would result from applying ``change`` to ``current``.

    Rejects with INSUFFICIENT_STOCK if any quantity would go negative. In strict
    mode also rejects with RECONCILIATION_MISMATCH when available + reserved
    would exceed stock. Pure: nothing is read or written.
    """
    proposed = change.apply(current)
    if not proposed.non_negative:
        error = InsufficientStockError(
            product_id,
            current=current.as_dict(),
            proposed=proposed.as_dict(),
        )
        return CounterCheck(ok=False, levels=proposed, error=error)
    if strict and not proposed.reconciled:
        error = ReconciliationError(product_id, proposed=proposed.as_dict())
        return CounterCheck(ok=False, levels=proposed, error=error)
    return CounterCheck(ok=True, levels=proposed)


class CounterLookup(NamedTuple):
    counter: StockCounter
    created: bool


def get_counter(db: Session, product_id: UUID, for_update: bool = False) -> Optional[StockCounter]:
    query = db.query(StockCounter).filter(StockCounter.product_id == product_id)
    if for_update:
        # Locked reads must see the committed row, not a cached identity-map copy
        query = query.with_for_update().populate_existing()
    return query.first()


def get_or_create(db: Session, product_id: UUID, shop_id: Optional[UUID] = None, for_update: bool = True) -> CounterLookup:
    """
    Return the product's counter, creating a zeroed one on first reference.

    The shop scope is only needed (and required) for creation. The new row is
    flushed, not committed; it lands together with the caller's transaction.
    """
    counter = get_counter(db, product_id, for_update=for_update)
    if counter is not None:
        return CounterLookup(counter, False)

    if shop_id is None:
        raise ShopIdRequiredError(product_id)

    counter = StockCounter(
        product_id=product_id,
        shop_id=shop_id,
        stock_quantity=0,
        available_quantity=0,
        reserved_quantity=0,
    )
    db.add(counter)
    db.flush()
    return CounterLookup(counter, True)
