"""
Ledger Store - append and query stock movements
"""
import logging
import math
from dataclasses import dataclass, fields
from datetime import datetime
from typing import List, NamedTuple, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from app.core.errors import PersistenceError
from app.models import LedgerEntry, MovementKind

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class HistoryPage(NamedTuple):
    entries: List[LedgerEntry]
    total: int
    page: int
    page_size: int
    pages: int


class LedgerAggregate(NamedTuple):
    count: int
    quantity_sum: int


@dataclass(frozen=True)
class EntrySnapshot:
    """A written ledger entry, detached from the session"""
    id: UUID
    product_id: UUID
    shop_id: UUID
    movement_kind: str
    quantity: int
    balance_after: int
    sequence: int
    reference_id: Optional[UUID]
    note: Optional[str]
    actor_id: Optional[UUID]
    created_at: datetime

    @classmethod
    def of(cls, entry: LedgerEntry) -> "EntrySnapshot":
        return cls(**{f.name: getattr(entry, f.name) for f in fields(cls)})


def clamp_page(page, page_size, default_size: int = 20):
    """Normalise pagination input: page >= 1, 1 <= page_size <= 100"""
    page = page if page and page >= 1 else 1
    if not page_size or page_size < 1:
        page_size = default_size
    return page, min(page_size, MAX_PAGE_SIZE)


class LedgerStore:
    """Append-only access to ``ledger_entries``"""

    def __init__(self, db: Session):
        self.db = db

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Add and flush one entry. Commit belongs to the caller's unit of work."""
        try:
            self.db.add(entry)
            self.db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to append ledger entry for product {entry.product_id}: {e}")
            raise PersistenceError("Failed to write ledger entry", product_id=entry.product_id) from e
        return entry

    def history(self, product_id: UUID, page: int = 1, page_size: int = 20) -> HistoryPage:
        """Entries for one product, newest first. Same page, same slice until new entries land."""
        page, page_size = clamp_page(page, page_size)
        query = self.db.query(LedgerEntry).filter(LedgerEntry.product_id == product_id)

        total = query.count()
        entries = query.options(joinedload(LedgerEntry.actor))\
            .order_by(LedgerEntry.sequence.desc())\
            .offset((page - 1) * page_size)\
            .limit(page_size)\
            .all()

        pages = math.ceil(total / page_size) if total else 0
        return HistoryPage(entries, total, page, page_size, pages)

    def aggregate(
        self,
        product_id: UUID,
        movement_kind: Optional[MovementKind] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> LedgerAggregate:
        query = self.db.query(
            func.count(LedgerEntry.id),
            func.coalesce(func.sum(LedgerEntry.quantity), 0)
        ).filter(LedgerEntry.product_id == product_id)

        if movement_kind:
            query = query.filter(LedgerEntry.movement_kind == MovementKind(movement_kind).value)
        if start:
            query = query.filter(LedgerEntry.created_at >= start)
        if end:
            query = query.filter(LedgerEntry.created_at <= end)

        count, quantity_sum = query.one()
        return LedgerAggregate(int(count or 0), int(quantity_sum or 0))

    def recent(
        self,
        shop_id: Optional[UUID] = None,
        movement_kind: Optional[MovementKind] = None,
        limit: int = 50
    ) -> List[LedgerEntry]:
        """Most recent movements across products"""
        query = self.db.query(LedgerEntry)

        if shop_id:
            query = query.filter(LedgerEntry.shop_id == shop_id)

        if movement_kind:
            query = query.filter(LedgerEntry.movement_kind == MovementKind(movement_kind).value)

        return query.order_by(LedgerEntry.created_at.desc()).limit(min(limit, MAX_PAGE_SIZE)).all()
