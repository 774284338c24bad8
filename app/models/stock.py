"""
Stock Counter & Ledger Models
"""
import enum

from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Text, CheckConstraint, Index, event
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core import Base
from app.core.errors import ImmutableLedgerError
from .base import UUIDMixin, utcnow


class MovementKind(str, enum.Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    ADJUSTMENT_IN = "adjustment_in"
    ADJUSTMENT_OUT = "adjustment_out"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    TRANSFER = "transfer"
    DELIVERY = "delivery"


class StockCounter(Base, UUIDMixin):
    """Current stock levels of one product (1:1 with Product)"""
    __tablename__ = "stock_counters"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_stock_counters_stock_non_negative"),
        CheckConstraint("available_quantity >= 0", name="ck_stock_counters_available_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_stock_counters_reserved_non_negative"),
        CheckConstraint("reorder_level IS NULL OR reorder_level >= 0", name="ck_stock_counters_reorder_level"),
        CheckConstraint("reorder_quantity IS NULL OR reorder_quantity >= 0", name="ck_stock_counters_reorder_quantity"),
    )

    product_id = Column(UUID(as_uuid=True), ForeignKey("product.id"), nullable=False, unique=True)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shop.id"), nullable=False, index=True)

    # Quantities
    stock_quantity = Column(Integer, nullable=False, default=0)  # Physical units on hand
    available_quantity = Column(Integer, nullable=False, default=0)  # Sellable
    reserved_quantity = Column(Integer, nullable=False, default=0)  # Held for open orders

    # Replenishment
    reorder_level = Column(Integer)  # Low stock threshold
    reorder_quantity = Column(Integer)  # Suggested replenishment amount
    location = Column(String(100))

    # Bumped on every flush; a stale UPDATE from another session fails
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False)

    # Relationships
    product = relationship("Product", back_populates="stock_counter")
    shop = relationship("Shop", back_populates="stock_counters")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_low_stock(self) -> bool:
        return bool(self.reorder_level) and self.stock_quantity <= self.reorder_level

    def __repr__(self):
        return (
            f"<StockCounter product={self.product_id} stock={self.stock_quantity} "
            f"available={self.available_quantity} reserved={self.reserved_quantity}>"
        )


class LedgerEntry(Base, UUIDMixin):
    """Append-only stock movement record"""
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_product_sequence", "product_id", "sequence", unique=True),
    )

    product_id = Column(UUID(as_uuid=True), ForeignKey("product.id"), nullable=False, index=True)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shop.id"), nullable=False, index=True)

    # Movement info
    movement_kind = Column(String(20), nullable=False)  # See MovementKind
    quantity = Column(Integer, nullable=False)  # Signed delta applied to stock_quantity
    balance_after = Column(Integer, nullable=False)  # stock_quantity after this entry
    sequence = Column(Integer, nullable=False)  # Counter version this entry was written at

    # Reference
    reference_id = Column(UUID(as_uuid=True), index=True)  # Sale, order or receipt id

    # Metadata
    note = Column(Text)
    actor_id = Column(UUID(as_uuid=True), ForeignKey("app_user.id"), index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True)

    # Relationships
    product = relationship("Product", back_populates="ledger_entries")
    actor = relationship("AppUser", back_populates="ledger_entries")

    def __repr__(self):
        return f"<LedgerEntry {self.movement_kind} {self.quantity:+d} product={self.product_id}>"


@event.listens_for(LedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise ImmutableLedgerError(target.id, "update")


@event.listens_for(LedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise ImmutableLedgerError(target.id, "delete")
