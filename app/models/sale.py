"""
Sale Models
"""
from sqlalchemy import Column, String, Numeric, Integer, DateTime, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.core import Base
from .base import UUIDMixin, TimestampMixin, utcnow

class Sale(Base, UUIDMixin, TimestampMixin):
    """Completed point-of-sale transaction"""
    __tablename__ = "sale"

    shop_id = Column(UUID(as_uuid=True), ForeignKey("shop.id"), nullable=False, index=True)
    sale_number = Column(String(50), nullable=False, unique=True)
    sale_date = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    # Payment
    payment_method = Column(String(50), default="cash")  # cash, card, transfer
    payment_status = Column(String(20), default="paid", nullable=False, index=True)  # paid, pending, refunded

    total_amount = Column(Numeric(12, 2), default=0)
    note = Column(Text)
    actor_id = Column(UUID(as_uuid=True), ForeignKey("app_user.id"))
    refunded_at = Column(DateTime(timezone=True))

    # Relationships
    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan")

class SaleItem(Base, UUIDMixin):
    """Sale line"""
    __tablename__ = "sale_item"

    sale_id = Column(UUID(as_uuid=True), ForeignKey("sale.id"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("product.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), default=0)
    total = Column(Numeric(12, 2), default=0)

    # Relationships
    sale = relationship("Sale", back_populates="items")
    product = relationship("Product", back_populates="sale_items")
