"""
Product Model
"""
from sqlalchemy import Column, String, Numeric, Boolean, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from app.core import Base
from .base import UUIDMixin, TimestampMixin

class Product(Base, UUIDMixin, TimestampMixin):
    """Product Master"""
    __tablename__ = "product"
    __table_args__ = (
        UniqueConstraint("shop_id", "sku", name="uq_product_shop_sku"),
    )

    shop_id = Column(UUID(as_uuid=True), ForeignKey("shop.id"), nullable=False, index=True)
    sku = Column(String(100), nullable=False, index=True)
    barcode = Column(String(100), index=True)
    name = Column(String(300), nullable=False)
    description = Column(Text)
    purchase_price = Column(Numeric(12, 2), default=0)
    selling_price = Column(Numeric(12, 2), default=0)
    image_url = Column(String(500))
    is_active = Column(Boolean, default=True)  # Soft delete flag, counter is kept

    # Relationships
    shop = relationship("Shop", back_populates="products")
    stock_counter = relationship("StockCounter", back_populates="product", uselist=False)
    ledger_entries = relationship("LedgerEntry", back_populates="product")
    sale_items = relationship("SaleItem", back_populates="product")
