"""
Master Tables: Shop (tenant), AppUser (actor)
"""
from sqlalchemy import Column, String, Boolean, Text
from sqlalchemy.orm import relationship
from app.core import Base
from .base import UUIDMixin, TimestampMixin

class Shop(Base, UUIDMixin, TimestampMixin):
    """Shop / tenant boundary for products, counters and ledger entries"""
    __tablename__ = "shop"

    code = Column(String(20), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    address = Column(Text)
    is_active = Column(Boolean, default=True)

    # Relationships
    products = relationship("Product", back_populates="shop")
    stock_counters = relationship("StockCounter", back_populates="shop")

class AppUser(Base, UUIDMixin, TimestampMixin):
    """Application User"""
    __tablename__ = "app_user"

    username = Column(String(100), unique=True, nullable=False)
    email = Column(String(200))
    full_name = Column(String(200))
    hashed_password = Column(String(255))
    is_active = Column(Boolean, default=True)

    # Relationships
    ledger_entries = relationship("LedgerEntry", back_populates="actor")
