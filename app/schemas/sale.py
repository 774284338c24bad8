"""
Sale Schemas
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal

class SaleItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(..., gt=0)
    unit_price: Optional[Decimal] = Field(None, ge=0)  # Defaults to the product's selling price

class SaleCreate(BaseModel):
    items: List[SaleItemCreate]
    sale_number: Optional[str] = None
    payment_method: str = "cash"
    note: Optional[str] = None
    shop_id: Optional[UUID] = None

class SaleRefund(BaseModel):
    note: Optional[str] = None

class SaleItemResponse(BaseModel):
    id: UUID
    product_id: UUID
    quantity: int
    unit_price: Decimal
    total: Decimal

    class Config:
        from_attributes = True

class SaleResponse(BaseModel):
    id: UUID
    shop_id: UUID
    sale_number: str
    sale_date: datetime
    payment_method: Optional[str]
    payment_status: str
    total_amount: Decimal
    items: List[SaleItemResponse]

    class Config:
        from_attributes = True
