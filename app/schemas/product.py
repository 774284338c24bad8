"""
Product Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional
from uuid import UUID
from decimal import Decimal

class ProductCreate(BaseModel):
    sku: str
    name: str
    barcode: Optional[str] = None
    description: Optional[str] = None
    purchase_price: Decimal = Decimal("0")
    selling_price: Decimal = Decimal("0")
    image_url: Optional[str] = None
    # Opening inventory
    stock_quantity: int = Field(0, ge=0)
    reorder_level: Optional[int] = Field(None, ge=0)
    reorder_quantity: Optional[int] = Field(None, ge=0)
    location: Optional[str] = Field(None, max_length=100)
    shop_id: Optional[UUID] = None

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    barcode: Optional[str] = None
    description: Optional[str] = None
    purchase_price: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None

class ProductResponse(BaseModel):
    id: UUID
    shop_id: UUID
    sku: str
    barcode: Optional[str]
    name: str
    description: Optional[str]
    purchase_price: Decimal
    selling_price: Decimal
    image_url: Optional[str]
    is_active: bool

    class Config:
        from_attributes = True
