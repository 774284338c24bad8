"""
Product Service - Business Logic for Products
"""
import logging
from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import List, Optional, Tuple
from uuid import UUID

from app.core.errors import ValidationError
from app.models import Product, MovementKind
from app.schemas.product import ProductCreate, ProductUpdate
from .stock_counter import StockOverwrite
from .stock_service import ChangeResult, MutationCoordinator, StockChangeRequest

logger = logging.getLogger(__name__)

class ProductService:
    """Product business logic"""

    @staticmethod
    def get_products(
        db: Session,
        shop_id: Optional[UUID] = None,
        search: Optional[str] = None,
        active_only: bool = True,
        page: int = 1,
        per_page: int = 50
    ) -> Tuple[List[Product], int]:
        """Get products with filters and pagination"""
        query = db.query(Product)

        if shop_id:
            query = query.filter(Product.shop_id == shop_id)

        if active_only:
            query = query.filter(Product.is_active == True)

        if search:
            search_term = f"%{search}%"
            query = query.filter(
                or_(
                    Product.sku.ilike(search_term),
                    Product.name.ilike(search_term),
                    Product.barcode.ilike(search_term)
                )
            )

        total = query.count()

        products = query.order_by(Product.sku)\
            .offset((page - 1) * per_page)\
            .limit(per_page)\
            .all()

        return products, total

    @staticmethod
    def get_product_by_id(db: Session, product_id: UUID, shop_id: Optional[UUID] = None) -> Optional[Product]:
        """Get product by ID; with a shop scope, only that shop's product"""
        query = db.query(Product).filter(Product.id == product_id)
        if shop_id:
            query = query.filter(Product.shop_id == shop_id)
        return query.first()

    @staticmethod
    def get_product_by_sku(db: Session, shop_id: UUID, sku: str) -> Optional[Product]:
        """Get product by SKU within a shop"""
        return db.query(Product).filter(Product.shop_id == shop_id, Product.sku == sku).first()

    @staticmethod
    def create_product(
        db: Session,
        product_data: ProductCreate,
        shop_id: UUID,
        actor_id: Optional[UUID] = None
    ) -> Tuple[Optional[Product], ChangeResult]:
        """
        Create a product together with its stock counter.

        Initial stock lands as a ``purchase`` entry noted "Initial stock"; the
        product row commits in the same transaction as the counter.
        """
        if ProductService.get_product_by_sku(db, shop_id, product_data.sku):
            return None, ChangeResult.failure(
                ValidationError("SKU already in use in this shop", sku=product_data.sku)
            )

        product = Product(
            shop_id=shop_id,
            sku=product_data.sku,
            barcode=product_data.barcode,
            name=product_data.name,
            description=product_data.description,
            purchase_price=product_data.purchase_price,
            selling_price=product_data.selling_price,
            image_url=product_data.image_url
        )
        db.add(product)
        db.flush()

        initial = product_data.stock_quantity or 0
        attributes = {
            "reorder_level": product_data.reorder_level,
            "reorder_quantity": product_data.reorder_quantity,
            "location": product_data.location,
        }
        request = StockChangeRequest(
            product_id=product.id,
            change=StockOverwrite(stock=initial, available=initial, reserved=0),
            movement_kind=MovementKind.PURCHASE,
            shop_id=shop_id,
            note="Initial stock",
            actor_id=actor_id,
            attributes={k: v for k, v in attributes.items() if v is not None},
        )
        result = MutationCoordinator(db).apply_change(request)
        if not result.ok:
            return None, result

        db.refresh(product)
        logger.info(f"Created product {product.sku} with initial stock {initial}")
        return product, result

    @staticmethod
    def update_product(
        db: Session,
        product_id: UUID,
        product_data: ProductUpdate,
        shop_id: Optional[UUID] = None
    ) -> Optional[Product]:
        """Update descriptive fields; quantities go through StockService"""
        product = ProductService.get_product_by_id(db, product_id, shop_id)
        if not product:
            return None

        for field, value in product_data.model_dump(exclude_unset=True).items():
            setattr(product, field, value)

        db.commit()
        db.refresh(product)
        return product

    @staticmethod
    def deactivate_product(db: Session, product_id: UUID, shop_id: Optional[UUID] = None) -> Optional[Product]:
        """Soft delete; the stock counter and its ledger stay"""
        product = ProductService.get_product_by_id(db, product_id, shop_id)
        if not product:
            return None

        product.is_active = False
        db.commit()
        db.refresh(product)
        return product
