"""
Sale Service - sale completion and refunds

A sale and its stock movements are one unit of work: the sale rows are added
to the session and the coordinator commits them together with the counters
and ledger entries, or rolls everything back.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from app.core.errors import (
    InventoryError, InvalidQuantityError, ProductNotFoundError, SaleNotFoundError,
    SaleStateError, ShopIdRequiredError, ValidationError
)
from app.models import MovementKind, Product, Sale, SaleItem
from app.models.base import utcnow
from app.schemas.sale import SaleCreate
from .stock_counter import StockDelta
from .stock_service import ChangeResult, MutationCoordinator, StockChangeRequest

logger = logging.getLogger(__name__)


class SaleService:
    """Sale business logic"""

    @staticmethod
    def get_sale(db: Session, sale_id: UUID) -> Optional[Sale]:
        return db.query(Sale).filter(Sale.id == sale_id).first()

    @staticmethod
    def _generate_sale_number() -> str:
        return f"S{utcnow().strftime('%Y%m%d')}-{uuid4().hex[:8].upper()}"

    @staticmethod
    def complete_sale(
        db: Session,
        sale_data: SaleCreate,
        shop_id: Optional[UUID],
        actor_id: Optional[UUID] = None
    ) -> Tuple[Optional[Sale], ChangeResult]:
        """
        Record a paid sale and take its units out of stock and available.
        Returns (sale, result); sale is None when the result carries an error.
        """
        try:
            if shop_id is None:
                raise ShopIdRequiredError(None)
            if not sale_data.items:
                raise ValidationError("A sale needs at least one item")

            product_ids = {item.product_id for item in sale_data.items}
            products = {
                p.id: p for p in db.query(Product).filter(
                    Product.id.in_(product_ids),
                    Product.shop_id == shop_id
                ).all()
            }
            for pid in product_ids:
                if pid not in products:
                    raise ProductNotFoundError(pid)
        except InventoryError as e:
            return None, ChangeResult.failure(e)

        sale = Sale(
            id=uuid4(),
            shop_id=shop_id,
            sale_number=sale_data.sale_number or SaleService._generate_sale_number(),
            sale_date=utcnow(),
            payment_method=sale_data.payment_method,
            payment_status="paid",
            note=sale_data.note,
            actor_id=actor_id,
        )

        requests: List[StockChangeRequest] = []
        total_amount = Decimal("0")
        for item in sale_data.items:
            unit_price = item.unit_price if item.unit_price is not None else (products[item.product_id].selling_price or Decimal("0"))
            line_total = Decimal(unit_price) * item.quantity
            total_amount += line_total
            sale.items.append(SaleItem(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=unit_price,
                total=line_total,
            ))
            requests.append(StockChangeRequest(
                product_id=item.product_id,
                change=StockDelta(stock=-item.quantity, available=-item.quantity),
                movement_kind=MovementKind.SALE,
                shop_id=shop_id,
                reference_id=sale.id,
                note=f"Sale {sale.sale_number}",
                actor_id=actor_id,
            ))
        sale.total_amount = total_amount
        db.add(sale)

        result = MutationCoordinator(db).apply_changes(requests)
        if not result.ok:
            logger.info(f"Sale {sale.sale_number} not recorded: {result.error.code}")
            return None, result

        logger.info(f"Sale {sale.sale_number} completed with {len(sale_data.items)} line(s), total {total_amount}")
        return sale, result

    @staticmethod
    def refund_sale(
        db: Session,
        sale_id: UUID,
        shop_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None,
        note: Optional[str] = None
    ) -> Tuple[Optional[Sale], ChangeResult]:
        """
        Mark a sale refunded and put every line back into stock as a return.
        Only the shop that made the sale can refund it.
        """
        if shop_id is None:
            return None, ChangeResult.failure(ShopIdRequiredError(None))
        sale = SaleService.get_sale(db, sale_id)
        if not sale or sale.shop_id != shop_id:
            return None, ChangeResult.failure(SaleNotFoundError(sale_id))
        if sale.payment_status == "refunded":
            return None, ChangeResult.failure(
                SaleStateError("Sale is already refunded", sale_id=sale_id)
            )

        requests = []
        for item in sale.items:
            if item.quantity <= 0:
                return None, ChangeResult.failure(
                    InvalidQuantityError("Sale line has no quantity to return", sale_item_id=item.id)
                )
            requests.append(StockChangeRequest(
                product_id=item.product_id,
                change=StockDelta(stock=item.quantity, available=item.quantity),
                movement_kind=MovementKind.RETURN,
                shop_id=sale.shop_id,
                reference_id=sale.id,
                note=note or f"Refund of sale {sale.sale_number}",
                actor_id=actor_id,
            ))

        sale.payment_status = "refunded"
        sale.refunded_at = utcnow()

        result = MutationCoordinator(db).apply_changes(requests)
        if not result.ok:
            return None, result

        logger.info(f"Sale {sale.sale_number} refunded")
        return sale, result
