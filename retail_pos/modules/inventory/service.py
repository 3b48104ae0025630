from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import desc
from sqlalchemy.orm import Session, selectinload

from retail_pos.core.config import settings
from retail_pos.common.exceptions import InsufficientStockError, ValidationError
from retail_pos.common.transactions import atomic
from retail_pos.modules.auth.policy import Operation, policy
from retail_pos.modules.auth.schemas import AuthContext
from retail_pos.modules.catalog.models import Variant
from retail_pos.modules.catalog.service import CatalogService
from retail_pos.modules.inventory.models import StockMovement, StockOrigin
from retail_pos.modules.inventory.schemas import StockMovementCreate

logger = logging.getLogger(__name__)

MANUAL_ORIGINS = (StockOrigin.MANUAL_ADJUSTMENT, StockOrigin.STOCK_IMPORT)


class StockLedgerService:
    """Append-only stock ledger; the only writer of variant quantities."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)

    def record(
        self,
        variant_id: UUID,
        delta: Decimal,
        origin: StockOrigin,
        order_id: Optional[UUID] = None,
        created_by: Optional[UUID] = None,
        notes: Optional[str] = None
    ) -> StockMovement:
        """
        Apply a signed delta to a variant and append the movement.

        Runs inside the caller's unit of work (flush only). The variant row is
        locked before the read-modify-write so concurrent sales serialize.
        """
        delta = Decimal(delta)
        if delta == 0:
            raise ValidationError("La cantidad del movimiento no puede ser cero", variant_id=str(variant_id))

        variant = self.catalog.lock_variant(variant_id)
        final_quantity = Decimal(variant.quantity or 0) + delta

        if final_quantity < 0 and not self._allows_negative(variant):
            raise InsufficientStockError(
                f"Stock insuficiente para la variante {variant_id}. "
                f"Disponible: {variant.quantity}, Solicitado: {-delta}",
                variant_id=str(variant_id)
            )

        variant.quantity = final_quantity
        movement = StockMovement(
            variant_id=variant_id,
            quantity=delta,
            origin=origin,
            order_id=order_id,
            resulting_quantity=final_quantity,
            notes=notes,
            created_by=created_by
        )
        self.db.add(movement)
        self.db.flush()

        return movement

    def _allows_negative(self, variant: Variant) -> bool:
        if settings.ALLOW_NEGATIVE_STOCK:
            return True
        return bool(variant.article and variant.article.sell_in_negative)

    def record_stock_movement(self, data: StockMovementCreate, actor: AuthContext) -> StockMovement:
        """Manual adjustment or stock import outside the sale/credit-note flows."""
        policy.authorize(actor, Operation.RECORD_STOCK_MOVEMENT)

        if data.origin not in MANUAL_ORIGINS:
            raise ValidationError(
                "Solo se pueden registrar manualmente ajustes o importaciones de stock"
            )

        with atomic(self.db, "Movimiento de stock"):
            movement = self.record(
                variant_id=data.variant_id,
                delta=data.quantity,
                origin=data.origin,
                order_id=data.order_id,
                created_by=actor.user_id,
                notes=data.notes
            )

        logger.info(
            f"Movimiento de stock {data.origin.value} registrado: variante {data.variant_id}, "
            f"delta {data.quantity}, stock resultante {movement.resulting_quantity}"
        )
        return movement

    def list_movements(
        self,
        variant_id: Optional[UUID] = None,
        order_id: Optional[UUID] = None,
        limit: int = 100,
        offset: int = 0
    ) -> Dict[str, Any]:
        query = self.db.query(StockMovement)

        if variant_id:
            query = query.filter(StockMovement.variant_id == variant_id)
        if order_id:
            query = query.filter(StockMovement.order_id == order_id)

        query = query.order_by(desc(StockMovement.created_at))

        total = query.count()
        movements = query.offset(offset).limit(limit).all()

        return {
            "movements": movements,
            "total": total,
            "limit": limit,
            "offset": offset
        }

    def list_low_stock(self) -> List[Variant]:
        """Variants at or below their minimum threshold."""
        return self.db.query(Variant).options(
            selectinload(Variant.article)
        ).filter(
            Variant.quantity <= Variant.min_quantity
        ).order_by(Variant.quantity).all()
