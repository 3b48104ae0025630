from retail_pos.database.database import Base
from sqlalchemy import Column, String, ForeignKey, Numeric, Enum, Uuid
from sqlalchemy.orm import relationship
from retail_pos.common.mixins import UUIDPrimaryKeyMixin, CreatedAtMixin
import enum


class StockOrigin(str, enum.Enum):
    SALE = "sale"
    CREDIT_NOTE = "credit_note"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    STOCK_IMPORT = "stock_import"


class StockMovement(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    """Append-only stock ledger row: why a variant's quantity changed."""
    __tablename__ = "stock_movements"

    variant_id = Column(Uuid(as_uuid=True), ForeignKey("variants.id"), nullable=False, index=True)
    quantity = Column(Numeric(15, 3), nullable=False)  # Signed delta
    origin = Column(Enum(StockOrigin), nullable=False, index=True)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("sale_orders.id"), nullable=True, index=True)
    resulting_quantity = Column(Numeric(15, 3), nullable=False)  # Stock after applying the delta
    notes = Column(String(255), nullable=True)

    created_by = Column(Uuid(as_uuid=True), nullable=True)  # External identity, no FK

    # Relationships
    variant = relationship("Variant")
