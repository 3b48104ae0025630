from pydantic import BaseModel, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from retail_pos.modules.inventory.models import StockOrigin


# Movement schemas
class StockMovementCreate(BaseModel):
    variant_id: UUID
    quantity: Decimal = Field(..., description="Signed delta (positive = stock in, negative = stock out)")
    origin: StockOrigin = Field(StockOrigin.MANUAL_ADJUSTMENT, description="Movement origin")
    order_id: Optional[UUID] = Field(None, description="Related order, if any")
    notes: Optional[str] = Field(None, max_length=255, description="Movement notes")


class StockMovementOut(BaseModel):
    id: UUID
    variant_id: UUID
    quantity: Decimal
    origin: StockOrigin
    order_id: Optional[UUID] = None
    resulting_quantity: Decimal
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class StockMovementList(BaseModel):
    movements: List[StockMovementOut]
    total: int
    limit: int
    offset: int


class LowStockVariantOut(BaseModel):
    id: UUID
    article_id: UUID
    size: Optional[str] = None
    color: Optional[str] = None
    barcode: Optional[str] = None
    quantity: Decimal
    min_quantity: Decimal
    max_quantity: Optional[Decimal] = None

    model_config = {"from_attributes": True}
