from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from uuid import UUID

from retail_pos.dependencies.dbDependencies import db_dependency
from retail_pos.modules.auth.dependencies import get_auth_context
from retail_pos.modules.auth.schemas import AuthContext
from retail_pos.modules.inventory.service import StockLedgerService
from retail_pos.modules.inventory.schemas import (
    StockMovementCreate, StockMovementOut, StockMovementList, LowStockVariantOut
)

movements_router = APIRouter(prefix="/stock-movements", tags=["Inventory"])


@movements_router.post("/", response_model=StockMovementOut, status_code=status.HTTP_201_CREATED)
def record_stock_movement(
    movement_data: StockMovementCreate,
    db: db_dependency,
    auth_context: AuthContext = Depends(get_auth_context)
):
    """Record a manual adjustment or stock import (admin/supervisor)."""
    service = StockLedgerService(db)
    return service.record_stock_movement(movement_data, actor=auth_context)


@movements_router.get("/", response_model=StockMovementList)
def get_stock_movements(
    db: db_dependency,
    variant_id: Optional[UUID] = Query(None, description="Filter by variant"),
    order_id: Optional[UUID] = Query(None, description="Filter by order"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    auth_context: AuthContext = Depends(get_auth_context)
):
    """List stock movements, newest first."""
    service = StockLedgerService(db)
    return service.list_movements(variant_id=variant_id, order_id=order_id, limit=limit, offset=offset)


@movements_router.get("/low-stock", response_model=List[LowStockVariantOut])
def get_low_stock(
    db: db_dependency,
    auth_context: AuthContext = Depends(get_auth_context)
):
    """Variants at or below their minimum quantity."""
    service = StockLedgerService(db)
    return service.list_low_stock()
