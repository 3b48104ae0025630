"""
Routers FastAPI para cajas y tesorería

- Apertura/cierre de lotes de caja
- Informe de cierre (reconciliación)
- Movimientos manuales de tesorería
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID

from retail_pos.database.database import get_db
from retail_pos.modules.auth.dependencies import get_auth_context
from retail_pos.modules.auth.schemas import AuthContext
from retail_pos.modules.tills.models import TillStatus
from retail_pos.modules.tills.reconciliation import ReconciliationService
from retail_pos.modules.tills.service import TillSessionService, TreasuryLedgerService
from retail_pos.modules.tills.schemas import (
    TillOpen, TillClose, TillSessionOut, TillSessionList,
    TreasuryMovementCreate, TreasuryMovementOut, ReconciliationReport
)

tills_router = APIRouter(prefix="/tills", tags=["Tills"])


@tills_router.post("/open", response_model=TillSessionOut, status_code=status.HTTP_201_CREATED)
def open_till(
    open_data: TillOpen,
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Abrir un lote de caja.

    - **register_id**: Caja física
    - **opening_balance**: Saldo inicial (se registra como ingreso en efectivo)
    - **cashier_id**: Cajero responsable (por defecto el usuario autenticado)

    Validaciones:
    - Un solo lote abierto por cajero (o uno en todo el sistema si TILL_LOCK_SCOPE=global)
    """
    service = TillSessionService(db)
    return service.open_till(open_data, actor=auth_context)


@tills_router.get("/current", response_model=TillSessionOut)
def get_current_till(
    cashier_id: Optional[UUID] = Query(None, description="Cajero; por defecto el usuario autenticado"),
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Lote abierto del cajero. 404 si no hay ninguno."""
    service = TillSessionService(db)
    till_session = service.get_open_session(cashier_id or auth_context.user_id)
    if not till_session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No hay un lote de caja abierto")
    return till_session


@tills_router.post("/{session_id}/close", response_model=ReconciliationReport)
def close_till(
    session_id: UUID = Path(..., description="ID del lote de caja"),
    close_data: TillClose = ...,
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Cerrar un lote de caja y obtener el informe de cierre.

    - **declared_balance**: Efectivo contado (opcional); el informe muestra la diferencia
    - **closed_at**: Fecha y hora de cierre (por defecto ahora)
    """
    service = TillSessionService(db)
    return service.close_till(session_id, close_data, actor=auth_context)


@tills_router.get("/{session_id}/reconciliation", response_model=ReconciliationReport)
def get_till_reconciliation(
    session_id: UUID = Path(..., description="ID del lote de caja"),
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Informe de cierre por cuenta de tesorería. Solo lectura; válido para lotes abiertos o cerrados."""
    service = ReconciliationService(db)
    return service.get_till_reconciliation(session_id, actor=auth_context)


@tills_router.get("/", response_model=TillSessionList)
def get_tills(
    cashier_id: Optional[UUID] = Query(None, description="Filtrar por cajero"),
    status: Optional[TillStatus] = Query(None, description="Filtrar por estado"),
    limit: int = Query(100, ge=1, le=1000, description="Límite de resultados"),
    offset: int = Query(0, ge=0, description="Offset para paginación"),
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Listar lotes de caja, más recientes primero."""
    service = TillSessionService(db)
    result = service.list_sessions(cashier_id=cashier_id, status=status, limit=limit, offset=offset)

    return TillSessionList(
        sessions=result["sessions"],
        total=result["total"],
        limit=result["limit"],
        offset=result["offset"]
    )


@tills_router.post("/{session_id}/movements", response_model=TreasuryMovementOut,
                   status_code=status.HTTP_201_CREATED)
def create_treasury_movement(
    session_id: UUID = Path(..., description="ID del lote de caja"),
    movement_data: TreasuryMovementCreate = ...,
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Registrar un depósito, retiro o gasto en un lote abierto.

    La cuenta corriente no admite movimientos manuales.
    """
    service = TreasuryLedgerService(db)
    return service.create_manual_movement(session_id, movement_data, actor=auth_context)


@tills_router.get("/{session_id}/movements", response_model=List[TreasuryMovementOut])
def get_treasury_movements(
    session_id: UUID = Path(..., description="ID del lote de caja"),
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Movimientos de tesorería del lote en orden cronológico."""
    service = TreasuryLedgerService(db)
    return service.list_movements(session_id)
