"""
Routers FastAPI para ventas, notas de crédito y cuenta corriente
"""

from fastapi import APIRouter, Depends, status, Query, Path
from sqlalchemy.orm import Session
from typing import Optional, List
from uuid import UUID

from retail_pos.database.database import get_db
from retail_pos.modules.auth.dependencies import get_auth_context
from retail_pos.modules.auth.schemas import AuthContext
from retail_pos.modules.sales.models import CurrentAccountStatus
from retail_pos.modules.sales.service import SaleOrderService
from retail_pos.modules.sales.credit_notes import CreditNoteService
from retail_pos.modules.sales.current_accounts import CurrentAccountService
from retail_pos.modules.sales.schemas import (
    SaleOrderCreate, SaleOrderOut, SaleOrderList,
    CreditNoteCreate, CreditNoteProposal,
    CurrentAccountEntryOut, CurrentAccountPaymentCreate, CurrentAccountPaymentOut
)


# ===== SALES ROUTER =====

sales_router = APIRouter(prefix="/sales", tags=["Sales"])


@sales_router.post("/", response_model=SaleOrderOut, status_code=status.HTTP_201_CREATED)
def create_sale(
    sale_data: SaleOrderCreate,
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Registrar una venta completa.

    - **lines**: Renglones (variante, cantidad, precio y descuentos)
    - **tenders**: Medios de pago; cuentas distintas y suma exacta al total
    - **idempotency_key**: Reintentos con la misma clave devuelven la venta ya creada

    Todo (cabecera, renglones, stock, pagos y tesorería) se registra junto o nada.
    """
    service = SaleOrderService(db)
    return service.create_sale(sale_data, actor=auth_context)


@sales_router.get("/", response_model=SaleOrderList)
def get_sales(
    till_session_id: Optional[UUID] = Query(None, description="Filtrar por lote de caja"),
    cashier_id: Optional[UUID] = Query(None, description="Filtrar por cajero"),
    client_id: Optional[UUID] = Query(None, description="Filtrar por cliente"),
    include_credit_notes: bool = Query(True, description="Incluir notas de crédito"),
    limit: int = Query(100, ge=1, le=1000, description="Límite de resultados"),
    offset: int = Query(0, ge=0, description="Offset para paginación"),
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Listar ventas y notas de crédito, más recientes primero."""
    service = SaleOrderService(db)
    result = service.list_orders(
        till_session_id=till_session_id,
        cashier_id=cashier_id,
        client_id=client_id,
        include_credit_notes=include_credit_notes,
        limit=limit,
        offset=offset
    )

    return SaleOrderList(
        orders=result["orders"],
        total=result["total"],
        limit=result["limit"],
        offset=result["offset"]
    )


@sales_router.get("/{order_id}", response_model=SaleOrderOut)
def get_sale(
    order_id: UUID = Path(..., description="ID de la venta"),
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Detalle de una venta con renglones y medios de pago."""
    service = SaleOrderService(db)
    return service.get_order(order_id)


@sales_router.get("/{order_id}/credit-note/proposal", response_model=CreditNoteProposal)
def get_credit_note_proposal(
    order_id: UUID = Path(..., description="ID de la venta a revertir"),
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Renglones y medios de pago de la venta original, listos para una reversión total."""
    service = CreditNoteService(db)
    return service.propose_reversal(order_id)


@sales_router.post("/{order_id}/credit-note", response_model=SaleOrderOut, status_code=status.HTTP_201_CREATED)
def create_credit_note(
    order_id: UUID = Path(..., description="ID de la venta a revertir"),
    credit_data: CreditNoteCreate = ...,
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Emitir una nota de crédito (admin/supervisor).

    - Sin renglones ni medios de pago: reversión total
    - Con renglones: cantidades iguales o menores a las vendidas

    Devuelve el stock, registra los egresos y anula la venta original.
    """
    service = CreditNoteService(db)
    return service.reverse_sale(order_id, credit_data, actor=auth_context)


# ===== CURRENT ACCOUNTS ROUTER =====

current_accounts_router = APIRouter(prefix="/current-accounts", tags=["Current Accounts"])


@current_accounts_router.get("/", response_model=List[CurrentAccountEntryOut])
def get_current_account_entries(
    client_id: Optional[UUID] = Query(None, description="Filtrar por cliente"),
    status: Optional[CurrentAccountStatus] = Query(None, description="Filtrar por estado"),
    limit: int = Query(100, ge=1, le=1000, description="Límite de resultados"),
    offset: int = Query(0, ge=0, description="Offset para paginación"),
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Deudas en cuenta corriente."""
    service = CurrentAccountService(db)
    return service.list_entries(client_id=client_id, status=status, limit=limit, offset=offset)


@current_accounts_router.post("/{entry_id}/payments", response_model=CurrentAccountPaymentOut,
                              status_code=status.HTTP_201_CREATED)
def register_current_account_payment(
    entry_id: UUID = Path(..., description="ID de la deuda"),
    payment_data: CurrentAccountPaymentCreate = ...,
    auth_context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Cobrar total o parcialmente una deuda; el cobro ingresa en el lote indicado."""
    service = CurrentAccountService(db)
    return service.register_payment(entry_id, payment_data, actor=auth_context)
