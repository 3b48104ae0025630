"""
Esquemas Pydantic para cajas, tesorería y cierre

- TillSession: apertura/cierre de lote
- TreasuryMovement: movimientos manuales y consulta
- ReconciliationReport: informe de cierre por cuenta
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from retail_pos.modules.tills.models import TillStatus, MovementDirection, TreasuryMovementKind


# ===== TILL SESSION SCHEMAS =====

class TillOpen(BaseModel):
    """Esquema para abrir un lote de caja"""
    cashier_id: Optional[UUID] = Field(None, description="Cajero; por defecto el usuario autenticado")
    register_id: UUID = Field(..., description="ID de la caja física")
    opening_balance: Decimal = Field(..., ge=0, decimal_places=2, description="Saldo inicial de apertura")
    notes: Optional[str] = Field(None, max_length=500, description="Observaciones de apertura")


class TillClose(BaseModel):
    """Esquema para cerrar un lote de caja"""
    closed_at: Optional[datetime] = Field(None, description="Fecha y hora de cierre; por defecto ahora")
    declared_balance: Optional[Decimal] = Field(None, ge=0, decimal_places=2, description="Efectivo contado en el cajón")
    notes: Optional[str] = Field(None, max_length=500, description="Notas de cierre")


class TillSessionOut(BaseModel):
    """Esquema de salida para lote de caja"""
    id: UUID = Field(description="ID del lote")
    cashier_id: UUID = Field(description="Cajero responsable")
    register_id: UUID = Field(description="Caja física")
    status: TillStatus = Field(description="Estado del lote")
    opening_balance: Decimal = Field(description="Saldo de apertura")
    declared_balance: Optional[Decimal] = Field(None, description="Efectivo declarado al cierre")
    opened_at: datetime = Field(description="Fecha y hora de apertura")
    closed_at: Optional[datetime] = Field(None, description="Fecha y hora de cierre")
    opening_notes: Optional[str] = Field(None, description="Notas de apertura")
    closing_notes: Optional[str] = Field(None, description="Notas de cierre")

    model_config = {"from_attributes": True}


class TillSessionList(BaseModel):
    sessions: List[TillSessionOut] = Field(description="Lista de lotes")
    total: int = Field(description="Total de lotes")
    limit: int = Field(description="Límite aplicado")
    offset: int = Field(description="Offset aplicado")


# ===== TREASURY MOVEMENT SCHEMAS =====

class TreasuryMovementCreate(BaseModel):
    """Movimiento manual: depósito, retiro o gasto"""
    treasury_account_id: UUID = Field(..., description="Cuenta de tesorería")
    kind: TreasuryMovementKind = Field(..., description="deposit, withdrawal o expense")
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Monto (siempre positivo)")
    notes: Optional[str] = Field(None, max_length=255, description="Descripción del movimiento")


class TreasuryMovementOut(BaseModel):
    id: UUID
    till_session_id: UUID
    treasury_account_id: UUID
    direction: MovementDirection
    kind: TreasuryMovementKind
    amount: Decimal
    signed_amount: Decimal
    order_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ===== RECONCILIATION SCHEMAS =====

class AccountReconciliation(BaseModel):
    treasury_account_id: UUID
    description: str
    total_ingress: Decimal
    total_egress: Decimal
    net: Decimal
    is_current_account: bool = False


class ReconciliationReport(BaseModel):
    """Informe de cierre de un lote"""
    till_session_id: UUID
    cashier_id: UUID
    register_id: UUID
    status: TillStatus
    opened_at: datetime
    closed_at: Optional[datetime] = None

    accounts: List[AccountReconciliation]
    current_account_total: Decimal = Field(description="Informativo: ventas en cuenta corriente (no es efectivo)")

    opening_balance: Decimal
    cash_ingress: Decimal
    cash_egress: Decimal
    final_cash_balance: Decimal

    sales_count: int
    sales_total: Decimal
    credit_notes_count: int
    credit_notes_total: Decimal
    net_sales: Decimal

    declared_balance: Optional[Decimal] = None
    difference: Optional[Decimal] = Field(None, description="Declarado - calculado")
