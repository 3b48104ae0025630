"""
Esquemas Pydantic para ventas, notas de crédito y cuenta corriente
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from retail_pos.modules.sales.models import CurrentAccountStatus


# ===== SALE ORDER SCHEMAS =====

class SaleOrderLineCreate(BaseModel):
    """Renglón de venta"""
    variant_id: UUID = Field(..., description="Variante vendida")
    quantity: Decimal = Field(..., gt=0, decimal_places=3, description="Cantidad vendida")
    unit_price: Optional[Decimal] = Field(None, ge=0, decimal_places=2, description="Precio unitario; por defecto el de la variante")
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100, description="Descuento porcentual del renglón")
    discount_amount: Decimal = Field(Decimal("0"), ge=0, decimal_places=2, description="Descuento fijo del renglón")


class PaymentTenderCreate(BaseModel):
    """Medio de pago: cuenta de tesorería y monto"""
    treasury_account_id: UUID = Field(..., description="Cuenta de tesorería")
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Monto aplicado")


class SaleOrderCreate(BaseModel):
    """Esquema para registrar una venta completa"""
    client_id: Optional[UUID] = Field(None, description="Cliente; vacío = consumidor final")
    cashier_id: Optional[UUID] = Field(None, description="Cajero; por defecto el usuario autenticado")
    till_session_id: UUID = Field(..., description="Lote de caja abierto")
    document_type_id: UUID = Field(..., description="Tipo de comprobante")
    lines: List[SaleOrderLineCreate] = Field(..., description="Renglones de la venta")
    tenders: List[PaymentTenderCreate] = Field(..., description="Medios de pago")
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100, description="Descuento general")
    idempotency_key: Optional[str] = Field(None, max_length=100, description="Clave para reintentos seguros")
    notes: Optional[str] = Field(None, max_length=500, description="Observaciones")


class SaleOrderLineOut(BaseModel):
    id: UUID
    article_id: UUID
    variant_id: UUID
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    line_subtotal: Decimal
    line_total: Decimal

    model_config = {"from_attributes": True}


class PaymentTenderOut(BaseModel):
    id: UUID
    treasury_account_id: UUID
    amount: Decimal

    model_config = {"from_attributes": True}


class SaleOrderOut(BaseModel):
    """Esquema de salida para ventas y notas de crédito"""
    id: UUID
    number: str
    client_id: Optional[UUID] = None
    cashier_id: UUID
    till_session_id: UUID
    document_type_id: UUID
    date: datetime
    subtotal: Decimal
    discount_percent: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    annulled: bool
    reversing_order_id: Optional[UUID] = None
    idempotency_key: Optional[str] = None
    notes: Optional[str] = None
    lines: List[SaleOrderLineOut] = []
    tenders: List[PaymentTenderOut] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class SaleOrderList(BaseModel):
    orders: List[SaleOrderOut]
    total: int
    limit: int
    offset: int


# ===== CREDIT NOTE SCHEMAS =====

class CreditNoteLineCreate(BaseModel):
    """Renglón a devolver; debe existir en la venta original"""
    variant_id: UUID = Field(..., description="Variante de la venta original")
    quantity: Decimal = Field(..., gt=0, decimal_places=3, description="Cantidad a devolver")


class CreditNoteCreate(BaseModel):
    """
    Nota de crédito sobre una venta.

    Si no se indican renglones o medios de pago se usan los de la venta
    original (reversión total).
    """
    till_session_id: UUID = Field(..., description="Lote de caja abierto donde se registra el egreso")
    lines: Optional[List[CreditNoteLineCreate]] = Field(None, description="Renglones a devolver")
    tenders: Optional[List[PaymentTenderCreate]] = Field(None, description="Medios de devolución")
    idempotency_key: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=500)


class CreditNoteProposal(BaseModel):
    """Propuesta de reversión total de una venta"""
    original_order_id: UUID
    amount: Decimal
    lines: List[CreditNoteLineCreate]
    tenders: List[PaymentTenderCreate]


# ===== CURRENT ACCOUNT SCHEMAS =====

class CurrentAccountEntryOut(BaseModel):
    id: UUID
    client_id: UUID
    order_id: UUID
    total: Decimal
    balance: Decimal
    status: CurrentAccountStatus
    created_at: datetime

    model_config = {"from_attributes": True}


class CurrentAccountPaymentCreate(BaseModel):
    """Cobro de una deuda en cuenta corriente"""
    till_session_id: UUID = Field(..., description="Lote de caja abierto donde ingresa el cobro")
    treasury_account_id: UUID = Field(..., description="Cuenta donde ingresa el dinero")
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Monto cobrado")
    notes: Optional[str] = Field(None, max_length=255)


class CurrentAccountPaymentOut(BaseModel):
    id: UUID
    entry_id: UUID
    till_session_id: UUID
    treasury_account_id: UUID
    treasury_movement_id: Optional[UUID] = None
    amount: Decimal
    notes: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
