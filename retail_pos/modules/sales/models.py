"""
Modelos SQLAlchemy para ventas, notas de crédito y cuenta corriente

- SaleOrder: cabecera de venta o de nota de crédito (reversing_order_id)
- SaleOrderLine: renglones inmutables
- SaleOrderLineStock: efecto de stock resuelto de cada renglón vendido
- PaymentTender: medios de pago por cuenta de tesorería
- CurrentAccountEntry / CurrentAccountPayment: deuda del cliente y sus cobros
"""

from retail_pos.database.database import Base
from sqlalchemy import (
    Column, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Text, Uuid, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from retail_pos.common.mixins import UUIDPrimaryKeyMixin, CreatedAtMixin, TimestampMixin
import enum


class CurrentAccountStatus(str, enum.Enum):
    PENDING = "pending"      # Con saldo pendiente
    PAID = "paid"            # Saldada con cobros
    CANCELLED = "cancelled"  # Anulada por nota de crédito


class SaleOrder(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    Cabecera de venta.

    Una nota de crédito es otra SaleOrder con total negativo y
    reversing_order_id apuntando a la venta original. La única mutación
    posterior a la creación es marcar annulled = True.
    """
    __tablename__ = "sale_orders"

    number = Column(String(50), nullable=False, unique=True, index=True)  # Ej: FC-000001
    client_id = Column(Uuid(as_uuid=True), ForeignKey("clients.id"), nullable=True, index=True)
    cashier_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    till_session_id = Column(Uuid(as_uuid=True), ForeignKey("till_sessions.id"), nullable=False, index=True)
    document_type_id = Column(Uuid(as_uuid=True), ForeignKey("document_types.id"), nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    # Montos
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)  # Descuento general de la orden
    discount = Column(Numeric(15, 2), nullable=False, default=0)  # Descuentos de renglón + general
    tax = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False, default=0)

    annulled = Column(Boolean, nullable=False, default=False)
    reversing_order_id = Column(Uuid(as_uuid=True), ForeignKey("sale_orders.id"), nullable=True, index=True)
    idempotency_key = Column(String(100), nullable=True, unique=True)
    notes = Column(Text, nullable=True)

    created_by = Column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    lines = relationship("SaleOrderLine", back_populates="order", cascade="all, delete-orphan")
    tenders = relationship("PaymentTender", back_populates="order", cascade="all, delete-orphan")
    client = relationship("Client")
    document_type = relationship("DocumentType")
    reversed_order = relationship("SaleOrder", remote_side="SaleOrder.id")

    @property
    def is_credit_note(self) -> bool:
        return self.reversing_order_id is not None


class SaleOrderLine(Base, UUIDPrimaryKeyMixin):
    """Renglón de venta: artículo/variante, cantidad, precio y descuentos"""
    __tablename__ = "sale_order_lines"

    order_id = Column(Uuid(as_uuid=True), ForeignKey("sale_orders.id"), nullable=False, index=True)
    article_id = Column(Uuid(as_uuid=True), ForeignKey("articles.id"), nullable=False)
    variant_id = Column(Uuid(as_uuid=True), ForeignKey("variants.id"), nullable=False, index=True)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(15, 2), nullable=False, default=0)
    line_subtotal = Column(Numeric(15, 2), nullable=False)  # quantity * unit_price
    line_total = Column(Numeric(15, 2), nullable=False)     # subtotal - descuentos

    # Relationships
    order = relationship("SaleOrder", back_populates="lines")
    variant = relationship("Variant")
    stock_effects = relationship("SaleOrderLineStock", back_populates="line", cascade="all, delete-orphan")


class SaleOrderLineStock(Base, UUIDPrimaryKeyMixin):
    """
    Efecto de stock resuelto de un renglón al momento de la venta.

    Una nota de crédito devuelve exactamente estas cantidades aunque la receta
    o los componentes del artículo cambien después.
    """
    __tablename__ = "sale_order_line_stock"

    line_id = Column(Uuid(as_uuid=True), ForeignKey("sale_order_lines.id"), nullable=False, index=True)
    variant_id = Column(Uuid(as_uuid=True), ForeignKey("variants.id"), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)  # Delta con signo (negativo = salida)

    # Relationships
    line = relationship("SaleOrderLine", back_populates="stock_effects")


class PaymentTender(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    """Medio de pago aplicado a una orden; una cuenta de tesorería por orden"""
    __tablename__ = "payment_tenders"

    order_id = Column(Uuid(as_uuid=True), ForeignKey("sale_orders.id"), nullable=False, index=True)
    treasury_account_id = Column(Uuid(as_uuid=True), ForeignKey("treasury_accounts.id"), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)  # Siempre positivo

    # Relationships
    order = relationship("SaleOrder", back_populates="tenders")
    treasury_account = relationship("TreasuryAccount")

    __table_args__ = (
        UniqueConstraint("order_id", "treasury_account_id", name="uq_payment_tender_order_account"),
    )


class CurrentAccountEntry(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Deuda del cliente originada por un pago en cuenta corriente"""
    __tablename__ = "current_account_entries"

    client_id = Column(Uuid(as_uuid=True), ForeignKey("clients.id"), nullable=False, index=True)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("sale_orders.id"), nullable=False, index=True)
    total = Column(Numeric(15, 2), nullable=False)
    balance = Column(Numeric(15, 2), nullable=False)  # Saldo pendiente
    status = Column(Enum(CurrentAccountStatus), nullable=False, default=CurrentAccountStatus.PENDING, index=True)

    # Relationships
    client = relationship("Client")
    order = relationship("SaleOrder")
    payments = relationship("CurrentAccountPayment", back_populates="entry", order_by="CurrentAccountPayment.created_at")


class CurrentAccountPayment(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    """Cobro parcial o total de una deuda en cuenta corriente"""
    __tablename__ = "current_account_payments"

    entry_id = Column(Uuid(as_uuid=True), ForeignKey("current_account_entries.id"), nullable=False, index=True)
    till_session_id = Column(Uuid(as_uuid=True), ForeignKey("till_sessions.id"), nullable=False, index=True)
    treasury_account_id = Column(Uuid(as_uuid=True), ForeignKey("treasury_accounts.id"), nullable=False)
    treasury_movement_id = Column(Uuid(as_uuid=True), ForeignKey("treasury_movements.id"), nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    notes = Column(String(255), nullable=True)

    created_by = Column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    entry = relationship("CurrentAccountEntry", back_populates="payments")
