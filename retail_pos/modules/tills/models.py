"""
Modelos SQLAlchemy para cajas y tesorería

- TillSession: lote de caja de un cajero (apertura → movimientos → cierre)
- TreasuryMovement: ingresos/egresos por cuenta de tesorería dentro del lote

Reglas:
- Solo un lote abierto por cajero (índice único parcial sobre los abiertos)
- Los movimientos de tesorería nunca se modifican ni se borran
"""

from retail_pos.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Enum, Text, Uuid, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from retail_pos.common.mixins import UUIDPrimaryKeyMixin, CreatedAtMixin, TimestampMixin
import enum


# ===== ENUMS =====

class TillStatus(str, enum.Enum):
    """Estados del lote de caja"""
    OPEN = "open"
    CLOSED = "closed"


class MovementDirection(str, enum.Enum):
    INGRESS = "ingress"   # Ingreso
    EGRESS = "egress"     # Egreso


class TreasuryMovementKind(str, enum.Enum):
    """Origen del movimiento de tesorería"""
    OPENING = "opening"                                 # Saldo inicial del lote
    SALE = "sale"                                       # Cobro de venta
    CREDIT_NOTE = "credit_note"                         # Devolución por nota de crédito
    CURRENT_ACCOUNT_PAYMENT = "current_account_payment" # Cobro de cuenta corriente
    DEPOSIT = "deposit"                                 # Ingreso manual
    WITHDRAWAL = "withdrawal"                           # Retiro manual
    EXPENSE = "expense"                                 # Gasto pagado desde caja


MANUAL_KIND_DIRECTIONS = {
    TreasuryMovementKind.DEPOSIT: MovementDirection.INGRESS,
    TreasuryMovementKind.WITHDRAWAL: MovementDirection.EGRESS,
    TreasuryMovementKind.EXPENSE: MovementDirection.EGRESS,
}


# ===== MODELOS =====

class TillSession(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    Lote de caja ("lote de operaciones") de un cajero.

    Se crea al abrir y se modifica una sola vez al cerrar.
    """
    __tablename__ = "till_sessions"

    cashier_id = Column(Uuid(as_uuid=True), nullable=False, index=True)  # Usuario del proveedor de identidad
    register_id = Column(Uuid(as_uuid=True), nullable=False, index=True)  # Caja física
    status = Column(Enum(TillStatus), nullable=False, default=TillStatus.OPEN, index=True)

    opening_balance = Column(Numeric(15, 2), nullable=False, default=0)
    declared_balance = Column(Numeric(15, 2), nullable=True)  # Efectivo contado al cerrar

    opened_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    closed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by = Column(Uuid(as_uuid=True), nullable=True)

    opening_notes = Column(Text, nullable=True)
    closing_notes = Column(Text, nullable=True)

    # Relationships
    movements = relationship("TreasuryMovement", back_populates="till_session", order_by="TreasuryMovement.created_at")

    __table_args__ = (
        Index(
            "uq_till_sessions_open_cashier",
            "cashier_id",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.status == TillStatus.OPEN


class TreasuryMovement(Base, UUIDPrimaryKeyMixin, CreatedAtMixin):
    """Ingreso o egreso de una cuenta de tesorería dentro de un lote"""
    __tablename__ = "treasury_movements"

    till_session_id = Column(Uuid(as_uuid=True), ForeignKey("till_sessions.id"), nullable=False, index=True)
    treasury_account_id = Column(Uuid(as_uuid=True), ForeignKey("treasury_accounts.id"), nullable=False, index=True)
    direction = Column(Enum(MovementDirection), nullable=False)
    kind = Column(Enum(TreasuryMovementKind), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)  # Siempre el valor absoluto
    order_id = Column(Uuid(as_uuid=True), ForeignKey("sale_orders.id"), nullable=True, index=True)
    notes = Column(String(255), nullable=True)

    created_by = Column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    till_session = relationship("TillSession", back_populates="movements")
    treasury_account = relationship("TreasuryAccount")

    @property
    def signed_amount(self):
        """Monto con signo según la dirección"""
        return self.amount if self.direction == MovementDirection.INGRESS else -self.amount
