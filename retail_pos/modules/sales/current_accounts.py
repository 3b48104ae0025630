"""
Cuenta corriente de clientes

Las ventas pagadas en cuenta corriente generan una CurrentAccountEntry en
lugar de un ingreso de tesorería. Los cobros posteriores reducen el saldo y
registran el ingreso real en la caja donde se cobran.
"""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import desc
from sqlalchemy.orm import Session

from retail_pos.common.exceptions import NotFoundError, StateError, ValidationError
from retail_pos.common.transactions import atomic
from retail_pos.modules.auth.policy import Operation, policy
from retail_pos.modules.auth.schemas import AuthContext, Role
from retail_pos.modules.catalog.service import CatalogService
from retail_pos.modules.sales.models import CurrentAccountEntry, CurrentAccountPayment, CurrentAccountStatus
from retail_pos.modules.sales.schemas import CurrentAccountPaymentCreate
from retail_pos.modules.tills.models import MovementDirection, TreasuryMovementKind
from retail_pos.modules.tills.service import TillSessionService, TreasuryLedgerService

logger = logging.getLogger(__name__)


class CurrentAccountService:
    """Consulta y cobro de deudas en cuenta corriente"""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)

    def list_entries(
        self,
        client_id: Optional[UUID] = None,
        status: Optional[CurrentAccountStatus] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[CurrentAccountEntry]:
        query = self.db.query(CurrentAccountEntry)

        if client_id:
            query = query.filter(CurrentAccountEntry.client_id == client_id)
        if status:
            query = query.filter(CurrentAccountEntry.status == status)

        return query.order_by(desc(CurrentAccountEntry.created_at)).offset(offset).limit(limit).all()

    def get_entry(self, entry_id: UUID) -> CurrentAccountEntry:
        entry = self.db.get(CurrentAccountEntry, entry_id)
        if not entry:
            raise NotFoundError("Deuda de cuenta corriente no encontrada", entry_id=str(entry_id))
        return entry

    def find_entry_for_order(self, order_id: UUID) -> Optional[CurrentAccountEntry]:
        return self.db.query(CurrentAccountEntry).filter(
            CurrentAccountEntry.order_id == order_id
        ).first()

    def lock_entry(self, entry_id: UUID) -> CurrentAccountEntry:
        return self.db.query(CurrentAccountEntry).filter(
            CurrentAccountEntry.id == entry_id
        ).with_for_update().populate_existing().one()

    def apply_reduction(self, entry: CurrentAccountEntry, amount: Decimal,
                        settled_status: CurrentAccountStatus) -> CurrentAccountEntry:
        """Descontar amount del saldo (bloqueando la fila); settled_status al llegar a cero"""
        locked = self.lock_entry(entry.id)
        if amount > locked.balance:
            raise ValidationError(
                f"El monto (${amount}) supera el saldo pendiente (${locked.balance})",
                entry_id=str(entry.id)
            )

        locked.balance = Decimal(locked.balance) - amount
        if locked.balance == 0:
            locked.status = settled_status
        self.db.flush()
        return locked

    def register_payment(self, entry_id: UUID, payment_data: CurrentAccountPaymentCreate,
                         actor: AuthContext) -> CurrentAccountPayment:
        """Registrar el cobro (parcial o total) de una deuda"""
        policy.authorize(actor, Operation.SETTLE_CURRENT_ACCOUNT)

        entry = self.get_entry(entry_id)
        if entry.status != CurrentAccountStatus.PENDING:
            raise StateError("La deuda no tiene saldo pendiente", entry_id=str(entry_id))
        if payment_data.amount <= 0:
            raise ValidationError("El monto del cobro debe ser mayor a cero")
        if payment_data.amount > entry.balance:
            raise ValidationError(
                f"El monto (${payment_data.amount}) supera el saldo pendiente (${entry.balance})"
            )

        account = self.catalog.get_treasury_account(payment_data.treasury_account_id)
        if self.catalog.is_current_account(account):
            raise ValidationError("Una deuda no puede cobrarse con la cuenta corriente")

        cashier_id = actor.user_id if actor.user_role == Role.CASHIER else None
        till_session = TillSessionService(self.db).require_open_session(payment_data.till_session_id, cashier_id)

        with atomic(self.db, "Cobro de cuenta corriente"):
            till_session = TillSessionService(self.db).lock_open_session(till_session.id)
            entry = self.apply_reduction(entry, Decimal(payment_data.amount), CurrentAccountStatus.PAID)
            movement = TreasuryLedgerService(self.db).record(
                till_session=till_session,
                treasury_account_id=account.id,
                direction=MovementDirection.INGRESS,
                amount=payment_data.amount,
                kind=TreasuryMovementKind.CURRENT_ACCOUNT_PAYMENT,
                order_id=entry.order_id,
                notes=payment_data.notes or "Cobro de cuenta corriente",
                created_by=actor.user_id
            )
            payment = CurrentAccountPayment(
                entry_id=entry.id,
                till_session_id=till_session.id,
                treasury_account_id=account.id,
                treasury_movement_id=movement.id,
                amount=payment_data.amount,
                notes=payment_data.notes,
                created_by=actor.user_id
            )
            self.db.add(payment)
            self.db.flush()

        logger.info(
            f"Cobro de ${payment_data.amount} sobre la deuda {entry.id} "
            f"(saldo restante ${entry.balance}, estado {entry.status.value})"
        )
        return payment
