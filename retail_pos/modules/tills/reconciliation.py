"""
Informe de cierre de lote

Solo lectura: se puede pedir cuantas veces se quiera, también sobre lotes
cerrados, y siempre devuelve el mismo resultado para los mismos datos.
La cuenta corriente se informa aparte y no suma al efectivo.
"""

from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from retail_pos.common.exceptions import AuthorizationError, NotFoundError
from retail_pos.modules.auth.policy import Operation, policy
from retail_pos.modules.auth.schemas import AuthContext, Role
from retail_pos.modules.catalog.models import TreasuryAccount
from retail_pos.modules.catalog.service import CatalogService
from retail_pos.modules.sales.models import SaleOrder, PaymentTender
from retail_pos.modules.tills.models import TillSession, TreasuryMovement, MovementDirection, TreasuryMovementKind
from retail_pos.modules.tills.schemas import AccountReconciliation, ReconciliationReport

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class ReconciliationService:
    """Agrega movimientos y ventas de un lote por cuenta de tesorería"""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)

    def get_till_reconciliation(self, till_session_id: UUID, actor: AuthContext) -> ReconciliationReport:
        policy.authorize(actor, Operation.VIEW_RECONCILIATION)
        report = self.reconcile(till_session_id)
        if actor.user_role == Role.CASHIER and report.cashier_id != actor.user_id:
            raise AuthorizationError("Un cajero solo puede consultar el cierre de su propia caja")
        return report

    def reconcile(self, till_session_id: UUID) -> ReconciliationReport:
        till_session = self.db.get(TillSession, till_session_id)
        if not till_session:
            raise NotFoundError("Lote de caja no encontrado", till_session_id=str(till_session_id))

        # cuenta -> [ingresos, egresos]
        totals: Dict[UUID, List[Decimal]] = {}
        accounts: Dict[UUID, TreasuryAccount] = {}

        cash_account = self.catalog.get_cash_account()
        accounts[cash_account.id] = cash_account
        totals[cash_account.id] = [ZERO, ZERO]

        movements = self.db.query(TreasuryMovement).filter(
            TreasuryMovement.till_session_id == till_session.id,
            TreasuryMovement.kind != TreasuryMovementKind.OPENING
        ).all()

        for movement in movements:
            account_totals = totals.setdefault(movement.treasury_account_id, [ZERO, ZERO])
            accounts.setdefault(movement.treasury_account_id, movement.treasury_account)
            if movement.direction == MovementDirection.INGRESS:
                account_totals[0] += Decimal(movement.amount)
            else:
                account_totals[1] += Decimal(movement.amount)

        orders = self.db.query(SaleOrder).filter(
            SaleOrder.till_session_id == till_session.id
        ).all()
        sales = [o for o in orders if not o.is_credit_note]
        credit_notes = [o for o in orders if o.is_credit_note]

        current_account, current_account_sold, current_account_refunded = self._current_account_tenders(
            till_session.id
        )

        account_rows = []
        for account_id, (ingress, egress) in totals.items():
            account_rows.append(AccountReconciliation(
                treasury_account_id=account_id,
                description=accounts[account_id].description,
                total_ingress=ingress,
                total_egress=egress,
                net=ingress - egress,
                is_current_account=False
            ))

        current_account_total = current_account_sold - current_account_refunded
        if current_account is not None:
            account_rows.append(AccountReconciliation(
                treasury_account_id=current_account.id,
                description=current_account.description,
                total_ingress=current_account_sold,
                total_egress=current_account_refunded,
                net=current_account_total,
                is_current_account=True
            ))

        account_rows.sort(key=lambda row: (row.description, str(row.treasury_account_id)))

        cash_ingress = sum((row.total_ingress for row in account_rows if not row.is_current_account), ZERO)
        cash_egress = sum((row.total_egress for row in account_rows if not row.is_current_account), ZERO)
        opening_balance = Decimal(till_session.opening_balance)
        final_cash_balance = opening_balance + cash_ingress - cash_egress

        sales_total = sum((Decimal(o.total) for o in sales), ZERO)
        credit_notes_total = sum((Decimal(o.total) for o in credit_notes), ZERO)

        declared_balance = till_session.declared_balance
        difference = None
        if declared_balance is not None:
            difference = Decimal(declared_balance) - final_cash_balance

        logger.debug(
            f"Cierre del lote {till_session.id}: efectivo final {final_cash_balance}, "
            f"cuenta corriente {current_account_total}"
        )

        return ReconciliationReport(
            till_session_id=till_session.id,
            cashier_id=till_session.cashier_id,
            register_id=till_session.register_id,
            status=till_session.status,
            opened_at=till_session.opened_at,
            closed_at=till_session.closed_at,
            accounts=account_rows,
            current_account_total=current_account_total,
            opening_balance=opening_balance,
            cash_ingress=cash_ingress,
            cash_egress=cash_egress,
            final_cash_balance=final_cash_balance,
            sales_count=len(sales),
            sales_total=sales_total,
            credit_notes_count=len(credit_notes),
            credit_notes_total=credit_notes_total,
            net_sales=sales_total + credit_notes_total,
            declared_balance=declared_balance,
            difference=difference
        )

    def _current_account_tenders(
        self, till_session_id: UUID
    ) -> Tuple[Optional[TreasuryAccount], Decimal, Decimal]:
        """Cuenta corriente usada en el lote y sus montos de ventas y de notas de crédito"""
        tenders = self.db.query(PaymentTender).join(
            SaleOrder, PaymentTender.order_id == SaleOrder.id
        ).filter(
            SaleOrder.till_session_id == till_session_id
        ).all()

        current_account = None
        sold = ZERO
        refunded = ZERO
        for tender in tenders:
            if not self.catalog.is_current_account(tender.treasury_account):
                continue
            current_account = tender.treasury_account
            if tender.order.is_credit_note:
                refunded += Decimal(tender.amount)
            else:
                sold += Decimal(tender.amount)
        return current_account, sold, refunded
