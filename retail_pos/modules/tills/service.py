"""
Servicios de negocio para cajas y tesorería

- TillSessionService: apertura/cierre de lotes de caja
- TreasuryLedgerService: registro de ingresos/egresos por cuenta de tesorería

Las ventas y notas de crédito usan ambos servicios dentro de su propia
unidad de trabajo; los métodos públicos de este módulo abren la suya.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from retail_pos.core.config import settings
from retail_pos.common.exceptions import (
    AuthorizationError, NotFoundError, TillAlreadyOpenError, TillNotOpenError, ValidationError
)
from retail_pos.common.transactions import atomic
from retail_pos.modules.auth.policy import Operation, policy
from retail_pos.modules.auth.schemas import AuthContext, Role
from retail_pos.modules.catalog.service import CatalogService
from retail_pos.modules.tills.models import (
    TillSession, TreasuryMovement, TillStatus, MovementDirection,
    TreasuryMovementKind, MANUAL_KIND_DIRECTIONS
)
from retail_pos.modules.tills.reconciliation import ReconciliationService
from retail_pos.modules.tills.schemas import TillOpen, TillClose, TreasuryMovementCreate, ReconciliationReport

logger = logging.getLogger(__name__)


class TreasuryLedgerService:
    """Libro append-only de movimientos de tesorería por lote"""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)

    def record(
        self,
        till_session: TillSession,
        treasury_account_id: UUID,
        direction: MovementDirection,
        amount: Decimal,
        kind: TreasuryMovementKind,
        order_id: Optional[UUID] = None,
        notes: Optional[str] = None,
        created_by: Optional[UUID] = None
    ) -> TreasuryMovement:
        """Registrar un movimiento dentro de la unidad de trabajo del llamador"""
        if not till_session.is_open:
            raise TillNotOpenError("El lote debe estar abierto para registrar movimientos")

        amount = Decimal(amount)
        if amount < 0 or (amount == 0 and kind != TreasuryMovementKind.OPENING):
            raise ValidationError("El monto del movimiento debe ser mayor a cero")

        movement = TreasuryMovement(
            till_session_id=till_session.id,
            treasury_account_id=treasury_account_id,
            direction=direction,
            kind=kind,
            amount=amount,
            order_id=order_id,
            notes=notes,
            created_by=created_by
        )
        self.db.add(movement)
        self.db.flush()

        return movement

    def create_manual_movement(
        self,
        till_session_id: UUID,
        movement_data: TreasuryMovementCreate,
        actor: AuthContext
    ) -> TreasuryMovement:
        """Depósito, retiro o gasto manual sobre un lote abierto"""
        policy.authorize(actor, Operation.RECORD_TREASURY_MOVEMENT)

        direction = MANUAL_KIND_DIRECTIONS.get(movement_data.kind)
        if direction is None:
            raise ValidationError(
                "Solo se pueden registrar manualmente depósitos, retiros o gastos"
            )

        till_session = TillSessionService(self.db).require_open_session(till_session_id)
        account = self.catalog.get_treasury_account(movement_data.treasury_account_id)
        if self.catalog.is_current_account(account):
            raise ValidationError("La cuenta corriente no admite movimientos de caja")

        with atomic(self.db, "Movimiento de tesorería"):
            till_session = TillSessionService(self.db).lock_open_session(till_session.id)
            movement = self.record(
                till_session=till_session,
                treasury_account_id=account.id,
                direction=direction,
                amount=movement_data.amount,
                kind=movement_data.kind,
                notes=movement_data.notes,
                created_by=actor.user_id
            )

        logger.info(
            f"Movimiento {movement_data.kind.value} de {movement_data.amount} en lote {till_session_id} "
            f"({account.description})"
        )
        return movement

    def list_movements(self, till_session_id: UUID) -> List[TreasuryMovement]:
        return self.db.query(TreasuryMovement).filter(
            TreasuryMovement.till_session_id == till_session_id
        ).order_by(TreasuryMovement.created_at).all()


class TillSessionService:
    """Servicio para apertura y cierre de lotes de caja"""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)

    def open_till(self, open_data: TillOpen, actor: AuthContext) -> TillSession:
        """Abrir lote de caja y sembrar el saldo inicial en la cuenta de efectivo"""
        policy.authorize(actor, Operation.OPEN_TILL)

        cashier_id = open_data.cashier_id or actor.user_id
        if actor.user_role == Role.CASHIER and cashier_id != actor.user_id:
            raise AuthorizationError("Un cajero solo puede abrir su propia caja")

        self._ensure_no_open_session(cashier_id)
        cash_account = self.catalog.get_cash_account()

        with atomic(self.db, "Apertura de caja"):
            if settings.TILL_LOCK_SCOPE == "global":
                # La fila de efectivo serializa las aperturas de todos los cajeros
                self.catalog.lock_treasury_account(cash_account.id)
                self._ensure_no_open_session(cashier_id)

            till_session = TillSession(
                cashier_id=cashier_id,
                register_id=open_data.register_id,
                status=TillStatus.OPEN,
                opening_balance=open_data.opening_balance,
                opened_at=datetime.now(timezone.utc),
                opening_notes=open_data.notes
            )
            self.db.add(till_session)
            try:
                self.db.flush()
            except IntegrityError:
                # Otra apertura concurrente ganó la carrera
                raise TillAlreadyOpenError()

            TreasuryLedgerService(self.db).record(
                till_session=till_session,
                treasury_account_id=cash_account.id,
                direction=MovementDirection.INGRESS,
                amount=open_data.opening_balance,
                kind=TreasuryMovementKind.OPENING,
                notes="Saldo inicial",
                created_by=actor.user_id
            )

        logger.info(
            f"Lote {till_session.id} abierto por {cashier_id} en caja {open_data.register_id} "
            f"con saldo inicial {open_data.opening_balance}"
        )
        return till_session

    def close_till(self, till_session_id: UUID, close_data: TillClose, actor: AuthContext) -> ReconciliationReport:
        """Cerrar lote de caja y devolver su informe de cierre"""
        policy.authorize(actor, Operation.CLOSE_TILL)

        till_session = self.get_session(till_session_id)
        if not till_session.is_open:
            raise TillNotOpenError("El lote ya está cerrado")
        if actor.user_role == Role.CASHIER and till_session.cashier_id != actor.user_id:
            raise AuthorizationError("Un cajero solo puede cerrar su propia caja")

        with atomic(self.db, "Cierre de caja"):
            till_session = self.lock_open_session(till_session_id)
            till_session.status = TillStatus.CLOSED
            till_session.closed_at = close_data.closed_at or datetime.now(timezone.utc)
            till_session.closed_by = actor.user_id
            till_session.declared_balance = close_data.declared_balance
            till_session.closing_notes = close_data.notes
            self.db.flush()

        report = ReconciliationService(self.db).reconcile(till_session.id)
        logger.info(
            f"Lote {till_session.id} cerrado por {actor.user_id}: efectivo final {report.final_cash_balance}, "
            f"diferencia {report.difference}"
        )
        return report

    def _ensure_no_open_session(self, cashier_id: UUID) -> None:
        existing_open = self._find_open_session(cashier_id)
        if existing_open:
            raise TillAlreadyOpenError(
                f"Ya existe un lote abierto ({existing_open.id}). Cierra la caja antes de abrir otra.",
                till_session_id=str(existing_open.id)
            )

    def _find_open_session(self, cashier_id: UUID) -> Optional[TillSession]:
        query = self.db.query(TillSession).filter(TillSession.status == TillStatus.OPEN)
        if settings.TILL_LOCK_SCOPE == "cashier":
            query = query.filter(TillSession.cashier_id == cashier_id)
        return query.first()

    def get_open_session(self, cashier_id: UUID) -> Optional[TillSession]:
        """Lote abierto del cajero, o None"""
        return self.db.query(TillSession).filter(
            TillSession.cashier_id == cashier_id,
            TillSession.status == TillStatus.OPEN
        ).order_by(desc(TillSession.opened_at)).first()

    def get_session(self, till_session_id: UUID) -> TillSession:
        till_session = self.db.get(TillSession, till_session_id)
        if not till_session:
            raise NotFoundError("Lote de caja no encontrado", till_session_id=str(till_session_id))
        return till_session

    def require_open_session(self, till_session_id: UUID, cashier_id: Optional[UUID] = None) -> TillSession:
        """Lote abierto (y del cajero indicado); lanza TillNotOpenError si no"""
        till_session = self.db.get(TillSession, till_session_id)
        if not till_session or not till_session.is_open:
            raise TillNotOpenError(
                "No hay un lote de caja abierto. Abra una caja antes de operar.",
                till_session_id=str(till_session_id)
            )
        if cashier_id is not None and till_session.cashier_id != cashier_id:
            raise TillNotOpenError(
                "El lote de caja indicado no pertenece al cajero",
                till_session_id=str(till_session_id)
            )
        return till_session

    def lock_open_session(self, till_session_id: UUID) -> TillSession:
        """Releer el lote con bloqueo dentro de la unidad de trabajo del llamador; debe seguir abierto"""
        till_session = self.db.query(TillSession).filter(
            TillSession.id == till_session_id
        ).with_for_update().populate_existing().first()
        if not till_session or not till_session.is_open:
            raise TillNotOpenError(
                "El lote de caja fue cerrado antes de registrar la operación",
                till_session_id=str(till_session_id)
            )
        return till_session

    def list_sessions(
        self,
        cashier_id: Optional[UUID] = None,
        status: Optional[TillStatus] = None,
        limit: int = 100,
        offset: int = 0
    ) -> Dict[str, Any]:
        query = self.db.query(TillSession)

        if cashier_id:
            query = query.filter(TillSession.cashier_id == cashier_id)
        if status:
            query = query.filter(TillSession.status == status)

        query = query.order_by(desc(TillSession.opened_at))

        total = query.count()
        sessions = query.offset(offset).limit(limit).all()

        return {
            "sessions": sessions,
            "total": total,
            "limit": limit,
            "offset": offset
        }
