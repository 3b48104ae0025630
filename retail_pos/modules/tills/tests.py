"""
Tests para el módulo de Cajas

Cubren:
- Apertura de lote con su ingreso inicial en efectivo
- Un solo lote abierto por cajero (o global, según configuración)
- Cierre con informe de reconciliación y diferencia declarada
- Movimientos manuales de tesorería
- Endpoints de cajas
"""

import pytest
from decimal import Decimal
from uuid import uuid4
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import IntegrityError

from retail_pos.core.config import settings
from retail_pos.common.exceptions import (
    AuthorizationError, NotFoundError, TillAlreadyOpenError, TillNotOpenError, ValidationError
)
from retail_pos.modules.tills.models import (
    TillSession, TillStatus, TreasuryMovement, TreasuryMovementKind, MovementDirection
)
from retail_pos.modules.tills.reconciliation import ReconciliationService
from retail_pos.modules.tills.schemas import TillOpen, TillClose, TreasuryMovementCreate
from retail_pos.modules.tills.service import TillSessionService, TreasuryLedgerService


# ===== TESTS DE APERTURA =====

class TestOpenTill:
    """Tests para apertura de lotes de caja"""

    def test_open_till_seeds_cash_ingress(self, db_session, catalog, open_till, cashier):
        """La apertura registra el saldo inicial como ingreso en efectivo"""
        assert open_till.status == TillStatus.OPEN
        assert open_till.cashier_id == cashier.user_id

        movements = TreasuryLedgerService(db_session).list_movements(open_till.id)
        assert len(movements) == 1
        seed = movements[0]
        assert seed.kind == TreasuryMovementKind.OPENING
        assert seed.direction == MovementDirection.INGRESS
        assert seed.treasury_account_id == catalog.cash_account.id
        assert seed.amount == Decimal("1000")

    def test_second_open_for_same_cashier_fails(self, db_session, catalog, open_till, cashier):
        """Segunda apertura del mismo cajero: error y nada nuevo persistido"""
        with pytest.raises(TillAlreadyOpenError):
            TillSessionService(db_session).open_till(
                TillOpen(register_id=uuid4(), opening_balance=Decimal("50")),
                actor=cashier
            )

        assert db_session.query(TillSession).count() == 1
        assert db_session.query(TreasuryMovement).count() == 1

    def test_other_cashier_can_open_with_cashier_scope(self, db_session, catalog, open_till, other_cashier):
        """Con alcance por cajero, otro cajero abre su propio lote"""
        other = TillSessionService(db_session).open_till(
            TillOpen(register_id=uuid4(), opening_balance=Decimal("0")),
            actor=other_cashier
        )

        assert other.id != open_till.id
        assert db_session.query(TillSession).filter(TillSession.status == TillStatus.OPEN).count() == 2

    def test_global_scope_blocks_any_second_open(self, db_session, catalog, open_till, other_cashier, monkeypatch):
        """Con alcance global, un solo lote abierto en todo el sistema"""
        monkeypatch.setattr(settings, "TILL_LOCK_SCOPE", "global")

        with pytest.raises(TillAlreadyOpenError):
            TillSessionService(db_session).open_till(
                TillOpen(register_id=uuid4(), opening_balance=Decimal("0")),
                actor=other_cashier
            )

    def test_global_scope_rechecks_under_lock(self, db_session, catalog, open_till, other_cashier, monkeypatch):
        """Apertura simultánea con alcance global: la verificación se repite con la cuenta de efectivo bloqueada"""
        monkeypatch.setattr(settings, "TILL_LOCK_SCOPE", "global")
        service = TillSessionService(db_session)
        real_find = service._find_open_session
        calls = []

        def find_missing_first_time(cashier_id):
            # La primera consulta corre antes de que la otra apertura confirme
            calls.append(cashier_id)
            return None if len(calls) == 1 else real_find(cashier_id)

        locked = []
        real_lock = service.catalog.lock_treasury_account

        def spy_lock(account_id):
            locked.append(account_id)
            return real_lock(account_id)

        monkeypatch.setattr(service, "_find_open_session", find_missing_first_time)
        monkeypatch.setattr(service.catalog, "lock_treasury_account", spy_lock)

        with pytest.raises(TillAlreadyOpenError):
            service.open_till(TillOpen(register_id=uuid4(), opening_balance=Decimal("0")), actor=other_cashier)

        assert len(calls) == 2
        assert locked == [catalog.cash_account.id]
        assert db_session.query(TillSession).filter(TillSession.status == TillStatus.OPEN).count() == 1
        assert db_session.query(TreasuryMovement).count() == 1

    def test_cashier_scope_does_not_lock_cash_account(self, db_session, catalog, open_till, other_cashier,
                                                     monkeypatch):
        service = TillSessionService(db_session)
        locked = []
        monkeypatch.setattr(service.catalog, "lock_treasury_account", lambda account_id: locked.append(account_id))

        service.open_till(TillOpen(register_id=uuid4(), opening_balance=Decimal("0")), actor=other_cashier)

        assert locked == []

    def test_balances_with_more_than_two_decimals_rejected(self):
        with pytest.raises(SchemaValidationError):
            TillOpen(register_id=uuid4(), opening_balance=Decimal("100.005"))
        with pytest.raises(SchemaValidationError):
            TillClose(declared_balance=Decimal("100.005"))
        with pytest.raises(SchemaValidationError):
            TreasuryMovementCreate(
                treasury_account_id=uuid4(), kind=TreasuryMovementKind.DEPOSIT, amount=Decimal("0.001")
            )

    def test_cashier_cannot_open_for_another_cashier(self, db_session, catalog, cashier):
        """Un cajero no puede abrir un lote a nombre de otro"""
        with pytest.raises(AuthorizationError):
            TillSessionService(db_session).open_till(
                TillOpen(cashier_id=uuid4(), register_id=uuid4(), opening_balance=Decimal("0")),
                actor=cashier
            )

    def test_supervisor_opens_for_cashier(self, db_session, catalog, supervisor, cashier):
        """Un supervisor puede abrir el lote de un cajero"""
        till_session = TillSessionService(db_session).open_till(
            TillOpen(cashier_id=cashier.user_id, register_id=uuid4(), opening_balance=Decimal("200")),
            actor=supervisor
        )

        assert till_session.cashier_id == cashier.user_id

    def test_open_index_rejects_direct_duplicate(self, db_session, catalog):
        """El índice único parcial impide dos lotes abiertos del mismo cajero"""
        cashier_id = uuid4()
        db_session.add(TillSession(cashier_id=cashier_id, register_id=uuid4(), status=TillStatus.OPEN))
        db_session.flush()
        db_session.add(TillSession(cashier_id=cashier_id, register_id=uuid4(), status=TillStatus.OPEN))

        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_closed_sessions_do_not_count_for_index(self, db_session, catalog):
        """Los lotes cerrados no participan del índice único"""
        cashier_id = uuid4()
        db_session.add_all([
            TillSession(cashier_id=cashier_id, register_id=uuid4(), status=TillStatus.CLOSED),
            TillSession(cashier_id=cashier_id, register_id=uuid4(), status=TillStatus.CLOSED),
            TillSession(cashier_id=cashier_id, register_id=uuid4(), status=TillStatus.OPEN),
        ])
        db_session.flush()

        assert db_session.query(TillSession).filter(TillSession.cashier_id == cashier_id).count() == 3


# ===== TESTS DE CIERRE =====

class TestCloseTill:
    """Tests para cierre de lotes y su informe"""

    def test_close_returns_report_with_difference(self, db_session, catalog, open_till, cashier):
        """El cierre devuelve el informe con la diferencia contra lo declarado"""
        report = TillSessionService(db_session).close_till(
            open_till.id, TillClose(declared_balance=Decimal("990")), actor=cashier
        )

        assert report.status == TillStatus.CLOSED
        assert report.opening_balance == Decimal("1000")
        assert report.cash_ingress == Decimal("0")
        assert report.final_cash_balance == Decimal("1000")
        assert report.difference == Decimal("-10")
        assert open_till.closed_by == cashier.user_id

    def test_close_without_declared_balance(self, db_session, catalog, open_till, cashier):
        report = TillSessionService(db_session).close_till(open_till.id, TillClose(), actor=cashier)

        assert report.declared_balance is None
        assert report.difference is None

    def test_close_twice_fails(self, db_session, catalog, open_till, cashier):
        """Un lote cerrado no se vuelve a cerrar"""
        service = TillSessionService(db_session)
        service.close_till(open_till.id, TillClose(), actor=cashier)

        with pytest.raises(TillNotOpenError):
            service.close_till(open_till.id, TillClose(), actor=cashier)

    def test_close_after_concurrent_close_fails(self, db_session, catalog, open_till, cashier, close_behind_session):
        """El objeto en memoria figura abierto pero el lote ya se cerró en la base"""
        close_behind_session(open_till)

        with pytest.raises(TillNotOpenError):
            TillSessionService(db_session).close_till(
                open_till.id, TillClose(declared_balance=Decimal("1000")), actor=cashier
            )

    def test_cashier_cannot_close_another_till(self, db_session, catalog, open_till, other_cashier):
        with pytest.raises(AuthorizationError):
            TillSessionService(db_session).close_till(open_till.id, TillClose(), actor=other_cashier)

        assert open_till.is_open

    def test_close_unknown_session(self, db_session, catalog, admin):
        with pytest.raises(NotFoundError):
            TillSessionService(db_session).close_till(uuid4(), TillClose(), actor=admin)

    def test_cashier_can_reopen_after_close(self, db_session, catalog, open_till, cashier):
        """Cerrado el lote, el cajero puede abrir uno nuevo"""
        service = TillSessionService(db_session)
        service.close_till(open_till.id, TillClose(), actor=cashier)

        reopened = service.open_till(TillOpen(register_id=uuid4(), opening_balance=Decimal("300")), actor=cashier)

        assert reopened.id != open_till.id
        assert service.get_open_session(cashier.user_id).id == reopened.id


# ===== TESTS DE RECONCILIACIÓN =====

class TestReconciliation:
    """Tests para el informe de cierre"""

    def test_report_is_idempotent(self, db_session, catalog, open_till, cashier):
        """Dos consultas sobre el mismo lote cerrado devuelven el mismo informe"""
        TillSessionService(db_session).close_till(
            open_till.id, TillClose(declared_balance=Decimal("1000")), actor=cashier
        )
        service = ReconciliationService(db_session)

        first = service.get_till_reconciliation(open_till.id, actor=cashier)
        second = service.get_till_reconciliation(open_till.id, actor=cashier)

        assert first.model_dump_json() == second.model_dump_json()

    def test_cash_account_always_listed(self, db_session, catalog, open_till):
        report = ReconciliationService(db_session).reconcile(open_till.id)

        assert [row.description for row in report.accounts] == [catalog.cash_account.description]
        assert report.accounts[0].net == Decimal("0")

    def test_cashier_cannot_view_another_report(self, db_session, catalog, open_till, other_cashier):
        with pytest.raises(AuthorizationError):
            ReconciliationService(db_session).get_till_reconciliation(open_till.id, actor=other_cashier)

    def test_supervisor_views_any_report(self, db_session, catalog, open_till, supervisor):
        report = ReconciliationService(db_session).get_till_reconciliation(open_till.id, actor=supervisor)

        assert report.till_session_id == open_till.id

    def test_unknown_session(self, db_session, catalog):
        with pytest.raises(NotFoundError):
            ReconciliationService(db_session).reconcile(uuid4())


# ===== TESTS DE MOVIMIENTOS MANUALES =====

class TestManualTreasuryMovements:
    """Tests para depósitos, retiros y gastos"""

    def test_withdrawal_reduces_final_cash(self, db_session, catalog, open_till, cashier):
        movement = TreasuryLedgerService(db_session).create_manual_movement(
            open_till.id,
            TreasuryMovementCreate(
                treasury_account_id=catalog.cash_account.id,
                kind=TreasuryMovementKind.WITHDRAWAL,
                amount=Decimal("200"),
                notes="Retiro a caja fuerte"
            ),
            actor=cashier
        )

        assert movement.direction == MovementDirection.EGRESS
        assert movement.signed_amount == Decimal("-200")

        report = ReconciliationService(db_session).reconcile(open_till.id)
        assert report.cash_egress == Decimal("200")
        assert report.final_cash_balance == Decimal("800")

    def test_deposit_on_card_account(self, db_session, catalog, open_till, cashier):
        card = catalog.accounts["TARJETA"]
        TreasuryLedgerService(db_session).create_manual_movement(
            open_till.id,
            TreasuryMovementCreate(treasury_account_id=card.id, kind=TreasuryMovementKind.DEPOSIT, amount=Decimal("75")),
            actor=cashier
        )

        report = ReconciliationService(db_session).reconcile(open_till.id)
        card_row = next(row for row in report.accounts if row.treasury_account_id == card.id)
        assert card_row.total_ingress == Decimal("75")
        assert report.cash_ingress == Decimal("75")

    def test_sale_kind_is_not_manual(self, db_session, catalog, open_till, cashier):
        with pytest.raises(ValidationError):
            TreasuryLedgerService(db_session).create_manual_movement(
                open_till.id,
                TreasuryMovementCreate(
                    treasury_account_id=catalog.cash_account.id,
                    kind=TreasuryMovementKind.SALE,
                    amount=Decimal("10")
                ),
                actor=cashier
            )

    def test_current_account_rejected(self, db_session, catalog, open_till, cashier):
        with pytest.raises(ValidationError):
            TreasuryLedgerService(db_session).create_manual_movement(
                open_till.id,
                TreasuryMovementCreate(
                    treasury_account_id=catalog.current_account.id,
                    kind=TreasuryMovementKind.DEPOSIT,
                    amount=Decimal("10")
                ),
                actor=cashier
            )

    def test_closed_session_rejected(self, db_session, catalog, open_till, cashier):
        TillSessionService(db_session).close_till(open_till.id, TillClose(), actor=cashier)

        with pytest.raises(TillNotOpenError):
            TreasuryLedgerService(db_session).create_manual_movement(
                open_till.id,
                TreasuryMovementCreate(
                    treasury_account_id=catalog.cash_account.id,
                    kind=TreasuryMovementKind.EXPENSE,
                    amount=Decimal("10")
                ),
                actor=cashier
            )

        assert db_session.query(TreasuryMovement).count() == 1

    def test_session_closed_concurrently_rejected(self, db_session, catalog, open_till, cashier,
                                                  close_behind_session):
        close_behind_session(open_till)

        with pytest.raises(TillNotOpenError):
            TreasuryLedgerService(db_session).create_manual_movement(
                open_till.id,
                TreasuryMovementCreate(
                    treasury_account_id=catalog.cash_account.id,
                    kind=TreasuryMovementKind.WITHDRAWAL,
                    amount=Decimal("100")
                ),
                actor=cashier
            )

        assert db_session.query(TreasuryMovement).count() == 1


# ===== TESTS DE ENDPOINTS =====

class TestTillEndpoints:
    """Tests para los endpoints de cajas"""

    def test_open_and_close_flow(self, api_client, catalog, cashier, auth_headers):
        headers = auth_headers(cashier)

        response = api_client.post(
            "/api/v1/tills/open",
            json={"register_id": str(uuid4()), "opening_balance": "500"},
            headers=headers
        )
        assert response.status_code == 201
        session_id = response.json()["id"]
        assert response.json()["status"] == "open"

        response = api_client.get("/api/v1/tills/current", headers=headers)
        assert response.status_code == 200
        assert response.json()["id"] == session_id

        response = api_client.post(
            f"/api/v1/tills/{session_id}/close",
            json={"declared_balance": "480"},
            headers=headers
        )
        assert response.status_code == 200
        report = response.json()
        assert report["status"] == "closed"
        assert Decimal(report["final_cash_balance"]) == Decimal("500")
        assert Decimal(report["difference"]) == Decimal("-20")

        response = api_client.get("/api/v1/tills/current", headers=headers)
        assert response.status_code == 404

    def test_double_open_returns_conflict(self, api_client, catalog, open_till, cashier, auth_headers):
        response = api_client.post(
            "/api/v1/tills/open",
            json={"register_id": str(uuid4()), "opening_balance": "0"},
            headers=auth_headers(cashier)
        )

        assert response.status_code == 409

    def test_reconciliation_endpoint(self, api_client, catalog, open_till, cashier, auth_headers):
        response = api_client.get(
            f"/api/v1/tills/{open_till.id}/reconciliation",
            headers=auth_headers(cashier)
        )

        assert response.status_code == 200
        assert Decimal(response.json()["opening_balance"]) == Decimal("1000")

    def test_manual_movement_endpoint(self, api_client, catalog, open_till, cashier, auth_headers):
        headers = auth_headers(cashier)
        response = api_client.post(
            f"/api/v1/tills/{open_till.id}/movements",
            json={
                "treasury_account_id": str(catalog.cash_account.id),
                "kind": "expense",
                "amount": "35.50",
                "notes": "Artículos de limpieza"
            },
            headers=headers
        )
        assert response.status_code == 201
        assert Decimal(response.json()["signed_amount"]) == Decimal("-35.50")

        response = api_client.get(f"/api/v1/tills/{open_till.id}/movements", headers=headers)
        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_list_tills_by_status(self, api_client, catalog, open_till, admin, auth_headers):
        response = api_client.get("/api/v1/tills/?status=open", headers=auth_headers(admin))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["sessions"][0]["id"] == str(open_till.id)
