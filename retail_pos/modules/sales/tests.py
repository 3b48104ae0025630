"""
Tests para el módulo de Ventas

Cubren:
- Cálculo de totales (descuentos de renglón, descuento general, impuesto)
- Venta completa: validación de medios de pago, stock, tesorería y cuenta corriente
- Atomicidad: ninguna escritura parcial si algo falla a mitad de la secuencia
- Idempotencia por clave
- Notas de crédito totales y parciales
- Cobro de cuenta corriente
- Endpoints de ventas y cuenta corriente
"""

import pytest
from decimal import Decimal
from uuid import uuid4
from pydantic import ValidationError as SchemaValidationError

from retail_pos.core.config import settings
from retail_pos.common.exceptions import (
    AlreadyAnnulledError, AuthorizationError, CreditLimitExceededError, InsufficientStockError,
    IntegrityFailureError, InvalidClientForCreditError, StateError, TillNotOpenError, ValidationError
)
from retail_pos.modules.inventory.models import StockMovement, StockOrigin
from retail_pos.modules.sales.credit_notes import CreditNoteService
from retail_pos.modules.sales.current_accounts import CurrentAccountService
from retail_pos.modules.sales.models import (
    SaleOrder, SaleOrderLineStock, PaymentTender, CurrentAccountEntry, CurrentAccountPayment,
    CurrentAccountStatus
)
from retail_pos.modules.sales.pricing import compute_line, compute_order, prorate
from retail_pos.modules.sales.schemas import (
    SaleOrderCreate, SaleOrderLineCreate, PaymentTenderCreate,
    CreditNoteCreate, CreditNoteLineCreate, CurrentAccountPaymentCreate
)
from retail_pos.modules.sales.service import SaleOrderService
from retail_pos.modules.tills.models import TreasuryMovement, TreasuryMovementKind, MovementDirection
from retail_pos.modules.tills.reconciliation import ReconciliationService
from retail_pos.modules.tills.schemas import TillClose
from retail_pos.modules.tills.service import TillSessionService, TreasuryLedgerService


def stock_net(db_session, variant) -> Decimal:
    """Suma de los deltas registrados para una variante"""
    movements = db_session.query(StockMovement).filter(StockMovement.variant_id == variant.id).all()
    return sum((Decimal(m.quantity) for m in movements), Decimal("0"))


def account_row(report, account):
    return next(row for row in report.accounts if row.treasury_account_id == account.id)


# ===== TESTS DE CÁLCULO DE TOTALES =====

class TestPricing:
    """Tests para el cálculo de renglones y totales"""

    def test_line_discounts(self):
        line = compute_line(Decimal("2"), Decimal("100"), Decimal("10"), Decimal("5"))

        assert line.subtotal == Decimal("200.00")
        assert line.discount == Decimal("25.00")
        assert line.total == Decimal("175.00")

    def test_order_discount_then_tax(self):
        line = compute_line(Decimal("2"), Decimal("100"), Decimal("10"), Decimal("5"))

        totals = compute_order([line], discount_percent=Decimal("10"), tax_rate=Decimal("0.21"))

        assert totals.subtotal == Decimal("200.00")
        assert totals.discount == Decimal("42.50")
        assert totals.tax == Decimal("33.08")
        assert totals.total == Decimal("190.58")

    def test_discount_larger_than_subtotal_fails(self):
        with pytest.raises(ValidationError):
            compute_line(Decimal("1"), Decimal("10"), Decimal("0"), Decimal("11"))

    def test_non_positive_quantity_fails(self):
        with pytest.raises(ValidationError):
            compute_line(Decimal("0"), Decimal("10"))

    def test_prorate(self):
        assert prorate(Decimal("1000"), Decimal("1"), Decimal("3")) == Decimal("333.33")
        assert prorate(Decimal("1000"), Decimal("1"), Decimal("0")) == Decimal("0")


# ===== TESTS DE VENTAS =====

class TestCreateSale:
    """Tests para el registro de ventas"""

    def test_cash_sale_scenario(self, db_session, catalog, open_till, cashier, sale_payload):
        """Apertura 1000, venta de 500 en efectivo: ingreso 500, saldo final 1500"""
        shirt = catalog.variants["shirt"]

        order = SaleOrderService(db_session).create_sale(
            sale_payload([(shirt, 1)], [(catalog.cash_account, 500)]), actor=cashier
        )

        assert order.number == "FC-000001"
        assert order.total == Decimal("500.00")
        assert len(order.lines) == 1
        assert sum(t.amount for t in order.tenders) == order.total
        assert shirt.quantity == Decimal("9")

        report = ReconciliationService(db_session).reconcile(open_till.id)
        assert account_row(report, catalog.cash_account).total_ingress == Decimal("500")
        assert report.final_cash_balance == Decimal("1500")
        assert report.sales_count == 1

    def test_split_tender_with_current_account(self, db_session, catalog, open_till, cashier, sale_payload):
        """600 efectivo + 400 cuenta corriente: solo 600 suman a caja"""
        shirt = catalog.variants["shirt"]

        order = SaleOrderService(db_session).create_sale(
            sale_payload(
                [(shirt, 2)],
                [(catalog.cash_account, 600), (catalog.current_account, 400)],
                client=catalog.credit_client
            ),
            actor=cashier
        )

        entry = db_session.query(CurrentAccountEntry).filter(CurrentAccountEntry.order_id == order.id).one()
        assert entry.client_id == catalog.credit_client.id
        assert entry.balance == Decimal("400")
        assert entry.status == CurrentAccountStatus.PENDING

        report = ReconciliationService(db_session).reconcile(open_till.id)
        assert report.cash_ingress == Decimal("600")
        assert report.final_cash_balance == Decimal("1600")
        assert report.current_account_total == Decimal("400")
        current_row = account_row(report, catalog.current_account)
        assert current_row.is_current_account
        assert current_row.total_ingress == Decimal("400")

        treasury_accounts = {
            m.treasury_account_id for m in db_session.query(TreasuryMovement).filter(
                TreasuryMovement.order_id == order.id
            )
        }
        assert treasury_accounts == {catalog.cash_account.id}

    def test_tenders_not_matching_total(self, db_session, catalog, open_till, cashier, sale_payload):
        """Tres medios que suman 900 contra un total de 1000: nada se escribe"""
        shirt = catalog.variants["shirt"]
        payload = sale_payload(
            [(shirt, 2)],
            [
                (catalog.cash_account, 300),
                (catalog.accounts["TARJETA"], 300),
                (catalog.current_account, 300),
            ],
            client=catalog.credit_client
        )

        with pytest.raises(ValidationError):
            SaleOrderService(db_session).create_sale(payload, actor=cashier)

        assert db_session.query(SaleOrder).count() == 0
        assert db_session.query(StockMovement).count() == 0
        assert db_session.query(PaymentTender).count() == 0
        assert db_session.query(TreasuryMovement).count() == 1  # solo el saldo inicial
        assert shirt.quantity == Decimal("10")

    @pytest.mark.parametrize("build", [
        lambda account: PaymentTenderCreate(treasury_account_id=account.id, amount=Decimal("0.125")),
        lambda account: SaleOrderLineCreate(variant_id=uuid4(), quantity=Decimal("1"), unit_price=Decimal("9.999")),
        lambda account: SaleOrderLineCreate(variant_id=uuid4(), quantity=Decimal("1"),
                                            discount_amount=Decimal("0.001")),
        lambda account: SaleOrderLineCreate(variant_id=uuid4(), quantity=Decimal("0.0001")),
        lambda account: CurrentAccountPaymentCreate(till_session_id=uuid4(), treasury_account_id=account.id,
                                                    amount=Decimal("10.005")),
    ])
    def test_money_with_more_than_two_decimals_rejected(self, catalog, build):
        """Los montos con más de dos decimales (cantidades con más de tres) se rechazan al validar"""
        with pytest.raises(SchemaValidationError):
            build(catalog.cash_account)

    def test_tenders_with_sub_cent_amounts_rejected(self, db_session, catalog, open_till, cashier, sale_payload):
        """250.125 + 249.875 suman 500 exactos, pero no se pueden guardar con dos decimales"""
        payload = sale_payload([(catalog.variants["shirt"], 1)], [(catalog.cash_account, 500)])
        payload.tenders = [
            PaymentTenderCreate.model_construct(treasury_account_id=catalog.cash_account.id,
                                                amount=Decimal("250.125")),
            PaymentTenderCreate.model_construct(treasury_account_id=catalog.accounts["TARJETA"].id,
                                                amount=Decimal("249.875")),
        ]

        with pytest.raises(ValidationError):
            SaleOrderService(db_session).create_sale(payload, actor=cashier)

        assert db_session.query(SaleOrder).count() == 0
        assert db_session.query(PaymentTender).count() == 0
        assert db_session.query(TreasuryMovement).count() == 1

    def test_stored_tenders_sum_to_total(self, db_session, catalog, open_till, cashier, sale_payload):
        """Lo guardado coincide exactamente con lo validado"""
        order = SaleOrderService(db_session).create_sale(
            sale_payload(
                [(catalog.variants["coffee"], 1)],
                [
                    (catalog.cash_account, "0.13"),
                    (catalog.accounts["TARJETA"], "0.12"),
                    (catalog.current_account, "249.75"),
                ],
                client=catalog.credit_client
            ),
            actor=cashier
        )
        db_session.expire_all()

        tenders = db_session.query(PaymentTender).filter(PaymentTender.order_id == order.id).all()
        assert sum((Decimal(t.amount) for t in tenders), Decimal("0")) == Decimal("250.00")
        report = ReconciliationService(db_session).reconcile(open_till.id)
        assert report.cash_ingress == Decimal("0.25")

    def test_same_account_twice(self, db_session, catalog, open_till, cashier, sale_payload):
        payload = sale_payload(
            [(catalog.variants["shirt"], 1)],
            [(catalog.cash_account, 250), (catalog.cash_account, 250)]
        )

        with pytest.raises(ValidationError):
            SaleOrderService(db_session).create_sale(payload, actor=cashier)

        assert db_session.query(StockMovement).count() == 0
        assert db_session.query(PaymentTender).count() == 0

    def test_empty_lines(self, db_session, catalog, open_till, cashier, sale_payload):
        payload = sale_payload([], [(catalog.cash_account, 100)])

        with pytest.raises(ValidationError):
            SaleOrderService(db_session).create_sale(payload, actor=cashier)

    def test_credit_note_document_type_rejected(self, db_session, catalog, open_till, cashier, sale_payload):
        payload = sale_payload(
            [(catalog.variants["shirt"], 1)],
            [(catalog.cash_account, 500)],
            document_type_id=catalog.credit_note_type.id
        )

        with pytest.raises(ValidationError):
            SaleOrderService(db_session).create_sale(payload, actor=cashier)

    def test_walk_in_client_cannot_use_current_account(self, db_session, catalog, open_till, cashier,
                                                       sale_payload):
        payload = sale_payload(
            [(catalog.variants["shirt"], 1)],
            [(catalog.current_account, 500)],
            client=catalog.walk_in_client
        )

        with pytest.raises(InvalidClientForCreditError):
            SaleOrderService(db_session).create_sale(payload, actor=cashier)

    def test_missing_client_cannot_use_current_account(self, db_session, catalog, open_till, cashier,
                                                       sale_payload):
        payload = sale_payload([(catalog.variants["shirt"], 1)], [(catalog.current_account, 500)])

        with pytest.raises(InvalidClientForCreditError):
            SaleOrderService(db_session).create_sale(payload, actor=cashier)

    def test_credit_limit_exceeded(self, db_session, catalog, open_till, cashier, sale_payload):
        """21 cafés = 5250 contra un límite de 5000"""
        payload = sale_payload(
            [(catalog.variants["coffee"], 21)],
            [(catalog.current_account, 5250)],
            client=catalog.credit_client
        )

        with pytest.raises(CreditLimitExceededError):
            SaleOrderService(db_session).create_sale(payload, actor=cashier)

        assert db_session.query(CurrentAccountEntry).count() == 0

    def test_closed_till_rejected(self, db_session, catalog, open_till, cashier, sale_payload):
        TillSessionService(db_session).close_till(open_till.id, TillClose(), actor=cashier)

        with pytest.raises(TillNotOpenError):
            SaleOrderService(db_session).create_sale(
                sale_payload([(catalog.variants["shirt"], 1)], [(catalog.cash_account, 500)]),
                actor=cashier
            )

    def test_cashier_cannot_sell_on_another_till(self, db_session, catalog, open_till, other_cashier,
                                                 sale_payload):
        with pytest.raises(TillNotOpenError):
            SaleOrderService(db_session).create_sale(
                sale_payload([(catalog.variants["shirt"], 1)], [(catalog.cash_account, 500)]),
                actor=other_cashier
            )

    def test_order_discount_and_line_discount(self, db_session, catalog, open_till, cashier):
        shirt = catalog.variants["shirt"]
        payload = SaleOrderCreate(
            till_session_id=open_till.id,
            document_type_id=catalog.invoice_type.id,
            lines=[SaleOrderLineCreate(variant_id=shirt.id, quantity=Decimal("2"), discount_percent=Decimal("10"))],
            tenders=[PaymentTenderCreate(treasury_account_id=catalog.cash_account.id, amount=Decimal("810"))],
            discount_percent=Decimal("10")
        )

        order = SaleOrderService(db_session).create_sale(payload, actor=cashier)

        assert order.subtotal == Decimal("1000.00")
        assert order.discount == Decimal("190.00")
        assert order.total == Decimal("810.00")
        assert order.lines[0].line_total == Decimal("900.00")

    def test_flat_tax_rate(self, db_session, catalog, open_till, cashier, sale_payload, monkeypatch):
        monkeypatch.setattr(settings, "FLAT_TAX_RATE", Decimal("0.21"))

        order = SaleOrderService(db_session).create_sale(
            sale_payload([(catalog.variants["shirt"], 1)], [(catalog.cash_account, 605)]),
            actor=cashier
        )

        assert order.tax == Decimal("105.00")
        assert order.total == Decimal("605.00")

    def test_correlative_numbers(self, db_session, catalog, open_till, cashier, sale_payload):
        service = SaleOrderService(db_session)
        first = service.create_sale(
            sale_payload([(catalog.variants["cap"], 1)], [(catalog.cash_account, 300)]), actor=cashier
        )
        second = service.create_sale(
            sale_payload([(catalog.variants["cap"], 1)], [(catalog.cash_account, 300)]), actor=cashier
        )

        assert (first.number, second.number) == ("FC-000001", "FC-000002")


class TestSaleStock:
    """Tests para los movimientos de stock de una venta"""

    def test_combo_moves_components(self, db_session, catalog, open_till, cashier, sale_payload):
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(catalog.variants["combo"], 2)], [(catalog.cash_account, 1400)]),
            actor=cashier
        )

        assert catalog.variants["combo"].quantity == Decimal("48")
        assert catalog.variants["shirt"].quantity == Decimal("8")
        assert catalog.variants["cap"].quantity == Decimal("18")
        movements = db_session.query(StockMovement).filter(StockMovement.order_id == order.id).all()
        assert len(movements) == 3
        assert all(m.origin == StockOrigin.SALE for m in movements)

    def test_equivalence_consumes_raw_material(self, db_session, catalog, open_till, cashier, sale_payload):
        SaleOrderService(db_session).create_sale(
            sale_payload([(catalog.variants["coffee"], 2)], [(catalog.cash_account, 500)]),
            actor=cashier
        )

        assert catalog.variants["coffee"].quantity == Decimal("98")
        assert catalog.variants["milk"].quantity == Decimal("9600")

    def test_one_movement_per_variant(self, db_session, catalog, open_till, cashier, sale_payload):
        """Una remera suelta más una dentro del combo: un solo movimiento de -2"""
        shirt = catalog.variants["shirt"]
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(shirt, 1), (catalog.variants["combo"], 1)], [(catalog.cash_account, 1200)]),
            actor=cashier
        )

        movements = db_session.query(StockMovement).filter(
            StockMovement.order_id == order.id,
            StockMovement.variant_id == shirt.id
        ).all()
        assert len(movements) == 1
        assert movements[0].quantity == Decimal("-2")

    def test_lines_keep_resolved_stock_effect(self, db_session, catalog, open_till, cashier, sale_payload):
        """Cada renglón guarda lo que movió; la suma coincide con los movimientos de stock"""
        coffee, milk = catalog.variants["coffee"], catalog.variants["milk"]
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(coffee, 2), (coffee, 1)], [(catalog.cash_account, 750)]),
            actor=cashier
        )

        effects = db_session.query(SaleOrderLineStock).filter(
            SaleOrderLineStock.line_id.in_([line.id for line in order.lines])
        ).all()
        by_variant = {}
        for effect in effects:
            by_variant[effect.variant_id] = by_variant.get(effect.variant_id, Decimal("0")) + effect.quantity
        assert by_variant == {coffee.id: Decimal("-3"), milk.id: Decimal("-600")}
        assert stock_net(db_session, milk) == Decimal("-600")

    def test_insufficient_stock_rolls_back(self, db_session, catalog, open_till, cashier, sale_payload):
        shirt = catalog.variants["shirt"]

        with pytest.raises(InsufficientStockError):
            SaleOrderService(db_session).create_sale(
                sale_payload([(shirt, 11)], [(catalog.cash_account, 5500)]), actor=cashier
            )

        db_session.refresh(shirt)
        assert shirt.quantity == Decimal("10")
        assert db_session.query(SaleOrder).count() == 0
        assert db_session.query(StockMovement).count() == 0
        db_session.refresh(catalog.invoice_type)
        assert catalog.invoice_type.current_number == 0


class TestSaleAtomicity:
    """Tests de atomicidad e idempotencia"""

    def test_failure_after_stock_leaves_nothing(self, db_session, catalog, open_till, cashier, sale_payload,
                                                monkeypatch):
        """Falla al registrar tesorería: se revierte stock, renglones, pagos y numeración"""
        def failing_record(self, *args, **kwargs):
            raise RuntimeError("conexión perdida")

        monkeypatch.setattr(TreasuryLedgerService, "record", failing_record)
        shirt = catalog.variants["shirt"]

        with pytest.raises(IntegrityFailureError):
            SaleOrderService(db_session).create_sale(
                sale_payload([(shirt, 1)], [(catalog.cash_account, 500)]), actor=cashier
            )

        assert db_session.query(SaleOrder).count() == 0
        assert db_session.query(StockMovement).count() == 0
        assert db_session.query(PaymentTender).count() == 0
        db_session.refresh(shirt)
        assert shirt.quantity == Decimal("10")
        db_session.refresh(catalog.invoice_type)
        assert catalog.invoice_type.current_number == 0

    def test_same_idempotency_key_returns_existing(self, db_session, catalog, open_till, cashier, sale_payload):
        service = SaleOrderService(db_session)
        payload = sale_payload(
            [(catalog.variants["shirt"], 1)], [(catalog.cash_account, 500)], idempotency_key="venta-001"
        )

        first = service.create_sale(payload, actor=cashier)
        second = service.create_sale(payload, actor=cashier)

        assert first.id == second.id
        assert db_session.query(SaleOrder).count() == 1
        assert db_session.query(StockMovement).count() == 1
        assert catalog.variants["shirt"].quantity == Decimal("9")

    def test_session_closed_concurrently_leaves_nothing(self, db_session, catalog, open_till, cashier,
                                                        sale_payload, close_behind_session):
        """El lote cargado figura abierto pero ya se cerró: la venta no escribe sobre él"""
        payload = sale_payload([(catalog.variants["shirt"], 1)], [(catalog.cash_account, 500)])
        close_behind_session(open_till)

        with pytest.raises(TillNotOpenError):
            SaleOrderService(db_session).create_sale(payload, actor=cashier)

        assert db_session.query(SaleOrder).count() == 0
        assert db_session.query(StockMovement).count() == 0
        assert db_session.query(TreasuryMovement).count() == 1

    def test_list_orders_without_credit_notes(self, db_session, catalog, open_till, cashier, supervisor,
                                              sale_payload):
        service = SaleOrderService(db_session)
        order = service.create_sale(
            sale_payload([(catalog.variants["shirt"], 1)], [(catalog.cash_account, 500)]), actor=cashier
        )
        CreditNoteService(db_session).reverse_sale(
            order.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor
        )

        assert service.list_orders(till_session_id=open_till.id)["total"] == 2
        assert service.list_orders(till_session_id=open_till.id, include_credit_notes=False)["total"] == 1


# ===== TESTS DE NOTAS DE CRÉDITO =====

class TestCreditNotes:
    """Tests para notas de crédito"""

    @pytest.fixture
    def cash_sale(self, db_session, catalog, cashier, sale_payload):
        return SaleOrderService(db_session).create_sale(
            sale_payload([(catalog.variants["shirt"], 1)], [(catalog.cash_account, 500)]), actor=cashier
        )

    def test_full_reversal(self, db_session, catalog, open_till, supervisor, cash_sale):
        """Reversión total: stock vuelve, egreso de 500 y venta anulada"""
        credit_note = CreditNoteService(db_session).reverse_sale(
            cash_sale.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor
        )

        assert credit_note.number == "NC-000001"
        assert credit_note.total == Decimal("-500.00")
        assert credit_note.reversing_order_id == cash_sale.id
        assert credit_note.till_session_id == open_till.id
        assert credit_note.cashier_id == open_till.cashier_id
        assert cash_sale.annulled is True
        assert catalog.variants["shirt"].quantity == Decimal("10")
        assert stock_net(db_session, catalog.variants["shirt"]) == 0

        report = ReconciliationService(db_session).reconcile(open_till.id)
        assert account_row(report, catalog.cash_account).total_egress == Decimal("500")
        assert report.final_cash_balance == Decimal("1000")
        assert report.credit_notes_count == 1
        assert report.net_sales == Decimal("0")

    def test_full_reversal_of_combo_restores_components(self, db_session, catalog, open_till, cashier,
                                                        supervisor, sale_payload):
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(catalog.variants["combo"], 1), (catalog.variants["coffee"], 1)],
                         [(catalog.cash_account, 950)]),
            actor=cashier
        )

        CreditNoteService(db_session).reverse_sale(
            order.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor
        )

        for name in ("combo", "shirt", "cap", "coffee", "milk"):
            assert stock_net(db_session, catalog.variants[name]) == 0

    def test_full_reversal_after_recipe_change(self, db_session, catalog, open_till, cashier, supervisor,
                                               sale_payload):
        """Cambiar la equivalencia después de la venta no altera lo que vuelve al stock"""
        coffee, milk = catalog.variants["coffee"], catalog.variants["milk"]
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(coffee, 1)], [(catalog.cash_account, 250)]), actor=cashier
        )
        coffee.article.equivalence = Decimal("300")
        db_session.commit()

        CreditNoteService(db_session).reverse_sale(
            order.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor
        )

        assert stock_net(db_session, milk) == 0
        assert stock_net(db_session, coffee) == 0
        assert milk.quantity == Decimal("10000")

    def test_full_reversal_after_combo_change(self, db_session, catalog, open_till, cashier, supervisor,
                                              sale_payload):
        """Quitar un componente del combo después de la venta: igual vuelven ambos componentes"""
        combo = catalog.variants["combo"]
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(combo, 1)], [(catalog.cash_account, 700)]), actor=cashier
        )
        cap_component = next(
            c for c in combo.article.components if c.component_variant_id == catalog.variants["cap"].id
        )
        db_session.delete(cap_component)
        db_session.commit()

        CreditNoteService(db_session).reverse_sale(
            order.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor
        )

        for name in ("combo", "shirt", "cap"):
            assert stock_net(db_session, catalog.variants[name]) == 0

    def test_partial_reversal_after_recipe_change(self, db_session, catalog, open_till, cashier, supervisor,
                                                  sale_payload):
        """Devolver 1 de 2 cafés devuelve la mitad de la leche consumida en la venta"""
        coffee, milk = catalog.variants["coffee"], catalog.variants["milk"]
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(coffee, 2)], [(catalog.cash_account, 500)]), actor=cashier
        )
        coffee.article.equivalence = Decimal("300")
        db_session.commit()

        CreditNoteService(db_session).reverse_sale(
            order.id,
            CreditNoteCreate(
                till_session_id=open_till.id,
                lines=[CreditNoteLineCreate(variant_id=coffee.id, quantity=Decimal("1"))],
                tenders=[PaymentTenderCreate(treasury_account_id=catalog.cash_account.id, amount=Decimal("250"))]
            ),
            actor=supervisor
        )

        assert stock_net(db_session, milk) == Decimal("-200")
        assert stock_net(db_session, coffee) == Decimal("-1")

    def test_annulled_sale_cannot_be_reversed_again(self, db_session, catalog, open_till, supervisor, cash_sale):
        service = CreditNoteService(db_session)
        service.reverse_sale(cash_sale.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor)

        with pytest.raises(AlreadyAnnulledError):
            service.reverse_sale(cash_sale.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor)

        assert db_session.query(SaleOrder).count() == 2

    def test_credit_note_cannot_be_reversed(self, db_session, catalog, open_till, supervisor, cash_sale):
        service = CreditNoteService(db_session)
        credit_note = service.reverse_sale(
            cash_sale.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor
        )

        with pytest.raises(ValidationError):
            service.reverse_sale(credit_note.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor)

    def test_cashier_cannot_issue_credit_note(self, db_session, catalog, open_till, cashier, cash_sale):
        with pytest.raises(AuthorizationError):
            CreditNoteService(db_session).reverse_sale(
                cash_sale.id, CreditNoteCreate(till_session_id=open_till.id), actor=cashier
            )

        assert cash_sale.annulled is False

    def test_partial_reversal(self, db_session, catalog, open_till, cashier, supervisor, sale_payload):
        shirt, cap = catalog.variants["shirt"], catalog.variants["cap"]
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(shirt, 2), (cap, 1)], [(catalog.cash_account, 1300)]), actor=cashier
        )

        credit_note = CreditNoteService(db_session).reverse_sale(
            order.id,
            CreditNoteCreate(
                till_session_id=open_till.id,
                lines=[CreditNoteLineCreate(variant_id=shirt.id, quantity=Decimal("1"))],
                tenders=[PaymentTenderCreate(treasury_account_id=catalog.cash_account.id, amount=Decimal("500"))]
            ),
            actor=supervisor
        )

        assert credit_note.total == Decimal("-500.00")
        assert len(credit_note.lines) == 1
        assert shirt.quantity == Decimal("9")
        assert cap.quantity == Decimal("19")
        assert order.annulled is True

    def test_partial_reversal_requires_matching_tenders(self, db_session, catalog, open_till, cashier,
                                                        supervisor, sale_payload):
        """Sin medios explícitos se proponen los originales, que no suman el monto parcial"""
        shirt = catalog.variants["shirt"]
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(shirt, 2)], [(catalog.cash_account, 1000)]), actor=cashier
        )

        with pytest.raises(ValidationError):
            CreditNoteService(db_session).reverse_sale(
                order.id,
                CreditNoteCreate(
                    till_session_id=open_till.id,
                    lines=[CreditNoteLineCreate(variant_id=shirt.id, quantity=Decimal("1"))]
                ),
                actor=supervisor
            )

        assert order.annulled is False

    def test_quantity_above_sold_rejected(self, db_session, catalog, open_till, supervisor, cash_sale):
        with pytest.raises(ValidationError):
            CreditNoteService(db_session).reverse_sale(
                cash_sale.id,
                CreditNoteCreate(
                    till_session_id=open_till.id,
                    lines=[CreditNoteLineCreate(variant_id=catalog.variants["shirt"].id, quantity=Decimal("2"))]
                ),
                actor=supervisor
            )

    def test_line_not_on_original_rejected(self, db_session, catalog, open_till, supervisor, cash_sale):
        with pytest.raises(ValidationError):
            CreditNoteService(db_session).reverse_sale(
                cash_sale.id,
                CreditNoteCreate(
                    till_session_id=open_till.id,
                    lines=[CreditNoteLineCreate(variant_id=catalog.variants["cap"].id, quantity=Decimal("1"))]
                ),
                actor=supervisor
            )

    def test_current_account_reversal_cancels_debt(self, db_session, catalog, open_till, cashier, supervisor,
                                                   sale_payload):
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(catalog.variants["shirt"], 1)], [(catalog.current_account, 500)],
                         client=catalog.credit_client),
            actor=cashier
        )

        CreditNoteService(db_session).reverse_sale(
            order.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor
        )

        entry = CurrentAccountService(db_session).find_entry_for_order(order.id)
        assert entry.balance == Decimal("0")
        assert entry.status == CurrentAccountStatus.CANCELLED
        egresses = db_session.query(TreasuryMovement).filter(
            TreasuryMovement.direction == MovementDirection.EGRESS
        ).count()
        assert egresses == 0

        report = ReconciliationService(db_session).reconcile(open_till.id)
        assert report.current_account_total == Decimal("0")
        assert report.final_cash_balance == Decimal("1000")

    def test_closed_session_rejected(self, db_session, catalog, open_till, cashier, supervisor, cash_sale):
        TillSessionService(db_session).close_till(open_till.id, TillClose(), actor=cashier)

        with pytest.raises(TillNotOpenError):
            CreditNoteService(db_session).reverse_sale(
                cash_sale.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor
            )

    def test_idempotent_credit_note(self, db_session, catalog, open_till, supervisor, cash_sale):
        service = CreditNoteService(db_session)
        data = CreditNoteCreate(till_session_id=open_till.id, idempotency_key="nc-001")

        first = service.reverse_sale(cash_sale.id, data, actor=supervisor)
        second = service.reverse_sale(cash_sale.id, data, actor=supervisor)

        assert first.id == second.id

    def test_credit_note_key_used_by_sale_rejected(self, db_session, catalog, open_till, cashier, supervisor,
                                                   sale_payload):
        """La clave de una venta no devuelve esa venta como si fuera la nota de crédito"""
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(catalog.variants["shirt"], 1)], [(catalog.cash_account, 500)], idempotency_key="K1"),
            actor=cashier
        )

        with pytest.raises(ValidationError):
            CreditNoteService(db_session).reverse_sale(
                order.id, CreditNoteCreate(till_session_id=open_till.id, idempotency_key="K1"), actor=supervisor
            )

        assert order.annulled is False
        assert db_session.query(SaleOrder).count() == 1

    def test_sale_key_used_by_credit_note_rejected(self, db_session, catalog, open_till, cashier, supervisor,
                                                   cash_sale, sale_payload):
        CreditNoteService(db_session).reverse_sale(
            cash_sale.id, CreditNoteCreate(till_session_id=open_till.id, idempotency_key="K2"), actor=supervisor
        )

        with pytest.raises(ValidationError):
            SaleOrderService(db_session).create_sale(
                sale_payload([(catalog.variants["cap"], 1)], [(catalog.cash_account, 300)], idempotency_key="K2"),
                actor=cashier
            )

        assert db_session.query(SaleOrder).count() == 2

    def test_credit_note_key_for_other_original_rejected(self, db_session, catalog, open_till, cashier,
                                                         supervisor, cash_sale, sale_payload):
        service = CreditNoteService(db_session)
        service.reverse_sale(
            cash_sale.id, CreditNoteCreate(till_session_id=open_till.id, idempotency_key="nc-K3"), actor=supervisor
        )
        other = SaleOrderService(db_session).create_sale(
            sale_payload([(catalog.variants["cap"], 1)], [(catalog.cash_account, 300)]), actor=cashier
        )

        with pytest.raises(ValidationError):
            service.reverse_sale(
                other.id, CreditNoteCreate(till_session_id=open_till.id, idempotency_key="nc-K3"), actor=supervisor
            )

        assert other.annulled is False

    def test_session_closed_concurrently_rejected(self, db_session, catalog, open_till, supervisor, cash_sale,
                                                  close_behind_session):
        """Si el lote se cerró entre la validación y la escritura, no se registra nada"""
        close_behind_session(open_till)

        with pytest.raises(TillNotOpenError):
            CreditNoteService(db_session).reverse_sale(
                cash_sale.id, CreditNoteCreate(till_session_id=open_till.id), actor=supervisor
            )

        assert db_session.query(SaleOrder).count() == 1
        assert db_session.query(TreasuryMovement).filter(
            TreasuryMovement.kind == TreasuryMovementKind.CREDIT_NOTE
        ).count() == 0
        db_session.refresh(cash_sale)
        assert cash_sale.annulled is False

    def test_proposal_mirrors_original(self, db_session, catalog, open_till, cash_sale):
        proposal = CreditNoteService(db_session).propose_reversal(cash_sale.id)

        assert proposal.amount == Decimal("500")
        assert proposal.lines[0].variant_id == catalog.variants["shirt"].id
        assert proposal.lines[0].quantity == Decimal("1")
        assert proposal.tenders[0].treasury_account_id == catalog.cash_account.id


# ===== TESTS DE CUENTA CORRIENTE =====

class TestCurrentAccountPayments:
    """Tests para el cobro de deudas en cuenta corriente"""

    @pytest.fixture
    def debt(self, db_session, catalog, cashier, sale_payload):
        order = SaleOrderService(db_session).create_sale(
            sale_payload([(catalog.variants["shirt"], 1)], [(catalog.current_account, 500)],
                         client=catalog.credit_client),
            actor=cashier
        )
        return CurrentAccountService(db_session).find_entry_for_order(order.id)

    def test_partial_payment(self, db_session, catalog, open_till, cashier, debt):
        payment = CurrentAccountService(db_session).register_payment(
            debt.id,
            CurrentAccountPaymentCreate(
                till_session_id=open_till.id,
                treasury_account_id=catalog.cash_account.id,
                amount=Decimal("200")
            ),
            actor=cashier
        )

        assert payment.treasury_movement_id is not None
        entry = CurrentAccountService(db_session).get_entry(debt.id)
        assert entry.balance == Decimal("300")
        assert entry.status == CurrentAccountStatus.PENDING

        movement = db_session.get(TreasuryMovement, payment.treasury_movement_id)
        assert movement.kind == TreasuryMovementKind.CURRENT_ACCOUNT_PAYMENT
        report = ReconciliationService(db_session).reconcile(open_till.id)
        assert report.cash_ingress == Decimal("200")

    def test_full_payment_then_no_more(self, db_session, catalog, open_till, cashier, debt):
        service = CurrentAccountService(db_session)
        data = CurrentAccountPaymentCreate(
            till_session_id=open_till.id,
            treasury_account_id=catalog.cash_account.id,
            amount=Decimal("500")
        )

        service.register_payment(debt.id, data, actor=cashier)
        assert service.get_entry(debt.id).status == CurrentAccountStatus.PAID

        with pytest.raises(StateError):
            service.register_payment(debt.id, data, actor=cashier)
        assert db_session.query(CurrentAccountPayment).count() == 1

    def test_payment_above_balance(self, db_session, catalog, open_till, cashier, debt):
        with pytest.raises(ValidationError):
            CurrentAccountService(db_session).register_payment(
                debt.id,
                CurrentAccountPaymentCreate(
                    till_session_id=open_till.id,
                    treasury_account_id=catalog.cash_account.id,
                    amount=Decimal("600")
                ),
                actor=cashier
            )

    def test_payment_into_current_account_rejected(self, db_session, catalog, open_till, cashier, debt):
        with pytest.raises(ValidationError):
            CurrentAccountService(db_session).register_payment(
                debt.id,
                CurrentAccountPaymentCreate(
                    till_session_id=open_till.id,
                    treasury_account_id=catalog.current_account.id,
                    amount=Decimal("100")
                ),
                actor=cashier
            )

    def test_payment_on_session_closed_concurrently(self, db_session, catalog, open_till, cashier, debt,
                                                    close_behind_session):
        close_behind_session(open_till)

        with pytest.raises(TillNotOpenError):
            CurrentAccountService(db_session).register_payment(
                debt.id,
                CurrentAccountPaymentCreate(
                    till_session_id=open_till.id,
                    treasury_account_id=catalog.cash_account.id,
                    amount=Decimal("100")
                ),
                actor=cashier
            )

        assert db_session.query(CurrentAccountPayment).count() == 0
        db_session.refresh(debt)
        assert debt.balance == Decimal("500")


# ===== TESTS DE ENDPOINTS =====

class TestSalesEndpoints:
    """Tests para los endpoints de ventas y cuenta corriente"""

    def sale_json(self, catalog, open_till, variant, quantity, tenders, client=None):
        return {
            "client_id": str(client.id) if client else None,
            "till_session_id": str(open_till.id),
            "document_type_id": str(catalog.invoice_type.id),
            "lines": [{"variant_id": str(variant.id), "quantity": str(quantity)}],
            "tenders": [
                {"treasury_account_id": str(account.id), "amount": str(amount)}
                for account, amount in tenders
            ]
        }

    def test_create_and_get_sale(self, api_client, catalog, open_till, cashier, auth_headers):
        headers = auth_headers(cashier)
        response = api_client.post(
            "/api/v1/sales/",
            json=self.sale_json(catalog, open_till, catalog.variants["shirt"], 1, [(catalog.cash_account, 500)]),
            headers=headers
        )

        assert response.status_code == 201
        data = response.json()
        assert data["number"] == "FC-000001"
        assert Decimal(data["total"]) == Decimal("500")
        assert data["annulled"] is False

        response = api_client.get(f"/api/v1/sales/{data['id']}", headers=headers)
        assert response.status_code == 200
        assert len(response.json()["lines"]) == 1
        assert len(response.json()["tenders"]) == 1

    def test_unbalanced_tenders_return_422(self, api_client, catalog, open_till, cashier, auth_headers):
        response = api_client.post(
            "/api/v1/sales/",
            json=self.sale_json(catalog, open_till, catalog.variants["shirt"], 1, [(catalog.cash_account, 400)]),
            headers=auth_headers(cashier)
        )

        assert response.status_code == 422

    def test_sub_cent_tender_returns_422(self, api_client, db_session, catalog, open_till, cashier, auth_headers):
        response = api_client.post(
            "/api/v1/sales/",
            json=self.sale_json(catalog, open_till, catalog.variants["shirt"], 1,
                                [(catalog.cash_account, "250.125"), (catalog.accounts["TARJETA"], "249.875")]),
            headers=auth_headers(cashier)
        )

        assert response.status_code == 422
        assert db_session.query(SaleOrder).count() == 0

    def test_walk_in_current_account_returns_409(self, api_client, catalog, open_till, cashier, auth_headers):
        response = api_client.post(
            "/api/v1/sales/",
            json=self.sale_json(catalog, open_till, catalog.variants["shirt"], 1,
                                [(catalog.current_account, 500)], client=catalog.walk_in_client),
            headers=auth_headers(cashier)
        )

        assert response.status_code == 409

    def test_unknown_sale_returns_404(self, api_client, catalog, cashier, auth_headers):
        response = api_client.get(f"/api/v1/sales/{uuid4()}", headers=auth_headers(cashier))

        assert response.status_code == 404

    def test_credit_note_endpoints(self, api_client, catalog, open_till, cashier, supervisor, auth_headers):
        response = api_client.post(
            "/api/v1/sales/",
            json=self.sale_json(catalog, open_till, catalog.variants["shirt"], 1, [(catalog.cash_account, 500)]),
            headers=auth_headers(cashier)
        )
        order_id = response.json()["id"]

        response = api_client.get(f"/api/v1/sales/{order_id}/credit-note/proposal", headers=auth_headers(cashier))
        assert response.status_code == 200
        assert Decimal(response.json()["amount"]) == Decimal("500")

        response = api_client.post(
            f"/api/v1/sales/{order_id}/credit-note",
            json={"till_session_id": str(open_till.id)},
            headers=auth_headers(cashier)
        )
        assert response.status_code == 403

        response = api_client.post(
            f"/api/v1/sales/{order_id}/credit-note",
            json={"till_session_id": str(open_till.id)},
            headers=auth_headers(supervisor)
        )
        assert response.status_code == 201
        assert Decimal(response.json()["total"]) == Decimal("-500")
        assert response.json()["reversing_order_id"] == order_id

        response = api_client.get(f"/api/v1/sales/{order_id}", headers=auth_headers(cashier))
        assert response.json()["annulled"] is True

    def test_current_account_endpoints(self, api_client, catalog, open_till, cashier, auth_headers):
        headers = auth_headers(cashier)
        api_client.post(
            "/api/v1/sales/",
            json=self.sale_json(catalog, open_till, catalog.variants["shirt"], 1,
                                [(catalog.current_account, 500)], client=catalog.credit_client),
            headers=headers
        )

        response = api_client.get(
            f"/api/v1/current-accounts/?client_id={catalog.credit_client.id}", headers=headers
        )
        assert response.status_code == 200
        entries = response.json()
        assert len(entries) == 1
        assert entries[0]["status"] == "pending"

        response = api_client.post(
            f"/api/v1/current-accounts/{entries[0]['id']}/payments",
            json={
                "till_session_id": str(open_till.id),
                "treasury_account_id": str(catalog.cash_account.id),
                "amount": "150"
            },
            headers=headers
        )
        assert response.status_code == 201
        assert Decimal(response.json()["amount"]) == Decimal("150")

    def test_sale_requires_token(self, api_client, catalog, open_till):
        response = api_client.post(
            "/api/v1/sales/",
            json=self.sale_json(catalog, open_till, catalog.variants["shirt"], 1, [(catalog.cash_account, 500)])
        )

        assert response.status_code in (401, 403)
