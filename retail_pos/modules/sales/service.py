"""
Servicio de ventas

Orquesta cabecera + renglones + stock + medios de pago + tesorería de una
venta dentro de una única unidad de trabajo. Todas las validaciones ocurren
antes de la primera escritura.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import desc
from sqlalchemy.orm import Session, selectinload

from retail_pos.core.config import settings
from retail_pos.common.exceptions import (
    AuthorizationError, CreditLimitExceededError, IntegrityFailureError,
    InvalidClientForCreditError, NotFoundError, ValidationError
)
from retail_pos.common.transactions import atomic
from retail_pos.modules.auth.policy import Operation, policy
from retail_pos.modules.auth.schemas import AuthContext, Role
from retail_pos.modules.catalog.models import Client, TreasuryAccount, Variant
from retail_pos.modules.catalog.service import CatalogService
from retail_pos.modules.inventory.models import StockOrigin
from retail_pos.modules.inventory.resolver import (
    ComboResolver, RecipeLoader, StockDelta, merge_deltas, quantize_deltas
)
from retail_pos.modules.inventory.service import StockLedgerService
from retail_pos.modules.sales.models import (
    SaleOrder, SaleOrderLine, SaleOrderLineStock, PaymentTender, CurrentAccountEntry, CurrentAccountStatus
)
from retail_pos.modules.sales.pricing import LineTotals, compute_line, compute_order, money
from retail_pos.modules.sales.schemas import SaleOrderCreate, SaleOrderLineCreate, PaymentTenderCreate
from retail_pos.modules.tills.models import MovementDirection, TreasuryMovementKind
from retail_pos.modules.tills.service import TillSessionService, TreasuryLedgerService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckedTender:
    account: TreasuryAccount
    amount: Decimal
    is_current_account: bool


@dataclass(frozen=True)
class PricedLine:
    data: SaleOrderLineCreate
    variant: Variant
    unit_price: Decimal
    totals: LineTotals
    deltas: List[StockDelta]


def check_tenders(catalog: CatalogService, tenders: List[PaymentTenderCreate],
                  expected_total: Decimal) -> List[CheckedTender]:
    """Medios de pago no vacíos, positivos, en cuentas distintas y que sumen exactamente el total"""
    if not tenders:
        raise ValidationError("Debe indicar al menos un medio de pago")

    seen = set()
    checked = []
    for tender in tenders:
        if tender.amount <= 0:
            raise ValidationError("El monto de cada medio de pago debe ser mayor a cero")
        if Decimal(tender.amount) != money(tender.amount):
            raise ValidationError(
                f"El monto {tender.amount} tiene más de dos decimales",
                treasury_account_id=str(tender.treasury_account_id)
            )
        if tender.treasury_account_id in seen:
            raise ValidationError(
                "No se puede usar la misma cuenta de tesorería en más de un medio de pago",
                treasury_account_id=str(tender.treasury_account_id)
            )
        seen.add(tender.treasury_account_id)

        account = catalog.get_treasury_account(tender.treasury_account_id)
        checked.append(CheckedTender(
            account=account,
            amount=Decimal(tender.amount),
            is_current_account=catalog.is_current_account(account)
        ))

    tendered = sum((t.amount for t in checked), Decimal("0"))
    if tendered != expected_total:
        raise ValidationError(
            f"Los medios de pago (${tendered}) no coinciden con el total (${expected_total})"
        )
    return checked


class SaleOrderService:
    """Servicio para registrar y consultar ventas"""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)
        self.stock = StockLedgerService(db)
        self.treasury = TreasuryLedgerService(db)
        self.tills = TillSessionService(db)
        self.resolver = ComboResolver()
        self.recipes = RecipeLoader(db)

    def create_sale(self, sale_data: SaleOrderCreate, actor: AuthContext) -> SaleOrder:
        """Crear venta completa: cabecera, renglones, stock, pagos y tesorería"""
        policy.authorize(actor, Operation.CREATE_SALE)

        existing = self.find_replay(sale_data.idempotency_key)
        if existing:
            logger.info(f"Venta {existing.number} ya registrada con la clave {sale_data.idempotency_key}")
            return existing

        cashier_id = sale_data.cashier_id or actor.user_id
        if actor.user_role == Role.CASHIER and cashier_id != actor.user_id:
            raise AuthorizationError("Un cajero solo puede vender en su propia caja")

        if not sale_data.lines:
            raise ValidationError("La venta debe tener al menos un renglón")

        till_session = self.tills.require_open_session(sale_data.till_session_id, cashier_id)

        document_type = self.catalog.get_document_type(sale_data.document_type_id)
        if self.catalog.is_credit_note_type(document_type):
            raise ValidationError("Una venta no puede emitirse con el tipo de comprobante de nota de crédito")

        client = self.catalog.get_client(sale_data.client_id) if sale_data.client_id else None

        priced_lines = [self._price_line(line) for line in sale_data.lines]
        totals = compute_order(
            [p.totals for p in priced_lines],
            discount_percent=sale_data.discount_percent,
            tax_rate=settings.FLAT_TAX_RATE
        )

        tenders = check_tenders(self.catalog, sale_data.tenders, totals.total)
        if any(t.is_current_account for t in tenders):
            self._check_credit_policy(client, totals.total)

        deltas = self._resolve_deltas(priced_lines)

        try:
            with atomic(self.db, "Venta"):
                till_session = self.tills.lock_open_session(till_session.id)
                number = self.catalog.next_document_number(document_type)
                order = SaleOrder(
                    number=number,
                    client_id=client.id if client else None,
                    cashier_id=cashier_id,
                    till_session_id=till_session.id,
                    document_type_id=document_type.id,
                    subtotal=totals.subtotal,
                    discount_percent=sale_data.discount_percent,
                    discount=totals.discount,
                    tax=totals.tax,
                    total=totals.total,
                    idempotency_key=sale_data.idempotency_key,
                    notes=sale_data.notes,
                    created_by=actor.user_id,
                    lines=[
                        SaleOrderLine(
                            article_id=p.variant.article_id,
                            variant_id=p.variant.id,
                            quantity=p.data.quantity,
                            unit_price=p.unit_price,
                            discount_percent=p.data.discount_percent,
                            discount_amount=p.data.discount_amount,
                            line_subtotal=p.totals.subtotal,
                            line_total=p.totals.total,
                            stock_effects=[
                                SaleOrderLineStock(variant_id=d.variant_id, quantity=d.quantity)
                                for d in p.deltas
                            ]
                        )
                        for p in priced_lines
                    ],
                    tenders=[
                        PaymentTender(treasury_account_id=t.account.id, amount=t.amount)
                        for t in tenders
                    ]
                )
                self.db.add(order)
                self.db.flush()

                for delta in self._lock_order(deltas):
                    self.stock.record(
                        variant_id=delta.variant_id,
                        delta=delta.quantity,
                        origin=StockOrigin.SALE,
                        order_id=order.id,
                        created_by=actor.user_id,
                        notes=f"Venta {number}"
                    )

                for tender in tenders:
                    if tender.is_current_account:
                        self.db.add(CurrentAccountEntry(
                            client_id=client.id,
                            order_id=order.id,
                            total=tender.amount,
                            balance=tender.amount,
                            status=CurrentAccountStatus.PENDING
                        ))
                    else:
                        self.treasury.record(
                            till_session=till_session,
                            treasury_account_id=tender.account.id,
                            direction=MovementDirection.INGRESS,
                            amount=tender.amount,
                            kind=TreasuryMovementKind.SALE,
                            order_id=order.id,
                            notes=f"Venta {number} - {tender.account.description}",
                            created_by=actor.user_id
                        )
                self.db.flush()
        except IntegrityFailureError:
            # Reintento concurrente con la misma clave
            existing = self.find_replay(sale_data.idempotency_key)
            if existing:
                return existing
            raise

        logger.info(
            f"Venta {order.number} registrada: total {order.total}, "
            f"{len(priced_lines)} renglones, lote {till_session.id}, cajero {cashier_id}"
        )
        return order

    def _price_line(self, line: SaleOrderLineCreate) -> PricedLine:
        variant = self.catalog.get_variant(line.variant_id)
        if not variant.article.is_active:
            raise ValidationError(
                f"El artículo '{variant.article.description}' no está activo",
                variant_id=str(variant.id)
            )

        unit_price = Decimal(line.unit_price if line.unit_price is not None else variant.unit_price)
        totals = compute_line(
            Decimal(line.quantity), unit_price,
            Decimal(line.discount_percent), Decimal(line.discount_amount)
        )
        recipe = self.recipes.load(variant)
        deltas = quantize_deltas(merge_deltas(self.resolver.resolve(recipe, Decimal(line.quantity))))
        return PricedLine(data=line, variant=variant, unit_price=unit_price, totals=totals, deltas=deltas)

    @staticmethod
    def _resolve_deltas(priced_lines: List[PricedLine]) -> List[StockDelta]:
        return merge_deltas([d for p in priced_lines for d in p.deltas])

    @staticmethod
    def _lock_order(deltas: List[StockDelta]) -> List[StockDelta]:
        # Orden estable de bloqueo de variantes entre operaciones concurrentes
        return sorted(deltas, key=lambda d: str(d.variant_id))

    def _check_credit_policy(self, client: Optional[Client], total: Decimal) -> None:
        if self.catalog.is_walk_in(client):
            raise InvalidClientForCreditError()

        credit_limit = Decimal(client.credit_limit or 0)
        if credit_limit != 0 and total > credit_limit:
            raise CreditLimitExceededError(
                f"El total (${total}) supera el límite de cuenta corriente de "
                f"'{client.name}' (${credit_limit})",
                client_id=str(client.id)
            )

    def find_by_idempotency_key(self, idempotency_key: Optional[str]) -> Optional[SaleOrder]:
        if not idempotency_key:
            return None
        return self.db.query(SaleOrder).filter(
            SaleOrder.idempotency_key == idempotency_key
        ).first()

    def find_replay(self, idempotency_key: Optional[str],
                    reversing_order_id: Optional[UUID] = None) -> Optional[SaleOrder]:
        """
        Comprobante ya registrado con la clave, o None.

        Una venta solo se repite con otra venta; una nota de crédito solo con
        una nota de crédito sobre la misma venta original.
        """
        existing = self.find_by_idempotency_key(idempotency_key)
        if existing is None:
            return None
        if existing.reversing_order_id != reversing_order_id:
            raise ValidationError(
                "La clave de idempotencia ya fue usada por otro comprobante",
                idempotency_key=idempotency_key,
                order_id=str(existing.id)
            )
        return existing

    def get_order(self, order_id: UUID) -> SaleOrder:
        order = self.db.query(SaleOrder).options(
            selectinload(SaleOrder.lines).selectinload(SaleOrderLine.stock_effects),
            selectinload(SaleOrder.tenders)
        ).filter(SaleOrder.id == order_id).first()

        if not order:
            raise NotFoundError("Venta no encontrada", order_id=str(order_id))
        return order

    def list_orders(
        self,
        till_session_id: Optional[UUID] = None,
        cashier_id: Optional[UUID] = None,
        client_id: Optional[UUID] = None,
        include_credit_notes: bool = True,
        limit: int = 100,
        offset: int = 0
    ) -> Dict[str, Any]:
        query = self.db.query(SaleOrder).options(
            selectinload(SaleOrder.lines),
            selectinload(SaleOrder.tenders)
        )

        if till_session_id:
            query = query.filter(SaleOrder.till_session_id == till_session_id)
        if cashier_id:
            query = query.filter(SaleOrder.cashier_id == cashier_id)
        if client_id:
            query = query.filter(SaleOrder.client_id == client_id)
        if not include_credit_notes:
            query = query.filter(SaleOrder.reversing_order_id.is_(None))

        query = query.order_by(desc(SaleOrder.date))

        total = query.count()
        orders = query.offset(offset).limit(limit).all()

        return {
            "orders": orders,
            "total": total,
            "limit": limit,
            "offset": offset
        }
