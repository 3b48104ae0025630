"""
Notas de crédito

Una nota de crédito revierte una venta: devuelve el stock, registra los
egresos de tesorería (o descuenta la deuda en cuenta corriente) y marca la
venta original como anulada. La reversión puede ser parcial, pero la venta
original queda anulada igualmente.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from retail_pos.common.exceptions import AlreadyAnnulledError, IntegrityFailureError, ValidationError
from retail_pos.common.transactions import atomic
from retail_pos.modules.auth.policy import Operation, policy
from retail_pos.modules.auth.schemas import AuthContext
from retail_pos.modules.catalog.service import CatalogService
from retail_pos.modules.inventory.models import StockOrigin
from retail_pos.modules.inventory.resolver import StockDelta, invert_deltas, merge_deltas, quantize_deltas
from retail_pos.modules.inventory.service import StockLedgerService
from retail_pos.modules.sales.current_accounts import CurrentAccountService
from retail_pos.modules.sales.models import SaleOrder, SaleOrderLine, PaymentTender, CurrentAccountStatus
from retail_pos.modules.sales.pricing import prorate
from retail_pos.modules.sales.schemas import (
    CreditNoteCreate, CreditNoteLineCreate, CreditNoteProposal, PaymentTenderCreate
)
from retail_pos.modules.sales.service import SaleOrderService, check_tenders
from retail_pos.modules.tills.models import MovementDirection, TreasuryMovementKind
from retail_pos.modules.tills.service import TillSessionService, TreasuryLedgerService

logger = logging.getLogger(__name__)


@dataclass
class OriginalVariant:
    """Renglones de la venta original agrupados por variante"""
    first_line: SaleOrderLine
    quantity: Decimal
    subtotal: Decimal
    total: Decimal
    stock: Dict[UUID, Decimal] = field(default_factory=dict)  # Efecto de stock registrado en la venta


@dataclass(frozen=True)
class CreditedLine:
    original: OriginalVariant
    quantity: Decimal
    subtotal: Decimal
    total: Decimal


class CreditNoteService:
    """Servicio para proponer y emitir notas de crédito"""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogService(db)
        self.sales = SaleOrderService(db)
        self.stock = StockLedgerService(db)
        self.treasury = TreasuryLedgerService(db)
        self.tills = TillSessionService(db)
        self.current_accounts = CurrentAccountService(db)

    def propose_reversal(self, order_id: UUID) -> CreditNoteProposal:
        """Renglones y medios de pago de la venta original como punto de partida"""
        original = self.sales.get_order(order_id)
        self._ensure_reversible(original)

        return CreditNoteProposal(
            original_order_id=original.id,
            amount=original.total,
            lines=[
                CreditNoteLineCreate(variant_id=variant_id, quantity=group.quantity)
                for variant_id, group in self._group_original_lines(original).items()
            ],
            tenders=[
                PaymentTenderCreate(treasury_account_id=t.treasury_account_id, amount=t.amount)
                for t in original.tenders
            ]
        )

    def reverse_sale(self, original_order_id: UUID, credit_data: CreditNoteCreate,
                     actor: AuthContext) -> SaleOrder:
        """Emitir una nota de crédito sobre una venta y anularla"""
        policy.authorize(actor, Operation.CREATE_CREDIT_NOTE)

        existing = self.sales.find_replay(credit_data.idempotency_key, reversing_order_id=original_order_id)
        if existing:
            logger.info(f"Nota de crédito {existing.number} ya registrada con la clave {credit_data.idempotency_key}")
            return existing

        original = self.sales.get_order(original_order_id)
        self._ensure_reversible(original)

        till_session = self.tills.require_open_session(credit_data.till_session_id)
        document_type = self.catalog.get_credit_note_document_type()

        groups = self._group_original_lines(original)
        credited = self._credited_lines(groups, credit_data.lines)
        amount, tax = self._credited_amounts(original, groups, credited)

        tenders = credit_data.tenders
        if tenders is None:
            tenders = [
                PaymentTenderCreate(treasury_account_id=t.treasury_account_id, amount=t.amount)
                for t in original.tenders
            ]
        checked_tenders = check_tenders(self.catalog, tenders, amount)

        current_account_entry = None
        if any(t.is_current_account for t in checked_tenders):
            current_account_entry = self.current_accounts.find_entry_for_order(original.id)
            if current_account_entry is None:
                raise ValidationError("La venta original no generó deuda en cuenta corriente")
            refund = sum((t.amount for t in checked_tenders if t.is_current_account), Decimal("0"))
            if refund > current_account_entry.balance:
                raise ValidationError(
                    f"La devolución en cuenta corriente (${refund}) supera el saldo "
                    f"pendiente (${current_account_entry.balance})"
                )

        deltas = self._resolve_return_deltas(credited)
        subtotal = sum((c.subtotal for c in credited), Decimal("0"))

        try:
            with atomic(self.db, "Nota de crédito"):
                till_session = self.tills.lock_open_session(till_session.id)
                locked_original = self.db.query(SaleOrder).filter(
                    SaleOrder.id == original.id
                ).with_for_update().populate_existing().one()
                if locked_original.annulled:
                    raise AlreadyAnnulledError(order_id=str(original.id))

                number = self.catalog.next_document_number(document_type)
                credit_note = SaleOrder(
                    number=number,
                    client_id=original.client_id,
                    cashier_id=till_session.cashier_id,
                    till_session_id=till_session.id,
                    document_type_id=document_type.id,
                    subtotal=-subtotal,
                    discount_percent=original.discount_percent,
                    discount=-(subtotal + tax - amount),
                    tax=-tax,
                    total=-amount,
                    reversing_order_id=original.id,
                    idempotency_key=credit_data.idempotency_key,
                    notes=credit_data.notes,
                    created_by=actor.user_id,
                    lines=[
                        SaleOrderLine(
                            article_id=c.original.first_line.article_id,
                            variant_id=c.original.first_line.variant_id,
                            quantity=c.quantity,
                            unit_price=c.original.first_line.unit_price,
                            discount_percent=Decimal("0"),
                            discount_amount=c.subtotal - c.total,
                            line_subtotal=c.subtotal,
                            line_total=c.total
                        )
                        for c in credited
                    ],
                    tenders=[
                        PaymentTender(treasury_account_id=t.account.id, amount=t.amount)
                        for t in checked_tenders
                    ]
                )
                self.db.add(credit_note)
                self.db.flush()

                for delta in sorted(deltas, key=lambda d: str(d.variant_id)):
                    self.stock.record(
                        variant_id=delta.variant_id,
                        delta=delta.quantity,
                        origin=StockOrigin.CREDIT_NOTE,
                        order_id=credit_note.id,
                        created_by=actor.user_id,
                        notes=f"Nota de crédito {number} sobre {original.number}"
                    )

                for tender in checked_tenders:
                    if tender.is_current_account:
                        self.current_accounts.apply_reduction(
                            current_account_entry, tender.amount, CurrentAccountStatus.CANCELLED
                        )
                    else:
                        self.treasury.record(
                            till_session=till_session,
                            treasury_account_id=tender.account.id,
                            direction=MovementDirection.EGRESS,
                            amount=tender.amount,
                            kind=TreasuryMovementKind.CREDIT_NOTE,
                            order_id=credit_note.id,
                            notes=f"Nota de crédito {number} - {tender.account.description}",
                            created_by=actor.user_id
                        )

                locked_original.annulled = True
                self.db.flush()
        except IntegrityFailureError:
            existing = self.sales.find_replay(credit_data.idempotency_key, reversing_order_id=original.id)
            if existing:
                return existing
            raise

        logger.info(
            f"Nota de crédito {credit_note.number} emitida sobre {original.number}: "
            f"${amount}, lote {till_session.id}"
        )
        return credit_note

    def _ensure_reversible(self, original: SaleOrder) -> None:
        if original.is_credit_note:
            raise ValidationError("No se puede emitir una nota de crédito sobre otra nota de crédito")
        if original.annulled:
            raise AlreadyAnnulledError(order_id=str(original.id))

    @staticmethod
    def _group_original_lines(original: SaleOrder) -> Dict[UUID, OriginalVariant]:
        groups: Dict[UUID, OriginalVariant] = {}
        for line in original.lines:
            group = groups.get(line.variant_id)
            if group is None:
                group = groups[line.variant_id] = OriginalVariant(
                    first_line=line,
                    quantity=Decimal("0"),
                    subtotal=Decimal("0"),
                    total=Decimal("0")
                )
            group.quantity += Decimal(line.quantity)
            group.subtotal += Decimal(line.line_subtotal)
            group.total += Decimal(line.line_total)
            for effect in line.stock_effects:
                group.stock[effect.variant_id] = group.stock.get(effect.variant_id, Decimal("0")) + Decimal(effect.quantity)
        return groups

    def _credited_lines(self, groups: Dict[UUID, OriginalVariant],
                        lines: Optional[List[CreditNoteLineCreate]]) -> List[CreditedLine]:
        if lines is None:
            lines = [CreditNoteLineCreate(variant_id=v, quantity=g.quantity) for v, g in groups.items()]
        if not lines:
            raise ValidationError("La nota de crédito debe tener al menos un renglón")

        requested: Dict[UUID, Decimal] = {}
        for line in lines:
            if line.quantity <= 0:
                raise ValidationError("La cantidad de cada renglón debe ser mayor a cero")
            if line.variant_id not in groups:
                raise ValidationError(
                    "El renglón no pertenece a la venta original",
                    variant_id=str(line.variant_id)
                )
            requested[line.variant_id] = requested.get(line.variant_id, Decimal("0")) + Decimal(line.quantity)

        credited = []
        for variant_id, quantity in requested.items():
            group = groups[variant_id]
            if quantity > group.quantity:
                raise ValidationError(
                    f"La cantidad a devolver ({quantity}) supera la vendida ({group.quantity})",
                    variant_id=str(variant_id)
                )
            full = quantity == group.quantity
            credited.append(CreditedLine(
                original=group,
                quantity=quantity,
                subtotal=group.subtotal if full else prorate(group.subtotal, quantity, group.quantity),
                total=group.total if full else prorate(group.total, quantity, group.quantity)
            ))
        return credited

    @staticmethod
    def _credited_amounts(original: SaleOrder, groups: Dict[UUID, OriginalVariant],
                          credited: List[CreditedLine]) -> Tuple[Decimal, Decimal]:
        """Monto total a acreditar e impuesto incluido, proporcionales a la venta original"""
        original_lines_total = sum((g.total for g in groups.values()), Decimal("0"))
        credited_lines_total = sum((c.total for c in credited), Decimal("0"))

        full_reversal = len(credited) == len(groups) and all(
            c.quantity == c.original.quantity for c in credited
        )
        if full_reversal:
            return Decimal(original.total), Decimal(original.tax)
        return (
            prorate(original.total, credited_lines_total, original_lines_total),
            prorate(original.tax, credited_lines_total, original_lines_total)
        )

    @staticmethod
    def _resolve_return_deltas(credited: List[CreditedLine]) -> List[StockDelta]:
        """Stock a devolver según lo que la venta original movió realmente, proporcional a lo acreditado"""
        deltas: List[StockDelta] = []
        for c in credited:
            group = c.original
            for variant_id, sold in group.stock.items():
                if c.quantity == group.quantity:
                    deltas.append(StockDelta(variant_id, sold))
                else:
                    deltas.append(StockDelta(variant_id, sold * c.quantity / group.quantity))
        return invert_deltas(merge_deltas(quantize_deltas(deltas)))
