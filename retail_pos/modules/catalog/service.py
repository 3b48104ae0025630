from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from retail_pos.core.config import settings
from retail_pos.common.exceptions import NotFoundError
from retail_pos.modules.catalog.models import (
    Article, Variant, Client, TreasuryAccount, DocumentType
)


def _normalize(text: Optional[str]) -> str:
    return (text or "").strip().upper()


class CatalogService:
    """Read access to the catalog collaborator plus the locked reads the engine needs."""

    def __init__(self, db: Session):
        self.db = db

    # ===== VARIANTS / ARTICLES =====

    def get_variant(self, variant_id: UUID) -> Variant:
        variant = self.db.get(Variant, variant_id)
        if not variant:
            raise NotFoundError(f"Variante no encontrada: {variant_id}", variant_id=str(variant_id))
        return variant

    def lock_variant(self, variant_id: UUID) -> Variant:
        """Read a variant with a row lock so concurrent decrements serialize."""
        variant = self.db.query(Variant).filter(
            Variant.id == variant_id
        ).with_for_update().populate_existing().first()

        if not variant:
            raise NotFoundError(f"Variante no encontrada: {variant_id}", variant_id=str(variant_id))
        return variant

    def get_article(self, article_id: UUID) -> Article:
        article = self.db.get(Article, article_id)
        if not article:
            raise NotFoundError(f"Artículo no encontrado: {article_id}", article_id=str(article_id))
        return article

    # ===== CLIENTS =====

    def get_client(self, client_id: UUID) -> Client:
        client = self.db.get(Client, client_id)
        if not client or not client.is_active:
            raise NotFoundError("Cliente no encontrado", client_id=str(client_id))
        return client

    def is_walk_in(self, client: Optional[Client]) -> bool:
        """The anonymous 'consumidor final' client (or no client at all)."""
        return client is None or _normalize(client.name) == _normalize(settings.WALK_IN_CLIENT_NAME)

    # ===== TREASURY ACCOUNTS =====

    def get_treasury_account(self, account_id: UUID) -> TreasuryAccount:
        account = self.db.get(TreasuryAccount, account_id)
        if not account or not account.is_active:
            raise NotFoundError("Cuenta de tesorería no encontrada o inactiva", account_id=str(account_id))
        return account

    def lock_treasury_account(self, account_id: UUID) -> TreasuryAccount:
        return self.db.query(TreasuryAccount).filter(
            TreasuryAccount.id == account_id
        ).with_for_update().populate_existing().one()

    def is_current_account(self, account: TreasuryAccount) -> bool:
        return _normalize(account.description) == _normalize(settings.CURRENT_ACCOUNT_DESCRIPTION)

    def get_cash_account(self) -> TreasuryAccount:
        account = self.db.query(TreasuryAccount).filter(
            func.upper(TreasuryAccount.description) == _normalize(settings.CASH_ACCOUNT_DESCRIPTION),
            TreasuryAccount.is_active == True
        ).first()
        if not account:
            raise NotFoundError(
                f"No existe la cuenta de tesorería '{settings.CASH_ACCOUNT_DESCRIPTION}'"
            )
        return account

    # ===== DOCUMENT TYPES =====

    def get_document_type(self, document_type_id: UUID) -> DocumentType:
        document_type = self.db.get(DocumentType, document_type_id)
        if not document_type or not document_type.is_active:
            raise NotFoundError("El tipo de comprobante seleccionado no es válido")
        return document_type

    def is_credit_note_type(self, document_type: DocumentType) -> bool:
        return _normalize(document_type.description) == _normalize(settings.CREDIT_NOTE_DOCUMENT_DESCRIPTION)

    def get_credit_note_document_type(self) -> DocumentType:
        document_type = self.db.query(DocumentType).filter(
            func.upper(DocumentType.description) == _normalize(settings.CREDIT_NOTE_DOCUMENT_DESCRIPTION),
            DocumentType.is_active == True
        ).first()
        if not document_type:
            raise NotFoundError(
                f"No existe el tipo de comprobante '{settings.CREDIT_NOTE_DOCUMENT_DESCRIPTION}'"
            )
        return document_type

    def next_document_number(self, document_type: DocumentType) -> str:
        """Take the next correlative number for a document type (locked read-modify-write)."""
        locked = self.db.query(DocumentType).filter(
            DocumentType.id == document_type.id
        ).with_for_update().populate_existing().one()

        locked.current_number = (locked.current_number or 0) + 1
        self.db.flush()
        return f"{locked.prefix or ''}{locked.current_number:06d}"
