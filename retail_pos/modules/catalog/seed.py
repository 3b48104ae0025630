"""
Catalog seed: the distinguished rows the engine relies on plus a small demo
assortment (a simple article, a recipe-style article and a combo).

Used by scripts/seed_catalog.py and by the test fixtures.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

from sqlalchemy.orm import Session

from retail_pos.core.config import settings
from retail_pos.modules.catalog.models import (
    Article, ArticleComboComponent, Client, DocumentType, TreasuryAccount, Variant
)


@dataclass
class SeededCatalog:
    accounts: Dict[str, TreasuryAccount]
    document_types: Dict[str, DocumentType]
    walk_in_client: Client
    credit_client: Client
    variants: Dict[str, Variant]

    @property
    def cash_account(self) -> TreasuryAccount:
        return self.accounts[settings.CASH_ACCOUNT_DESCRIPTION]

    @property
    def current_account(self) -> TreasuryAccount:
        return self.accounts[settings.CURRENT_ACCOUNT_DESCRIPTION]

    @property
    def invoice_type(self) -> DocumentType:
        return self.document_types["FACTURA"]

    @property
    def credit_note_type(self) -> DocumentType:
        return self.document_types[settings.CREDIT_NOTE_DOCUMENT_DESCRIPTION]


def get_or_create_account(db: Session, description: str) -> TreasuryAccount:
    account = db.query(TreasuryAccount).filter(TreasuryAccount.description == description).first()
    if account:
        return account
    account = TreasuryAccount(description=description, is_active=True)
    db.add(account)
    db.flush()
    return account


def get_or_create_document_type(db: Session, description: str, prefix: str) -> DocumentType:
    document_type = db.query(DocumentType).filter(DocumentType.description == description).first()
    if document_type:
        return document_type
    document_type = DocumentType(description=description, prefix=prefix, current_number=0, is_active=True)
    db.add(document_type)
    db.flush()
    return document_type


def get_or_create_client(db: Session, name: str, credit_limit: Decimal = Decimal("0")) -> Client:
    client = db.query(Client).filter(Client.name == name).first()
    if client:
        return client
    client = Client(name=name, credit_limit=credit_limit, is_active=True)
    db.add(client)
    db.flush()
    return client


def create_article(db: Session, description: str, price: Decimal, quantity: Decimal,
                   min_quantity: Decimal = Decimal("0"), barcode: str = None, **article_fields) -> Variant:
    """Article with a single variant; returns the variant."""
    article = Article(description=description, unit_price=price, **article_fields)
    db.add(article)
    db.flush()

    variant = Variant(
        article_id=article.id,
        barcode=barcode,
        quantity=quantity,
        min_quantity=min_quantity
    )
    db.add(variant)
    db.flush()
    return variant


def seed_catalog(db: Session) -> SeededCatalog:
    accounts = {
        description: get_or_create_account(db, description)
        for description in (settings.CASH_ACCOUNT_DESCRIPTION, "TARJETA", settings.CURRENT_ACCOUNT_DESCRIPTION)
    }
    document_types = {
        "FACTURA": get_or_create_document_type(db, "FACTURA", "FC-"),
        settings.CREDIT_NOTE_DOCUMENT_DESCRIPTION: get_or_create_document_type(
            db, settings.CREDIT_NOTE_DOCUMENT_DESCRIPTION, "NC-"
        ),
    }
    walk_in_client = get_or_create_client(db, settings.WALK_IN_CLIENT_NAME)
    credit_client = get_or_create_client(db, "CLIENTE CUENTA CORRIENTE", credit_limit=Decimal("5000"))

    barcodes = {"milk": "RAW-0001", "shirt": "ART-0001", "cap": "ART-0002", "coffee": "ART-0003", "combo": "CMB-0001"}
    existing = {v.barcode: v for v in db.query(Variant).filter(Variant.barcode.in_(barcodes.values()))}
    if len(existing) == len(barcodes):
        return SeededCatalog(
            accounts=accounts,
            document_types=document_types,
            walk_in_client=walk_in_client,
            credit_client=credit_client,
            variants={name: existing[barcode] for name, barcode in barcodes.items()},
        )

    # Materia prima primero: los artículos con equivalencia la referencian
    milk = create_article(db, "LECHE (ML)", Decimal("0"), Decimal("10000"), barcode=barcodes["milk"])
    shirt = create_article(db, "REMERA BASICA", Decimal("500"), Decimal("10"), min_quantity=Decimal("2"),
                           barcode=barcodes["shirt"])
    cap = create_article(db, "GORRA", Decimal("300"), Decimal("20"), barcode=barcodes["cap"])
    coffee = create_article(
        db, "CAFE CON LECHE", Decimal("250"), Decimal("100"), barcode=barcodes["coffee"],
        equivalence=Decimal("200"), consumption_variant_id=milk.id
    )
    combo = create_article(db, "COMBO REMERA + GORRA", Decimal("700"), Decimal("50"), barcode=barcodes["combo"],
                           is_combo=True)
    db.add_all([
        ArticleComboComponent(combo_article_id=combo.article_id, component_variant_id=shirt.id,
                              quantity=Decimal("1")),
        ArticleComboComponent(combo_article_id=combo.article_id, component_variant_id=cap.id,
                              quantity=Decimal("1")),
    ])
    db.flush()

    return SeededCatalog(
        accounts=accounts,
        document_types=document_types,
        walk_in_client=walk_in_client,
        credit_client=credit_client,
        variants={"milk": milk, "shirt": shirt, "cap": cap, "coffee": coffee, "combo": combo},
    )
