"""
Modelos del catálogo consumidos por el motor de ventas

El CRUD del catálogo vive fuera del motor. Aquí solo se modela lo que el
motor lee (precios, equivalencias, límites de crédito, cuentas de tesorería)
y la cantidad en stock de cada variante, a la que aplica deltas con signo.
"""

from retail_pos.database.database import Base
from sqlalchemy import Column, String, Boolean, ForeignKey, Integer, Numeric, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from retail_pos.common.mixins import UUIDPrimaryKeyMixin, TimestampMixin


class Article(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    Artículo vendible.

    - is_combo: el artículo consume componentes fijos de otras variantes
    - equivalence + consumption_variant_id: consumo tipo receta (ej. ml de leche
      por unidad vendida) contra una variante de materia prima
    """
    __tablename__ = "articles"

    description = Column(String(200), nullable=False, index=True)
    unit_price = Column(Numeric(15, 2), nullable=False, default=0)
    is_combo = Column(Boolean, nullable=False, default=False)
    equivalence = Column(Numeric(15, 3), nullable=True)
    consumption_variant_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("variants.id", use_alter=True, name="fk_articles_consumption_variant"),
        nullable=True
    )
    sell_in_negative = Column(Boolean, nullable=False, default=False)  # Permitir venta sin stock
    is_active = Column(Boolean, nullable=False, default=True)

    # Relationships
    variants = relationship("Variant", back_populates="article", foreign_keys="Variant.article_id")
    consumption_variant = relationship("Variant", foreign_keys=[consumption_variant_id])
    components = relationship("ArticleComboComponent", back_populates="combo", cascade="all, delete-orphan")


class Variant(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Unidad vendible: artículo x talle x color"""
    __tablename__ = "variants"

    article_id = Column(Uuid(as_uuid=True), ForeignKey("articles.id"), nullable=False, index=True)
    size = Column(String(50), nullable=True)
    color = Column(String(50), nullable=True)
    barcode = Column(String(50), nullable=True, unique=True)
    price = Column(Numeric(15, 2), nullable=True)  # Si es NULL se usa el precio del artículo

    quantity = Column(Numeric(15, 3), nullable=False, default=0)
    min_quantity = Column(Numeric(15, 3), nullable=False, default=0)  # Umbral para alertas de faltante
    max_quantity = Column(Numeric(15, 3), nullable=True)

    # Relationships
    article = relationship("Article", back_populates="variants", foreign_keys=[article_id])

    @property
    def unit_price(self):
        return self.price if self.price is not None else self.article.unit_price


class ArticleComboComponent(Base, UUIDPrimaryKeyMixin):
    """Componente fijo de un combo: cantidad de una variante por unidad de combo"""
    __tablename__ = "article_combo_components"

    combo_article_id = Column(Uuid(as_uuid=True), ForeignKey("articles.id"), nullable=False, index=True)
    component_variant_id = Column(Uuid(as_uuid=True), ForeignKey("variants.id"), nullable=True)
    quantity = Column(Numeric(15, 3), nullable=False, default=1)

    # Relationships
    combo = relationship("Article", back_populates="components")
    component_variant = relationship("Variant")

    __table_args__ = (
        UniqueConstraint("combo_article_id", "component_variant_id", name="uq_combo_component"),
    )


class Client(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Cliente; credit_limit = 0 significa sin límite de cuenta corriente"""
    __tablename__ = "clients"

    name = Column(String(200), nullable=False, index=True)
    document = Column(String(50), nullable=True)
    credit_limit = Column(Numeric(15, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)


class TreasuryAccount(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Cuenta de tesorería (efectivo, tarjeta, transferencia, cuenta corriente...)"""
    __tablename__ = "treasury_accounts"

    description = Column(String(100), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)


class DocumentType(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Tipo de comprobante con su numeración correlativa"""
    __tablename__ = "document_types"

    description = Column(String(100), nullable=False, unique=True)
    prefix = Column(String(10), nullable=True)  # Ej: "FC-", "NC-"
    current_number = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
