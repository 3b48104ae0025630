"""
Combo/bundle resolution: expands a sold article into signed stock deltas.

Resolution is pure. ``RecipeLoader`` turns catalog rows into ``ArticleRecipe``
snapshots; ``ComboResolver`` turns a recipe and a quantity into deltas that
callers hand to the stock ledger.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from retail_pos.common.exceptions import UnresolvableComboError
from retail_pos.modules.catalog.models import Article, Variant

STOCK_PLACES = Decimal("0.001")


@dataclass(frozen=True)
class StockDelta:
    variant_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class ComboComponent:
    variant_id: Optional[UUID]
    quantity: Decimal


@dataclass(frozen=True)
class ArticleRecipe:
    """
    Snapshot of how selling one unit of a variant affects stock.

    simple: only the sold variant moves.
    composite: the sold variant plus an equivalence-scaled consumption variant
    and/or fixed combo components.
    """
    article_id: UUID
    variant_id: UUID
    equivalence: Optional[Decimal] = None
    consumption_variant_id: Optional[UUID] = None
    is_combo: bool = False
    components: Tuple[ComboComponent, ...] = field(default_factory=tuple)

    @property
    def is_composite(self) -> bool:
        return self.is_combo or bool(self.equivalence)


class ComboResolver:
    """Resolve a recipe and a sold quantity into stock deltas (negative = stock leaves)."""

    def resolve(self, recipe: ArticleRecipe, quantity: Decimal) -> List[StockDelta]:
        quantity = Decimal(quantity)
        deltas = [StockDelta(recipe.variant_id, -quantity)]

        if not recipe.is_composite:
            return deltas

        if recipe.equivalence:
            if recipe.consumption_variant_id is None:
                raise UnresolvableComboError(
                    "El artículo tiene equivalencia pero no tiene variante de consumo asociada",
                    article_id=str(recipe.article_id)
                )
            deltas.append(StockDelta(recipe.consumption_variant_id, -(recipe.equivalence * quantity)))

        if recipe.is_combo:
            if not recipe.components:
                raise UnresolvableComboError(
                    "El combo no tiene componentes configurados",
                    article_id=str(recipe.article_id)
                )
            for component in recipe.components:
                if component.variant_id is None:
                    raise UnresolvableComboError(
                        "No se pudo determinar la variante de un componente del combo",
                        article_id=str(recipe.article_id)
                    )
                deltas.append(StockDelta(component.variant_id, -(component.quantity * quantity)))

        return deltas


def merge_deltas(deltas: List[StockDelta]) -> List[StockDelta]:
    """Collapse deltas per variant keeping first-seen order; drops variants that net to zero."""
    totals: Dict[UUID, Decimal] = {}
    for delta in deltas:
        totals[delta.variant_id] = totals.get(delta.variant_id, Decimal("0")) + delta.quantity
    return [StockDelta(variant_id, qty) for variant_id, qty in totals.items() if qty != 0]


def invert_deltas(deltas: List[StockDelta]) -> List[StockDelta]:
    return [StockDelta(d.variant_id, -d.quantity) for d in deltas]


def quantize_deltas(deltas: List[StockDelta]) -> List[StockDelta]:
    """Round quantities to the stock ledger precision (3 places, HALF_UP)."""
    return [
        StockDelta(d.variant_id, Decimal(d.quantity).quantize(STOCK_PLACES, rounding=ROUND_HALF_UP))
        for d in deltas
    ]


class RecipeLoader:
    """Build recipes from catalog rows."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, variant: Variant) -> ArticleRecipe:
        article: Article = variant.article
        components = tuple(
            ComboComponent(variant_id=c.component_variant_id, quantity=Decimal(c.quantity))
            for c in article.components
        ) if article.is_combo else tuple()

        return ArticleRecipe(
            article_id=article.id,
            variant_id=variant.id,
            equivalence=Decimal(article.equivalence) if article.equivalence else None,
            consumption_variant_id=article.consumption_variant_id,
            is_combo=bool(article.is_combo),
            components=components
        )
