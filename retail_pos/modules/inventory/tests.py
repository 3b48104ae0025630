"""
Tests for the inventory module

Covers:
- Combo/bundle resolution (pure, no database)
- Stock ledger writes and the non-negative stock rule
- Manual stock movements and their authorization
- Stock movement endpoints
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from retail_pos.core.config import settings
from retail_pos.common.exceptions import (
    AuthorizationError, InsufficientStockError, UnresolvableComboError, ValidationError
)
from retail_pos.modules.inventory.models import StockMovement, StockOrigin
from retail_pos.modules.inventory.resolver import (
    ArticleRecipe, ComboComponent, ComboResolver, RecipeLoader, StockDelta, invert_deltas, merge_deltas,
    quantize_deltas
)
from retail_pos.modules.inventory.schemas import StockMovementCreate
from retail_pos.modules.inventory.service import StockLedgerService


# ===== RESOLVER =====

class TestComboResolver:
    """Expansion of a sold article into stock deltas"""

    def setup_method(self):
        self.resolver = ComboResolver()
        self.article_id = uuid4()
        self.variant_id = uuid4()

    def test_simple_article_emits_single_delta(self):
        recipe = ArticleRecipe(article_id=self.article_id, variant_id=self.variant_id)

        deltas = self.resolver.resolve(recipe, Decimal("3"))

        assert deltas == [StockDelta(self.variant_id, Decimal("-3"))]
        assert not recipe.is_composite

    def test_equivalence_adds_scaled_consumption(self):
        raw_material = uuid4()
        recipe = ArticleRecipe(
            article_id=self.article_id,
            variant_id=self.variant_id,
            equivalence=Decimal("200"),
            consumption_variant_id=raw_material
        )

        deltas = self.resolver.resolve(recipe, Decimal("2"))

        assert deltas == [
            StockDelta(self.variant_id, Decimal("-2")),
            StockDelta(raw_material, Decimal("-400")),
        ]

    def test_combo_adds_each_component(self):
        shirt, cap = uuid4(), uuid4()
        recipe = ArticleRecipe(
            article_id=self.article_id,
            variant_id=self.variant_id,
            is_combo=True,
            components=(ComboComponent(shirt, Decimal("1")), ComboComponent(cap, Decimal("2")))
        )

        deltas = self.resolver.resolve(recipe, Decimal("2"))

        assert StockDelta(shirt, Decimal("-2")) in deltas
        assert StockDelta(cap, Decimal("-4")) in deltas
        assert len(deltas) == 3

    def test_equivalence_without_consumption_variant_fails(self):
        recipe = ArticleRecipe(article_id=self.article_id, variant_id=self.variant_id, equivalence=Decimal("1.5"))

        with pytest.raises(UnresolvableComboError):
            self.resolver.resolve(recipe, Decimal("1"))

    def test_combo_without_components_fails(self):
        recipe = ArticleRecipe(article_id=self.article_id, variant_id=self.variant_id, is_combo=True)

        with pytest.raises(UnresolvableComboError):
            self.resolver.resolve(recipe, Decimal("1"))

    def test_combo_component_without_variant_fails(self):
        recipe = ArticleRecipe(
            article_id=self.article_id,
            variant_id=self.variant_id,
            is_combo=True,
            components=(ComboComponent(None, Decimal("1")),)
        )

        with pytest.raises(UnresolvableComboError):
            self.resolver.resolve(recipe, Decimal("1"))

    def test_merge_keeps_one_delta_per_variant(self):
        a, b = uuid4(), uuid4()
        merged = merge_deltas([
            StockDelta(a, Decimal("-1")),
            StockDelta(b, Decimal("-2")),
            StockDelta(a, Decimal("-3")),
        ])

        assert merged == [StockDelta(a, Decimal("-4")), StockDelta(b, Decimal("-2"))]

    def test_merge_drops_variants_that_net_to_zero(self):
        a = uuid4()
        assert merge_deltas([StockDelta(a, Decimal("-1")), StockDelta(a, Decimal("1"))]) == []

    def test_invert_flips_signs(self):
        a = uuid4()
        assert invert_deltas([StockDelta(a, Decimal("-5"))]) == [StockDelta(a, Decimal("5"))]

    def test_quantize_rounds_to_ledger_precision(self):
        a = uuid4()
        assert quantize_deltas([StockDelta(a, Decimal("-0.33333"))]) == [StockDelta(a, Decimal("-0.333"))]
        assert quantize_deltas([StockDelta(a, Decimal("0.0005"))]) == [StockDelta(a, Decimal("0.001"))]


class TestRecipeLoader:
    """Recipes built from catalog rows"""

    def test_loads_combo_components(self, db_session, catalog):
        recipe = RecipeLoader(db_session).load(catalog.variants["combo"])

        assert recipe.is_combo
        assert {c.variant_id for c in recipe.components} == {
            catalog.variants["shirt"].id, catalog.variants["cap"].id
        }

    def test_loads_equivalence(self, db_session, catalog):
        recipe = RecipeLoader(db_session).load(catalog.variants["coffee"])

        assert recipe.equivalence == Decimal("200")
        assert recipe.consumption_variant_id == catalog.variants["milk"].id

    def test_plain_article_is_simple(self, db_session, catalog):
        recipe = RecipeLoader(db_session).load(catalog.variants["shirt"])

        assert not recipe.is_composite


# ===== STOCK LEDGER =====

class TestStockLedger:
    """Append-only stock ledger"""

    def test_record_applies_delta_and_appends_movement(self, db_session, catalog):
        shirt = catalog.variants["shirt"]

        movement = StockLedgerService(db_session).record(shirt.id, Decimal("-3"), StockOrigin.SALE)
        db_session.commit()

        assert shirt.quantity == Decimal("7")
        assert movement.quantity == Decimal("-3")
        assert movement.resulting_quantity == Decimal("7")
        assert db_session.query(StockMovement).count() == 1

    def test_record_rejects_negative_result(self, db_session, catalog):
        shirt = catalog.variants["shirt"]

        with pytest.raises(InsufficientStockError):
            StockLedgerService(db_session).record(shirt.id, Decimal("-11"), StockOrigin.SALE)
        db_session.rollback()

        assert db_session.query(StockMovement).count() == 0

    def test_record_allows_negative_when_configured(self, db_session, catalog, monkeypatch):
        monkeypatch.setattr(settings, "ALLOW_NEGATIVE_STOCK", True)
        shirt = catalog.variants["shirt"]

        movement = StockLedgerService(db_session).record(shirt.id, Decimal("-12"), StockOrigin.SALE)

        assert movement.resulting_quantity == Decimal("-2")

    def test_record_allows_negative_for_articles_sold_without_stock(self, db_session, catalog):
        cap = catalog.variants["cap"]
        cap.article.sell_in_negative = True
        db_session.commit()

        movement = StockLedgerService(db_session).record(cap.id, Decimal("-25"), StockOrigin.SALE)

        assert movement.resulting_quantity == Decimal("-5")

    def test_record_rejects_zero_delta(self, db_session, catalog):
        with pytest.raises(ValidationError):
            StockLedgerService(db_session).record(catalog.variants["shirt"].id, Decimal("0"), StockOrigin.SALE)


class TestManualStockMovement:
    """record_stock_movement outside the sale/credit-note flows"""

    def test_supervisor_records_adjustment(self, db_session, catalog, supervisor):
        shirt = catalog.variants["shirt"]
        data = StockMovementCreate(variant_id=shirt.id, quantity=Decimal("5"), notes="Conteo físico")

        movement = StockLedgerService(db_session).record_stock_movement(data, actor=supervisor)

        assert movement.origin == StockOrigin.MANUAL_ADJUSTMENT
        assert movement.created_by == supervisor.user_id
        assert db_session.get(type(shirt), shirt.id).quantity == Decimal("15")

    def test_stock_import_origin_is_accepted(self, db_session, catalog, admin):
        data = StockMovementCreate(
            variant_id=catalog.variants["cap"].id, quantity=Decimal("30"), origin=StockOrigin.STOCK_IMPORT
        )

        movement = StockLedgerService(db_session).record_stock_movement(data, actor=admin)

        assert movement.resulting_quantity == Decimal("50")

    def test_cashier_cannot_adjust_stock(self, db_session, catalog, cashier):
        data = StockMovementCreate(variant_id=catalog.variants["shirt"].id, quantity=Decimal("5"))

        with pytest.raises(AuthorizationError):
            StockLedgerService(db_session).record_stock_movement(data, actor=cashier)

    def test_sale_origin_is_rejected(self, db_session, catalog, admin):
        data = StockMovementCreate(
            variant_id=catalog.variants["shirt"].id, quantity=Decimal("-1"), origin=StockOrigin.SALE
        )

        with pytest.raises(ValidationError):
            StockLedgerService(db_session).record_stock_movement(data, actor=admin)

        assert db_session.query(StockMovement).count() == 0

    def test_failed_adjustment_leaves_stock_untouched(self, db_session, catalog, admin):
        shirt = catalog.variants["shirt"]
        data = StockMovementCreate(variant_id=shirt.id, quantity=Decimal("-50"))

        with pytest.raises(InsufficientStockError):
            StockLedgerService(db_session).record_stock_movement(data, actor=admin)

        db_session.refresh(shirt)
        assert shirt.quantity == Decimal("10")
        assert db_session.query(StockMovement).count() == 0

    def test_low_stock_lists_variants_at_threshold(self, db_session, catalog, admin):
        shirt = catalog.variants["shirt"]
        StockLedgerService(db_session).record_stock_movement(
            StockMovementCreate(variant_id=shirt.id, quantity=Decimal("-8")), actor=admin
        )

        low_stock = StockLedgerService(db_session).list_low_stock()

        assert shirt.id in {v.id for v in low_stock}
        assert catalog.variants["cap"].id not in {v.id for v in low_stock}


# ===== ENDPOINTS =====

class TestStockMovementEndpoints:
    """Stock movement endpoints"""

    def test_post_stock_movement(self, api_client, catalog, supervisor, auth_headers):
        response = api_client.post(
            "/api/v1/stock-movements/",
            json={"variant_id": str(catalog.variants["shirt"].id), "quantity": "4"},
            headers=auth_headers(supervisor)
        )

        assert response.status_code == 201
        data = response.json()
        assert Decimal(data["resulting_quantity"]) == Decimal("14")
        assert data["origin"] == "manual_adjustment"

    def test_post_stock_movement_forbidden_for_cashier(self, api_client, catalog, cashier, auth_headers):
        response = api_client.post(
            "/api/v1/stock-movements/",
            json={"variant_id": str(catalog.variants["shirt"].id), "quantity": "4"},
            headers=auth_headers(cashier)
        )

        assert response.status_code == 403

    def test_post_stock_movement_requires_token(self, api_client, catalog):
        response = api_client.post(
            "/api/v1/stock-movements/",
            json={"variant_id": str(catalog.variants["shirt"].id), "quantity": "4"}
        )

        assert response.status_code in (401, 403)

    def test_list_stock_movements_by_variant(self, api_client, catalog, admin, auth_headers):
        headers = auth_headers(admin)
        shirt_id = str(catalog.variants["shirt"].id)
        api_client.post("/api/v1/stock-movements/", json={"variant_id": shirt_id, "quantity": "1"}, headers=headers)
        api_client.post("/api/v1/stock-movements/", json={"variant_id": shirt_id, "quantity": "2"}, headers=headers)

        response = api_client.get(f"/api/v1/stock-movements/?variant_id={shirt_id}", headers=headers)

        assert response.status_code == 200
        assert response.json()["total"] == 2

    def test_low_stock_endpoint(self, api_client, catalog, cashier, auth_headers):
        response = api_client.get("/api/v1/stock-movements/low-stock", headers=auth_headers(cashier))

        assert response.status_code == 200
        assert isinstance(response.json(), list)
