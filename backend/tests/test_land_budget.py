"""
test_land_budget.py — Unit tests for the land budget category tree.

All tests are pure unit tests; no database or external services required.
"""

import pytest

from app.services.land_budget import (
    LAND_BUDGET_CATEGORIES,
    group_items_by_stage,
    is_calculated,
    is_fixed_item,
    is_known_category,
    should_insert_item,
    sqm_to_ha,
)


class TestCategoryTree:
    """The fixed category structure used by every stage budget."""

    def test_display_order_starts_and_ends(self):
        keys = list(LAND_BUDGET_CATEGORIES)
        assert keys[0] == "totalSiteArea"
        assert keys[-1] == "totalNDA"

    def test_calculated_totals(self):
        assert is_calculated("total")
        assert is_calculated("totalNRA")
        assert is_calculated("totalNDA")
        assert not is_calculated("transport")
        assert not is_calculated("unknown")

    def test_local_roads_is_percent_of_nsa(self):
        roads = {s["key"]: s for s in LAND_BUDGET_CATEGORIES["roads"]["subcategories"]}
        assert roads["localRoads"].get("is_percent_of_nsa") is True
        assert "is_percent_of_nsa" not in roads["connectorRoads"]


class TestItemRules:

    def test_known_category(self):
        assert is_known_category("education")
        assert not is_known_category("parking")

    @pytest.mark.parametrize("category,subcategory,expected", [
        ("transport", "arterialRoads", True),
        ("transport", None, True),
        ("transport", "myCustomRoad", False),
        ("parking", None, False),
    ])
    def test_fixed_item(self, category, subcategory, expected):
        assert is_fixed_item(category, subcategory) is expected

    @pytest.mark.parametrize("area,expected", [
        (None, False),
        ("", False),
        (0, True),
        ("1.25", True),
    ])
    def test_should_insert_item(self, area, expected):
        assert should_insert_item(area) is expected

    def test_sqm_to_ha(self):
        assert sqm_to_ha(25_000) == 2.5
        assert sqm_to_ha(0) == 0


class TestGroupItemsByStage:

    def test_every_stage_present(self):
        stages = [{"id": 1, "name": "Stage 1"}, {"id": 2, "name": "Stage 2"}]
        items = [
            {"id": 10, "stage_id": 1, "category": "transport"},
            {"id": 11, "stage_id": 1, "category": "education"},
        ]
        grouped = group_items_by_stage(stages, items)
        assert grouped[1]["name"] == "Stage 1"
        assert [i["id"] for i in grouped[1]["items"]] == [10, 11]
        assert grouped[2] == {"name": "Stage 2", "items": []}
