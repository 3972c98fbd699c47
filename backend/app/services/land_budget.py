"""
Land budget category tree and helpers.

The category structure is fixed: users enter areas against it per stage and may
add custom subcategories, but cannot rename or remove the categories
themselves. Precinct views aggregate the stage entries.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

SQM_PER_HA = 10_000


def _sub(key: str, name: str, **extra) -> dict:
    return {"key": key, "name": name, **extra}


# Insertion order is display order.
LAND_BUDGET_CATEGORIES: dict[str, dict] = {
    "totalSiteArea": {"name": "Total Site Area", "is_header": True, "subcategories": []},
    "transport": {
        "name": "Transport",
        "is_header": True,
        "subcategories": [
            _sub("arterialRoads", "Arterial Roads"),
            _sub("roadWidening", "Road Widening"),
        ],
    },
    "community": {
        "name": "Community",
        "is_header": True,
        "subcategories": [
            _sub("community", "Community"),
            _sub("communityConstructed", "Community (constructed)"),
            _sub("communityStadiumDrive", "Community (stadium drive)"),
        ],
    },
    "education": {
        "name": "Education",
        "is_header": True,
        "subcategories": [
            _sub("governmentSchool", "Government School"),
            _sub("nonGovernmentSchool", "Non Government School"),
        ],
    },
    "openSpaceNetwork": {"name": "Open Space Network", "is_header": True, "subcategories": []},
    "encumberedOpenSpace": {
        "name": "Encumbered Open Space",
        "is_header": True,
        "parent": "openSpaceNetwork",
        "subcategories": [
            _sub("infrastructureEasements", "Infrastructure Easements"),
            _sub("drainage", "Drainage"),
            _sub("conservationAreas", "Conservation Areas"),
        ],
    },
    "creditedOpenSpace": {
        "name": "Credited Open Space",
        "is_header": True,
        "parent": "openSpaceNetwork",
        "subcategories": [
            _sub("regionalPark", "Regional Park"),
            _sub("sportsReservesInside", "Sports Reserves inside regional parks"),
            _sub("sportsReservesOutside", "Sports Reserves outside regional parks"),
            _sub("localNetworkParks", "Local Network Parks"),
            _sub("linearParks", "Linear Parks"),
        ],
    },
    "total": {"name": "Total", "is_header": True, "is_calculated": True, "subcategories": []},
    "netResidentialArea": {"name": "Net Residential Area (NRA)", "is_header": True, "subcategories": []},
    "residential": {
        "name": "Residential",
        "is_header": True,
        "parent": "netResidentialArea",
        "subcategories": [
            _sub("standardResidential", "Standard Residential Areas"),
            _sub("townCentreResidential", "Town Centre Residential Areas"),
            _sub("mixedUseResidential", "Mixed Use Sites with Residential (Section B)"),
        ],
    },
    "roads": {
        "name": "Roads",
        "is_header": True,
        "parent": "netResidentialArea",
        "subcategories": [
            _sub("connectorRoads", "Connector Roads"),
            _sub("localRoads", "Local Roads", is_percent_of_nsa=True),
        ],
    },
    "totalNRA": {
        "name": "Total Net Residential Area (NRA)",
        "is_header": True,
        "is_calculated": True,
        "subcategories": [],
    },
    "nonResidentialAreas": {
        "name": "Non Residential Areas",
        "is_header": True,
        "subcategories": [
            _sub("majorActivityCentre", "Major Activity Centre"),
            _sub("localActivityCentre", "Local Activity Centre"),
        ],
    },
    "totalNDA": {
        "name": "Total Net Developable Area (NDA)",
        "is_header": True,
        "is_calculated": True,
        "subcategories": [],
    },
}


def sqm_to_ha(sqm: float) -> float:
    return sqm / SQM_PER_HA


def is_known_category(key: str) -> bool:
    return key in LAND_BUDGET_CATEGORIES


def is_calculated(category: str) -> bool:
    return bool(LAND_BUDGET_CATEGORIES.get(category, {}).get("is_calculated"))


def is_fixed_item(category: str, subcategory: Optional[str]) -> bool:
    """True when (category, subcategory) names a slot in the fixed tree."""
    cat = LAND_BUDGET_CATEGORIES.get(category)
    if cat is None:
        return False
    if subcategory is None:
        return True
    return any(s["key"] == subcategory for s in cat["subcategories"])


def should_insert_item(area_ha: Any) -> bool:
    """New rows are only created for items that carry an area value."""
    return area_ha is not None and area_ha != ""


def group_items_by_stage(stages: Iterable[Mapping], items: Iterable[Mapping]) -> dict[int, dict]:
    """{stage_id: {"name": ..., "items": [...]}} for every stage, items in input order."""
    items = list(items)
    return {
        s["id"]: {"name": s["name"], "items": [i for i in items if i.get("stage_id") == s["id"]]}
        for s in stages
    }
