"""
Reconciliation between lots stored in the portal and lots read off a plan.

Existing lots are serialized lot rows (snake_case: id, lot_number, area,
frontage, depth, street_name). Extracted lots are model output (camelCase:
lotNumber, area, frontage, depth, streetName, easements, ...).
"""
import logging
from typing import Any, Iterable, Mapping, Optional

from app.config import AREA_TOLERANCE_SQM, CROSS_REFERENCE_CONFIDENCE, LENGTH_TOLERANCE_M
from app.services.plan_parsing import parse_number

logger = logging.getLogger("landdev-vision")

# (field, tolerance, decimals, unit suffix)
_VARIANCE_FIELDS = (
    ("area", AREA_TOLERANCE_SQM, 1, " m²"),
    ("frontage", LENGTH_TOLERANCE_M, 2, "m"),
    ("depth", LENGTH_TOLERANCE_M, 2, "m"),
)

_NEW_INFO_KEYS = ("boundaries", "easements", "encumbrances", "restrictions")


# ── Page merging ──────────────────────────────────────────────────────────────

def has_extraction_data(result: Optional[Mapping]) -> bool:
    if not result:
        return False
    return bool(result.get("lots")) or bool(result.get("stages"))


def merge_extraction_results(results: list[Mapping], extraction_type: str) -> dict:
    """Combine per-page extraction results into one document-level result."""
    pages = len(results)
    if extraction_type == "precinct":
        stages: dict[str, dict] = {}
        seen: dict[str, set] = {}
        for result in results:
            for stage in result.get("stages") or []:
                key = stage.get("stageName") or stage.get("stageNumber") or "Unknown"
                if key not in stages:
                    stages[key] = {**stage, "lots": []}
                    seen[key] = set()
                for lot in stage.get("lots") or []:
                    number = lot.get("lotNumber")
                    if number in seen[key]:
                        continue
                    seen[key].add(number)
                    stages[key]["lots"].append(lot)
        total = sum(len(s["lots"]) for s in stages.values())
        return {
            "stages": list(stages.values()),
            "summary": f"Found {len(stages)} stages with {total} total lots (from {pages} pages)",
        }

    lots: dict[Any, dict] = {}
    for result in results:
        for lot in result.get("lots") or []:
            lots.setdefault(lot.get("lotNumber"), lot)
    return {"lots": list(lots.values()), "summary": f"Found {len(lots)} lots (from {pages} pages)"}


# ── De-duplication ────────────────────────────────────────────────────────────

def dedupe_keep_last(lots: Iterable[Mapping]) -> dict:
    unique = {}
    for lot in lots:
        unique[lot.get("lotNumber")] = lot
    return unique


def dedupe_prefer_easements(lots: Iterable[Mapping]) -> dict:
    """Keep the first entry per lot unless a later one lists more easements."""
    unique: dict = {}
    for lot in lots:
        number = lot.get("lotNumber")
        current = unique.get(number)
        if current is None or len(lot.get("easements") or []) > len(current.get("easements") or []):
            unique[number] = lot
    return unique


# ── Comparison ────────────────────────────────────────────────────────────────

def field_variances(existing: Mapping, extracted: Mapping) -> list[dict]:
    """Measurement differences that exceed tolerance. Fields absent from the plan are skipped."""
    variances = []
    for name, tolerance, decimals, suffix in _VARIANCE_FIELDS:
        read = extracted.get(name)
        if not read:
            continue
        stored = existing.get(name)
        diff = parse_number(read) - parse_number(stored)
        if abs(diff) <= tolerance:
            continue
        sign = "+" if diff > 0 else ""
        variances.append({
            "field": name,
            "existing": stored if stored not in (None, "") else "-",
            "extracted": read,
            "difference": f"{sign}{diff:.{decimals}f}{suffix}",
        })
    return variances


def _existing_view(lot: Mapping) -> dict:
    return {
        "area": lot.get("area"),
        "frontage": lot.get("frontage"),
        "depth": lot.get("depth"),
        "street_name": lot.get("street_name"),
    }


def _extracted_view(lot: Mapping) -> dict:
    return {
        "area": lot.get("area"),
        "frontage": lot.get("frontage"),
        "depth": lot.get("depth"),
        "street_name": lot.get("streetName"),
    }


def cross_reference(existing_lots: Iterable[Mapping], extracted_lots: Iterable[Mapping]) -> dict:
    """Compare stored lots against a Plan of Subdivision read and propose corrections."""
    unique = dedupe_keep_last(extracted_lots)
    matches = []
    for lot in existing_lots:
        found = unique.get(lot.get("lot_number"))
        if found is None:
            continue
        discrepancies = [
            {"field": v["field"], "existing": lot.get(v["field"]) or "", "extracted": v["extracted"]}
            for v in field_variances(lot, found)
        ]
        matches.append({
            "lot_number": lot.get("lot_number"),
            "lot_id": lot.get("id"),
            "has_discrepancy": bool(discrepancies),
            "discrepancies": discrepancies,
            "existing": _existing_view(lot),
            "extracted": _extracted_view(found),
        })

    corrections = [
        {
            "lot_number": m["lot_number"],
            "lot_id": m["lot_id"],
            "field": d["field"],
            "current_value": d["existing"],
            "correct_value": d["extracted"],
            "confidence": CROSS_REFERENCE_CONFIDENCE,
        }
        for m in matches
        for d in m["discrepancies"]
    ]
    return {
        "matches": matches,
        "corrections": corrections,
        "lots_found": list(unique.values()),
        "summary": f"Cross-referenced {len(matches)} lots, {len(corrections)} discrepancies found",
    }


def analyze_pos(
    existing_lots: Iterable[Mapping],
    extracted_lots: Iterable[Mapping],
    ps_number: Optional[str] = None,
    general_easements: Optional[list] = None,
) -> dict:
    """
    Compare stored lots against a detailed POS analysis.

    Each stored lot is classified as "variance" (measurements differ), "new_data"
    (the plan adds easements or other encumbrances) or "match". Lots on the plan
    with no stored counterpart are returned as new_lots_found.
    """
    unique = dedupe_prefer_easements(extracted_lots)
    comparisons = []
    for lot in existing_lots:
        number = lot.get("lot_number")
        found = unique.pop(number, None)
        if found is None:
            comparisons.append({
                "lot_number": number,
                "lot_id": lot.get("id"),
                "status": "match",
                "existing": _existing_view(lot),
                "extracted": {},
                "variances": [],
                "new_info": {},
            })
            continue

        variances = field_variances(lot, found)
        has_new_info = any(found.get(k) for k in _NEW_INFO_KEYS)
        if variances:
            status = "variance"
        elif has_new_info:
            status = "new_data"
        else:
            status = "match"
        comparisons.append({
            "lot_number": number,
            "lot_id": lot.get("id"),
            "status": status,
            "existing": _existing_view(lot),
            "extracted": _extracted_view(found),
            "variances": variances,
            "new_info": {k: found.get(k) for k in _NEW_INFO_KEYS},
        })

    corrections = [
        {
            "lot_number": c["lot_number"],
            "lot_id": c["lot_id"],
            "field": v["field"],
            "current_value": v["existing"],
            "new_value": v["extracted"],
            "difference": v["difference"],
        }
        for c in comparisons
        for v in c["variances"]
    ]

    def _count(status: str) -> int:
        return sum(1 for c in comparisons if c["status"] == status)

    with_easements = sum(1 for c in comparisons if c["new_info"].get("easements"))
    matches, variance_count = _count("match"), _count("variance")
    logger.info(f"POS analysis: {len(comparisons)} lots compared, {len(corrections)} corrections")
    return {
        "ps_number": ps_number,
        "comparisons": comparisons,
        "corrections": corrections,
        "new_lots_found": list(unique.values()),
        "general_easements": general_easements or [],
        "summary": {
            "total_lots": len(comparisons),
            "matches": matches,
            "variances": variance_count,
            "new_data": _count("new_data"),
            "lots_with_easements": with_easements,
            "total_corrections": len(corrections),
        },
        "message": (
            f"Analyzed {len(comparisons)} lots: {matches} match, "
            f"{variance_count} have variances, {with_easements} have easements"
        ),
    }
