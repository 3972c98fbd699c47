"""
Calibration context for the plan verification flow.

The user first reviews a sample of lots extracted by the model (the calibration
phase), correcting values either as text or by drawing boxes around the right
figures on the plan. The final phase feeds those corrections back to the model
so it can repeat the fix across every other lot on the sheet.

Request-side records use snake_case keys (lot_number, ai_values, ...). Model
corrections keep the model's camelCase keys (lotNumber, correctValue).
"""
import logging
from typing import Iterable, Mapping, Optional

from app.config import BIAS_MIN_MEAN_DIFF, BIAS_MIN_SAMPLES, CALIBRATED_FIELDS
from app.services.plan_parsing import parse_number

logger = logging.getLogger("landdev-vision")

# Model field name → lot column
_LOT_COLUMNS = {
    "lotNumber": "lot_number",
    "area": "area",
    "frontage": "frontage",
    "depth": "depth",
    "streetName": "street_name",
}

_TEXT_FIELDS = (("area", "area"), ("frontage", "frontage"), ("depth", "depth"), ("streetName", "street"))


def _or_unknown(v) -> str:
    return "?" if v is None or v == "" else str(v)


def format_lot_summary(existing_lots: Iterable[Mapping]) -> str:
    return "\n".join(
        f"Lot {lot.get('lot_number')}: area={_or_unknown(lot.get('area'))}, "
        f"frontage={_or_unknown(lot.get('frontage'))}, depth={_or_unknown(lot.get('depth'))}, "
        f"street={_or_unknown(lot.get('street_name'))}"
        for lot in existing_lots
    )


def correction_history_context(history: Iterable[Mapping]) -> str:
    lines = [
        f'- {c.get("field")} for Lot {c.get("lot_number")}: '
        f'changed from "{c.get("old_value")}" to "{c.get("new_value")}"'
        for c in history
    ]
    if not lines:
        return ""
    return "\nLEARNING FROM PREVIOUS USER CORRECTIONS:\n" + "\n".join(lines) + "\n"


def text_calibration_context(feedback: Iterable[Mapping]) -> str:
    """Context built from the text calibration form. Empty when no field was corrected."""
    lines = []
    for item in feedback:
        flags = item.get("corrections") or {}
        ai = item.get("ai_values") or {}
        user = item.get("user_values") or {}
        parts = [
            f'{label}: AI said "{ai.get(key, "")}" but correct is "{user.get(key, "")}"'
            for key, label in _TEXT_FIELDS
            if flags.get(key)
        ]
        if parts:
            lines.append(f"Lot {item.get('lot_number')}: {', '.join(parts)}")
    if not lines:
        return ""
    return (
        "\nCRITICAL CALIBRATION - USER VERIFIED THESE SAMPLES AND FOUND ERRORS:\n"
        + "\n".join(lines)
        + "\n\nIMPORTANT: Based on these calibration samples, you likely made SYSTEMATIC ERRORS.\n"
        'For example, if you misread frontage as "10" when it was "15" for multiple lots, '
        "apply this correction pattern to ALL lots.\n"
        "Re-examine the image carefully and correct ALL similar errors across all lots.\n"
    )


def _changed_fields(lot: Mapping):
    for f in lot.get("fields") or []:
        user_value = f.get("user_value")
        if user_value and f.get("ai_value") != user_value:
            yield f


def detect_systematic_bias(box_feedback: Iterable[Mapping]) -> list[dict]:
    """
    Find numeric fields the model misread in a consistent direction.

    A field is flagged when at least BIAS_MIN_SAMPLES corrections all moved the
    value the same way and the mean correction exceeds BIAS_MIN_MEAN_DIFF.
    """
    diffs: dict[str, list[float]] = {f: [] for f in CALIBRATED_FIELDS}
    for lot in box_feedback:
        for f in _changed_fields(lot):
            name = f.get("name")
            if name not in diffs:
                continue
            ai_num = parse_number(f.get("ai_value"))
            user_num = parse_number(f.get("user_value"))
            if ai_num and user_num:
                diffs[name].append(user_num - ai_num)

    biases = []
    for name in CALIBRATED_FIELDS:
        values = diffs[name]
        if len(values) < BIAS_MIN_SAMPLES:
            continue
        mean = sum(values) / len(values)
        same_sign = all(d > 0 for d in values) or all(d < 0 for d in values)
        if same_sign and abs(mean) > BIAS_MIN_MEAN_DIFF:
            biases.append({
                "field": name,
                "mean_diff": mean,
                "direction": "UNDERESTIMATED" if mean > 0 else "OVERESTIMATED",
                "count": len(values),
            })
    return biases


def box_calibration_context(box_feedback: Iterable[Mapping]) -> str:
    box_feedback = list(box_feedback)
    lines = []
    for lot in box_feedback:
        parts = [
            f'{f.get("name")}: AI="{f.get("ai_value")}" → Correct="{f.get("user_value")}"'
            for f in _changed_fields(lot)
        ]
        if parts:
            lines.append(f"Lot {lot.get('lot_number')}: {', '.join(parts)}")
    if not lines:
        return ""

    warnings = "".join(
        f"\n- {b['field'].upper()}: You consistently {b['direction']} by ~{abs(b['mean_diff']):.1f}. "
        f"Add {'+' if b['mean_diff'] > 0 else ''}{b['mean_diff']:.1f} to all {b['field']} values."
        for b in detect_systematic_bias(box_feedback)
    )
    context = "\nVISUAL CALIBRATION - USER DREW BOXES AROUND CORRECT VALUES:\n" + "\n".join(lines) + "\n"
    if warnings:
        context += f"\nDETECTED SYSTEMATIC ERRORS:{warnings}\n"
    context += (
        "\nCRITICAL: Apply these EXACT corrections to the sample lots, and apply the same patterns to ALL other lots.\n"
        "For every lot, re-read the values from the image using the calibration as a guide.\n"
    )
    return context


def _find_lot(existing_lots: list[Mapping], lot_number) -> Optional[Mapping]:
    if lot_number is None:
        return None
    wanted = str(lot_number)
    for lot in existing_lots:
        number = str(lot.get("lot_number"))
        if number == wanted or number == f"Lot {wanted}":
            return lot
    return None


def map_corrections_to_lots(corrections: Iterable[Mapping], existing_lots: Iterable[Mapping]) -> list[dict]:
    """Attach lot ids to model corrections, dropping any that name an unknown lot."""
    existing_lots = list(existing_lots)
    mapped = []
    for c in corrections or []:
        lot = _find_lot(existing_lots, c.get("lotNumber"))
        if lot is None or lot.get("id") is None:
            continue
        column = _LOT_COLUMNS.get(c.get("field"), c.get("field"))
        current = c.get("currentValue") or lot.get(column) or ""
        mapped.append({
            **c,
            "lot_id": lot["id"],
            "new_value": c.get("correctValue"),
            "current_value": current,
        })
    logger.debug(f"Mapped {len(mapped)} model corrections onto existing lots")
    return mapped
