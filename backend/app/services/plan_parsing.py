"""
Parsing helpers for vision-model replies.

Model output is loosely structured: JSON wrapped in markdown fences, leading
prose, trailing commas, and replies cut off mid-array when the token budget
runs out. These helpers recover as much structured data as possible.
"""
import json
import logging
import re
from typing import Any

logger = logging.getLogger("landdev-vision")

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_LOTS_ARRAY_RE = re.compile(r'"lots"\s*:\s*\[([\s\S]*?)(?:\]|$)')
_FLAT_OBJECT_RE = re.compile(r"\{[^}]+\}")
_NON_NUMERIC_RE = re.compile(r"[^\d.\-]")
_LEADING_NUMBER_RE = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")

_OCR_PREFIX_RE = re.compile(r"^(the |value is |it shows |this is |area:|frontage:|depth:)", re.IGNORECASE)
_OCR_VALUE_RE = re.compile(r"[\d.,]+\s*(?:sqm|sq\.?\s*m|m²|meters?|m)?", re.IGNORECASE)


def clean_json_text(content: str) -> str:
    """Strip fences and surrounding prose, drop trailing commas."""
    text = _FENCE_RE.sub(r"\1", content or "")
    match = _OBJECT_RE.search(text)
    if match:
        text = match.group(0)
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def parse_model_json(content: str) -> dict:
    """Parse a model reply into a dict. Raises ValueError when no object can be read."""
    text = clean_json_text(content)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Model reply is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("Model reply is not a JSON object")
    return parsed


def recover_partial_lots(content: str) -> list[dict]:
    """Salvage complete lot objects from a truncated "lots" array."""
    match = _LOTS_ARRAY_RE.search(content or "")
    if not match:
        return []
    lots = []
    for chunk in _FLAT_OBJECT_RE.findall(match.group(1)):
        try:
            lot = json.loads(chunk)
        except json.JSONDecodeError:
            continue
        if isinstance(lot, dict):
            lots.append(lot)
    return lots


def parse_extraction_response(content: str) -> dict:
    try:
        return parse_model_json(content)
    except ValueError as e:
        logger.warning(f"Extraction reply did not parse, attempting partial recovery: {e}")
    lots = recover_partial_lots(content)
    if lots:
        return {"lots": lots, "summary": f"Extracted {len(lots)} lots (partial recovery)"}
    return {"lots": [], "summary": f"Could not parse AI response. Raw: {(content or '')[:200]}..."}


def parse_number(value: Any) -> float:
    """Leniently read a measurement like "450 m²" or "15.00m". Unreadable → 0.0."""
    if value is None:
        return 0.0
    cleaned = _NON_NUMERIC_RE.sub("", str(value))
    # Leading numeric prefix only, so "1.2.3" reads as 1.2
    match = _LEADING_NUMBER_RE.match(cleaned)
    if not match:
        return 0.0
    return float(match.group(0))


def clean_ocr_value(content: str) -> str:
    """Reduce an OCR reply like "The value is 450 sqm." to "450 sqm"."""
    value = _OCR_PREFIX_RE.sub("", (content or "").strip()).strip()
    match = _OCR_VALUE_RE.search(value)
    if match:
        return match.group(0).strip()
    return value
