"""
Prompt templates for subdivision-plan reading.

Every prompt asks the model for a bare JSON object. Key names inside the
replies (lotNumber, streetName, lotsFound, ...) are the model-facing schema and
are passed through to API responses unchanged.
"""
from typing import Iterable, Optional

_LOOK_FOR = """WHAT TO LOOK FOR:
- Lot labels: "Lot 101", "101", "L101" inside polygon boundaries
- Area text: "500 m²", "500sqm", "0.050 ha" (convert ha to m² by multiplying by 10000)
- Boundary lengths: numbers adjacent to boundary lines (e.g., "15.00", "32.50")
- Road names / road reserve outlines to identify the frontage side"""

_MEASUREMENTS = """MEASUREMENT DEFINITIONS:
- **Lot Number**: Exact identifier as shown ("Lot 101", "101", "6101")
- **Area**: Total lot area in m². Record the number only.
- **Frontage**: The lot boundary (or sum of boundaries) that abuts a road reserve.
  - CORNER LOTS: Primary frontage = longest road-abutting boundary; record secondary separately.
- **Depth**: Distance from frontage to rear boundary.
  - IRREGULAR LOTS: Use maximum perpendicular distance from frontage to rear.
  - BATTLE-AXE/HANDLE LOTS: Depth may not be meaningful; note as "handle lot".
- **Street Name**: The road the primary frontage faces."""

_PITFALLS = """PITFALLS TO AVOID:
- Don't collapse a corner lot's two frontages into one number
- Battle-axe lots have narrow access legs; treat carefully
- Dimension numbers are usually aligned with boundary lines or carry dimension ticks
- Areas may be "approx." on permit plans; POS values are authoritative"""


def stage_extraction_prompt() -> str:
    return f"""You are analyzing a PERMIT PLAN or PLAN OF SUBDIVISION image. Extract ALL lot information visible.

DOCUMENT TYPES:
- **Permit Plans**: Show intended layout, staging, lot outlines. May have approximate dimensions.
- **Plan of Subdivision (POS)**: Survey-grade document with PS number, precise areas and boundary dimensions.

{_LOOK_FOR}
- Stage boundary lines and labels (Stage 1, Stage 2...)

{_MEASUREMENTS}

{_PITFALLS}

Return ONLY valid JSON, no markdown:
{{"lots": [{{"lotNumber": "101", "area": "450", "frontage": "15", "frontageSecondary": "", "depth": "30", "streetName": "Main St", "notes": ""}}], "summary": "Found X lots"}}"""


def precinct_extraction_prompt() -> str:
    return f"""You are analyzing a PERMIT PLAN (endorsed planning document) showing a MULTI-STAGE SUBDIVISION.

DOCUMENT CHARACTERISTICS:
- Site/subdivision layout ("Proposed Subdivision Plan", "Plan of Development", "Masterplan", "Staging Plan")
- Lot outlines, lot numbers, sometimes lot areas
- Road names, road reserves, reserves, common property
- Stage boundary lines and labels (Stage 1, Stage 2...)

WHAT TO EXTRACT:
1. **Stage Information**: Stage names/numbers ("Stage 1", "Stage 61A", "61A")
2. **For EACH lot within each stage**: Lot Number, Area (m²), Frontage (m), Depth (m), Street Name

{_LOOK_FOR}

{_MEASUREMENTS}

{_PITFALLS}
- Multi-sheet plans may have lots on different pages

IMPORTANT: If there is more data visible that you cannot include due to response limits, add this to your response:
"hasMore": true, "remainingStages": ["Stage X", "Stage Y"], "estimatedRemainingLots": 50

CRITICAL: You MUST extract EVERY individual lot with its data. Do NOT just list stage summaries. If you cannot read a value, use "unknown" but still include the lot entry.

Return ONLY valid JSON:
{{"stages": [{{"stageName": "Stage 1", "stageNumber": "1", "lots": [{{"lotNumber": "101", "area": "450", "frontage": "15", "frontageSecondary": "12", "depth": "30", "streetName": "Main St", "notes": "corner lot"}}]}}], "summary": "X stages, Y total lots", "hasMore": false}}"""


def extraction_prompt(extraction_type: str) -> str:
    if extraction_type == "precinct":
        return precinct_extraction_prompt()
    return stage_extraction_prompt()


def pdf_direct_prompt(extraction_type: str) -> str:
    """Shorter prompt for sending a whole PDF to a model that reads PDFs natively."""
    if extraction_type == "precinct":
        return """You are analyzing a PERMIT PLAN PDF showing a MULTI-STAGE SUBDIVISION.

WHAT TO EXTRACT:
1. **Stage Information**: Stage names/numbers ("Stage 1", "Stage 61A")
2. **For EACH lot within each stage**: Lot Number, Area (m²), Frontage (m), Depth (m), Street Name

CRITICAL: Extract EVERY individual lot with its data. Do NOT just list stage summaries.

Return ONLY valid JSON:
{"stages": [{"stageName": "Stage 1", "stageNumber": "1", "lots": [{"lotNumber": "101", "area": "450", "frontage": "15", "depth": "30", "streetName": "Main St"}]}], "summary": "X stages, Y total lots"}"""
    return f"""You are analyzing a PERMIT PLAN or PLAN OF SUBDIVISION PDF. Extract ALL lot information visible.

{_LOOK_FOR}

{_MEASUREMENTS}

Return ONLY valid JSON, no markdown:
{{"lots": [{{"lotNumber": "101", "area": "450", "frontage": "15", "depth": "30", "streetName": "Main St"}}], "summary": "Found X lots"}}"""


def apply_hints(prompt: str, hints: Optional[str]) -> str:
    if not hints or not hints.strip():
        return prompt
    return f"""USER-PROVIDED CONTEXT (use this to improve extraction accuracy):
{hints.strip()}

IMPORTANT: Use the above context to:
- Identify the correct stage names and numbers
- Understand the lot numbering pattern (e.g., if lots start with stage number)
- Focus on the specific stages and streets mentioned
- Validate your extraction against this context

""" + prompt


def apply_continuation(prompt: str, continue_from: Iterable[str], exclude_stages: Iterable[str]) -> str:
    remaining = list(continue_from or [])
    if not remaining:
        return prompt
    done = list(exclude_stages or [])
    return (
        f"CONTINUATION REQUEST: You previously extracted some stages. "
        f"Now extract ONLY these remaining stages: {', '.join(remaining)}.\n"
        f"DO NOT extract stages: {', '.join(done)} (already extracted).\n\n"
    ) + prompt


def verify_calibration_prompt(correction_context: str = "") -> str:
    return f"""You are analyzing a subdivision plan image. Extract ALL lot information visible.
{correction_context}

{_LOOK_FOR}

{_MEASUREMENTS}

{_PITFALLS}

Return ONLY valid JSON (no markdown):
{{
  "lotsFound": [{{"lotNumber": "101", "area": "450", "frontage": "15", "frontageSecondary": "", "depth": "30", "streetName": "Main St", "notes": ""}}],
  "summary": "Found X lots on this page"
}}"""


def verify_final_prompt(calibration_context: str, correction_context: str, lot_summary: str) -> str:
    return f"""Analyze this subdivision plan image VERY CAREFULLY.
{calibration_context}
{correction_context}

EXISTING DATABASE VALUES TO VERIFY:
{lot_summary}

YOUR TASK:
1. The calibration above shows EXACTLY what errors you made on sample lots
2. You MUST generate corrections for EVERY lot where the database value differs from what's in the image
3. For the calibrated sample lots, use the EXACT user-provided correct values
4. For all OTHER lots, re-read the image carefully - you likely made the same systematic errors

CRITICAL: Generate a "corrections" entry for EVERY value that needs to change. Compare each database value above against what you see in the image. If they differ, add a correction.

Return ONLY valid JSON (no markdown):
{{
  "lotsFound": [{{"lotNumber": "1", "area": "450", "frontage": "15", "depth": "30", "streetName": "Main St"}}],
  "corrections": [{{"lotNumber": "1", "field": "area", "currentValue": "400", "correctValue": "450", "confidence": 0.95}}],
  "newLots": [],
  "summary": "Applied calibration: corrected X values across Y lots"
}}"""


def cross_reference_prompt(lot_numbers: Iterable[str]) -> str:
    targets = ", ".join(lot_numbers)
    return f"""You are analyzing a PLAN OF SUBDIVISION (POS) - a survey-grade document prepared by a licensed surveyor.

POS CHARACTERISTICS:
- PS number (e.g., PS 9xxxxxx) once lodged
- Every lot labeled (Lot 1, Lot 2, Lot 101, etc.)
- Lot areas in m² (or ha for large parcels)
- Boundary dimensions on most/all lot boundaries
- Road reserves, easements (E-1, E-2), restrictions, reserves, common property
- May be multiple sheets

TARGET LOT NUMBERS TO FIND: {targets}

EXTRACT FOR EACH LOT:
1. **Lot Number**: Exact as shown (normalize "Lot 101" = "101")
2. **Area**: In m² (POS is authoritative - record the exact value). Convert ha×10000 to m².
3. **Frontage**: Boundary length(s) abutting road reserve. Corner lots: primary AND secondary. Sum split segments.
4. **Depth**: Distance from frontage to rear boundary (max perpendicular for irregular lots)
5. **Street Name**: Road the primary frontage faces

PITFALLS:
- POS is the SOURCE OF TRUTH for areas and boundary lengths - use exact values
- Don't confuse easement dimensions with lot boundaries
- Battle-axe lots: frontage is the narrow access leg width

Return ONLY valid JSON:
{{"lotsFound": [{{"lotNumber": "101", "area": "450.5", "frontage": "15.00", "frontageSecondary": "12.00", "depth": "30.00", "streetName": "Main St", "confidence": "high", "notes": ""}}], "summary": "Found X lots on this page"}}"""


def pos_analysis_prompt(lot_numbers: Iterable[str]) -> str:
    numbers = list(lot_numbers)
    targets = ", ".join(numbers) if numbers else "Extract all lots found"
    return f"""You are analyzing a PLAN OF SUBDIVISION (POS) - a survey-grade legal document.

DOCUMENT TYPE: Plan of Subdivision (PS number e.g., PS 9xxxxxx)
This is the AUTHORITATIVE source for lot boundaries, areas, and encumbrances.

TARGET LOTS: {targets}

EXTRACT FOR EACH LOT:

1. **BOUNDARIES & DIMENSIONS**:
   - Lot Number, Area (m², convert ha×10000), Frontage, Frontage Secondary (corner lots), Depth, Street Name
   - All boundary lengths with bearings if shown

2. **EASEMENTS** (look for E-1, E-2, etc.):
   - Easement ID, Type (drainage, sewerage, electricity, carriageway, pedestrian access, ...)
   - Width (e.g., "2.0m wide"), Purpose, Beneficiary, affected lots

3. **ENCUMBRANCES & RESTRICTIONS**:
   - Restrictive covenants (building envelopes, materials, heights)
   - Section 173 agreements, caveats, building exclusion zones
   - Any notations affecting the lot

4. **OTHER IMPACTS**:
   - Common property boundaries, reserve land, drainage reserves, public open space

WHERE TO LOOK:
- Lot polygons with labels inside
- Area text: "450 m²", "0.045 ha"
- Boundary dimensions along lines: "15.00", "32.50"
- Easement hatching with labels E-1, E-2
- Schedule of easements, notes section, title block annotations

Return ONLY valid JSON:
{{
  "psNumber": "PS 9xxxxxx",
  "lotsAnalyzed": [
    {{
      "lotNumber": "101",
      "area": "450.5",
      "frontage": "15.00",
      "frontageSecondary": "12.00",
      "depth": "30.00",
      "streetName": "Main Street",
      "boundaries": [{{"length": "15.00", "bearing": "N45°30'E", "description": "front boundary to Main Street"}}],
      "easements": [{{"id": "E-1", "type": "drainage", "width": "2.0m", "purpose": "stormwater drainage", "beneficiary": "Council"}}],
      "encumbrances": [{{"type": "restriction", "description": "Building envelope - setback 6m from front boundary"}}],
      "restrictions": [{{"type": "covenant", "description": "Single dwelling only"}}],
      "notes": "Corner lot",
      "confidence": "high"
    }}
  ],
  "generalEasements": [{{"id": "E-1", "type": "drainage", "width": "2.0m", "affectedLots": ["101", "102", "103"]}}],
  "summary": "Analyzed X lots, found Y easements affecting Z lots"
}}"""


_OCR_FIELD_HINTS = {
    "area": 'This should be an area measurement (likely in square meters or sqm). Return ONLY the numeric value with unit if shown (e.g., "450 sqm" or "450").',
    "frontage": 'This should be a frontage measurement (width in meters). Return ONLY the numeric value (e.g., "15" or "15.5m").',
    "depth": 'This should be a depth measurement (length in meters). Return ONLY the numeric value (e.g., "30" or "30.2m").',
}


def ocr_region_prompt(field_type: Optional[str]) -> str:
    hint = _OCR_FIELD_HINTS.get(field_type or "", "Return ONLY the text or number visible in this region.")
    return f"Extract the text/number from this image region. {hint} Do not include any explanation, just the value."
