"""
Document AI routes — lot extraction, verification, cross-referencing, POS
analysis and single-value OCR against uploaded subdivision plans.

PDFs are rasterized page by page and each page goes through the vision
provider chain. Model replies are parsed leniently and reconciled against the
lots already stored for the stage or precinct.
"""
import re
import json
import base64
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.api.crud import get_or_404
from app.api.deps import get_db, get_permissions
from app.config import (
    CROSS_REFERENCE_MAX_TOKENS, EXTRACT_FALLBACKS, EXTRACT_MAX_TOKENS, MAX_ANALYSIS_PAGES,
    OCR_FALLBACKS, OCR_MAX_TOKENS, POS_MAX_TOKENS, POS_PROVIDERS, VERIFY_FALLBACKS, VERIFY_MAX_TOKENS,
)
from app.models.orm_models import Document, Lot, Stage
from app.services.calibration import (
    box_calibration_context, correction_history_context, format_lot_summary,
    map_corrections_to_lots, text_calibration_context,
)
from app.services.document_store import read_document_bytes
from app.services.extraction_prompts import (
    apply_continuation, apply_hints, cross_reference_prompt, extraction_prompt, ocr_region_prompt,
    pdf_direct_prompt, pos_analysis_prompt, verify_calibration_prompt, verify_final_prompt,
)
from app.services.llm_client import (
    VisionError, VisionUnavailable, available_providers, complete_with_pdf, complete_with_vision,
)
from app.services.lot_reconciliation import analyze_pos, cross_reference, has_extraction_data, merge_extraction_results
from app.services.pdf_render import page_count, render_page_png_b64, render_pages
from app.services.permissions import UserPermissions, require_view
from app.services.plan_parsing import clean_ocr_value, parse_extraction_response, parse_model_json

logger = logging.getLogger("landdev-vision")

router = APIRouter(prefix="/api/documents", tags=["Document AI"])

NO_KEYS_SUMMARY = "No API keys set (need GEMINI_API_KEY, XAI_API_KEY, or OPENAI_API_KEY)"
PDF_MIME = "application/pdf"

_DATA_URI_RE = re.compile(r"^data:image/[\w.+-]+;base64,")


class ExtractRequest(BaseModel):
    document_id: int
    extraction_type: str = "stage"
    model: Optional[str] = "gemini"
    continue_from: list[str] = []
    exclude_stages: list[str] = []
    hints: Optional[str] = ""


class VerifyRequest(BaseModel):
    document_id: Optional[int] = None
    page_number: int = 1
    existing_lots: list[dict] = []
    correction_history: list[dict] = []
    captured_image: Optional[str] = None
    model: Optional[str] = "gemini"
    phase: str = "calibration"
    calibration_feedback: list[dict] = []
    return_image: bool = False
    box_calibration_feedback: list[dict] = []


class CrossReferenceRequest(BaseModel):
    document_id: int
    model: Optional[str] = "gemini"
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None


class AnalyzePosRequest(BaseModel):
    document_id: int
    stage_id: Optional[int] = None


class OcrRegionRequest(BaseModel):
    image_base64: Optional[str] = None
    field_type: Optional[str] = None


def strip_data_uri(image: str) -> str:
    return _DATA_URI_RE.sub("", image)


def _is_pdf(doc: Document) -> bool:
    return doc.mime_type == PDF_MIME or doc.original_name.lower().endswith(".pdf")


async def _document_bytes(doc: Document) -> bytes:
    try:
        return await read_document_bytes(doc.filename)
    except Exception as e:  # local IO and httpx failures both surface to the client
        logger.error(f"Could not read document {doc.id} ({doc.filename}): {e}")
        raise HTTPException(status_code=500, detail=f"Could not read file: {e}")


def _lot_dict(lot: Lot) -> dict:
    return {
        "id": lot.id,
        "lot_number": lot.lot_number,
        "area": str(lot.area) if lot.area is not None else None,
        "frontage": str(lot.frontage) if lot.frontage is not None else None,
        "depth": str(lot.depth) if lot.depth is not None else None,
        "street_name": lot.street_name,
        "status": lot.status,
    }


async def _stage_lots(db: AsyncSession, stage_id: int) -> list[dict]:
    result = await db.execute(select(Lot).where(Lot.stage_id == stage_id).order_by(Lot.sort_order, Lot.id))
    return [_lot_dict(lot) for lot in result.scalars().all()]


async def _precinct_lots(db: AsyncSession, precinct_id: int) -> list[dict]:
    result = await db.execute(
        select(Lot)
        .join(Stage, Stage.id == Lot.stage_id)
        .where(Stage.precinct_id == precinct_id)
        .order_by(Stage.sort_order, Lot.sort_order, Lot.id)
    )
    return [_lot_dict(lot) for lot in result.scalars().all()]


# ─── Extraction ──────────────────────────────────────────────────────────────

async def _extract_image(prompt: str, image_b64: str, mime_type: str, model: Optional[str]) -> dict:
    try:
        reply = await complete_with_vision(
            prompt, image_b64, mime_type=mime_type, provider=model,
            fallbacks=EXTRACT_FALLBACKS, max_tokens=EXTRACT_MAX_TOKENS,
        )
    except VisionError as e:
        return {"lots": [], "summary": f"No response from AI models. Selected: {model}. {e}"}
    logger.info(f"Extraction reply from {reply.model_label} ({len(reply.content)} chars)")
    return parse_extraction_response(reply.content)


async def _extract_pdf_pages(data: bytes, prompt: str, req: ExtractRequest) -> Optional[tuple[dict, int]]:
    """Per-page extraction. Returns None when the PDF cannot be rendered."""
    try:
        n = await asyncio.to_thread(page_count, data)
        if n == 0:
            raise ValueError("PDF has no pages")
        logger.info(f"Rendering {n} pages of document {req.document_id}")
        pages = await asyncio.to_thread(render_pages, data)
    except (RuntimeError, ValueError) as e:
        logger.warning(f"PDF rendering failed for document {req.document_id}: {e}")
        return None

    results = []
    for page_no, image_b64 in pages:
        logger.info(f"Extracting page {page_no}/{len(pages)} of document {req.document_id}")
        result = await _extract_image(prompt, image_b64, "image/png", req.model)
        if has_extraction_data(result):
            results.append(result)

    if not results:
        return {"lots": [], "stages": [], "summary": "No data found in document"}, len(pages)
    return merge_extraction_results(results, req.extraction_type), len(pages)


async def _extract_pdf_direct(data: bytes, req: ExtractRequest) -> dict:
    prompt = apply_hints(pdf_direct_prompt(req.extraction_type), req.hints)
    try:
        reply = await complete_with_pdf(prompt, base64.b64encode(data).decode(), max_tokens=EXTRACT_MAX_TOKENS)
    except VisionUnavailable:
        return {"lots": [], "summary": "Could not process PDF for analysis (GEMINI_API_KEY required)"}
    result = parse_extraction_response(reply.content)
    result["summary"] = f"{result.get('summary', '')} [Gemini PDF direct]"
    return result


@router.post("/extract")
async def extract(
    req: ExtractRequest,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    doc = await get_or_404(db, Document, req.document_id, "Document")
    data = await _document_bytes(doc)

    pages_read = 1
    if not available_providers():
        result = {"lots": [], "summary": NO_KEYS_SUMMARY}
    else:
        prompt = extraction_prompt(req.extraction_type)
        prompt = apply_continuation(prompt, req.continue_from, req.exclude_stages)
        prompt = apply_hints(prompt, req.hints)
        try:
            if _is_pdf(doc):
                paged = await _extract_pdf_pages(data, prompt, req)
                if paged is not None:
                    result, pages_read = paged
                else:
                    result = await _extract_pdf_direct(data, req)
            else:
                result = await _extract_image(prompt, base64.b64encode(data).decode(), doc.mime_type, req.model)
        except VisionUnavailable:
            result = {"lots": [], "summary": NO_KEYS_SUMMARY}
        except VisionError as e:
            logger.error(f"Extraction failed for document {doc.id}: {e}")
            result = {"lots": [], "summary": f"Extraction error: {e}"}

    doc.extracted_data = json.dumps(result)
    doc.ai_processed = datetime.now(timezone.utc)
    await db.flush()
    logger.info(f"Document {doc.id} extraction stored: {result.get('summary')}")
    return {**result, "page_count": pages_read}


# ─── Verification ────────────────────────────────────────────────────────────

def _verify_prompt(req: VerifyRequest) -> str:
    history = correction_history_context(req.correction_history)
    if req.phase == "calibration":
        return verify_calibration_prompt(history)
    calibration = "\n".join(c for c in (
        text_calibration_context(req.calibration_feedback),
        box_calibration_context(req.box_calibration_feedback),
    ) if c)
    return verify_final_prompt(calibration, history, format_lot_summary(req.existing_lots))


@router.post("/verify")
async def verify(
    req: VerifyRequest,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    if req.captured_image:
        image_b64 = strip_data_uri(req.captured_image)
    else:
        if req.document_id is None:
            raise HTTPException(status_code=400, detail="document_id or captured_image is required")
        doc = await get_or_404(db, Document, req.document_id, "Document")
        if not _is_pdf(doc):
            raise HTTPException(status_code=400, detail="Document must be a PDF or provide a screenshot")
        data = await _document_bytes(doc)
        try:
            image_b64 = await asyncio.to_thread(render_page_png_b64, data, req.page_number)
        except (RuntimeError, ValueError) as e:
            logger.error(f"Could not render page {req.page_number} of document {doc.id}: {e}")
            raise HTTPException(status_code=500, detail=f"Could not render PDF page: {e}")

    try:
        reply = await complete_with_vision(
            _verify_prompt(req), image_b64, provider=req.model,
            fallbacks=VERIFY_FALLBACKS, max_tokens=VERIFY_MAX_TOKENS,
        )
    except VisionUnavailable:
        raise HTTPException(status_code=500, detail=NO_KEYS_SUMMARY)
    except VisionError as e:
        raise HTTPException(status_code=500, detail=f"Verification failed: {e}")

    try:
        parsed = parse_model_json(reply.content)
    except ValueError as e:
        logger.warning(f"Verify reply from {reply.model_label} did not parse: {e}")
        body: dict[str, Any] = {
            "error": "Could not parse AI response",
            "raw": reply.content[:500],
            "corrections": [],
            "lots_found": [],
            "new_lots": [],
        }
        if req.return_image:
            body["image_base64"] = image_b64
        return body

    if "corrections" in parsed:
        parsed["corrections"] = map_corrections_to_lots(parsed.get("corrections") or [], req.existing_lots)
    parsed["used_model"] = reply.model_label
    if req.return_image:
        parsed["image_base64"] = image_b64
    return parsed


# ─── Cross-reference and POS analysis ────────────────────────────────────────

async def _page_images(doc: Document, data: bytes) -> list[tuple[int, str, str]]:
    """(page number, base64 image, mime type) for the first MAX_ANALYSIS_PAGES pages."""
    if not _is_pdf(doc):
        return [(1, base64.b64encode(data).decode(), doc.mime_type)]
    try:
        pages = await asyncio.to_thread(render_pages, data, MAX_ANALYSIS_PAGES)
        return [(n, img, "image/png") for n, img in pages]
    except (RuntimeError, ValueError) as e:
        logger.error(f"PDF processing error for document {doc.id}: {e}")
        raise HTTPException(status_code=500, detail=f"PDF processing error: {e}")


async def _page_json(prompt: str, image_b64: str, mime_type: str, page_no: int, **chain) -> Optional[dict]:
    """One page through the chain. Provider and parse failures skip the page."""
    try:
        reply = await complete_with_vision(prompt, image_b64, mime_type=mime_type, **chain)
    except VisionUnavailable:
        raise HTTPException(status_code=500, detail=NO_KEYS_SUMMARY)
    except VisionError as e:
        logger.warning(f"Page {page_no}: no vision result ({e})")
        return None
    try:
        return parse_model_json(reply.content)
    except ValueError as e:
        logger.warning(f"Page {page_no}: could not parse reply from {reply.model_label} ({e})")
        return None


@router.post("/cross-reference")
async def cross_reference_document(
    req: CrossReferenceRequest,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    doc = await get_or_404(db, Document, req.document_id, "Document")

    existing: list[dict] = []
    if req.entity_id is not None and req.entity_type == "stage":
        existing = await _stage_lots(db, req.entity_id)
    elif req.entity_id is not None and req.entity_type == "precinct":
        existing = await _precinct_lots(db, req.entity_id)
    if not existing:
        raise HTTPException(
            status_code=400, detail="No existing lots to compare against. Extract from Permit Plan first."
        )
    if not available_providers():
        raise HTTPException(status_code=500, detail=NO_KEYS_SUMMARY)

    data = await _document_bytes(doc)
    prompt = cross_reference_prompt(lot["lot_number"] for lot in existing)
    extracted: list[dict] = []
    for page_no, image_b64, mime_type in await _page_images(doc, data):
        parsed = await _page_json(
            prompt, image_b64, mime_type, page_no,
            provider=req.model, fallbacks=VERIFY_FALLBACKS, max_tokens=CROSS_REFERENCE_MAX_TOKENS,
        )
        if parsed:
            extracted.extend(parsed.get("lotsFound") or [])

    logger.info(f"Cross-reference of document {doc.id}: {len(extracted)} lots read, {len(existing)} stored")
    return cross_reference(existing, extracted)


@router.post("/analyze-pos")
async def analyze_pos_document(
    req: AnalyzePosRequest,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    doc = await get_or_404(db, Document, req.document_id, "Document")
    if "gemini" not in available_providers():
        raise HTTPException(status_code=500, detail="GEMINI_API_KEY not configured")

    existing = await _stage_lots(db, req.stage_id) if req.stage_id else []
    data = await _document_bytes(doc)
    prompt = pos_analysis_prompt(lot["lot_number"] for lot in existing)

    extracted: list[dict] = []
    ps_number = None
    general_easements: list = []
    for page_no, image_b64, mime_type in await _page_images(doc, data):
        parsed = await _page_json(
            prompt, image_b64, mime_type, page_no,
            provider="gemini", fallbacks=POS_PROVIDERS, max_tokens=POS_MAX_TOKENS,
        )
        if not parsed:
            continue
        extracted.extend(parsed.get("lotsAnalyzed") or [])
        ps_number = ps_number or parsed.get("psNumber")
        general_easements.extend(parsed.get("generalEasements") or [])

    return analyze_pos(existing, extracted, ps_number, general_easements)


# ─── Region OCR ──────────────────────────────────────────────────────────────

@router.post("/ocr-region")
async def ocr_region(req: OcrRegionRequest, perms: UserPermissions = Depends(get_permissions)):
    require_view(perms)
    if not req.image_base64:
        raise HTTPException(status_code=400, detail="No image provided")
    try:
        reply = await complete_with_vision(
            ocr_region_prompt(req.field_type), strip_data_uri(req.image_base64),
            provider="gemini", fallbacks=OCR_FALLBACKS, max_tokens=OCR_MAX_TOKENS,
        )
    except VisionUnavailable:
        raise HTTPException(status_code=500, detail=NO_KEYS_SUMMARY)
    except VisionError as e:
        logger.error(f"OCR failed: {e}")
        raise HTTPException(status_code=500, detail="No OCR result")
    raw = reply.content.strip()
    return {"value": clean_ocr_value(raw), "raw": raw}
