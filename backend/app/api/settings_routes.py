"""Project settings API — custom lot fields, display preferences and product pricing."""
import json
import logging
from decimal import Decimal
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from app.api.crud import get_or_404, insert_row, delete_row
from app.api.deps import get_current_user, get_db, get_permissions
from app.models.orm_models import CustomField, ProductPricing, User, UserPreference
from app.services.permissions import UserPermissions, require_edit
from app.services.serialization import row_to_dict, rows_to_dicts

logger = logging.getLogger("landdev-api")

custom_fields_router = APIRouter(prefix="/api/custom-fields", tags=["Settings"])
preferences_router = APIRouter(prefix="/api/preferences", tags=["Settings"])
pricing_router = APIRouter(prefix="/api/pricing", tags=["Settings"])

DEFAULT_BALANCE_RATE = Decimal("50")


class CustomFieldRequest(BaseModel):
    entity_type: str
    field_key: str
    field_label: str
    field_type: Optional[str] = "text"
    sort_order: Optional[int] = 0


class IdBody(BaseModel):
    id: int


class PreferenceRequest(BaseModel):
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    pref_key: Optional[str] = None
    pref_value: Optional[Any] = None


class ProductRequest(BaseModel):
    product_name: Optional[str] = None
    frontage: Decimal
    depth: Decimal
    base_area: Optional[Decimal] = None
    base_price: Optional[Decimal] = None
    price_per_sqm: Optional[Decimal] = None
    balance_rate: Optional[Decimal] = None


class PricingRequest(BaseModel):
    project_id: Optional[int] = None
    products: Optional[list[ProductRequest]] = None


def preference_text(value: Any) -> str:
    """Preferences are stored as text; non-strings keep their JSON spelling (true, 3)."""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _number_text(value: Decimal) -> str:
    return format(value.normalize(), "f") if value == value.to_integral() else str(value)


def product_values(project_id: int, index: int, p: ProductRequest) -> dict:
    """Column values for one pricing row, with defaults filled in."""
    return {
        "project_id": project_id,
        "product_name": p.product_name or f"{_number_text(p.frontage)}x{_number_text(p.depth)}",
        "frontage": p.frontage,
        "depth": p.depth,
        "base_area": p.base_area or p.frontage * p.depth,
        "base_price": p.base_price or Decimal("0"),
        "price_per_sqm": p.price_per_sqm or Decimal("0"),
        "balance_rate": p.balance_rate or DEFAULT_BALANCE_RATE,
        "sort_order": index,
    }


# ─── Custom fields ───────────────────────────────────────────────────────────

@custom_fields_router.get("")
async def list_custom_fields(
    entity_type: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(CustomField).order_by(CustomField.sort_order, CustomField.id)
    if entity_type:
        stmt = stmt.where(CustomField.entity_type == entity_type, CustomField.is_active == 1)
    result = await db.execute(stmt)
    return rows_to_dicts(result.scalars().all())


@custom_fields_router.post("", status_code=status.HTTP_201_CREATED)
async def create_custom_field(
    req: CustomFieldRequest,
    response: Response,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    result = await db.execute(select(CustomField).where(
        CustomField.entity_type == req.entity_type,
        CustomField.field_key == req.field_key,
    ))
    existing = result.scalars().first()
    if existing is not None:
        existing.is_active = 1
        response.status_code = status.HTTP_200_OK
        await db.flush()
        await db.refresh(existing)
        return row_to_dict(existing)
    field = await insert_row(db, CustomField, {**req.model_dump(), "is_active": 1})
    return row_to_dict(field)


@custom_fields_router.delete("")
async def deactivate_custom_field(
    req: IdBody,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    field = await get_or_404(db, CustomField, req.id, "Custom field")
    field.is_active = 0
    return {"success": True}


# ─── Preferences ─────────────────────────────────────────────────────────────

@preferences_router.get("")
async def get_preferences(
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not entity_type or entity_id is None:
        raise HTTPException(status_code=400, detail="entity_type and entity_id are required")
    result = await db.execute(select(UserPreference).where(
        UserPreference.entity_type == entity_type,
        UserPreference.entity_id == entity_id,
    ))
    return {p.pref_key: p.pref_value for p in result.scalars().all()}


@preferences_router.post("")
async def set_preference(
    req: PreferenceRequest,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    if not req.entity_type or not req.entity_id or not req.pref_key or "pref_value" not in req.model_fields_set:
        raise HTTPException(status_code=400, detail="entity_type, entity_id, pref_key, and pref_value are required")
    require_edit(perms)

    value = preference_text(req.pref_value)
    result = await db.execute(select(UserPreference).where(
        UserPreference.entity_type == req.entity_type,
        UserPreference.entity_id == req.entity_id,
        UserPreference.pref_key == req.pref_key,
    ))
    existing = result.scalars().first()
    if existing is not None:
        existing.pref_value = value
    else:
        db.add(UserPreference(
            entity_type=req.entity_type,
            entity_id=req.entity_id,
            pref_key=req.pref_key,
            pref_value=value,
        ))
    return {"success": True}


# ─── Product pricing ─────────────────────────────────────────────────────────

@pricing_router.get("")
async def list_pricing(
    project_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if project_id is None:
        raise HTTPException(status_code=400, detail="project_id required")
    result = await db.execute(
        select(ProductPricing).where(ProductPricing.project_id == project_id).order_by(ProductPricing.sort_order)
    )
    return rows_to_dicts(result.scalars().all())


@pricing_router.post("")
async def save_pricing(
    req: PricingRequest,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    if not req.project_id or req.products is None:
        raise HTTPException(status_code=400, detail="project_id and products required")
    require_edit(perms)

    await db.execute(delete(ProductPricing).where(ProductPricing.project_id == req.project_id))
    rows = []
    for index, product in enumerate(req.products):
        rows.append(await insert_row(db, ProductPricing, product_values(req.project_id, index, product)))
    logger.info(f"Saved {len(rows)} pricing products for project {req.project_id}")
    return rows_to_dicts(rows)


@pricing_router.delete("")
async def delete_pricing(
    id: Optional[int] = None,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    if not id:
        raise HTTPException(status_code=400, detail="id required")
    require_edit(perms)
    product = await get_or_404(db, ProductPricing, id, "Pricing product")
    await delete_row(db, product)
    return {"success": True}
