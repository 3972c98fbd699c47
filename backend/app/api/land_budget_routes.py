"""
Land budget API.

Stage budgets are edited in bulk (PUT). Precinct views aggregate every stage in
the precinct and may also carry precinct-level items (POST).
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select

from app.api.crud import delete_row, get_or_404, insert_row, update_row
from app.api.deps import get_db, get_permissions, client_ip
from app.models.orm_models import LandBudgetItem, Lot, Stage
from app.services.land_budget import (
    LAND_BUDGET_CATEGORIES, group_items_by_stage, is_calculated, is_fixed_item, is_known_category,
    should_insert_item, sqm_to_ha,
)
from app.services.permissions import UserPermissions, log_activity, require_delete, require_edit, require_view
from app.services.serialization import row_to_dict, rows_to_dicts

logger = logging.getLogger("landdev-api")

router = APIRouter(prefix="/api/land-budget", tags=["Land Budget"])


class BudgetItem(BaseModel):
    category: str
    subcategory: Optional[str] = None
    custom_name: Optional[str] = None
    area_ha: Optional[Any] = None
    is_custom: Optional[int] = None
    sort_order: Optional[int] = 0


class PrecinctItemRequest(BudgetItem):
    precinct_id: Optional[int] = None
    category: Optional[str] = None


class StageBudgetRequest(BaseModel):
    stage_id: Optional[int] = None
    items: Optional[list[BudgetItem]] = None


class IdBody(BaseModel):
    id: int


def _area(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise HTTPException(status_code=400, detail=f"Invalid area_ha: {value}")


def _item_values(item: BudgetItem) -> dict:
    is_custom = item.is_custom
    if is_custom is None:
        # Anything outside the fixed category tree is a user-added row
        is_custom = 0 if is_fixed_item(item.category, item.subcategory) else 1
    return {
        "custom_name": item.custom_name,
        "area_ha": _area(item.area_ha),
        "is_custom": 1 if is_custom else 0,
        "sort_order": item.sort_order or 0,
    }


def _check_category(category: str) -> None:
    if not is_known_category(category):
        raise HTTPException(status_code=400, detail=f"Unknown land budget category: {category}")
    if is_calculated(category):
        raise HTTPException(status_code=400, detail=f"{category} is a calculated total")


def _subcategory_clause(subcategory: Optional[str]):
    if subcategory:
        return LandBudgetItem.subcategory == subcategory
    return LandBudgetItem.subcategory.is_(None)


async def _lot_area_sqm(db: AsyncSession, stage_ids: list[int]) -> float:
    if not stage_ids:
        return 0.0
    total = await db.scalar(select(func.coalesce(func.sum(Lot.area), 0)).where(Lot.stage_id.in_(stage_ids)))
    return float(total or 0)


@router.get("")
async def get_land_budget(
    stage_id: Optional[int] = None,
    precinct_id: Optional[int] = None,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    if stage_id is None and precinct_id is None:
        raise HTTPException(status_code=400, detail="stage_id or precinct_id is required")

    if stage_id is not None:
        result = await db.execute(
            select(LandBudgetItem).where(LandBudgetItem.stage_id == stage_id).order_by(LandBudgetItem.sort_order)
        )
        lot_area = await _lot_area_sqm(db, [stage_id])
        return {
            "items": rows_to_dicts(result.scalars().all()),
            "categories": LAND_BUDGET_CATEGORIES,
            "lot_area_ha": sqm_to_ha(lot_area),
            "lot_area_sqm": lot_area,
            "mode": "stage",
        }

    stage_rows = await db.execute(
        select(Stage.id, Stage.name).where(Stage.precinct_id == precinct_id).order_by(Stage.sort_order, Stage.id)
    )
    stages = [{"id": sid, "name": name} for sid, name in stage_rows.all()]
    stage_ids = [s["id"] for s in stages]

    items: list[dict] = []
    stage_data: dict = {}
    if stage_ids:
        result = await db.execute(
            select(LandBudgetItem).where(LandBudgetItem.stage_id.in_(stage_ids)).order_by(LandBudgetItem.sort_order)
        )
        items = rows_to_dicts(result.scalars().all())
        stage_data = group_items_by_stage(stages, items)

    lot_area = await _lot_area_sqm(db, stage_ids)
    return {
        "items": items,
        "stage_data": stage_data,
        "stages": stages,
        "categories": LAND_BUDGET_CATEGORIES,
        "lot_area_ha": sqm_to_ha(lot_area),
        "lot_area_sqm": lot_area,
        "mode": "precinct",
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def save_precinct_item(
    req: PrecinctItemRequest,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    if not req.precinct_id or not req.category:
        raise HTTPException(status_code=400, detail="precinct_id and category are required")
    _check_category(req.category)

    result = await db.execute(select(LandBudgetItem).where(
        LandBudgetItem.precinct_id == req.precinct_id,
        LandBudgetItem.category == req.category,
        _subcategory_clause(req.subcategory),
    ))
    existing = result.scalars().first()
    values = _item_values(req)
    details = {"category": req.category, "subcategory": req.subcategory, "area_ha": values["area_ha"]}
    if existing is not None:
        item = await update_row(db, existing, values)
        await log_activity(db, perms.user_id, "update", "land_budget", item.id, details, client_ip(request))
    else:
        item = await insert_row(db, LandBudgetItem, {
            **values,
            "precinct_id": req.precinct_id,
            "category": req.category,
            "subcategory": req.subcategory,
        })
        await log_activity(db, perms.user_id, "create", "land_budget", item.id, details, client_ip(request))
    return row_to_dict(item)


@router.put("")
async def save_stage_budget(
    req: StageBudgetRequest,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    if not req.stage_id or req.items is None:
        raise HTTPException(status_code=400, detail="stage_id and items are required")

    for item in req.items:
        _check_category(item.category)
        result = await db.execute(select(LandBudgetItem).where(
            LandBudgetItem.stage_id == req.stage_id,
            LandBudgetItem.category == item.category,
            _subcategory_clause(item.subcategory),
        ))
        existing = result.scalars().first()
        if existing is not None:
            await update_row(db, existing, _item_values(item))
        elif should_insert_item(item.area_ha):
            await insert_row(db, LandBudgetItem, {
                **_item_values(item),
                "stage_id": req.stage_id,
                "category": item.category,
                "subcategory": item.subcategory,
            })

    await log_activity(db, perms.user_id, "update", "land_budget", req.stage_id,
                       {"item_count": len(req.items)}, client_ip(request))
    return {"success": True}


@router.delete("")
async def delete_item(
    req: IdBody,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_delete(perms)
    item = await get_or_404(db, LandBudgetItem, req.id, "Item")
    if item.is_custom != 1:
        raise HTTPException(status_code=400, detail="Cannot delete default categories")
    details = {"category": item.category, "subcategory": item.subcategory}
    await delete_row(db, item)
    await log_activity(db, perms.user_id, "delete", "land_budget", req.id, details, client_ip(request))
    return {"success": True}
