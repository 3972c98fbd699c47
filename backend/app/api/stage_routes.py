"""Stages API — stages belong to a precinct and own permits, approvals, invoices and lots."""
from typing import Any, Optional
from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.api.crud import delete_row, get_or_404, insert_row, parse_iso_datetime, update_row
from app.api.deps import get_db, get_permissions, client_ip
from app.models.orm_models import Stage
from app.services.permissions import UserPermissions, log_activity, require_delete, require_edit, require_view
from app.services.serialization import row_to_dict, rows_to_dicts

router = APIRouter(prefix="/api/stages", tags=["Hierarchy"])

_DATE_FIELDS = ("registration_date", "settlement_date")
_ACTUAL_FIELDS = ("registration_date_actual", "settlement_date_actual")


class StageCreate(BaseModel):
    precinct_id: int
    name: str
    description: Optional[str] = None
    registration_date: Optional[str] = None
    registration_date_actual: Optional[Any] = None
    settlement_date: Optional[str] = None
    settlement_date_actual: Optional[Any] = None
    sort_order: Optional[int] = 0


class StageUpdate(BaseModel):
    id: int
    precinct_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    registration_date: Optional[str] = None
    registration_date_actual: Optional[Any] = None
    settlement_date: Optional[str] = None
    settlement_date_actual: Optional[Any] = None
    sort_order: Optional[int] = None


class IdBody(BaseModel):
    id: int


def normalize_stage_fields(data: dict) -> dict:
    """ISO date strings to datetimes, *_actual truthiness to 1/0."""
    out = dict(data)
    for key in _DATE_FIELDS:
        if key in out:
            out[key] = parse_iso_datetime(out[key], key)
    for key in _ACTUAL_FIELDS:
        if key in out:
            out[key] = 1 if out[key] else 0
    return out


def _stage_dict(stage: Stage, with_precinct: bool) -> dict:
    item = {
        **row_to_dict(stage),
        "permits": rows_to_dicts(stage.permits),
        "approvals": rows_to_dicts(stage.approvals),
        "invoices": rows_to_dicts(stage.invoices),
        "lots": rows_to_dicts(stage.lots),
    }
    if with_precinct:
        item["precinct"] = row_to_dict(stage.precinct)
    return item


@router.get("")
async def list_stages(
    precinct_id: Optional[int] = None,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    stmt = (
        select(Stage)
        .options(
            selectinload(Stage.permits),
            selectinload(Stage.approvals),
            selectinload(Stage.invoices),
            selectinload(Stage.lots),
        )
        .order_by(Stage.sort_order, Stage.id)
    )
    if precinct_id is not None:
        stmt = stmt.where(Stage.precinct_id == precinct_id)
    else:
        stmt = stmt.options(selectinload(Stage.precinct))
    result = await db.execute(stmt)
    return [_stage_dict(s, with_precinct=precinct_id is None) for s in result.scalars().all()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_stage(
    req: StageCreate,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    stage = await insert_row(db, Stage, normalize_stage_fields(req.model_dump(exclude_unset=True)))
    await log_activity(db, perms.user_id, "create", "stage", stage.id, {"name": stage.name}, client_ip(request))
    return row_to_dict(stage)


@router.put("")
async def update_stage(
    req: StageUpdate,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    stage = await get_or_404(db, Stage, req.id, "Stage")
    changes = normalize_stage_fields(req.model_dump(exclude_unset=True, exclude={"id"}))
    stage = await update_row(db, stage, changes)
    await log_activity(db, perms.user_id, "update", "stage", stage.id, changes, client_ip(request))
    return row_to_dict(stage)


@router.delete("")
async def delete_stage(
    req: IdBody,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_delete(perms)
    stage = await get_or_404(db, Stage, req.id, "Stage")
    name = stage.name
    await delete_row(db, stage)
    await log_activity(db, perms.user_id, "delete", "stage", req.id, {"name": name}, client_ip(request))
    return {"success": True}
