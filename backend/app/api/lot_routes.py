"""Lots API — lots belong to a stage and carry measurements, pricing and custom field values."""
import json
from decimal import Decimal
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.api.crud import delete_row, get_or_404, insert_row, update_row
from app.api.deps import get_db, get_permissions, client_ip
from app.models.orm_models import Lot
from app.services.permissions import UserPermissions, log_activity, require_delete, require_edit, require_view
from app.services.serialization import row_to_dict, rows_to_dicts

router = APIRouter(prefix="/api/lots", tags=["Hierarchy"])


class LotFields(BaseModel):
    address: Optional[str] = None
    area: Optional[Decimal] = None
    frontage: Optional[Decimal] = None
    depth: Optional[Decimal] = None
    street_name: Optional[str] = None
    status: Optional[str] = None
    price: Optional[Decimal] = None
    price_per_sqm: Optional[Decimal] = None
    custom_data: Optional[Any] = None
    sort_order: Optional[int] = None


class LotCreate(LotFields):
    stage_id: int
    lot_number: str


class LotUpdate(LotFields):
    id: int
    stage_id: Optional[int] = None
    lot_number: Optional[str] = None


class LotPatch(LotFields):
    stage_id: Optional[int] = None
    lot_number: Optional[str] = None


class IdBody(BaseModel):
    id: int


def _lot_values(data: dict) -> dict:
    # custom_data is stored as JSON text keyed by custom_fields.field_key
    if isinstance(data.get("custom_data"), (dict, list)):
        data = {**data, "custom_data": json.dumps(data["custom_data"])}
    return data


def _lot_dict(lot: Lot) -> dict:
    return {**row_to_dict(lot), "subgroups": rows_to_dicts(lot.subgroups)}


async def _load_lot(db: AsyncSession, lot_id: int) -> Optional[Lot]:
    result = await db.execute(select(Lot).options(selectinload(Lot.subgroups)).where(Lot.id == lot_id))
    return result.scalar_one_or_none()


@router.get("")
async def list_lots(
    stage_id: Optional[int] = None,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    stmt = select(Lot).options(selectinload(Lot.subgroups)).order_by(Lot.sort_order, Lot.id)
    if stage_id is not None:
        stmt = stmt.where(Lot.stage_id == stage_id)
    result = await db.execute(stmt)
    return [_lot_dict(lot) for lot in result.scalars().all()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_lot(
    req: LotCreate,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    lot = await insert_row(db, Lot, _lot_values(req.model_dump(exclude_unset=True)))
    await log_activity(db, perms.user_id, "create", "lot", lot.id,
                       {"lot_number": lot.lot_number, "stage_id": lot.stage_id}, client_ip(request))
    return row_to_dict(lot)


@router.put("")
async def update_lot(
    req: LotUpdate,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    lot = await get_or_404(db, Lot, req.id, "Lot")
    changes = _lot_values(req.model_dump(exclude_unset=True, exclude={"id"}))
    lot = await update_row(db, lot, changes)
    await log_activity(db, perms.user_id, "update", "lot", lot.id, changes, client_ip(request))
    return row_to_dict(lot)


@router.delete("")
async def delete_lot(
    req: IdBody,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_delete(perms)
    lot = await get_or_404(db, Lot, req.id, "Lot")
    lot_number = lot.lot_number
    await delete_row(db, lot)
    await log_activity(db, perms.user_id, "delete", "lot", req.id, {"lot_number": lot_number}, client_ip(request))
    return {"success": True}


# ─── Single lot ──────────────────────────────────────────────────────────────

@router.get("/{lot_id}")
async def get_lot(
    lot_id: int,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    lot = await _load_lot(db, lot_id)
    if lot is None:
        raise HTTPException(status_code=404, detail="Lot not found")
    return _lot_dict(lot)


@router.patch("/{lot_id}")
async def patch_lot(
    lot_id: int,
    req: LotPatch,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    lot = await get_or_404(db, Lot, lot_id, "Lot")
    changes = _lot_values(req.model_dump(exclude_unset=True))
    lot = await update_row(db, lot, changes)
    await log_activity(db, perms.user_id, "update", "lot", lot.id, changes, client_ip(request))
    return row_to_dict(lot)
