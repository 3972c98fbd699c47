"""Precincts API — precincts belong to a project and hold stages."""
from typing import Optional
from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.api.crud import delete_row, get_or_404, insert_row, update_row
from app.api.deps import get_db, get_permissions, client_ip
from app.models.orm_models import Precinct
from app.services.permissions import UserPermissions, log_activity, require_delete, require_edit, require_view
from app.services.serialization import row_to_dict, rows_to_dicts

router = APIRouter(prefix="/api/precincts", tags=["Hierarchy"])


class PrecinctCreate(BaseModel):
    project_id: int
    name: str
    description: Optional[str] = None
    sort_order: Optional[int] = 0


class PrecinctUpdate(BaseModel):
    id: int
    project_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    sort_order: Optional[int] = None


class IdBody(BaseModel):
    id: int


@router.get("")
async def list_precincts(
    project_id: Optional[int] = None,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    stmt = (
        select(Precinct)
        .options(selectinload(Precinct.stages), selectinload(Precinct.project))
        .order_by(Precinct.sort_order, Precinct.id)
    )
    if project_id is not None:
        stmt = stmt.where(Precinct.project_id == project_id)
    result = await db.execute(stmt)
    return [
        {**row_to_dict(p), "stages": rows_to_dicts(p.stages), "project": row_to_dict(p.project)}
        for p in result.scalars().all()
    ]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_precinct(
    req: PrecinctCreate,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    precinct = await insert_row(db, Precinct, req.model_dump())
    await log_activity(db, perms.user_id, "create", "precinct", precinct.id, {"name": precinct.name}, client_ip(request))
    return row_to_dict(precinct)


@router.put("")
async def update_precinct(
    req: PrecinctUpdate,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    precinct = await get_or_404(db, Precinct, req.id, "Precinct")
    changes = req.model_dump(exclude_unset=True, exclude={"id"})
    precinct = await update_row(db, precinct, changes)
    await log_activity(db, perms.user_id, "update", "precinct", precinct.id, changes, client_ip(request))
    return row_to_dict(precinct)


@router.delete("")
async def delete_precinct(
    req: IdBody,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_delete(perms)
    precinct = await get_or_404(db, Precinct, req.id, "Precinct")
    name = precinct.name
    await delete_row(db, precinct)
    await log_activity(db, perms.user_id, "delete", "precinct", req.id, {"name": name}, client_ip(request))
    return {"success": True}
