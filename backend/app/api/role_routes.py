"""Roles API — named permission sets. Only master users may change them."""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.api.crud import delete_row, get_or_404, insert_row, update_row
from app.api.deps import get_current_user, get_db, require_master
from app.models.orm_models import Role, User
from app.services.permissions import PERMISSION_FLAGS
from app.services.serialization import row_to_dict, rows_to_dicts

router = APIRouter(prefix="/api/roles", tags=["Administration"])


class RoleBody(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    can_view: Optional[bool] = None
    can_edit: Optional[bool] = None
    can_delete: Optional[bool] = None
    can_invite: Optional[bool] = None
    can_manage_roles: Optional[bool] = None


def _flags(req: RoleBody) -> dict:
    return {flag: 1 if getattr(req, flag) else 0 for flag in PERMISSION_FLAGS}


@router.get("")
async def list_roles(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Role).order_by(Role.id))
    return rows_to_dicts(result.scalars().all())


@router.post("")
async def create_role(req: RoleBody, master: User = Depends(require_master), db: AsyncSession = Depends(get_db)):
    if not req.name:
        raise HTTPException(status_code=400, detail="Name is required")
    role = await insert_row(db, Role, {"name": req.name, "description": req.description, **_flags(req)})
    return row_to_dict(role)


@router.put("")
async def update_role(req: RoleBody, master: User = Depends(require_master), db: AsyncSession = Depends(get_db)):
    if not req.id:
        raise HTTPException(status_code=400, detail="id is required")
    role = await get_or_404(db, Role, req.id, "Role")
    changes = {"description": req.description, **_flags(req)}
    if req.name:
        changes["name"] = req.name
    await update_row(db, role, changes)
    return {"success": True}


@router.delete("")
async def delete_role(id: Optional[int] = None, master: User = Depends(require_master), db: AsyncSession = Depends(get_db)):
    if not id:
        raise HTTPException(status_code=400, detail="id is required")
    role = await get_or_404(db, Role, id, "Role")
    await delete_row(db, role)
    return {"success": True}
