"""Projects API — projects belong to a company and hold precincts."""
from typing import Optional
from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.api.crud import delete_row, get_or_404, insert_row, update_row
from app.api.deps import get_db, get_permissions, client_ip
from app.models.orm_models import Project
from app.services.permissions import UserPermissions, log_activity, require_delete, require_edit, require_view
from app.services.serialization import row_to_dict, rows_to_dicts

router = APIRouter(prefix="/api/projects", tags=["Hierarchy"])


class ProjectCreate(BaseModel):
    company_id: int
    name: str
    description: Optional[str] = None
    sort_order: Optional[int] = 0


class ProjectUpdate(BaseModel):
    id: int
    company_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    sort_order: Optional[int] = None


class IdBody(BaseModel):
    id: int


@router.get("")
async def list_projects(
    company_id: Optional[int] = None,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    stmt = select(Project).options(selectinload(Project.precincts)).order_by(Project.sort_order, Project.id)
    if company_id is not None:
        stmt = stmt.where(Project.company_id == company_id)
    else:
        stmt = stmt.options(selectinload(Project.company))
    result = await db.execute(stmt)

    projects = []
    for p in result.scalars().all():
        item = {**row_to_dict(p), "precincts": rows_to_dicts(p.precincts)}
        if company_id is None:
            item["company"] = row_to_dict(p.company)
        projects.append(item)
    return projects


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    req: ProjectCreate,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    project = await insert_row(db, Project, req.model_dump())
    await log_activity(db, perms.user_id, "create", "project", project.id, {"name": project.name}, client_ip(request))
    return row_to_dict(project)


@router.put("")
async def update_project(
    req: ProjectUpdate,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    project = await get_or_404(db, Project, req.id, "Project")
    changes = req.model_dump(exclude_unset=True, exclude={"id"})
    project = await update_row(db, project, changes)
    await log_activity(db, perms.user_id, "update", "project", project.id, changes, client_ip(request))
    return row_to_dict(project)


@router.delete("")
async def delete_project(
    req: IdBody,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_delete(perms)
    project = await get_or_404(db, Project, req.id, "Project")
    name = project.name
    await delete_row(db, project)
    await log_activity(db, perms.user_id, "delete", "project", req.id, {"name": name}, client_ip(request))
    return {"success": True}
