"""Companies API — top of the hierarchy, scoped by company grants."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.api.crud import delete_row, get_or_404, insert_row, update_row
from app.api.deps import get_current_user, get_db, load_access_records, client_ip
from app.config import ADMIN_ROLE_NAME
from app.models.orm_models import Company, Role, User, UserAccess
from app.services.permissions import entity_grant_allows, log_activity
from app.services.serialization import row_to_dict, rows_to_dicts

logger = logging.getLogger("landdev-api")

router = APIRouter(prefix="/api/companies", tags=["Companies"])


class CompanyCreate(BaseModel):
    name: str
    abn: Optional[str] = None
    owners: Optional[str] = None


class CompanyUpdate(BaseModel):
    id: int
    name: Optional[str] = None
    abn: Optional[str] = None
    owners: Optional[str] = None


class IdBody(BaseModel):
    id: int


def _company_dict(company: Company) -> dict:
    return {**row_to_dict(company), "projects": rows_to_dicts(company.projects)}


@router.get("")
async def list_companies(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    stmt = select(Company).options(selectinload(Company.projects)).order_by(Company.id)
    if not current_user.is_master:
        grants = await db.execute(select(UserAccess.entity_id).where(
            UserAccess.user_id == current_user.id,
            UserAccess.entity_type == "company",
        ))
        company_ids = list(grants.scalars().all())
        if not company_ids:
            return []
        stmt = stmt.where(Company.id.in_(company_ids))
    result = await db.execute(stmt)
    return [_company_dict(c) for c in result.scalars().all()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_company(
    req: CompanyCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    company = await insert_row(db, Company, {**req.model_dump(), "created_by": current_user.id})

    admin = await db.execute(select(Role).where(Role.name == ADMIN_ROLE_NAME))
    admin_role = admin.scalars().first()
    if admin_role is not None:
        db.add(UserAccess(
            user_id=current_user.id,
            role_id=admin_role.id,
            entity_type="company",
            entity_id=company.id,
            granted_by=current_user.id,
        ))
        await db.flush()
    else:
        logger.warning(f"No {ADMIN_ROLE_NAME} role; creator of company {company.id} gets no grant")

    await log_activity(db, current_user.id, "create", "company", company.id,
                       {"name": company.name}, client_ip(request))
    return row_to_dict(company)


@router.put("")
async def update_company(
    req: CompanyUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    grants = await load_access_records(db, current_user.id, "company", req.id)
    if not entity_grant_allows(current_user.is_master, grants, "can_edit"):
        raise HTTPException(status_code=403, detail="You do not have permission to edit this company")

    company = await get_or_404(db, Company, req.id, "Company")
    changes = req.model_dump(exclude_unset=True, exclude={"id"})
    company = await update_row(db, company, changes)
    await log_activity(db, current_user.id, "update", "company", company.id, changes, client_ip(request))
    return row_to_dict(company)


@router.delete("")
async def delete_company(
    req: IdBody,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    company = await get_or_404(db, Company, req.id, "Company")
    if not current_user.is_master and company.created_by != current_user.id:
        raise HTTPException(status_code=403, detail="Only the creator or master can delete this company")

    name = company.name
    await delete_row(db, company)
    await log_activity(db, current_user.id, "delete", "company", req.id, {"name": name}, client_ip(request))
    return {"success": True}
