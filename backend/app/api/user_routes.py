"""
Users API — list, create and edit portal users.

Master users manage everyone. A company Admin sees and edits the users holding
grants on their companies and may move them between roles. Anyone may edit
their own name, email and password.
"""
import logging
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, update

from app.api.crud import get_or_404
from app.api.deps import get_current_user, get_db, require_master, hash_password
from app.config import ADMIN_ROLE_NAME
from app.models.orm_models import Role, User, UserAccess

logger = logging.getLogger("landdev-api")

router = APIRouter(prefix="/api/users", tags=["Administration"])

# Company grant used when a master assigns a role without naming a company
DEFAULT_MASTER_COMPANY_ID = 1


class UserCreate(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    is_master: Optional[bool] = False
    role_id: Optional[int] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None


class UserUpdate(BaseModel):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    is_active: Optional[Any] = None
    is_master: Optional[Any] = None
    role_id: Optional[int] = None
    company_id: Optional[int] = None


def _user_row(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "is_master": user.is_master,
        "is_active": user.is_active,
        "last_login": user.last_login,
        "created_at": user.created_at,
    }


async def admin_company_ids(db: AsyncSession, user_id: int) -> list[int]:
    """Companies on which the user holds the Admin role."""
    result = await db.execute(
        select(UserAccess.entity_id)
        .join(Role, Role.id == UserAccess.role_id)
        .where(
            UserAccess.user_id == user_id,
            UserAccess.entity_type == "company",
            Role.name == ADMIN_ROLE_NAME,
        )
        .order_by(UserAccess.id)
    )
    return list(result.scalars().all())


async def _access_list(db: AsyncSession) -> list[dict]:
    result = await db.execute(
        select(UserAccess, Role).join(Role, Role.id == UserAccess.role_id).order_by(UserAccess.id)
    )
    return [
        {
            "user_id": a.user_id,
            "role_id": a.role_id,
            "role_name": r.name,
            "entity_type": a.entity_type,
            "entity_id": a.entity_id,
        }
        for a, r in result.all()
    ]


@router.get("")
async def list_users(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    access = await _access_list(db)
    stmt = select(User).order_by(User.id)

    if not current_user.is_master:
        companies = set(await admin_company_ids(db, current_user.id))
        if not companies:
            return []
        user_ids = {a["user_id"] for a in access if a["entity_type"] == "company" and a["entity_id"] in companies}
        if not user_ids:
            return []
        stmt = stmt.where(User.id.in_(user_ids))

    result = await db.execute(stmt)
    users = []
    for user in result.scalars().all():
        own = [a for a in access if a["user_id"] == user.id]
        primary = next((a for a in own if a["entity_type"] == "company"), None)
        users.append({
            **_user_row(user),
            "role_id": primary["role_id"] if primary else None,
            "role_name": primary["role_name"] if primary else None,
            "company_id": primary["entity_id"] if primary else None,
            "access_list": own,
        })
    return users


@router.post("")
async def create_user(req: UserCreate, master: User = Depends(require_master), db: AsyncSession = Depends(get_db)):
    if not req.email or not req.password or not req.name:
        raise HTTPException(status_code=400, detail="Email, password, and name are required")

    email = req.email.strip().lower()
    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=400, detail="Email already exists")

    user = User(
        email=email,
        password_hash=hash_password(req.password),
        name=req.name,
        is_master=1 if req.is_master else 0,
        is_active=1,
    )
    db.add(user)
    await db.flush()

    if req.role_id and req.role_id > 0 and req.entity_id and req.entity_id > 0:
        db.add(UserAccess(
            user_id=user.id,
            role_id=req.role_id,
            entity_type=req.entity_type or "company",
            entity_id=req.entity_id,
            granted_by=master.id,
        ))
    logger.info(f"User {user.id} created by master {master.id}")
    return {"id": user.id, "email": user.email, "name": user.name, "is_master": bool(user.is_master)}


@router.put("")
async def update_user(req: UserUpdate, current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    is_self = req.id == current_user.id
    can_edit = is_self
    can_change_role = False
    can_change_master = False
    admin_companies: list[int] = []

    if current_user.is_master:
        can_edit = can_change_role = can_change_master = True
    elif not is_self:
        admin_companies = await admin_company_ids(db, current_user.id)
        target = await db.execute(
            select(UserAccess.entity_id)
            .where(UserAccess.user_id == req.id, UserAccess.entity_type == "company")
            .order_by(UserAccess.id)
        )
        target_company = target.scalars().first()
        if target_company is not None and target_company in admin_companies:
            can_edit = can_change_role = True

    if not can_edit:
        raise HTTPException(status_code=403, detail="You do not have permission to edit this user")

    user = await get_or_404(db, User, req.id, "User")
    if req.name:
        user.name = req.name
    if req.email:
        user.email = req.email.strip().lower()
    if req.password:
        user.password_hash = hash_password(req.password)
    if (can_change_role or can_change_master) and req.is_active is not None:
        user.is_active = 1 if req.is_active else 0
    if can_change_master and req.is_master is not None:
        user.is_master = 1 if req.is_master else 0

    if can_change_role and req.role_id and req.role_id > 0:
        await db.execute(delete(UserAccess).where(UserAccess.user_id == req.id))
        company_id = req.company_id
        if not company_id and current_user.is_master:
            company_id = DEFAULT_MASTER_COMPANY_ID
        elif not company_id and admin_companies:
            company_id = admin_companies[0]
        if company_id:
            db.add(UserAccess(
                user_id=req.id,
                role_id=req.role_id,
                entity_type="company",
                entity_id=company_id,
                granted_by=current_user.id,
            ))

    if current_user.is_master and req.company_id and req.company_id > 0 and not req.role_id:
        await db.execute(update(UserAccess).where(UserAccess.user_id == req.id).values(entity_id=req.company_id))

    await db.flush()
    return {"success": True}
