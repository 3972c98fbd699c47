"""User access grants and invitations."""
import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.api.crud import delete_row, get_or_404
from app.api.deps import get_current_user, get_db, load_access_records, client_ip
from app.config import INVITATION_TTL_DAYS
from app.models.orm_models import Invitation, Role, User, UserAccess
from app.services.permissions import PermissionDenied, entity_grant_allows, log_activity

logger = logging.getLogger("landdev-api")

access_router = APIRouter(prefix="/api/user-access", tags=["Administration"])
invitations_router = APIRouter(prefix="/api/invitations", tags=["Administration"])


class GrantRequest(BaseModel):
    user_id: Optional[int] = None
    role_id: Optional[int] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None


class InviteRequest(BaseModel):
    email: Optional[str] = None
    role_id: Optional[int] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None


async def _require_entity_flag(db: AsyncSession, user: User, entity_type: str, entity_id: int, flag: str, message: str):
    grants = await load_access_records(db, user.id, entity_type, entity_id)
    if not entity_grant_allows(user.is_master, grants, flag):
        raise PermissionDenied(message)


# ─── User access ─────────────────────────────────────────────────────────────

@access_router.get("")
async def list_access(
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    user_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    stmt = (
        select(UserAccess, User, Role)
        .join(User, User.id == UserAccess.user_id)
        .join(Role, Role.id == UserAccess.role_id)
        .order_by(UserAccess.id)
    )
    if entity_type and entity_id is not None:
        stmt = stmt.where(UserAccess.entity_type == entity_type, UserAccess.entity_id == entity_id)
    if user_id is not None:
        stmt = stmt.where(UserAccess.user_id == user_id)
    result = await db.execute(stmt)
    return [
        {
            "id": a.id,
            "user_id": a.user_id,
            "user_name": u.name,
            "user_email": u.email,
            "role_id": a.role_id,
            "role_name": r.name,
            "entity_type": a.entity_type,
            "entity_id": a.entity_id,
            "can_view": r.can_view,
            "can_edit": r.can_edit,
            "can_delete": r.can_delete,
            "can_invite": r.can_invite,
            "can_manage_roles": r.can_manage_roles,
            "created_at": a.created_at,
        }
        for a, u, r in result.all()
    ]


@access_router.post("")
async def grant_access(
    req: GrantRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not req.user_id or not req.role_id or not req.entity_type or not req.entity_id:
        raise HTTPException(status_code=400, detail="user_id, role_id, entity_type, and entity_id are required")
    await _require_entity_flag(db, current_user, req.entity_type, req.entity_id, "can_manage_roles",
                               "You do not have permission to manage access for this group")

    result = await db.execute(select(UserAccess).where(
        UserAccess.user_id == req.user_id,
        UserAccess.entity_type == req.entity_type,
        UserAccess.entity_id == req.entity_id,
    ))
    existing = result.scalars().first()
    if existing is not None:
        existing.role_id = req.role_id
    else:
        db.add(UserAccess(
            user_id=req.user_id,
            role_id=req.role_id,
            entity_type=req.entity_type,
            entity_id=req.entity_id,
            granted_by=current_user.id,
        ))
    await db.flush()
    await log_activity(db, current_user.id, "grant", req.entity_type, req.entity_id,
                       {"user_id": req.user_id, "role_id": req.role_id}, client_ip(request))
    return {"success": True}


@access_router.delete("")
async def revoke_access(
    id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not id:
        raise HTTPException(status_code=400, detail="id is required")
    access = await get_or_404(db, UserAccess, id, "Access")
    await _require_entity_flag(db, current_user, access.entity_type, access.entity_id, "can_manage_roles",
                               "You do not have permission to manage access for this group")
    await delete_row(db, access)
    return {"success": True}


# ─── Invitations ─────────────────────────────────────────────────────────────

@invitations_router.get("")
async def list_invitations(
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not current_user.is_master:
        # Invitation tokens are visible only to masters and inviters of the entity
        if not entity_type or entity_id is None:
            raise PermissionDenied("entity_type and entity_id are required to list invitations")
        await _require_entity_flag(db, current_user, entity_type, entity_id, "can_invite",
                                   "You do not have permission to manage invitations for this group")
    stmt = select(Invitation, Role).join(Role, Role.id == Invitation.role_id).order_by(Invitation.id)
    if entity_type and entity_id is not None:
        stmt = stmt.where(Invitation.entity_type == entity_type, Invitation.entity_id == entity_id)
    result = await db.execute(stmt)
    return [
        {
            "id": inv.id,
            "email": inv.email,
            "token": inv.token,
            "entity_type": inv.entity_type,
            "entity_id": inv.entity_id,
            "role_name": role.name,
            "expires_at": inv.expires_at,
            "accepted_at": inv.accepted_at,
            "created_at": inv.created_at,
        }
        for inv, role in result.all()
    ]


@invitations_router.post("")
async def create_invitation(
    req: InviteRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not req.email or not req.role_id or not req.entity_type or not req.entity_id:
        raise HTTPException(status_code=400, detail="email, role_id, entity_type, and entity_id are required")
    await _require_entity_flag(db, current_user, req.entity_type, req.entity_id, "can_invite",
                               "You do not have permission to invite users to this group")

    email = req.email.strip().lower()
    result = await db.execute(select(User).where(User.email == email))
    existing_user = result.scalar_one_or_none()
    if existing_user is not None:
        grants = await db.execute(select(UserAccess.id).where(
            UserAccess.user_id == existing_user.id,
            UserAccess.entity_type == req.entity_type,
            UserAccess.entity_id == req.entity_id,
        ))
        if grants.scalars().first() is not None:
            raise HTTPException(status_code=400, detail="User already has access to this group")
        db.add(UserAccess(
            user_id=existing_user.id,
            role_id=req.role_id,
            entity_type=req.entity_type,
            entity_id=req.entity_id,
            granted_by=current_user.id,
        ))
        await db.flush()
        await log_activity(db, current_user.id, "invite", req.entity_type, req.entity_id,
                           {"user_id": existing_user.id, "existing_user": True}, client_ip(request))
        return {"success": True, "message": "Access granted to existing user"}

    token = str(uuid.uuid4())
    invitation = Invitation(
        email=email,
        token=token,
        role_id=req.role_id,
        entity_type=req.entity_type,
        entity_id=req.entity_id,
        invited_by=current_user.id,
        expires_at=datetime.now(timezone.utc) + timedelta(days=INVITATION_TTL_DAYS),
    )
    db.add(invitation)
    await db.flush()
    await log_activity(db, current_user.id, "invite", req.entity_type, req.entity_id,
                       {"email": email}, client_ip(request))
    return {"id": invitation.id, "token": token, "invite_url": f"/invite/{token}"}


@invitations_router.delete("")
async def delete_invitation(
    id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not id:
        raise HTTPException(status_code=400, detail="id is required")
    invitation = await get_or_404(db, Invitation, id, "Invitation")
    await _require_entity_flag(db, current_user, invitation.entity_type, invitation.entity_id, "can_invite",
                               "You do not have permission to manage invitations for this group")
    await delete_row(db, invitation)
    return {"success": True}
