"""Activity log API — audit trail, visible to master users and group admins."""
import json
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.api.deps import get_db, get_permissions
from app.models.orm_models import ActivityLog, User
from app.services.permissions import PermissionDenied, UserPermissions

router = APIRouter(prefix="/api/activity-log", tags=["Administration"])


def _details(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


@router.get("")
async def list_activity(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    if not perms.is_master and not perms.can_invite:
        raise PermissionDenied("You do not have permission to view activity logs")

    result = await db.execute(
        select(ActivityLog, User.name, User.email)
        .outerjoin(User, User.id == ActivityLog.user_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return [
        {
            "id": log.id,
            "user_id": log.user_id,
            "user_name": name,
            "user_email": email,
            "action": log.action,
            "entity_type": log.entity_type,
            "entity_id": log.entity_id,
            "details": _details(log.details),
            "ip_address": log.ip_address,
            "created_at": log.created_at,
        }
        for log, name, email in result.all()
    ]
