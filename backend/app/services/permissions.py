"""
Permission aggregation and activity logging.

A user's effective permissions are the OR of the flags on every role they hold
through user_access grants. Master users hold every permission. Grant-scoped
checks (company edit, invitations, access management) look only at the grants
on one entity.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.orm_models import ActivityLog

logger = logging.getLogger("landdev-api")

PERMISSION_FLAGS = ("can_view", "can_edit", "can_delete", "can_invite", "can_manage_roles")


class PermissionDenied(Exception):
    """Raised when an authenticated user lacks a permission. Mapped to HTTP 403."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class UserPermissions:
    user_id: int
    is_master: bool = False
    can_view: bool = False
    can_edit: bool = False
    can_delete: bool = False
    can_invite: bool = False
    can_manage_roles: bool = False
    company_ids: list[int] = field(default_factory=list)


def _flag(record: Mapping, name: str) -> bool:
    return record.get(name) == 1


def aggregate_permissions(user_id: int, is_master, access_records: Iterable[Mapping]) -> UserPermissions:
    """
    Combine every access record of a user into one permission set.

    access_records: mappings with entity_type, entity_id and the five role flags
    stored as 0/1 integers.
    """
    records = list(access_records)
    master = bool(is_master)
    perms = UserPermissions(user_id=user_id, is_master=master)
    for flag in PERMISSION_FLAGS:
        setattr(perms, flag, master or any(_flag(r, flag) for r in records))
    perms.company_ids = [r["entity_id"] for r in records if r.get("entity_type") == "company"]
    return perms


def master_permissions(user_id: int, company_id: Optional[int] = None) -> UserPermissions:
    perms = UserPermissions(user_id=user_id, is_master=True)
    for flag in PERMISSION_FLAGS:
        setattr(perms, flag, True)
    if company_id is not None:
        perms.company_ids = [company_id]
    return perms


def entity_grant_allows(is_master, grants: Iterable[Mapping], flag: str) -> bool:
    """True for master users, else when any grant on the entity carries the flag."""
    if is_master:
        return True
    return any(_flag(g, flag) for g in grants)


# ── Guards ────────────────────────────────────────────────────────────────────

def require_view(perms: UserPermissions) -> None:
    if not perms.can_view:
        raise PermissionDenied("You do not have permission to view this resource")


def require_edit(perms: UserPermissions) -> None:
    if not perms.can_edit:
        raise PermissionDenied("You do not have permission to edit this resource")


def require_delete(perms: UserPermissions) -> None:
    if not perms.can_delete:
        raise PermissionDenied("You do not have permission to delete this resource")


def require_invite(perms: UserPermissions) -> None:
    if not perms.can_invite:
        raise PermissionDenied("You do not have permission to invite users")


# ── Activity log ──────────────────────────────────────────────────────────────

async def log_activity(
    db: AsyncSession,
    user_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    details: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> None:
    """Append an audit row. Failures are logged and never abort the request."""
    try:
        async with db.begin_nested():
            db.add(ActivityLog(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                details=json.dumps(details, default=str) if details else None,
                ip_address=ip_address or None,
            ))
    except Exception:
        logger.exception(f"Failed to log activity {action} {entity_type}:{entity_id}")
