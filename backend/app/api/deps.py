"""FastAPI dependency injection — session auth and permission guards."""
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.config import SESSION_COOKIE_NAME, SESSION_COOKIE_SECURE, SESSION_TTL_DAYS
from app.db import get_db
from app.models.orm_models import User, Role, UserAccess, Session as UserSession
from app.services.permissions import UserPermissions, aggregate_permissions

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "changethis_use_a_real_secret_in_production_64chars")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

security = HTTPBearer(auto_error=False)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


# ─── Session tokens ──────────────────────────────────────────────────────────

def create_session_token(user_id: int, session_id: str, expires_at: datetime) -> str:
    return jwt.encode(
        {"sub": str(user_id), "sid": session_id, "exp": expires_at},
        SECRET_KEY,
        algorithm=ALGORITHM,
    )


def decode_session_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub") or not payload.get("sid"):
        return None
    return payload


async def create_session(db: AsyncSession, user_id: int) -> str:
    """Insert a session row and return its signed token."""
    expires_at = datetime.now(timezone.utc) + timedelta(days=SESSION_TTL_DAYS)
    session_id = str(uuid.uuid4())
    db.add(UserSession(id=session_id, user_id=user_id, expires_at=expires_at))
    await db.flush()
    return create_session_token(user_id, session_id, expires_at)


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=SESSION_TTL_DAYS * 24 * 60 * 60,
        path="/",
        httponly=True,
        samesite="strict",
        secure=SESSION_COOKIE_SECURE,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")


def request_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token
    return credentials.credentials if credentials else None


async def resolve_session(db: AsyncSession, token: Optional[str]) -> Optional[tuple[User, UserSession]]:
    """(user, session) for a valid token on an unexpired session of an active user."""
    if not token:
        return None
    payload = decode_session_token(token)
    if payload is None:
        return None
    row = await db.get(UserSession, payload["sid"])
    if row is None or str(row.user_id) != str(payload["sub"]):
        return None
    if row.expires_at <= datetime.now(timezone.utc):
        return None
    user = await db.get(User, row.user_id)
    if user is None or not user.is_active:
        return None
    return user, row


# ─── User guards ─────────────────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    token = request_token(request, credentials)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    resolved = await resolve_session(db, token)
    if resolved is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")
    return resolved[0]


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    resolved = await resolve_session(db, request_token(request, credentials))
    return resolved[0] if resolved else None


async def require_master(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_master:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Master user required")
    return current_user


# ─── Access records ──────────────────────────────────────────────────────────

def _access_dict(access: UserAccess, role: Role) -> dict:
    return {
        "id": access.id,
        "entity_type": access.entity_type,
        "entity_id": access.entity_id,
        "role_id": role.id,
        "role_name": role.name,
        "can_view": role.can_view,
        "can_edit": role.can_edit,
        "can_delete": role.can_delete,
        "can_invite": role.can_invite,
        "can_manage_roles": role.can_manage_roles,
    }


async def load_access_records(
    db: AsyncSession,
    user_id: int,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
) -> list[dict]:
    """A user's grants joined with their role flags, optionally limited to one entity."""
    stmt = (
        select(UserAccess, Role)
        .join(Role, Role.id == UserAccess.role_id)
        .where(UserAccess.user_id == user_id)
        .order_by(UserAccess.id)
    )
    if entity_type is not None:
        stmt = stmt.where(UserAccess.entity_type == entity_type, UserAccess.entity_id == entity_id)
    result = await db.execute(stmt)
    return [_access_dict(access, role) for access, role in result.all()]


async def get_permissions(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserPermissions:
    records = await load_access_records(db, current_user.id)
    return aggregate_permissions(current_user.id, current_user.is_master, records)
