"""
Session authentication routes — login, logout, me, register, password reset, theme.

Rate limiting for these endpoints is enforced at the middleware level
(RateLimitMiddleware in app.services.middleware): 10 requests per minute per IP.
"""
import re
import uuid
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from app.api.deps import (
    security, hash_password, verify_password, create_session, set_session_cookie,
    clear_session_cookie, decode_session_token, request_token, resolve_session,
    load_access_records, client_ip, get_optional_user,
)
from app.config import (
    IS_PRODUCTION, MIN_PASSWORD_LEN, PASSWORD_RESET_TTL_HOURS, VALID_THEMES, DEFAULT_THEME,
    SESSION_COOKIE_NAME,
)
from app.db import get_db
from app.models.orm_models import User, UserAccess, Invitation, PasswordReset, Session as UserSession
from app.services.permissions import log_activity

logger = logging.getLogger("landdev-api")

# Simple RFC-5322 subset email regex (no external library required)
_EMAIL_RE = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
theme_router = APIRouter(prefix="/api/user", tags=["Authentication"])


def _password_too_short(password: str) -> bool:
    return len(password) < MIN_PASSWORD_LEN


def _public_user(user: User) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name, "is_master": bool(user.is_master)}


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RegisterRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    invite_token: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None


class ThemeRequest(BaseModel):
    theme: Optional[str] = None


@router.post("/login")
async def login(req: LoginRequest, request: Request, response: Response, db: AsyncSession = Depends(get_db)):
    if not req.email or not req.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    email = req.email.strip().lower()
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is disabled")

    token = await create_session(db, user.id)
    user.last_login = datetime.now(timezone.utc)
    set_session_cookie(response, token)
    await log_activity(db, user.id, "login", "user", user.id, ip_address=client_ip(request))
    logger.info(f"User {user.id} logged in")
    return {"user": _public_user(user), "token": token}


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
):
    token = request_token(request, credentials)
    payload = decode_session_token(token) if token else None
    if payload:
        await db.execute(delete(UserSession).where(UserSession.id == payload["sid"]))
    clear_session_cookie(response)
    return {"success": True}


@router.get("/me")
async def get_me(
    request: Request,
    response: Response,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
):
    token = request_token(request, credentials)
    resolved = await resolve_session(db, token)
    if resolved is None:
        if request.cookies.get(SESSION_COOKIE_NAME):
            clear_session_cookie(response)
        return {"user": None}

    user = resolved[0]
    access = await load_access_records(db, user.id)
    return {
        "user": {
            **_public_user(user),
            "theme": user.theme or DEFAULT_THEME,
            "access": [
                {k: a[k] for k in (
                    "entity_type", "entity_id", "role_name", "can_view", "can_edit",
                    "can_delete", "can_invite", "can_manage_roles",
                )}
                for a in access
            ],
        }
    }


@router.post("/register")
async def register(req: RegisterRequest, response: Response, db: AsyncSession = Depends(get_db)):
    if not req.email or not req.password or not req.name:
        raise HTTPException(status_code=400, detail="Email, password, and name are required")
    if _password_too_short(req.password):
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LEN} characters")
    email = req.email.strip().lower()
    if not _EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Invalid email format")

    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=400, detail="Email already registered")

    invitation = None
    if req.invite_token:
        result = await db.execute(select(Invitation).where(
            Invitation.token == req.invite_token,
            Invitation.expires_at > datetime.now(timezone.utc),
        ))
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise HTTPException(status_code=400, detail="Invalid or expired invitation")
        if invitation.accepted_at is not None:
            raise HTTPException(status_code=400, detail="Invitation already used")
        if invitation.email.lower() != email:
            raise HTTPException(status_code=400, detail="Email does not match invitation")

    user = User(
        email=email,
        password_hash=hash_password(req.password),
        name=req.name.strip(),
        is_master=0,
        is_active=1,
    )
    db.add(user)
    await db.flush()

    if invitation is not None:
        db.add(UserAccess(
            user_id=user.id,
            role_id=invitation.role_id,
            entity_type=invitation.entity_type,
            entity_id=invitation.entity_id,
            granted_by=invitation.invited_by,
        ))
        invitation.accepted_at = datetime.now(timezone.utc)
        logger.info(f"Invitation {invitation.id} accepted by user {user.id}")

    token = await create_session(db, user.id)
    set_session_cookie(response, token)
    return {"user": _public_user(user), "token": token}


@router.post("/forgot-password")
async def forgot_password(req: ForgotPasswordRequest, db: AsyncSession = Depends(get_db)):
    if not req.email:
        raise HTTPException(status_code=400, detail="Email is required")

    body = {"success": True, "message": "If an account exists, a reset link has been sent"}
    result = await db.execute(select(User).where(User.email == req.email.strip().lower()))
    user = result.scalar_one_or_none()
    if user is None:
        return body

    token = str(uuid.uuid4())
    db.add(PasswordReset(
        user_id=user.id,
        token=token,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=PASSWORD_RESET_TTL_HOURS),
    ))
    # No mail transport: the link goes to the log
    reset_url = f"/reset-password?token={token}"
    logger.info(f"Password reset requested for user {user.id}. Reset URL: {reset_url}")
    if not IS_PRODUCTION:
        body.update({"dev_token": token, "dev_reset_url": reset_url})
    return body


@router.post("/reset-password")
async def reset_password(req: ResetPasswordRequest, response: Response, db: AsyncSession = Depends(get_db)):
    if not req.token or not req.password:
        raise HTTPException(status_code=400, detail="Token and password are required")
    if _password_too_short(req.password):
        raise HTTPException(status_code=400, detail=f"Password must be at least {MIN_PASSWORD_LEN} characters")

    now = datetime.now(timezone.utc)
    result = await db.execute(select(PasswordReset).where(
        PasswordReset.token == req.token,
        PasswordReset.expires_at > now,
        PasswordReset.used_at.is_(None),
    ))
    reset = result.scalar_one_or_none()
    if reset is None:
        raise HTTPException(status_code=400, detail="Invalid or expired reset link")

    user = await db.get(User, reset.user_id)
    if user is None:
        raise HTTPException(status_code=400, detail="Invalid or expired reset link")
    user.password_hash = hash_password(req.password)
    reset.used_at = now

    token = await create_session(db, user.id)
    set_session_cookie(response, token)
    return {"success": True, "user": _public_user(user)}


# ─── Theme ───────────────────────────────────────────────────────────────────

@theme_router.get("/theme")
async def get_theme(user: Optional[User] = Depends(get_optional_user)):
    if user is None:
        return {"theme": DEFAULT_THEME}
    return {"theme": user.theme or DEFAULT_THEME}


@theme_router.post("/theme")
async def set_theme(req: ThemeRequest, user: Optional[User] = Depends(get_optional_user)):
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if req.theme not in VALID_THEMES:
        raise HTTPException(status_code=400, detail="Invalid theme")
    user.theme = req.theme
    return {"success": True, "theme": req.theme}
