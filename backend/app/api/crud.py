"""Shared row helpers for the CRUD routers."""
from datetime import datetime, timezone
from typing import Any, Optional, Type
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import Base

# Never written from request bodies
_PROTECTED = {"id", "created_at", "updated_at"}


def writable(model: Type[Base], data: dict) -> dict:
    """Keep only keys that name a writable column of the model."""
    columns = {c.name for c in model.__table__.columns} - _PROTECTED
    return {k: v for k, v in data.items() if k in columns}


async def get_or_404(db: AsyncSession, model: Type[Base], row_id: Any, label: str):
    row = await db.get(model, row_id) if row_id is not None else None
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return row


async def insert_row(db: AsyncSession, model: Type[Base], data: dict):
    row = model(**writable(model, data))
    db.add(row)
    await db.flush()
    # Load server defaults (created_at) without lazy IO on access
    await db.refresh(row)
    return row


async def update_row(db: AsyncSession, row, data: dict):
    for key, value in writable(type(row), data).items():
        setattr(row, key, value)
    await db.flush()
    await db.refresh(row)
    return row


async def delete_row(db: AsyncSession, row) -> None:
    await db.delete(row)
    await db.flush()


def parse_iso_datetime(value: Optional[str], field: str) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"Invalid date for {field}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
