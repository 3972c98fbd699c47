"""Documents API — plan uploads attached to a stage or precinct."""
import asyncio
import logging
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.api.crud import delete_row, get_or_404, insert_row
from app.api.deps import get_db, get_permissions, client_ip
from app.models.orm_models import Document
from app.services.document_store import delete_stored_file, guess_mime_type, save_upload
from app.services.permissions import UserPermissions, log_activity, require_edit, require_view
from app.services.serialization import row_to_dict, rows_to_dicts

logger = logging.getLogger("landdev-api")

router = APIRouter(prefix="/api/documents", tags=["Documents"])


class IdBody(BaseModel):
    id: int


@router.get("")
async def list_documents(
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_view(perms)
    stmt = select(Document).order_by(Document.created_at.desc(), Document.id.desc())
    if entity_type and entity_id is not None:
        stmt = stmt.where(Document.entity_type == entity_type, Document.entity_id == entity_id)
    result = await db.execute(stmt)
    return rows_to_dicts(result.scalars().all())


@router.post("", status_code=status.HTTP_201_CREATED)
async def upload_document(
    request: Request,
    file: Optional[UploadFile] = File(None),
    entity_type: Optional[str] = Form(None),
    entity_id: Optional[int] = Form(None),
    document_type: str = Form("other"),
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    if file is None or not entity_type or not entity_id:
        raise HTTPException(status_code=400, detail="Missing required fields")

    filename, size = await asyncio.to_thread(save_upload, file)
    try:
        doc = await insert_row(db, Document, {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "filename": filename,
            "original_name": file.filename or filename,
            "mime_type": guess_mime_type(file.filename, file.content_type),
            "size": size,
            "document_type": document_type or "other",
        })
    except Exception:
        await asyncio.to_thread(delete_stored_file, filename)
        raise
    await log_activity(db, perms.user_id, "upload", "document", doc.id,
                       {"original_name": doc.original_name, "entity_type": entity_type, "entity_id": entity_id},
                       client_ip(request))
    return row_to_dict(doc)


@router.delete("")
async def delete_document(
    req: IdBody,
    request: Request,
    perms: UserPermissions = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    require_edit(perms)
    doc = await get_or_404(db, Document, req.id, "Document")
    filename = doc.filename
    details = {"original_name": doc.original_name}
    await delete_row(db, doc)
    # Blob goes only once the row delete has flushed
    await asyncio.to_thread(delete_stored_file, filename)
    await log_activity(db, perms.user_id, "delete", "document", req.id, details, client_ip(request))
    return {"success": True}
