"""
Document blob storage.

Uploads are written to UPLOAD_DIR under a random hex name and the stored name
is kept on the documents row. Rows created by older deployments may instead
hold a public http(s) URL, which is only ever read.
"""
import os
import shutil
import asyncio
import uuid
import logging
import mimetypes
from typing import Optional

import httpx
from fastapi import UploadFile

from app.config import UPLOAD_DIR

logger = logging.getLogger("landdev-api")

_REMOTE_PREFIXES = ("http://", "https://")


def is_remote(filename: str) -> bool:
    return filename.startswith(_REMOTE_PREFIXES)


def stored_path(filename: str) -> str:
    # Stored names are generated hex names; basename() keeps reads inside UPLOAD_DIR
    return os.path.join(UPLOAD_DIR, os.path.basename(filename))


def guess_mime_type(filename: Optional[str], declared: Optional[str] = None) -> str:
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or declared or "application/octet-stream"


def save_upload(file: UploadFile) -> tuple[str, int]:
    """Save an uploaded file under UPLOAD_DIR. Returns (stored name, size in bytes). Blocking."""
    ext = os.path.splitext(file.filename or "")[-1].lower()
    filename = f"{uuid.uuid4().hex}{ext}"
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    path = os.path.join(UPLOAD_DIR, filename)
    with open(path, "wb") as fh:
        shutil.copyfileobj(file.file, fh)
    size = os.path.getsize(path)
    logger.info(f"Stored upload {file.filename!r} as {filename} ({size} bytes)")
    return filename, size


def _read_local(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()


async def read_document_bytes(filename: str) -> bytes:
    """Bytes of a stored document. Raises on a missing file or a non-2xx fetch."""
    if is_remote(filename):
        async with httpx.AsyncClient(timeout=60, follow_redirects=True) as client:
            r = await client.get(filename)
            r.raise_for_status()
            return r.content
    return await asyncio.to_thread(_read_local, stored_path(filename))


def delete_stored_file(filename: Optional[str]) -> None:
    """Remove a stored upload. Remote URLs and missing files are logged and skipped."""
    if not filename:
        return
    if is_remote(filename):
        logger.info(f"Not deleting remote document {filename}")
        return
    try:
        os.remove(stored_path(filename))
    except FileNotFoundError:
        logger.warning(f"Stored file {filename} already missing")
