# rfq_desk/api/v1/attachments.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from rfq_desk.core.deps import get_blob_store
from rfq_desk.core.errors import PermissionDeniedError
from rfq_desk.services.local_blob_store import LocalBlobStore

router = APIRouter(prefix="/attachments")


@router.get("/{path:path}")
def download_attachment(
    path: str,
    expires: int = Query(...),
    signature: str = Query(..., min_length=16),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """
    Serves a file behind a signed, expiring link.
    """
    if not blobs.verify(path, expires, signature):
        raise HTTPException(status_code=403, detail="Link expired or invalid.")

    try:
        target = blobs.open_path(path)
    except PermissionDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))

    if not target.is_file():
        raise HTTPException(status_code=404, detail="Attachment not found.")
    return FileResponse(target, filename=target.name)
