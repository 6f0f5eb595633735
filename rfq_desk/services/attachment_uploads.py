# rfq_desk/services/attachment_uploads.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from rfq_desk.services.ports import BlobStore

logger = logging.getLogger(__name__)

UploadKey = Tuple[str, int]


@dataclass
class UploadHandle:
    """Cancellation flag owned by one in-flight upload."""

    quote_id: str
    line_item_id: int
    path: str
    _cancelled: asyncio.Event = field(default_factory=asyncio.Event)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def wait_cancelled(self) -> None:
        await self._cancelled.wait()


class AttachmentUploader:
    """
    Chat attachment uploads, one cancellable upload per line item of a quote.

    Cancelling one upload leaves the others running. When an upload is
    cancelled, whatever reached the blob store is removed again.
    """

    def __init__(self, blobs: BlobStore):
        self.blobs = blobs
        self._handles: Dict[UploadKey, UploadHandle] = {}

    def in_flight(self, quote_id: str, line_item_id: int) -> Optional[UploadHandle]:
        return self._handles.get((quote_id, line_item_id))

    def cancel(self, quote_id: str, line_item_id: int) -> bool:
        handle = self._handles.get((quote_id, line_item_id))
        if handle is None:
            return False
        handle.cancel()
        return True

    async def upload(self, quote_id: str, line_item_id: int, path: str, data: bytes) -> Optional[str]:
        """
        Returns the stored path, or None when the upload was cancelled.
        """
        key = (quote_id, line_item_id)
        previous = self._handles.get(key)
        if previous is not None:
            previous.cancel()

        handle = UploadHandle(quote_id=quote_id, line_item_id=line_item_id, path=path)
        self._handles[key] = handle

        upload_task = asyncio.ensure_future(self.blobs.upload(path, data))
        cancel_task = asyncio.ensure_future(handle.wait_cancelled())
        try:
            await asyncio.wait({upload_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)

            if handle.cancelled:
                upload_task.cancel()
                await asyncio.gather(upload_task, return_exceptions=True)
                await self._compensate(handle)
                return None

            stored = upload_task.result()
            if handle.cancelled:
                await self._compensate(handle)
                return None
            return stored
        finally:
            cancel_task.cancel()
            if self._handles.get(key) is handle:
                del self._handles[key]

    async def _compensate(self, handle: UploadHandle) -> None:
        logger.info(
            "upload cancelled, removing partial object",
            extra={"quote_id": handle.quote_id, "line_item_id": handle.line_item_id, "path": handle.path},
        )
        try:
            await self.blobs.remove([handle.path])
        except Exception as exc:
            logger.warning(
                "could not remove cancelled upload",
                extra={"path": handle.path, "error": str(exc)},
            )
