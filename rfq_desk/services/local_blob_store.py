# rfq_desk/services/local_blob_store.py
from __future__ import annotations

import asyncio
import hashlib
import hmac
import os
import time
from pathlib import Path
from typing import Callable, Optional, Sequence
from urllib.parse import quote as url_quote, urlencode

from rfq_desk.core.config import Settings, get_settings
from rfq_desk.core.errors import PermissionDeniedError


def sign_path(key: str, path: str, expires: int) -> str:
    msg = f"{path}:{expires}".encode("utf-8")
    return hmac.new(key.encode("utf-8"), msg, hashlib.sha256).hexdigest()


class LocalBlobStore:
    """
    Attachment storage on the local filesystem with HMAC-signed,
    expiring download links.
    """

    def __init__(self, settings: Optional[Settings] = None, clock: Callable[[], float] = time.time):
        self.settings = settings or get_settings()
        self.root = Path(self.settings.attachment_root).resolve()
        self.clock = clock

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        if target != self.root and self.root not in target.parents:
            raise PermissionDeniedError(f"Path {path!r} is outside the attachment store.")
        return target

    def open_path(self, path: str) -> Path:
        return self._resolve(path)

    async def upload(self, path: str, data: bytes) -> str:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        return path

    async def remove(self, paths: Sequence[str]) -> None:
        def _remove() -> None:
            for p in paths:
                target = self._resolve(p)
                if target.exists():
                    os.remove(target)

        await asyncio.to_thread(_remove)

    async def create_signed_url(self, path: str, ttl_seconds: int) -> str:
        target = self._resolve(path)
        exists = await asyncio.to_thread(target.is_file)
        if not exists:
            raise FileNotFoundError(f"Attachment {path!r} not found.")

        expires = int(self.clock()) + int(ttl_seconds)
        signature = sign_path(self.settings.link_signing_key, path, expires)
        query = urlencode({"expires": expires, "signature": signature})
        base = self.settings.public_base_url.rstrip("/")
        return f"{base}{self.settings.api_prefix}/attachments/{url_quote(path)}?{query}"

    def verify(self, path: str, expires: int, signature: str) -> bool:
        if expires < int(self.clock()):
            return False
        expected = sign_path(self.settings.link_signing_key, path, expires)
        return hmac.compare_digest(expected, signature)
