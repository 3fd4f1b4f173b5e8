# src/voice_todo/storage/blob_store.py

from __future__ import annotations

import asyncio
import logging
import mimetypes
import re
import uuid
from pathlib import Path

from ..core.errors import UploadError

logger = logging.getLogger(__name__)

_REF_RE = re.compile(r"^blob_[0-9a-f]{32}(\.[a-z0-9]{1,8})?$")


class LocalBlobStore:
    """
    Filesystem blob storage for attached images.

    References are opaque strings ("blob_<hex>.<ext>"); only this store
    knows how they map to files.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)

    def path_for(self, ref: str) -> Path:
        if not _REF_RE.match(ref or ""):
            raise ValueError(f"Invalid blob reference: {ref!r}")
        return self._base_dir / ref

    @staticmethod
    def _extension(content_type: str) -> str:
        ext = mimetypes.guess_extension((content_type or "").split(";", 1)[0].strip()) or ""
        return ext.lower() if re.fullmatch(r"\.[a-z0-9]{1,8}", ext.lower()) else ""

    def _write(self, ref: str, data: bytes) -> None:
        self._base_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(ref)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(path)

    async def upload(self, data: bytes, *, content_type: str) -> str:
        if not data:
            raise UploadError("Refusing to store an empty upload.")
        ref = f"blob_{uuid.uuid4().hex}{self._extension(content_type)}"
        try:
            await asyncio.to_thread(self._write, ref, data)
        except OSError as e:
            raise UploadError(f"Failed to store upload: {e}") from e
        logger.debug("Blob stored ref=%s bytes=%d", ref, len(data))
        return ref

    async def read(self, ref: str) -> bytes:
        return await asyncio.to_thread(self.path_for(ref).read_bytes)
