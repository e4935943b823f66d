"""
Blob Storage

Uploaded documents are stored as opaque objects; the admissions engine only
keeps the returned URL. The local filesystem implementation runs blocking
file I/O in a worker thread.
"""

import asyncio
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Protocol

from app.core.config import settings

logger = logging.getLogger(__name__)


class BlobStorage(Protocol):
    """Operations the admissions engine needs from blob storage."""

    async def put_object(self, data: bytes, content_type: str) -> str: ...

    async def delete_object(self, url: str) -> None: ...


class LocalFileSystemStorage:
    """Stores objects as files under a base directory, served from base_url."""

    def __init__(self, base_dir: str | Path, base_url: str):
        self.base_dir = Path(base_dir)
        self.base_url = base_url.rstrip("/")

    def _path_for(self, url: str) -> Path:
        prefix = f"{self.base_url}/"
        if not url.startswith(prefix):
            raise ValueError(f"URL is not managed by this storage: {url}")
        name = url[len(prefix) :]
        if "/" in name or name in {"", ".", ".."}:
            raise ValueError(f"Invalid object name in URL: {url}")
        return self.base_dir / name

    async def put_object(self, data: bytes, content_type: str) -> str:
        extension = mimetypes.guess_extension(content_type) or ""
        name = f"{uuid.uuid4().hex}{extension}"
        path = self.base_dir / name

        def _write() -> None:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug(f"Stored object {name} ({len(data)} bytes)")
        return f"{self.base_url}/{name}"

    async def delete_object(self, url: str) -> None:
        path = self._path_for(url)
        await asyncio.to_thread(path.unlink, True)
        logger.debug(f"Deleted object {path.name}")


def get_blob_storage() -> BlobStorage:
    """FastAPI dependency returning the configured blob storage."""
    return LocalFileSystemStorage(settings.upload_dir, settings.media_base_url)
