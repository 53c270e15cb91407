"""Object storage for uploaded files.

The rest of the system only sees the StoredFile metadata a provider returns;
file bytes never travel past this module.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from functools import lru_cache
from pathlib import Path

import aiofiles
import aiofiles.os

from ..core.config import get_settings
from .errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

IMAGE_FORMATS = {"jpg", "jpeg", "png", "gif", "webp", "svg", "bmp", "tif", "tiff"}
DRAWING_FORMATS = {"dwg", "dxf", "dwf", "rvt", "skp", "ifc"}
DOCUMENT_FORMATS = {"doc", "docx", "xls", "xlsx", "ppt", "pptx", "txt", "csv", "rtf"}

CONTENT_TYPE_FORMATS = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "text/plain": "txt",
    "text/csv": "csv",
}


@dataclass
class StoredFile:
    """Metadata for a file held by a storage provider."""

    id: str
    url: str
    format: str | None
    size: int
    content_type: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def file_format(filename: str | None, content_type: str | None = None) -> str | None:
    """Lowercase extension without the dot, falling back to the MIME type."""
    if filename:
        suffix = Path(filename).suffix.lstrip(".").lower()
        if suffix:
            return suffix
    if content_type:
        return CONTENT_TYPE_FORMATS.get(content_type.split(";")[0].strip().lower())
    return None


def detect_file_type(filename: str | None, content_type: str | None = None) -> str:
    """Classify an upload as image, pdf, drawing, document, or other."""
    fmt = file_format(filename, content_type)
    if content_type and content_type.startswith("image/"):
        return "image"
    if fmt in IMAGE_FORMATS:
        return "image"
    if fmt == "pdf":
        return "pdf"
    if fmt in DRAWING_FORMATS:
        return "drawing"
    if fmt in DOCUMENT_FORMATS:
        return "document"
    return "other"


class BaseStorageProvider(ABC):
    """Abstract file store. Implementations raise UpstreamError on failure."""

    @abstractmethod
    async def upload(
        self,
        folder: str,
        content: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StoredFile:
        ...

    @abstractmethod
    async def delete(self, file_id: str) -> bool:
        ...


class LocalStorageProvider(BaseStorageProvider):
    """Stores files on local disk, served by the static files mount."""

    def __init__(self, base_path: str | Path, base_url: str):
        self.base_path = Path(base_path)
        self.base_url = base_url.rstrip("/")

    async def upload(
        self,
        folder: str,
        content: bytes,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> StoredFile:
        if not content:
            raise ValidationError("Uploaded file is empty")

        fmt = file_format(filename, content_type)
        stored_name = uuid.uuid4().hex + (f".{fmt}" if fmt else "")
        file_id = f"{folder}/{stored_name}"
        path = self.base_path / folder / stored_name

        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error(f"Failed to store {filename!r} in {folder}: {e}")
            raise UpstreamError("File storage is unavailable") from e

        logger.info(f"Stored file {file_id} ({len(content)} bytes)")
        return StoredFile(
            id=file_id,
            url=f"{self.base_url}/{file_id}",
            format=fmt,
            size=len(content),
            content_type=content_type,
        )

    async def delete(self, file_id: str) -> bool:
        path = self.base_path / file_id
        if not await aiofiles.os.path.exists(path):
            logger.warning(f"File not found for deletion: {file_id}")
            return False
        try:
            await aiofiles.os.remove(path)
        except OSError as e:
            raise UpstreamError("File storage is unavailable") from e
        logger.info(f"Deleted file {file_id}")
        return True


@asynccontextmanager
async def discard_on_error(storage: BaseStorageProvider, stored: StoredFile | None):
    """Delete an uploaded file if the block that records it raises."""
    try:
        yield
    except Exception:
        if stored is not None:
            try:
                await storage.delete(stored.id)
            except UpstreamError:
                logger.exception(f"Could not remove orphaned upload {stored.id}")
        raise


@lru_cache
def get_storage_provider() -> BaseStorageProvider:
    settings = get_settings()
    return LocalStorageProvider(settings.storage_base_path, settings.storage_base_url)
