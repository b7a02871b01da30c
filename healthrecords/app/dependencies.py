"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

from fastapi import Depends, Header, Request

from ..services.file_storage import FileStorage, get_file_storage
from ..services.image_analysis import ALLOWED_IMAGE_TYPES
from ..services.storage_service import StorageService, get_storage_service
from ..utils.config import settings
from .services.record_processor import RecordProcessor
from .services.share_service import ShareService

DEFAULT_USER_ID = "demo-user"


async def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """User id from the ``X-User-Id`` header; authentication is out of scope."""

    return (x_user_id or "").strip() or DEFAULT_USER_ID


def get_storage() -> StorageService:
    return get_storage_service()


def get_files() -> FileStorage:
    return get_file_storage()


def get_image_files(files: FileStorage = Depends(get_files)) -> FileStorage:
    """Same upload root, with the image analysis type and size limits."""

    return FileStorage(files.root, settings.max_image_bytes, ALLOWED_IMAGE_TYPES)


def get_processor(storage: StorageService = Depends(get_storage)) -> RecordProcessor:
    return RecordProcessor(storage)


def get_share_service(storage: StorageService = Depends(get_storage)) -> ShareService:
    return ShareService(storage)


def get_base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")
