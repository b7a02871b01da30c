"""
File storage for uploaded documents, images and voice transcripts.
Files live under the upload root, one sub-folder per category.
"""

import time
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Dict, List, Optional

from ..utils.config import settings
from ..utils.logging import get_logger, monitor_latency

logger = get_logger(__name__)

SUBFOLDERS = ("images", "pdfs", "documents", "voice", "temp")

ALLOWED_UPLOAD_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/heic",
    "image/heif",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
}

_FOLDER_FOR_TYPE = {
    "image": "images",
    "pdf": "pdfs",
    "document": "documents",
    "voice": "voice",
}


class UnsupportedFileError(ValueError):
    """Raised when an upload has a disallowed type or size."""


@dataclass
class StoredFile:
    """Metadata of a file written to the upload root."""

    original_name: str
    filename: str
    path: Path
    file_type: str
    mime_type: str
    size: int

    @property
    def folder(self) -> str:
        return _FOLDER_FOR_TYPE[self.file_type]


def categorize(mime_type: str) -> str:
    """Map a MIME type to the record type: ``image``, ``pdf`` or ``document``."""

    if mime_type.startswith("image/"):
        return "image"
    if mime_type == "application/pdf":
        return "pdf"
    return "document"


def folder_for(file_type: str) -> str:
    return _FOLDER_FOR_TYPE.get(file_type, "documents")


def unique_filename(original_name: str) -> str:
    """``<epoch-ms>-<uuid><ext>``, keeping the original extension."""

    ext = PurePath(original_name).suffix
    return f"{int(time.time() * 1000)}-{uuid.uuid4()}{ext}"


class FileStorage:
    """Local disk store rooted at ``upload_dir``."""

    def __init__(
        self,
        root: Optional[Path] = None,
        max_bytes: Optional[int] = None,
        allowed_types: Optional[set] = None,
    ):
        self.root = Path(root or settings.upload_dir)
        self.max_bytes = max_bytes or settings.max_upload_bytes
        self.allowed_types = allowed_types or ALLOWED_UPLOAD_TYPES
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for folder in SUBFOLDERS:
            (self.root / folder).mkdir(parents=True, exist_ok=True)

    def validate(self, original_name: str, mime_type: str, size: int) -> None:
        if mime_type not in self.allowed_types:
            raise UnsupportedFileError(
                f"File type {mime_type} not allowed. "
                f"Allowed types: {', '.join(sorted(self.allowed_types))}"
            )
        if size > self.max_bytes:
            limit_mb = self.max_bytes // (1024 * 1024)
            raise UnsupportedFileError(
                f"File {original_name} is too large. Maximum file size is {limit_mb}MB"
            )

    @monitor_latency("storage_save_upload", "filesystem")
    def save_upload(self, original_name: str, data: bytes, mime_type: str) -> StoredFile:
        """Validate and write an upload into its category folder."""

        self.validate(original_name, mime_type, len(data))
        file_type = categorize(mime_type)
        return self._write(original_name, data, mime_type, file_type)

    def save_voice_transcript(self, title: str, transcript: str) -> StoredFile:
        """Store a voice-note transcript as a UTF-8 text file."""

        original_name = f"{title}.txt"
        data = transcript.encode("utf-8")
        return self._write(original_name, data, "text/plain", "voice")

    def _write(self, original_name: str, data: bytes, mime_type: str, file_type: str) -> StoredFile:
        filename = unique_filename(original_name)
        path = self.root / folder_for(file_type) / filename
        path.write_bytes(data)
        logger.info(
            "Stored upload",
            extra={"extra_fields": {"filename": filename, "type": file_type, "size": len(data)}},
        )
        return StoredFile(
            original_name=original_name,
            filename=filename,
            path=path,
            file_type=file_type,
            mime_type=mime_type,
            size=len(data),
        )

    def delete(self, path: str) -> bool:
        """Remove a stored file; returns ``False`` when it was already gone."""

        target = Path(path)
        try:
            target.unlink()
            return True
        except FileNotFoundError:
            logger.warning(f"File already removed: {target}")
            return False

    def resolve(self, folder: str, filename: str) -> Optional[Path]:
        """Return the path of a stored file, refusing anything outside the root."""

        if folder not in SUBFOLDERS or folder == "temp":
            return None
        base = (self.root / folder).resolve()
        candidate = (base / filename).resolve()
        if candidate.parent != base or not candidate.is_file():
            return None
        return candidate

    def cleanup_temp_files(self, max_age_hours: Optional[int] = None) -> List[str]:
        """Delete temp files older than ``max_age_hours``; returns the removed names."""

        max_age = (max_age_hours or settings.temp_file_max_age_hours) * 3600
        now = time.time()
        removed = []
        for path in (self.root / "temp").iterdir():
            if path.is_file() and now - path.stat().st_mtime > max_age:
                path.unlink()
                removed.append(path.name)
                logger.info(f"Deleted old temp file: {path.name}")
        return removed

    def file_counts(self) -> Dict[str, int]:
        counts = {}
        for folder in ("images", "pdfs", "documents", "voice"):
            directory = self.root / folder
            counts[folder] = sum(1 for p in directory.iterdir() if p.is_file()) if directory.exists() else 0
        return counts


_file_storage: Optional[FileStorage] = None


def get_file_storage() -> FileStorage:
    global _file_storage
    if _file_storage is None:
        _file_storage = FileStorage()
    return _file_storage
