"""Helpers for file names, MIME types and sizes."""

from __future__ import annotations

import math
from pathlib import PurePath

MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "heic": "image/heic",
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "txt": "text/plain",
}


def get_file_extension(filename: str) -> str:
    """Return the lower-cased extension without the dot, or ``""``."""

    parts = filename.split(".")
    return parts[-1].lower() if len(parts) > 1 else ""


def get_mime_type(filename: str) -> str:
    return MIME_TYPES.get(get_file_extension(filename), "application/octet-stream")


def display_name_for(original_name: str) -> str:
    """Default display name: the original file name without its extension."""

    return PurePath(original_name).stem or original_name


def format_file_size(size: int) -> str:
    """Format a byte count for humans, e.g. ``1.5 KB``."""

    if size <= 0:
        return "0 Bytes"

    units = ["Bytes", "KB", "MB", "GB"]
    index = min(int(math.floor(math.log(size, 1024))), len(units) - 1)
    value = round(size / math.pow(1024, index), 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[index]}"
