"""Pydantic models for health records and uploads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ...services.file_storage import folder_for


class CamelModel(BaseModel):
    """Base model serialised with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecordStatus(str, Enum):
    """Lifecycle of an uploaded record."""

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RecordOut(CamelModel):
    """Client view of a stored record."""

    id: str
    original_name: str
    display_name: str
    filename: str
    url: str
    size: int
    mime_type: Optional[str] = None
    type: str
    status: str
    hidden: bool = False
    uploaded_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    extracted_data: Optional[Dict[str, Any]] = None
    extracted_events: Optional[Dict[str, Any]] = None
    ai_analysis: Optional[Dict[str, Any]] = None
    analysis_status: Optional[str] = None
    analysis_confidence: Optional[float] = None
    document_type: Optional[str] = None
    analyzed_at: Optional[datetime] = None
    sync_with_calendar: bool = False
    calendar_synced_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], base_url: str = "") -> "RecordOut":
        """Build the client view from a storage row."""

        return cls(
            id=row["id"],
            original_name=row["original_name"],
            display_name=row["display_name"],
            filename=row["filename"],
            url=record_url(base_url, row["file_type"], row["filename"]),
            size=row["file_size"],
            mime_type=row.get("mime_type"),
            type=row["file_type"],
            status=row["status"],
            hidden=bool(row.get("hidden")),
            uploaded_at=row.get("uploaded_at"),
            processed_at=row.get("processed_at"),
            extracted_data=row.get("extracted_data"),
            extracted_events=row.get("extracted_events"),
            ai_analysis=row.get("ai_analysis"),
            analysis_status=row.get("analysis_status"),
            analysis_confidence=row.get("analysis_confidence"),
            document_type=row.get("document_type"),
            analyzed_at=row.get("analyzed_at"),
            sync_with_calendar=bool(row.get("sync_with_calendar")),
            calendar_synced_at=row.get("calendar_synced_at"),
        )


def record_url(base_url: str, file_type: str, filename: str) -> str:
    return f"{base_url.rstrip('/')}/uploads/{folder_for(file_type)}/{filename}"


class RecordListResponse(BaseModel):
    success: bool = True
    records: List[RecordOut]
    count: int


class RecordResponse(BaseModel):
    success: bool = True
    record: RecordOut


class RecordUpdate(CamelModel):
    """Fields a client may change on a record."""

    hidden: Optional[bool] = None
    extracted_data: Optional[Dict[str, Any]] = None
    status: Optional[RecordStatus] = None
    display_name: Optional[str] = None

    @field_validator("display_name")
    @classmethod
    def strip_display_name(cls, value: Optional[str]) -> Optional[str]:
        """Reject blank display names."""

        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("displayName must not be empty")
        return value


class VoiceNoteCreate(CamelModel):
    """Voice-note transcript submitted by the recorder."""

    transcript: str = Field(..., min_length=1)
    duration_seconds: float = Field(default=0, ge=0)
    sync_with_calendar: bool = False
    title: Optional[str] = None


class ProcessResponse(BaseModel):
    success: bool = True
    message: str
    estimated_time: int = Field(..., serialization_alias="estimatedTime")


class UploadedFile(CamelModel):
    """Descriptor returned for each accepted upload."""

    id: str
    original_name: str
    filename: str
    url: str
    size: int
    mime_type: str
    type: str
    status: str = RecordStatus.PROCESSING.value


class UploadSingleResponse(BaseModel):
    success: bool = True
    message: str
    file: UploadedFile


class UploadMultipleResponse(BaseModel):
    success: bool = True
    message: str
    files: List[UploadedFile]


class UploadStatus(CamelModel):
    id: str
    original_name: str
    status: str
    uploaded_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class UploadStatusResponse(BaseModel):
    success: bool = True
    status: str
    record: UploadStatus
