"""Pydantic models for sharing records with a provider."""

from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .record import CamelModel

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ShareDefaults(BaseModel):
    """Fallback values used when a share request omits them."""

    patient_name: str
    patient_email: str
    recipient_name: str
    app_name: str


class ShareRequest(CamelModel):
    """Request body for sending records to a recipient."""

    recipient_email: str
    recipient_name: Optional[str] = None
    record_id: Optional[str] = Field(
        default=None,
        description="Share a single record instead of all completed records.",
    )
    patient_name: Optional[str] = None
    patient_email: Optional[str] = None
    message: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("recipient_email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        """Require a plausible address; the SMTP server has the final say."""

        value = value.strip()
        if not _EMAIL_RE.match(value):
            raise ValueError("Valid recipient email is required")
        return value


class PdfRequest(CamelModel):
    record_id: Optional[str] = None
    patient_name: Optional[str] = None
    patient_email: Optional[str] = None


class ShareOut(CamelModel):
    """Client view of a share-history row."""

    id: str
    recipient_email: str
    recipient_name: Optional[str] = None
    record_ids: List[str] = Field(default_factory=list)
    record_count: int = 0
    status: str
    method: Optional[str] = None
    pdf_size: Optional[int] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    shared_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    accessed_count: int = 0


class ShareResponse(CamelModel):
    success: bool
    message: str
    share: ShareOut
    mailto_link: Optional[str] = None
    access_url: Optional[str] = None
