"""Pydantic models for medical events, medications and calendar sync."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import List, Optional

from pydantic import Field, field_validator

from .record import CamelModel


class Priority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EventExtractRequest(CamelModel):
    transcript: str = Field(..., min_length=1)


class MedicalEventIn(CamelModel):
    """Event created by the client or accepted from an extraction."""

    type: str
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    date: dt.date
    time: Optional[str] = None
    location: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    provider: Optional[str] = None
    needs_prep: bool = False
    prep_instructions: List[str] = Field(default_factory=list)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    record_id: Optional[str] = None


class MedicalEventUpdate(CamelModel):
    type: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None
    location: Optional[str] = None
    priority: Optional[Priority] = None
    provider: Optional[str] = None
    needs_prep: Optional[bool] = None
    prep_instructions: Optional[List[str]] = None


class MedicalEventOut(MedicalEventIn):
    id: str
    priority: str = Priority.MEDIUM.value
    prep_instructions: Optional[List[str]] = None
    created_at: Optional[dt.datetime] = None


class MedicationIn(CamelModel):
    name: str = Field(..., min_length=1)
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    instructions: Optional[str] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    prescriber: Optional[str] = None
    reason: Optional[str] = None
    side_effects: List[str] = Field(default_factory=list)
    interactions: List[str] = Field(default_factory=list)
    reminder_time: Optional[str] = None
    record_id: Optional[str] = None

    @field_validator("reminder_time")
    @classmethod
    def check_reminder_time(cls, value: Optional[str]) -> Optional[str]:
        """Accept ``HH:MM`` with an optional ``AM``/``PM`` suffix."""

        if value is None:
            return None
        clock = value.strip().split()[0]
        hours, _, minutes = clock.partition(":")
        if not hours.isdigit() or (minutes and not minutes.isdigit()):
            raise ValueError("reminderTime must look like HH:MM")
        return value.strip()


class MedicationUpdate(CamelModel):
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    instructions: Optional[str] = None
    end_date: Optional[dt.date] = None
    reminder_time: Optional[str] = None
    stopped: Optional[bool] = None


class MedicationOut(MedicationIn):
    id: str
    side_effects: Optional[List[str]] = None
    interactions: Optional[List[str]] = None
    stopped: bool = False
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class CalendarEventIn(CamelModel):
    """Event as sent for calendar sync; only title and date are required."""

    id: Optional[str] = None
    type: Optional[str] = None
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    date: dt.date
    time: Optional[str] = None
    location: Optional[str] = None
    priority: Optional[Priority] = None
    provider: Optional[str] = None
    needs_prep: bool = False
    prep_instructions: List[str] = Field(default_factory=list)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class CalendarMedicationIn(MedicationIn):
    id: Optional[str] = None
    action: Optional[str] = None


class CalendarSyncRequest(CamelModel):
    """Extracted items to push to the calendar."""

    events: List[CalendarEventIn] = Field(default_factory=list)
    medications: List[CalendarMedicationIn] = Field(default_factory=list)
    record_id: Optional[str] = None
