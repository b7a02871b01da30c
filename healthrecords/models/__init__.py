"""Persistence models for the health records service."""

from .orm import (
    Base,
    CalendarSync,
    ImageAnalysis,
    MedicalEvent,
    Medication,
    Record,
    ShareHistory,
    User,
)

__all__ = [
    "Base",
    "CalendarSync",
    "ImageAnalysis",
    "MedicalEvent",
    "Medication",
    "Record",
    "ShareHistory",
    "User",
]
