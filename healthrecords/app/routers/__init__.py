"""API routers for the health records service."""

from healthrecords.app.routers import (
    analyze,
    calendar,
    events,
    health,
    image_analysis,
    medications,
    records,
    share,
    upload,
)

__all__ = [
    "analyze",
    "calendar",
    "events",
    "health",
    "image_analysis",
    "medications",
    "records",
    "share",
    "upload",
]
