"""REST router for syncing extracted events to the calendar."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from healthrecords.app.dependencies import get_current_user, get_storage
from healthrecords.app.models.events import CalendarSyncRequest
from healthrecords.services.calendar_service import CalendarService, build_sync_payloads
from healthrecords.services.storage_service import StorageService
from healthrecords.utils.logging import get_logger

router = APIRouter(prefix="/api/calendar", tags=["calendar"])
logger = get_logger(__name__)


def get_calendar_service(storage: StorageService = Depends(get_storage)) -> CalendarService:
    return CalendarService(storage)


def _as_payload(item) -> dict:
    return item.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/sync")
async def sync_calendar(
    payload: CalendarSyncRequest,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    """
    Push events and medication reminders to the calendar.

    Medications without an ``action`` are treated as newly started.
    """
    if payload.record_id and await storage.get_record(payload.record_id, user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")

    extraction = {
        "events": [_as_payload(event) for event in payload.events],
        "medications": [
            {"action": "start", **_as_payload(medication)} for medication in payload.medications
        ],
    }
    try:
        payloads = build_sync_payloads(extraction)
    except (KeyError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid event or medication: {e}",
        ) from e

    if not payloads:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to sync")

    return await calendar.sync(user_id, payloads, record_id=payload.record_id)


@router.get("/history")
async def sync_history(
    user_id: str = Depends(get_current_user),
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    syncs = await calendar.history(user_id)
    history = [
        {
            "id": sync["id"],
            "recordId": sync["record_id"],
            "syncedAt": sync["synced_at"],
            "eventsCount": sync["events_count"],
            "results": sync["results"] or [],
            "success": sync["success"],
        }
        for sync in syncs
    ]
    return {"success": True, "syncs": history, "count": len(history)}


@router.delete("/events/{event_id}")
async def delete_calendar_event(
    event_id: str,
    user_id: str = Depends(get_current_user),
    calendar: CalendarService = Depends(get_calendar_service),
) -> dict:
    if not await calendar.remove(user_id, event_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Calendar event not found")
    return {"success": True, "message": "Calendar event deleted"}
