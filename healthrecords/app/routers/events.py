"""REST router for medical events extracted from conversations."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from healthrecords.app.dependencies import get_current_user, get_storage
from healthrecords.app.models.events import (
    EventExtractRequest,
    MedicalEventIn,
    MedicalEventOut,
    MedicalEventUpdate,
)
from healthrecords.services.event_extraction import event_extraction_service
from healthrecords.services.storage_service import StorageService
from healthrecords.utils.logging import get_logger

router = APIRouter(prefix="/api/events", tags=["events"])
logger = get_logger(__name__)


def _event_values(data: Dict[str, Any]) -> Dict[str, Any]:
    if data.get("priority") is not None:
        data["priority"] = data["priority"].value
    return data


def _events_out(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [MedicalEventOut(**row).model_dump(by_alias=True) for row in rows]


@router.post("/extract")
async def extract_events(payload: EventExtractRequest) -> dict:
    """Extract events, medications and reminders from a transcript."""

    extraction = event_extraction_service.extract(payload.transcript)
    return {"success": True, **extraction}


@router.get("")
async def list_events(
    start: Optional[date] = None,
    end: Optional[date] = None,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    rows = await storage.list_events(user_id, start=start, end=end)
    return {"success": True, "events": _events_out(rows), "count": len(rows)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_event(
    payload: MedicalEventIn,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    if payload.record_id and await storage.get_record(payload.record_id, user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")

    row = await storage.create_event(user_id, _event_values(payload.model_dump()))
    logger.info("Medical event created", extra={"extra_fields": {"event_id": row["id"], "type": row["type"]}})
    return {"success": True, "event": MedicalEventOut(**row).model_dump(by_alias=True)}


@router.get("/upcoming")
async def upcoming_events(
    days: int = Query(default=30, ge=1, le=365),
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    """Events from today through the next ``days`` days."""

    today = date.today()
    rows = await storage.list_events(user_id, start=today, end=today + timedelta(days=days))
    return {"success": True, "events": _events_out(rows), "count": len(rows)}


@router.put("/{event_id}")
async def update_event(
    event_id: str,
    payload: MedicalEventUpdate,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    updates = _event_values(payload.model_dump(exclude_unset=True, exclude_none=True))
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid fields to update")

    row = await storage.update_event(event_id, user_id, updates)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return {"success": True, "event": MedicalEventOut(**row).model_dump(by_alias=True)}


@router.delete("/{event_id}")
async def delete_event(
    event_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    if not await storage.delete_event(event_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return {"success": True, "message": "Event deleted"}
