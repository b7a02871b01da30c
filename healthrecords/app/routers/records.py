"""REST router for health record management."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status

from healthrecords.app.dependencies import (
    get_base_url,
    get_current_user,
    get_files,
    get_processor,
    get_storage,
)
from healthrecords.app.models.record import (
    ProcessResponse,
    RecordListResponse,
    RecordOut,
    RecordResponse,
    RecordStatus,
    RecordUpdate,
    VoiceNoteCreate,
)
from healthrecords.app.services.record_processor import RecordProcessor
from healthrecords.services.file_storage import FileStorage
from healthrecords.services.storage_service import StorageService
from healthrecords.utils.config import settings
from healthrecords.utils.logging import get_logger

router = APIRouter(prefix="/api/records", tags=["records"])
logger = get_logger(__name__)


async def _owned_record(storage: StorageService, record_id: str, user_id: str) -> dict:
    record = await storage.get_record(record_id, user_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")
    return record


@router.get("", response_model=RecordListResponse)
async def list_records(
    status_filter: Optional[RecordStatus] = Query(default=None, alias="status"),
    hidden: Optional[bool] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    base_url: str = Depends(get_base_url),
) -> RecordListResponse:
    """Return the user's records, newest first."""

    rows = await storage.list_records(
        user_id,
        status=status_filter.value if status_filter else None,
        hidden=hidden,
        limit=limit,
        offset=offset,
    )
    records = [RecordOut.from_row(row, base_url) for row in rows]
    return RecordListResponse(records=records, count=len(records))


@router.post("/voice", response_model=RecordResponse, status_code=status.HTTP_201_CREATED)
async def create_voice_note(
    payload: VoiceNoteCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    files: FileStorage = Depends(get_files),
    processor: RecordProcessor = Depends(get_processor),
    base_url: str = Depends(get_base_url),
) -> RecordResponse:
    """Store a voice-note transcript as a record and schedule its processing."""

    title = (payload.title or "").strip() or f"Voice Note {datetime.now():%Y-%m-%d %H:%M}"
    stored = files.save_voice_transcript(title, payload.transcript)
    try:
        row = await storage.create_record(
            user_id,
            {
                "original_name": stored.original_name,
                "display_name": title,
                "filename": stored.filename,
                "file_path": str(stored.path),
                "file_type": stored.file_type,
                "file_size": stored.size,
                "mime_type": stored.mime_type,
                "status": RecordStatus.PROCESSING.value,
                "sync_with_calendar": payload.sync_with_calendar,
                "extracted_data": {"duration": payload.duration_seconds},
            },
        )
    except Exception as exc:
        files.delete(str(stored.path))
        logger.error(f"Failed to create voice note: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save voice note",
        ) from exc

    background_tasks.add_task(processor.process, row["id"])
    return RecordResponse(record=RecordOut.from_row(row, base_url))


@router.post("/process/{record_id}", response_model=ProcessResponse)
async def process_record(
    record_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    processor: RecordProcessor = Depends(get_processor),
) -> ProcessResponse:
    """Re-run extraction for a record."""

    await _owned_record(storage, record_id, user_id)
    await storage.update_record(record_id, {"status": RecordStatus.PROCESSING.value}, user_id)
    background_tasks.add_task(processor.process, record_id)
    return ProcessResponse(
        message="Processing started",
        estimated_time=max(int(settings.processing_delay_seconds * 1000), 0),
    )


@router.get("/{record_id}", response_model=RecordResponse)
async def get_record(
    record_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    base_url: str = Depends(get_base_url),
) -> RecordResponse:
    record = await _owned_record(storage, record_id, user_id)
    return RecordResponse(record=RecordOut.from_row(record, base_url))


@router.put("/{record_id}", response_model=RecordResponse)
async def update_record(
    record_id: str,
    payload: RecordUpdate,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    base_url: str = Depends(get_base_url),
) -> RecordResponse:
    """Update visibility, extracted data, status or display name."""

    await _owned_record(storage, record_id, user_id)
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid fields to update")

    if "status" in updates:
        updates["status"] = updates["status"].value
        if updates["status"] == RecordStatus.COMPLETED.value:
            updates["processed_at"] = datetime.utcnow()

    record = await storage.update_record(record_id, updates, user_id)
    return RecordResponse(record=RecordOut.from_row(record, base_url))


@router.post("/{record_id}/visibility", response_model=RecordResponse)
async def toggle_visibility(
    record_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    base_url: str = Depends(get_base_url),
) -> RecordResponse:
    record = await _owned_record(storage, record_id, user_id)
    updated = await storage.update_record(record_id, {"hidden": not record["hidden"]}, user_id)
    return RecordResponse(record=RecordOut.from_row(updated, base_url))


@router.delete("/{record_id}")
async def delete_record(
    record_id: str,
    permanent: bool = False,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    files: FileStorage = Depends(get_files),
) -> dict:
    """Hide a record, or remove the row and its file when ``permanent``."""

    record = await _owned_record(storage, record_id, user_id)

    if not permanent:
        await storage.update_record(record_id, {"hidden": True}, user_id)
        return {"success": True, "message": "Record hidden"}

    await storage.delete_record(record_id, user_id)
    files.delete(record["file_path"])
    logger.info("Record permanently deleted", extra={"extra_fields": {"record_id": record_id}})
    return {"success": True, "message": "Record permanently deleted"}
