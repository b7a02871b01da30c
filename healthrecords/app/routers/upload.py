"""REST router for file uploads and stored file access."""

from __future__ import annotations

from typing import List

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    HTTPException,
    UploadFile,
    status,
)
from fastapi.responses import FileResponse

from healthrecords.app.dependencies import (
    get_base_url,
    get_current_user,
    get_files,
    get_processor,
    get_storage,
)
from healthrecords.app.models.record import (
    UploadedFile,
    UploadMultipleResponse,
    UploadSingleResponse,
    UploadStatus,
    UploadStatusResponse,
    record_url,
)
from healthrecords.app.services.record_processor import RecordProcessor
from healthrecords.services.file_storage import FileStorage, StoredFile, UnsupportedFileError
from healthrecords.services.storage_service import StorageService
from healthrecords.utils.config import settings
from healthrecords.utils.file_helpers import display_name_for, get_mime_type
from healthrecords.utils.logging import get_logger

router = APIRouter(prefix="/api/upload", tags=["upload"])
files_router = APIRouter(tags=["files"])
logger = get_logger(__name__)


async def _store_upload(
    upload: UploadFile,
    user_id: str,
    storage: StorageService,
    files: FileStorage,
    base_url: str,
) -> UploadedFile:
    """Write one upload to disk and create its record; the file is removed if the row fails."""

    original_name = upload.filename or "upload"
    mime_type = upload.content_type or get_mime_type(original_name)
    data = await upload.read()
    stored: StoredFile = files.save_upload(original_name, data, mime_type)

    try:
        row = await storage.create_record(
            user_id,
            {
                "original_name": stored.original_name,
                "display_name": display_name_for(stored.original_name),
                "filename": stored.filename,
                "file_path": str(stored.path),
                "file_type": stored.file_type,
                "file_size": stored.size,
                "mime_type": stored.mime_type,
                "status": "uploaded",
            },
        )
    except Exception:
        files.delete(str(stored.path))
        raise

    return UploadedFile(
        id=row["id"],
        original_name=stored.original_name,
        filename=stored.filename,
        url=record_url(base_url, stored.file_type, stored.filename),
        size=stored.size,
        mime_type=stored.mime_type,
        type=stored.file_type,
    )


async def _discard_uploads(
    uploaded: List[UploadedFile], user_id: str, storage: StorageService, files: FileStorage
) -> None:
    """Remove the files and rows already created for a failed multi-file request."""

    for item in uploaded:
        record = await storage.get_record(item.id, user_id)
        if record is not None:
            files.delete(record["file_path"])
            await storage.delete_record(item.id, user_id)


@router.post("/single", response_model=UploadSingleResponse)
async def upload_single(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    files: FileStorage = Depends(get_files),
    processor: RecordProcessor = Depends(get_processor),
    base_url: str = Depends(get_base_url),
) -> UploadSingleResponse:
    """Upload one file and schedule its processing."""

    try:
        uploaded = await _store_upload(file, user_id, storage, files, base_url)
    except UnsupportedFileError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(f"Upload failed: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Upload failed"
        ) from exc

    background_tasks.add_task(processor.process, uploaded.id)
    return UploadSingleResponse(message="File uploaded successfully", file=uploaded)


@router.post("/multiple", response_model=UploadMultipleResponse)
async def upload_multiple(
    background_tasks: BackgroundTasks,
    files: List[UploadFile] = File(...),
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    file_store: FileStorage = Depends(get_files),
    processor: RecordProcessor = Depends(get_processor),
    base_url: str = Depends(get_base_url),
) -> UploadMultipleResponse:
    """Upload up to ``max_upload_files`` files in one request."""

    if len(files) > settings.max_upload_files:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many files. Maximum is {settings.max_upload_files} files per upload",
        )

    for upload in files:
        mime_type = upload.content_type or get_mime_type(upload.filename or "")
        size = upload.size if upload.size is not None else 0
        try:
            file_store.validate(upload.filename or "upload", mime_type, size)
        except UnsupportedFileError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    uploaded: List[UploadedFile] = []
    try:
        for upload in files:
            uploaded.append(await _store_upload(upload, user_id, storage, file_store, base_url))
    except UnsupportedFileError as exc:
        await _discard_uploads(uploaded, user_id, storage, file_store)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(f"Multiple upload failed: {exc}")
        await _discard_uploads(uploaded, user_id, storage, file_store)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Upload failed"
        ) from exc

    for item in uploaded:
        background_tasks.add_task(processor.process, item.id)
    return UploadMultipleResponse(
        message=f"{len(uploaded)} files uploaded successfully", files=uploaded
    )


@router.get("/status/{record_id}", response_model=UploadStatusResponse)
async def upload_status(
    record_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> UploadStatusResponse:
    """Polling endpoint for processing progress."""

    record = await storage.get_record(record_id, user_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")
    return UploadStatusResponse(
        status=record["status"],
        record=UploadStatus(
            id=record["id"],
            original_name=record["original_name"],
            status=record["status"],
            uploaded_at=record["uploaded_at"],
            processed_at=record["processed_at"],
        ),
    )


@router.delete("/{record_id}")
async def delete_upload(
    record_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    files: FileStorage = Depends(get_files),
) -> dict:
    """Delete an uploaded file and its record."""

    record = await storage.get_record(record_id, user_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")

    files.delete(record["file_path"])
    await storage.delete_record(record_id, user_id)
    return {"success": True, "message": "File deleted successfully"}


@files_router.get("/uploads/{folder}/{filename}")
async def serve_upload(folder: str, filename: str, files: FileStorage = Depends(get_files)) -> FileResponse:
    path = files.resolve(folder, filename)
    if path is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return FileResponse(path, media_type=get_mime_type(filename))
