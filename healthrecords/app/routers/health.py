"""Health, readiness and liveness endpoints."""

from __future__ import annotations

import time
from datetime import datetime

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from healthrecords import __version__
from healthrecords.app.dependencies import get_files, get_storage
from healthrecords.services.file_storage import FileStorage
from healthrecords.services.llm_service import llm_service
from healthrecords.services.storage_service import StorageService
from healthrecords.utils.cache import get_cache_stats
from healthrecords.utils.config import settings
from healthrecords.utils.logging import get_logger

router = APIRouter(prefix="/api/health", tags=["health"])
logger = get_logger(__name__)

_STARTED_AT = time.monotonic()


def _storage_status(files: FileStorage) -> dict:
    try:
        counts = files.file_counts()
    except OSError as e:
        logger.error(f"Storage health check failed: {e}")
        return {"status": "error", "error": str(e)}
    return {
        "status": "available",
        "path": str(files.root),
        "fileCount": sum(counts.values()),
        "files": counts,
    }


@router.get("")
async def health_check(
    storage: StorageService = Depends(get_storage),
    files: FileStorage = Depends(get_files),
) -> JSONResponse:
    """Database and upload storage status; 503 when either check fails."""

    database = storage.health_check()
    upload_storage = _storage_status(files)
    healthy = database["status"] != "error" and upload_storage["status"] != "error"

    body = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.utcnow().isoformat(),
        "uptime": round(time.monotonic() - _STARTED_AT, 3),
        "environment": settings.environment,
        "version": __version__,
        "database": database,
        "storage": upload_storage,
        "llm": llm_service.get_performance_stats(),
    }
    if settings.enable_caching:
        body["cache"] = get_cache_stats()

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body,
    )


@router.get("/ready")
async def readiness(storage: StorageService = Depends(get_storage)) -> JSONResponse:
    database = storage.health_check()
    if database["status"] == "error":
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready", "error": database.get("error")},
        )
    return JSONResponse(content={"status": "ready"})


@router.get("/live")
async def liveness() -> dict:
    return {"status": "alive"}
