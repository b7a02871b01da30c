"""
FastAPI main application for the health records service.
Wires the REST routers, request context, error handlers and startup tasks.
"""

from datetime import datetime
import uuid

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..app.routers import (
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
from ..services.file_storage import get_file_storage
from ..services.storage_service import get_storage_service
from ..utils.config import settings
from ..utils.logging import RequestContext, get_logger

logger = get_logger(__name__)


# Create FastAPI app
app = FastAPI(
    title="Revado Health Records API",
    description="Health records upload, analysis and sharing backend",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(health.router)
app.include_router(upload.router)
app.include_router(upload.files_router)
app.include_router(records.router)
app.include_router(analyze.router)
app.include_router(image_analysis.router)
app.include_router(share.router)
app.include_router(events.router)
app.include_router(medications.router)
app.include_router(calendar.router)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Bind request id and user id to every log line of the request."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    with RequestContext(request_id=request_id, user_id=request.headers.get("x-user-id")):
        response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    return response


@app.get("/")
async def root():
    """Service description and endpoint map."""
    return {
        "message": "Revado Health Records API",
        "version": __version__,
        "endpoints": {
            "health": "/api/health",
            "upload": "/api/upload",
            "records": "/api/records",
            "analyze": "/api/analyze",
            "imageAnalysis": "/api/image-analysis",
            "share": "/api/share",
            "events": "/api/events",
            "medications": "/api/medications",
            "calendar": "/api/calendar",
        },
        "features": {
            "aiAnalysis": settings.enable_ai_analysis,
            "llmConfigured": settings.llm_configured,
            "emailConfigured": settings.smtp_configured,
            "autoAnalyze": settings.auto_analyze,
        },
    }


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    """Report request validation failures as 400s."""
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": message,
            "details": [
                {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg")}
                for error in errors
            ],
            "status_code": status.HTTP_400_BAD_REQUEST,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "status_code": 500,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


# Startup and shutdown events
@app.on_event("startup")
async def startup_event():
    """Create the database schema and upload folders, and clear stale temp files."""
    logger.info("Starting Revado Health Records API server")

    try:
        get_storage_service()
        files = get_file_storage()
        removed = files.cleanup_temp_files()
        if removed:
            logger.info(f"Removed {len(removed)} stale temp files")
    except Exception as e:
        logger.error(f"Service initialization failed: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down Revado Health Records API server")
    get_storage_service().close()


if __name__ == "__main__":
    uvicorn.run(
        "healthrecords.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
