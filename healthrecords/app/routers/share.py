"""REST router for sharing records with healthcare providers."""

from __future__ import annotations

import io

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse, StreamingResponse

from healthrecords.app.dependencies import (
    get_base_url,
    get_current_user,
    get_share_service,
    get_storage,
)
from healthrecords.app.models.share import PdfRequest, ShareOut, ShareRequest, ShareResponse
from healthrecords.app.services.pdf_renderer import PdfRenderError
from healthrecords.app.services.share_service import (
    NoRecordsToShareError,
    ShareExpiredError,
    ShareNotFoundError,
    ShareService,
)
from healthrecords.services.storage_service import StorageService
from healthrecords.utils.logging import get_logger

router = APIRouter(prefix="/api/share", tags=["share"])
logger = get_logger(__name__)


@router.post("", response_model=ShareResponse)
async def share_records(
    payload: ShareRequest,
    user_id: str = Depends(get_current_user),
    service: ShareService = Depends(get_share_service),
    base_url: str = Depends(get_base_url),
) -> ShareResponse:
    """
    Share the user's completed records (or one record) with a recipient.

    The attempt is stored in the share history even when delivery fails.
    """
    try:
        outcome = await service.share(user_id, payload, base_url)
    except NoRecordsToShareError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except PdfRenderError as e:
        logger.error(f"Share PDF generation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="PDF generation is currently unavailable",
        ) from e

    if not outcome.success:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to send email: {outcome.share['error']}",
        )

    if outcome.share["method"] == "smtp":
        message = f"Records shared with {payload.recipient_email}"
    else:
        message = "Email delivery is not configured; use the mailto link to send the summary"

    return ShareResponse(
        success=True,
        message=message,
        share=ShareOut(**outcome.share),
        mailto_link=outcome.mailto_link,
        access_url=outcome.access_url,
    )


@router.get("/history")
async def share_history(
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    shares = [ShareOut(**row).model_dump(by_alias=True) for row in await storage.list_shares(user_id)]
    return {"success": True, "shares": shares, "count": len(shares)}


@router.get("/count/{record_id}")
async def share_count(
    record_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    """Number of shares that included ``record_id``."""

    count = await storage.count_shares_for_record(user_id, record_id)
    return {"success": True, "recordId": record_id, "count": count}


@router.post("/pdf")
async def download_pdf(
    payload: PdfRequest,
    user_id: str = Depends(get_current_user),
    service: ShareService = Depends(get_share_service),
) -> StreamingResponse:
    """Render the summary PDF and stream it back as a download."""

    try:
        filename, pdf_bytes = await service.build_pdf(user_id, payload)
    except NoRecordsToShareError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except PdfRenderError as e:
        logger.error(f"PDF generation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="PDF generation is currently unavailable",
        ) from e

    return StreamingResponse(
        io.BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/access/{token}")
async def access_shared_pdf(
    token: str,
    service: ShareService = Depends(get_share_service),
) -> FileResponse:
    try:
        path, filename = await service.open_shared_pdf(token)
    except ShareNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ShareExpiredError as e:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(e)) from e

    return FileResponse(path, media_type="application/pdf", filename=filename)
