"""REST router for medical image analysis."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.concurrency import run_in_threadpool

from healthrecords.app.dependencies import get_base_url, get_current_user, get_image_files, get_storage
from healthrecords.services.file_storage import FileStorage, UnsupportedFileError
from healthrecords.services.image_analysis import ImageAnalysisError, image_analysis_service
from healthrecords.services.storage_service import StorageService
from healthrecords.utils.logging import get_logger

router = APIRouter(prefix="/api/image-analysis", tags=["image-analysis"])
logger = get_logger(__name__)

MAX_BATCH_IMAGES = 10


async def _analyze_upload(
    upload: UploadFile,
    user_id: str,
    storage: StorageService,
    files: FileStorage,
    base_url: str,
    description: str = "",
    image_type: Optional[str] = None,
    record_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Store an image, analyse it and persist the analysis row."""

    original_name = upload.filename or "image"
    data = await upload.read()
    stored = files.save_upload(original_name, data, upload.content_type or "")

    try:
        result = await run_in_threadpool(
            image_analysis_service.analyze_image,
            str(stored.path),
            original_name,
            description,
            image_type,
        )
        row = await storage.create_image_analysis(
            user_id,
            {
                "record_id": record_id,
                "filename": stored.filename,
                "original_name": stored.original_name,
                "file_path": str(stored.path),
                "file_size": stored.size,
                "mime_type": stored.mime_type,
                "image_type": result["imageType"],
                "analysis_data": result,
                "quality_score": result["qualityMetrics"]["overallQuality"]["score"],
                "confidence_score": result["confidenceScore"],
                "clinical_flags": result["clinicalFlags"],
            },
        )
    except Exception:
        files.delete(str(stored.path))
        raise

    result["analysisId"] = row["id"]
    result["imageUrl"] = f"{base_url}/uploads/{stored.folder}/{stored.filename}"
    return result


def _analysis_out(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "recordId": row["record_id"],
        "filename": row["filename"],
        "originalName": row["original_name"],
        "imageType": row["image_type"],
        "qualityScore": row["quality_score"],
        "confidenceScore": row["confidence_score"],
        "clinicalFlags": row["clinical_flags"] or [],
        "analysis": row["analysis_data"],
        "createdAt": row["created_at"],
    }


@router.post("/analyze")
async def analyze_image(
    image: UploadFile = File(...),
    description: str = Form(default=""),
    image_type: Optional[str] = Form(default=None, alias="imageType"),
    record_id: Optional[str] = Form(default=None, alias="recordId"),
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    files: FileStorage = Depends(get_image_files),
    base_url: str = Depends(get_base_url),
) -> dict:
    """Analyse one uploaded medical image."""

    if record_id and await storage.get_record(record_id, user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")

    try:
        result = await _analyze_upload(
            image, user_id, storage, files, base_url, description, image_type, record_id
        )
    except UnsupportedFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ImageAnalysisError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e

    return {"success": True, **result}


@router.post("/batch")
async def analyze_batch(
    images: List[UploadFile] = File(...),
    record_id: Optional[str] = Form(default=None, alias="recordId"),
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    files: FileStorage = Depends(get_image_files),
    base_url: str = Depends(get_base_url),
) -> dict:
    """Analyse up to ten images; per-image failures are reported, not raised."""

    if len(images) > MAX_BATCH_IMAGES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many images. Maximum is {MAX_BATCH_IMAGES} per batch",
        )

    if record_id and await storage.get_record(record_id, user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")

    results: List[Dict[str, Any]] = []
    for image in images:
        try:
            result = await _analyze_upload(image, user_id, storage, files, base_url, record_id=record_id)
        except (UnsupportedFileError, ImageAnalysisError) as e:
            logger.error(f"Batch image analysis failed for {image.filename}: {e}")
            results.append({"filename": image.filename, "success": False, "error": str(e)})
            continue
        results.append(
            {
                "success": True,
                "analysisId": result["analysisId"],
                "filename": image.filename,
                "imageType": result["imageType"],
                "confidenceScore": result["confidenceScore"],
                "clinicalFlags": result["clinicalFlags"],
                "imageUrl": result["imageUrl"],
            }
        )

    return {"success": True, "totalProcessed": len(images), "results": results}


@router.get("/stats/summary")
async def analysis_stats(
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    """Totals, averages and per-type distribution of the user's analyses."""

    rows = await storage.list_image_analyses(user_id)

    def average(values: List[Optional[float]]) -> Optional[float]:
        present = [value for value in values if value is not None]
        return sum(present) / len(present) if present else None

    by_type: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for row in rows:
        by_type[row["image_type"] or "general"].append(row)

    distribution = [
        {
            "imageType": image_type,
            "count": len(items),
            "avgQuality": average([item["quality_score"] for item in items]),
            "avgConfidence": average([item["confidence_score"] for item in items]),
        }
        for image_type, items in by_type.items()
    ]
    distribution.sort(key=lambda item: item["count"], reverse=True)

    created = [row["created_at"] for row in rows if row["created_at"] is not None]
    return {
        "success": True,
        "stats": {
            "totalAnalyses": len(rows),
            "avgQualityScore": average([row["quality_score"] for row in rows]),
            "avgConfidenceScore": average([row["confidence_score"] for row in rows]),
            "uniqueImageTypes": len(by_type),
            "flaggedImages": sum(1 for row in rows if row["clinical_flags"]),
            "firstAnalysis": min(created) if created else None,
            "lastAnalysis": max(created) if created else None,
            "typeDistribution": distribution,
        },
    }


@router.get("/record/{record_id}")
async def analyses_for_record(
    record_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    rows = await storage.list_image_analyses_for_record(record_id, user_id)
    return {"success": True, "analyses": [_analysis_out(row) for row in rows], "count": len(rows)}


@router.get("/{analysis_id}")
async def get_analysis(
    analysis_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    row = await storage.get_image_analysis(analysis_id, user_id)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Analysis not found")
    return {"success": True, "analysis": _analysis_out(row)}
