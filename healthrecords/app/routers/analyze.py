"""REST router for AI document analysis of stored records."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from healthrecords.app.dependencies import (
    get_base_url,
    get_current_user,
    get_processor,
    get_storage,
)
from healthrecords.app.models.analysis import AnalyzeRequest, BatchAnalyzeRequest
from healthrecords.app.models.record import AnalysisStatus, RecordOut
from healthrecords.app.services.record_processor import RecordProcessor, is_analyzable
from healthrecords.services.document_analysis import AnalysisError
from healthrecords.services.storage_service import StorageService
from healthrecords.utils.logging import get_logger

router = APIRouter(prefix="/api/analyze", tags=["analysis"])
logger = get_logger(__name__)


async def _owned_record(storage: StorageService, record_id: str, user_id: str) -> dict:
    record = await storage.get_record(record_id, user_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found")
    return record


def _analysis_body(record: Dict[str, Any], cached: bool) -> Dict[str, Any]:
    return {
        "success": True,
        "cached": cached,
        "recordId": record["id"],
        "analysis": record.get("ai_analysis"),
        "documentType": record.get("document_type"),
        "confidence": record.get("analysis_confidence"),
        "analyzedAt": record.get("analyzed_at"),
    }


@router.post("/batch")
async def analyze_batch(
    payload: BatchAnalyzeRequest,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    processor: RecordProcessor = Depends(get_processor),
) -> dict:
    """Analyse several PDF records one after the other."""

    records = await storage.list_records_by_ids(user_id, payload.record_ids)
    if not records:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No records found")

    pdf_records = [record for record in records if record["file_type"] == "pdf"]
    if not pdf_records:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No PDF records found for analysis",
        )

    results: List[Dict[str, Any]] = []
    for record in pdf_records:
        try:
            updated = await processor.analyze(record)
            results.append(
                {
                    "recordId": record["id"],
                    "success": True,
                    "documentType": updated["document_type"],
                    "confidence": updated["analysis_confidence"],
                }
            )
        except AnalysisError as e:
            results.append({"recordId": record["id"], "success": False, "error": str(e)})

    succeeded = sum(1 for result in results if result["success"])
    return {
        "success": True,
        "message": f"Analyzed {succeeded} of {len(results)} records",
        "results": results,
    }


@router.get("/pending")
async def pending_analysis(
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    base_url: str = Depends(get_base_url),
) -> dict:
    rows = await storage.list_pending_analysis(user_id)
    records = [RecordOut.from_row(row, base_url).model_dump(by_alias=True) for row in rows]
    return {"success": True, "records": records, "count": len(records)}


@router.get("/status/{record_id}")
async def analysis_status(
    record_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    record = await _owned_record(storage, record_id, user_id)
    return {
        "success": True,
        "recordId": record["id"],
        "analysisStatus": record.get("analysis_status") or AnalysisStatus.PENDING.value,
        "documentType": record.get("document_type"),
        "confidence": record.get("analysis_confidence"),
        "analyzedAt": record.get("analyzed_at"),
        "hasAnalysis": record.get("ai_analysis") is not None,
    }


@router.post("/{record_id}")
async def analyze_record(
    record_id: str,
    payload: Optional[AnalyzeRequest] = Body(default=None),
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
    processor: RecordProcessor = Depends(get_processor),
) -> dict:
    """
    Analyse a record with the LLM.

    A completed analysis is returned as-is unless ``reanalyze`` or a
    ``customPrompt`` is given.
    """
    payload = payload or AnalyzeRequest()
    record = await _owned_record(storage, record_id, user_id)

    already_done = record.get("analysis_status") == AnalysisStatus.COMPLETED.value
    if already_done and not payload.reanalyze and not payload.custom_prompt:
        return _analysis_body(record, cached=True)

    if not is_analyzable(record):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only PDF, text documents and voice notes can be analyzed",
        )

    try:
        updated = await processor.analyze(
            record, custom_prompt=payload.custom_prompt, refresh=payload.reanalyze
        )
    except AnalysisError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Analysis failed: {e}",
        ) from e

    return _analysis_body(updated, cached=False)


@router.delete("/{record_id}")
async def clear_analysis(
    record_id: str,
    user_id: str = Depends(get_current_user),
    storage: StorageService = Depends(get_storage),
) -> dict:
    """Drop a stored analysis so the record can be analysed afresh."""

    await _owned_record(storage, record_id, user_id)
    await storage.update_record(
        record_id,
        {
            "ai_analysis": None,
            "analysis_status": AnalysisStatus.PENDING.value,
            "analysis_confidence": None,
            "document_type": None,
            "analyzed_at": None,
        },
        user_id,
    )
    logger.info("Analysis cleared", extra={"extra_fields": {"record_id": record_id}})
    return {"success": True, "message": "Analysis cleared"}
