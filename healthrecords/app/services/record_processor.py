"""Background processing of uploaded records."""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ...services.calendar_service import CalendarService, build_sync_payloads
from ...services.document_analysis import AnalysisError, document_analysis_service
from ...services.event_extraction import event_extraction_service
from ...utils.config import settings
from ...utils.logging import RequestContext, get_compliance_logger, get_logger

logger = get_logger(__name__)
compliance_logger = get_compliance_logger()

MOCK_SUMMARY = (
    "This is a simulated extraction summary. In production, this would contain "
    "actual OCR/AI results."
)


def is_analyzable(record: Dict[str, Any]) -> bool:
    """PDFs, voice transcripts and plain-text documents carry extractable text."""

    return record["file_type"] in ("pdf", "voice") or record.get("mime_type") == "text/plain"


def mock_extraction(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "patientName": "John Doe",
        "date": datetime.utcnow().isoformat() + "Z",
        "provider": "Healthcare Provider",
        "type": "Medical Image" if record["file_type"] == "image" else "Medical Report",
        "summary": MOCK_SUMMARY,
        "confidence": 0.95,
    }


class RecordProcessor:
    """Runs extraction, calendar sync and analysis for one record at a time."""

    def __init__(
        self,
        storage,
        analysis_service=document_analysis_service,
        extraction_service=event_extraction_service,
        delay_seconds: Optional[float] = None,
    ):
        self.storage = storage
        self._analysis = analysis_service
        self._extraction = extraction_service
        self._calendar = CalendarService(storage)
        self.delay_seconds = delay_seconds

    @property
    def delay(self) -> float:
        if self.delay_seconds is not None:
            return self.delay_seconds
        return settings.processing_delay_seconds

    async def process(self, record_id: str) -> None:
        """Complete a record after the processing delay; failures are recorded, not raised."""

        await asyncio.sleep(self.delay)
        record = await self.storage.get_record_by_id(record_id)
        if record is None:
            logger.warning(f"Record {record_id} disappeared before processing")
            return

        with RequestContext(user_id=record["user_id"]):
            try:
                record = await self._extract(record)
            except Exception as e:
                logger.error(f"Processing failed for record {record_id}: {e}")
                await self.storage.update_record(record_id, {"status": "failed"})
                return
            if record is None:
                return

            if record["file_type"] == "voice" and record.get("sync_with_calendar"):
                await self._sync_calendar(record)

            if settings.auto_analyze and settings.enable_ai_analysis and is_analyzable(record):
                try:
                    await self.analyze(record)
                except AnalysisError:
                    # recorded on the row by analyze()
                    pass

    async def _extract(self, record: Dict[str, Any]) -> Dict[str, Any]:
        updates: Dict[str, Any] = {"status": "completed", "processed_at": datetime.utcnow()}

        if record["file_type"] == "voice":
            transcript = Path(record["file_path"]).read_text(encoding="utf-8")
            previous = record.get("extracted_data") or {}
            conversation = self._extraction.analyze_conversation(transcript)
            updates["extracted_data"] = {
                "patientName": "User",
                "date": datetime.utcnow().isoformat() + "Z",
                "provider": "AI Assistant",
                "type": "Voice Conversation",
                "summary": conversation["summary"],
                "keyTopics": conversation["keyTopics"],
                "duration": previous.get("duration", 0),
                "transcription": transcript,
                "urgencyLevel": conversation["urgencyLevel"] or "low",
            }
            updates["extracted_events"] = self._extraction.extract(transcript)
        else:
            updates["extracted_data"] = mock_extraction(record)

        updated = await self.storage.update_record(record["id"], updates)
        logger.info(
            "Record processed",
            extra={"extra_fields": {"record_id": record["id"], "type": record["file_type"]}},
        )
        return updated

    async def _sync_calendar(self, record: Dict[str, Any]) -> None:
        extraction = record.get("extracted_events") or {}
        payloads = build_sync_payloads(extraction)
        if not payloads:
            return
        try:
            await self._calendar.sync(record["user_id"], payloads, record_id=record["id"])
            await self.storage.update_record(record["id"], {"calendar_synced_at": datetime.utcnow()})
        except Exception as e:
            logger.error(f"Calendar sync failed for record {record['id']}: {e}")

    async def analyze(
        self,
        record: Dict[str, Any],
        custom_prompt: Optional[str] = None,
        refresh: bool = False,
    ) -> Dict[str, Any]:
        """
        Run document analysis for a record and persist the outcome.

        Returns the updated record row.

        Raises:
            AnalysisError: analysis failed; the record is marked ``failed``
        """
        record_id = record["id"]
        user_id = record["user_id"]
        await self.storage.update_record(record_id, {"analysis_status": "processing"})

        try:
            if custom_prompt:
                result = await self._analysis.reanalyze_with_custom_prompt(
                    record["file_path"], custom_prompt, record["file_type"]
                )
            else:
                result = await self._analysis.analyze(
                    record["file_path"], record["file_type"], refresh=refresh
                )
        except AnalysisError as e:
            logger.error(f"Analysis failed for record {record_id}: {e}")
            await self.storage.update_record(record_id, {"analysis_status": "failed"})
            compliance_logger.log_ai_analysis(
                record_id=record_id,
                user_id=user_id,
                model=settings.llm_model,
                document_type=None,
                simulated=False,
                success=False,
                error=str(e),
            )
            raise

        updated = await self.storage.update_record(
            record_id,
            {
                "ai_analysis": result["analysis"],
                "analysis_status": "completed",
                "analysis_confidence": result["confidence"],
                "document_type": result["documentType"],
                "analyzed_at": datetime.utcnow(),
            },
        )
        compliance_logger.log_ai_analysis(
            record_id=record_id,
            user_id=user_id,
            model=result["model"],
            document_type=result["documentType"],
            simulated=result["isSimulated"],
            success=True,
        )
        return updated
