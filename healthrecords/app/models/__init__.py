"""Model modules for the health records API."""

from healthrecords.app.models.analysis import AnalyzeRequest, BatchAnalyzeRequest
from healthrecords.app.models.events import (
    CalendarSyncRequest,
    EventExtractRequest,
    MedicalEventIn,
    MedicalEventOut,
    MedicalEventUpdate,
    MedicationIn,
    MedicationOut,
    MedicationUpdate,
    Priority,
)
from healthrecords.app.models.record import (
    AnalysisStatus,
    RecordListResponse,
    RecordOut,
    RecordResponse,
    RecordStatus,
    RecordUpdate,
    UploadedFile,
    VoiceNoteCreate,
)
from healthrecords.app.models.share import (
    PdfRequest,
    ShareDefaults,
    ShareOut,
    ShareRequest,
    ShareResponse,
)

__all__ = [
    "AnalyzeRequest",
    "BatchAnalyzeRequest",
    "CalendarSyncRequest",
    "EventExtractRequest",
    "MedicalEventIn",
    "MedicalEventOut",
    "MedicalEventUpdate",
    "MedicationIn",
    "MedicationOut",
    "MedicationUpdate",
    "Priority",
    "AnalysisStatus",
    "RecordListResponse",
    "RecordOut",
    "RecordResponse",
    "RecordStatus",
    "RecordUpdate",
    "UploadedFile",
    "VoiceNoteCreate",
    "PdfRequest",
    "ShareDefaults",
    "ShareOut",
    "ShareRequest",
    "ShareResponse",
]
