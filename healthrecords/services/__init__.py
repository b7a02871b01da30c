"""Service modules for the health records service."""

from healthrecords.services.document_analysis import document_analysis_service
from healthrecords.services.email_service import email_service
from healthrecords.services.event_extraction import event_extraction_service
from healthrecords.services.file_storage import get_file_storage
from healthrecords.services.image_analysis import image_analysis_service
from healthrecords.services.llm_service import llm_service
from healthrecords.services.storage_service import get_storage_service

__all__ = [
    "document_analysis_service",
    "email_service",
    "event_extraction_service",
    "get_file_storage",
    "image_analysis_service",
    "llm_service",
    "get_storage_service",
]
