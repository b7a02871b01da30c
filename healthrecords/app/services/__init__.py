"""Service modules for the health records API."""

from healthrecords.app.services.pdf_renderer import PdfRenderError, build_pdf_filename, render_share_pdf
from healthrecords.app.services.record_processor import RecordProcessor
from healthrecords.app.services.share_service import ShareService

__all__ = [
    "PdfRenderError",
    "build_pdf_filename",
    "render_share_pdf",
    "RecordProcessor",
    "ShareService",
]
