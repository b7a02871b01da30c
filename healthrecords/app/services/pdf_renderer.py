"""ReportLab rendering of the shared health records summary."""

from __future__ import annotations

import io
import re
import time
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from ...utils.config import settings
from ...utils.logging import get_logger, monitor_latency

logger = get_logger(__name__)

PRIMARY_COLOR = (10 / 255, 132 / 255, 1.0)
TEXT_COLOR = (51 / 255, 51 / 255, 51 / 255)
MUTED_COLOR = (100 / 255, 100 / 255, 100 / 255)
RULE_COLOR = (200 / 255, 200 / 255, 200 / 255)
FOOTER_COLOR = (150 / 255, 150 / 255, 150 / 255)

PHI_NOTICE = "This document contains protected health information"

_PAGE_WIDTH, _PAGE_HEIGHT = A4
_LEFT = 20 * mm
_CONTENT_WIDTH = 170 * mm
_BOTTOM_LIMIT = 270  # mm from the top before a page break


class PdfRenderError(RuntimeError):
    """Raised when the summary PDF cannot be produced."""


class NumberedCanvas(canvas.Canvas):
    """Canvas that stamps "Page i of N" and the PHI notice on every page."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states: List[Dict[str, Any]] = []

    def showPage(self):  # noqa: N802 - ReportLab API
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer(total)
            super().showPage()
        super().save()

    def _draw_footer(self, total: int) -> None:
        self.setFillColorRGB(*FOOTER_COLOR)
        self.setFont("Helvetica", 9)
        self.drawCentredString(_PAGE_WIDTH / 2, _PAGE_HEIGHT - 285 * mm, f"Page {self._pageNumber} of {total}")
        self.setFont("Helvetica", 8)
        self.drawCentredString(_PAGE_WIDTH / 2, _PAGE_HEIGHT - 290 * mm, PHI_NOTICE)


class _Writer:
    """Top-down cursor over a canvas, measured in millimetres."""

    def __init__(self, pdf: canvas.Canvas):
        self.pdf = pdf
        self.y = 45.0

    def _baseline(self) -> float:
        return _PAGE_HEIGHT - self.y * mm

    def ensure_room(self, height: float = 0) -> None:
        """Break the page unless ``height`` mm still fit above the footer."""
        if self.y + height > _BOTTOM_LIMIT:
            self.pdf.showPage()
            self.y = 30.0

    def text(self, value: str, x_mm: float = 20, font: str = "Helvetica", size: int = 11,
             color: Tuple[float, float, float] = TEXT_COLOR) -> None:
        self.pdf.setFont(font, size)
        self.pdf.setFillColorRGB(*color)
        self.pdf.drawString(x_mm * mm, self._baseline(), value)

    def heading(self, value: str) -> None:
        self.ensure_room()
        self.text(value, font="Helvetica-Bold", size=14)
        self.y += 10

    def rule(self) -> None:
        self.pdf.setStrokeColorRGB(*RULE_COLOR)
        self.pdf.line(_LEFT, self._baseline(), _LEFT + _CONTENT_WIDTH, self._baseline())


def format_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%m/%d/%Y")
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%m/%d/%Y")
        except ValueError:
            return value
    return "N/A"


def record_name(record: Dict[str, Any]) -> str:
    return record.get("display_name") or record.get("original_name") or record.get("filename") or "Unnamed Record"


def _uploaded_at(record: Dict[str, Any]) -> Optional[datetime]:
    value = record.get("uploaded_at")
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return value


def is_attachable(record: Dict[str, Any], limit: Optional[int] = None) -> bool:
    limit = limit or settings.max_attachment_bytes
    size = record.get("file_size")
    return bool(record.get("file_path")) and size is not None and size < limit


def generate_medical_summary(records: Sequence[Dict[str, Any]]) -> str:
    """Narrative paragraph describing the shared records."""

    count = len(records)
    types = Counter(record.get("file_type") or "document" for record in records)
    dates = [d for d in (_uploaded_at(record) for record in records) if d is not None]

    summary = f"This health records package contains {count} document{'s' if count != 1 else ''} "
    if dates:
        summary += f"spanning from {format_date(min(dates))} to {format_date(max(dates))}. "

    breakdown = ", ".join(f"{n} {kind}{'s' if n != 1 else ''}" for kind, n in types.items())
    summary += f"The records include: {breakdown}. "

    def _extracted_type(record: Dict[str, Any]) -> str:
        return str((record.get("extracted_data") or {}).get("type") or "").lower()

    has_lab = any(
        "lab" in _extracted_type(r) or "lab" in record_name(r).lower() or r.get("document_type") == "lab"
        for r in records
    )
    has_imaging = any(
        r.get("file_type") == "image"
        or "imaging" in _extracted_type(r)
        or "xray" in record_name(r).lower()
        or "scan" in record_name(r).lower()
        for r in records
    )
    if has_lab:
        summary += "Laboratory results are included for comprehensive health assessment. "
    if has_imaging:
        summary += "Imaging studies are included for visual diagnostic information. "

    summary += (
        "\n\nRecommendation: Please review all attached records for a complete understanding "
        "of the patient's health history. Pay special attention to recent test results and any "
        "noted abnormalities. Contact the patient if additional information or clarification is needed."
    )
    return summary


def build_pdf_filename(patient_name: str) -> str:
    """``health_records_<name>_<epoch-ms>.pdf`` with whitespace collapsed."""

    name = re.sub(r"\s+", "_", patient_name.strip()) or "patient"
    return f"health_records_{name}_{int(time.time() * 1000)}.pdf"


@monitor_latency("pdf_render_share_summary", "pdf")
def render_share_pdf(
    patient_name: str,
    patient_email: str,
    records: Sequence[Dict[str, Any]],
    include_summary: bool = True,
    attachment_limit: Optional[int] = None,
) -> Tuple[str, bytes]:
    """
    Render the records summary PDF and return ``(filename, bytes)``.

    Raises:
        PdfRenderError: ReportLab failed to build the document
    """
    buffer = io.BytesIO()
    try:
        pdf = NumberedCanvas(buffer, pagesize=A4)
        _draw_summary(pdf, patient_name, patient_email, records, include_summary, attachment_limit)
        pdf.showPage()
        pdf.save()
    except Exception as e:
        logger.error(f"Failed to render share PDF: {e}")
        raise PdfRenderError(f"Failed to render PDF: {e}") from e

    filename = build_pdf_filename(patient_name)
    pdf_bytes = buffer.getvalue()
    logger.info(
        "Generated share PDF",
        extra={"extra_fields": {"filename": filename, "size": len(pdf_bytes), "records": len(records)}},
    )
    return filename, pdf_bytes


def _draw_summary(
    pdf: canvas.Canvas,
    patient_name: str,
    patient_email: str,
    records: Sequence[Dict[str, Any]],
    include_summary: bool,
    attachment_limit: Optional[int],
) -> None:
    pdf.setTitle(f"Health Records - {patient_name}")
    pdf.setSubject("Medical Records Summary")
    pdf.setAuthor("Revado Health App")
    pdf.setKeywords("health, medical, records")
    pdf.setCreator("Revado Health")

    # Header band
    pdf.setFillColorRGB(*PRIMARY_COLOR)
    pdf.rect(0, _PAGE_HEIGHT - 30 * mm, _PAGE_WIDTH, 30 * mm, stroke=0, fill=1)
    pdf.setFillColorRGB(1, 1, 1)
    pdf.setFont("Helvetica-Bold", 20)
    pdf.drawCentredString(_PAGE_WIDTH / 2, _PAGE_HEIGHT - 15 * mm, "Health Records Summary")
    pdf.setFont("Helvetica", 10)
    pdf.drawCentredString(
        _PAGE_WIDTH / 2, _PAGE_HEIGHT - 23 * mm, f"Generated: {format_date(datetime.now())}"
    )

    writer = _Writer(pdf)
    writer.heading("Patient Information")
    for line in (f"Name: {patient_name}", f"Email: {patient_email}", f"Records Shared: {len(records)}"):
        writer.text(line)
        writer.y += 7

    writer.y += 3
    writer.rule()
    writer.y += 10

    if include_summary:
        writer.heading("Medical Summary")
        for paragraph in generate_medical_summary(records).split("\n"):
            for line in simpleSplit(paragraph, "Helvetica", 10, _CONTENT_WIDTH) or [""]:
                writer.ensure_room()
                writer.text(line, size=10)
                writer.y += 6
        writer.y += 5
        writer.rule()
        writer.y += 10

    writer.heading("Records Included")
    attached = sum(1 for record in records if is_attachable(record, attachment_limit))
    if attached:
        writer.text(
            f"Note: {attached} original file(s) are attached to this email",
            font="Helvetica-Oblique",
            size=9,
            color=MUTED_COLOR,
        )
        writer.y += 7

    for index, record in enumerate(records, start=1):
        extracted = record.get("extracted_data")
        summary_lines = []
        if extracted:
            summary = extracted.get("summary") or "No summary available"
            summary_lines = simpleSplit(summary, "Helvetica", 9, 160 * mm)[:2]
        writer.ensure_room(7 + 5 * len(summary_lines))
        writer.text(f"{index}.", font="Helvetica-Bold", size=10)
        writer.text(record_name(record)[:48], x_mm=30, size=10)
        writer.text(f"Date: {format_date(record.get('uploaded_at'))}", x_mm=120, size=10)
        if is_attachable(record, attachment_limit):
            writer.text("[Attached]", x_mm=160, size=10, color=PRIMARY_COLOR)
        else:
            writer.text(f"Type: {record.get('file_type') or record.get('mime_type') or 'Unknown'}", x_mm=160, size=10)
        writer.y += 7

        for line in summary_lines:
            writer.text(line, x_mm=30, size=9, color=MUTED_COLOR)
            writer.y += 5
        writer.y += 3
