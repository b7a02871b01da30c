"""Jinja2 rendering of the text and HTML bodies of a share email."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from ...utils.file_helpers import format_file_size
from .pdf_renderer import format_date, record_name, is_attachable

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html", "xml", "html.j2"]),
    trim_blocks=True,
)


def _template_records(records: Sequence[Dict[str, Any]], attachment_limit: Optional[int]) -> List[Dict[str, Any]]:
    return [
        {
            "name": record_name(record),
            "date": format_date(record.get("uploaded_at")),
            "type": record.get("file_type") or "Unknown",
            "size": format_file_size(record.get("file_size") or 0),
            "summary": (record.get("extracted_data") or {}).get("summary"),
            "attached": is_attachable(record, attachment_limit),
        }
        for record in records
    ]


def render_text_summary(
    patient_name: str,
    patient_email: str,
    records: Sequence[Dict[str, Any]],
    app_name: str = "Revado Health App",
) -> str:
    """Plain-text summary used as the email body and ``mailto:`` text."""

    template = _env.get_template("share_summary.txt.j2")
    return template.render(
        patient_name=patient_name,
        patient_email=patient_email,
        generated_on=format_date(datetime.now()),
        records=_template_records(records, None),
        app_name=app_name,
    )


def render_share_email_html(
    patient_name: str,
    patient_email: str,
    recipient_name: str,
    records: Sequence[Dict[str, Any]],
    app_name: str,
    message: Optional[str] = None,
    access_url: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    attachment_limit: Optional[int] = None,
) -> str:
    template = _env.get_template("share_email.html.j2")
    return template.render(
        patient_name=patient_name,
        patient_email=patient_email,
        recipient_name=recipient_name,
        generated_on=format_date(datetime.now()),
        records=_template_records(records, attachment_limit),
        app_name=app_name,
        message=message,
        access_url=access_url,
        expires_on=format_date(expires_at),
    )
