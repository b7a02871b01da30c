"""Sharing of health records with a provider by email or link."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool

from ...services.email_service import (
    Attachment,
    EmailDeliveryError,
    EmailService,
    OutgoingEmail,
    build_mailto_link,
    email_service,
    load_attachment,
)
from ...utils.config import settings
from ...utils.logging import get_compliance_logger, get_logger
from ..config.share_defaults import get_share_defaults
from ..models.share import PdfRequest, ShareRequest
from .pdf_renderer import is_attachable, render_share_pdf
from .share_summary import render_share_email_html, render_text_summary

logger = get_logger(__name__)
compliance_logger = get_compliance_logger()


class NoRecordsToShareError(ValueError):
    """Raised when a share request selects no visible, completed records."""


class ShareNotFoundError(LookupError):
    pass


class ShareExpiredError(RuntimeError):
    pass


@dataclass
class ShareOutcome:
    """Result of a share attempt, already persisted to the history."""

    share: Dict[str, Any]
    access_url: str
    mailto_link: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.share["status"] != "failed"


class ShareService:
    """Builds the share package and records every attempt."""

    def __init__(
        self,
        storage,
        email_client: EmailService = email_service,
        share_dir: Optional[Path] = None,
    ):
        self.storage = storage
        self._email = email_client
        self.share_dir = Path(share_dir or settings.share_dir)
        self._defaults = get_share_defaults()

    async def select_records(self, user_id: str, record_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Visible completed records, or the single visible record asked for."""

        if record_id:
            record = await self.storage.get_record(record_id, user_id)
            if record is None or record.get("hidden"):
                return []
            return [record]
        return await self.storage.list_records(user_id, status="completed", hidden=False, limit=1000)

    def _patient(self, name: Optional[str], email: Optional[str]) -> Tuple[str, str]:
        return (
            (name or "").strip() or self._defaults.patient_name,
            (email or "").strip() or self._defaults.patient_email,
        )

    async def build_pdf(self, user_id: str, request: PdfRequest) -> Tuple[str, bytes]:
        """Render the summary PDF for direct download."""

        records = await self.select_records(user_id, request.record_id)
        if not records:
            raise NoRecordsToShareError("No records available to share")
        patient_name, patient_email = self._patient(request.patient_name, request.patient_email)
        return render_share_pdf(patient_name, patient_email, records)

    async def share(self, user_id: str, request: ShareRequest, base_url: str = "") -> ShareOutcome:
        """
        Send the summary PDF and small originals to the recipient.

        Without SMTP configured the PDF is stored behind an access token and a
        ``mailto:`` link is returned instead. Every attempt is stored in the
        share history, including failed deliveries.

        Raises:
            NoRecordsToShareError: nothing visible and completed to share
            PdfRenderError: the PDF could not be rendered
        """
        records = await self.select_records(user_id, request.record_id)
        if not records:
            raise NoRecordsToShareError("No records available to share")

        patient_name, patient_email = self._patient(request.patient_name, request.patient_email)
        recipient_name = (request.recipient_name or "").strip() or self._defaults.recipient_name

        pdf_filename, pdf_bytes = render_share_pdf(patient_name, patient_email, records)

        token = secrets.token_urlsafe(24)
        self.share_dir.mkdir(parents=True, exist_ok=True)
        pdf_path = self.share_dir / f"{token}.pdf"
        pdf_path.write_bytes(pdf_bytes)
        expires_at = datetime.utcnow() + timedelta(days=settings.share_link_ttl_days)
        access_url = f"{base_url.rstrip('/')}/api/share/access/{token}"

        subject = f"Health Records - {patient_name}"
        text_body = render_text_summary(patient_name, patient_email, records, app_name=self._defaults.app_name)
        if request.message:
            text_body = f"{request.message}\n\n{text_body}"

        warnings: List[str] = []
        mailto_link = None
        message_id = None
        error = None

        if self._email.configured:
            email = OutgoingEmail(
                to_email=request.recipient_email,
                to_name=recipient_name,
                subject=subject,
                text_body=text_body,
                html_body=render_share_email_html(
                    patient_name,
                    patient_email,
                    recipient_name,
                    records,
                    app_name=self._defaults.app_name,
                    message=request.message,
                    access_url=access_url,
                    expires_at=expires_at,
                ),
            )
            email.attachments.append(
                Attachment(filename=pdf_filename, content=pdf_bytes, mime_type="application/pdf")
            )
            for record in records:
                if not is_attachable(record):
                    continue
                attachment = load_attachment(
                    record["file_path"],
                    record["original_name"],
                    record.get("mime_type") or "application/octet-stream",
                )
                if attachment is None:
                    warnings.append(f"{record['original_name']} could not be attached")
                    continue
                email.attachments.append(attachment)

            method = "smtp"
            try:
                message_id = await run_in_threadpool(self._email.send, email)
                status = "sent"
            except EmailDeliveryError as e:
                status = "failed"
                error = str(e)
        else:
            method = "mailto"
            status = "prepared"
            mailto_link = build_mailto_link(
                request.recipient_email,
                subject,
                f"{text_body}\nPDF summary: {access_url}",
            )

        record_ids = [record["id"] for record in records]
        share = await self.storage.create_share(
            user_id,
            {
                "recipient_email": request.recipient_email,
                "recipient_name": recipient_name,
                "record_ids": record_ids,
                "record_count": len(records),
                "status": status,
                "method": method,
                "pdf_size": len(pdf_bytes),
                "pdf_path": str(pdf_path),
                "message_id": message_id,
                "error": error,
                "expires_at": expires_at,
                "access_token": token,
            },
        )

        compliance_logger.log_share(
            share_id=share["id"],
            user_id=user_id,
            recipient_email=request.recipient_email,
            record_ids=record_ids,
            method=method,
            success=status != "failed",
            error=error,
        )
        return ShareOutcome(share=share, access_url=access_url, mailto_link=mailto_link, warnings=warnings)

    async def open_shared_pdf(self, token: str) -> Tuple[Path, str]:
        """
        Resolve a share token to its stored PDF, counting the access.

        Raises:
            ShareNotFoundError: unknown token or PDF missing
            ShareExpiredError: link past its expiry
        """
        share = await self.storage.get_share_by_token(token)
        if share is None or not share.get("pdf_path"):
            raise ShareNotFoundError("Share not found")
        if share.get("expires_at") and share["expires_at"] < datetime.utcnow():
            raise ShareExpiredError("Share link has expired")

        path = Path(share["pdf_path"])
        if not path.is_file():
            logger.warning(f"Stored share PDF missing for share {share['id']}")
            raise ShareNotFoundError("Share not found")

        await self.storage.register_share_access(share["id"])
        return path, f"health_records_{share['id']}.pdf"

