"""
Outbound email for record sharing.
Sends the PDF summary and small original files over SMTP, or builds a
``mailto:`` link when no SMTP server is configured.
"""

import smtplib
import uuid
from dataclasses import dataclass, field
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from ..utils.config import settings
from ..utils.logging import get_logger

logger = get_logger(__name__)


class EmailDeliveryError(RuntimeError):
    """Raised when the SMTP server rejects or cannot accept a message."""


@dataclass
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/octet-stream"


@dataclass
class OutgoingEmail:
    """A composed share email."""

    to_email: str
    to_name: str
    subject: str
    text_body: str
    html_body: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)


def load_attachment(path: str, filename: str, mime_type: str, max_bytes: Optional[int] = None) -> Optional[Attachment]:
    """Read a stored file as an attachment, or ``None`` when missing or too large."""

    limit = max_bytes or settings.max_attachment_bytes
    file_path = Path(path)
    try:
        size = file_path.stat().st_size
    except FileNotFoundError:
        logger.warning(f"Attachment source missing: {path}")
        return None
    if size >= limit:
        return None
    return Attachment(filename=filename, content=file_path.read_bytes(), mime_type=mime_type)


def build_mailto_link(to_email: str, subject: str, body: str) -> str:
    return f"mailto:{quote(to_email)}?subject={quote(subject)}&body={quote(body)}"


class EmailService:
    """SMTP sender configured from settings."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        sender: Optional[str] = None,
    ):
        self.host = host if host is not None else settings.smtp_host
        self.port = port or settings.smtp_port
        self.username = username if username is not None else settings.smtp_username
        self.password = password if password is not None else settings.smtp_password
        self.use_tls = settings.smtp_use_tls if use_tls is None else use_tls
        self.sender = sender or settings.email_sender

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def compose(self, email: OutgoingEmail) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = email.subject
        msg["From"] = self.sender
        msg["To"] = f"{email.to_name} <{email.to_email}>" if email.to_name else email.to_email
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(idstring=uuid.uuid4().hex[:12])

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(email.text_body, "plain", "utf-8"))
        if email.html_body:
            body.attach(MIMEText(email.html_body, "html", "utf-8"))
        msg.attach(body)

        for attachment in email.attachments:
            subtype = attachment.mime_type.split("/", 1)[-1]
            part = MIMEApplication(attachment.content, _subtype=subtype)
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)
        return msg

    def send(self, email: OutgoingEmail) -> str:
        """
        Deliver a message and return its Message-ID.

        Raises:
            EmailDeliveryError: SMTP is not configured or delivery failed
        """
        if not self.configured:
            raise EmailDeliveryError("SMTP server not configured")

        msg = self.compose(email)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=settings.request_timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email delivery to {email.to_email} failed: {e}")
            raise EmailDeliveryError(str(e)) from e

        logger.info(
            "Email sent",
            extra={
                "extra_fields": {
                    "to": email.to_email,
                    "attachments": len(email.attachments),
                    "message_id": msg["Message-ID"],
                }
            },
        )
        return msg["Message-ID"]


email_service = EmailService()
