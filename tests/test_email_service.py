import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import smtplib
from unittest.mock import patch

import pytest

from healthrecords.services.email_service import (
    Attachment,
    EmailDeliveryError,
    EmailService,
    OutgoingEmail,
    build_mailto_link,
    load_attachment,
)


def make_email():
    return OutgoingEmail(
        to_email="doctor@example.com",
        to_name="Dr. Lee",
        subject="Health records",
        text_body="Please find attached.",
        html_body="<p>Please find attached.</p>",
        attachments=[Attachment("summary.pdf", b"%PDF-1.4", "application/pdf")],
    )


def test_compose_builds_multipart_message():
    service = EmailService(host="smtp.test", sender="records@example.com")

    msg = service.compose(make_email())

    assert msg["To"] == "Dr. Lee <doctor@example.com>"
    assert msg["From"] == "records@example.com"
    assert msg["Message-ID"]
    parts = msg.get_payload()
    assert parts[0].get_content_type() == "multipart/alternative"
    assert parts[1].get_filename() == "summary.pdf"


def test_build_mailto_link_quotes_values():
    link = build_mailto_link("doctor@example.com", "My records", "Hi & bye")

    assert link == "mailto:doctor%40example.com?subject=My%20records&body=Hi%20%26%20bye"


def test_load_attachment_respects_limit(tmp_path):
    path = tmp_path / "note.txt"
    path.write_bytes(b"x" * 10)

    assert load_attachment(str(path), "note.txt", "text/plain", max_bytes=100).content == b"x" * 10
    assert load_attachment(str(path), "note.txt", "text/plain", max_bytes=10) is None
    assert load_attachment(str(tmp_path / "missing.txt"), "missing.txt", "text/plain") is None


def test_send_requires_configuration():
    with pytest.raises(EmailDeliveryError, match="not configured"):
        EmailService(host="").send(make_email())


def test_send_uses_smtp():
    service = EmailService(host="smtp.test", port=2525, username="user", password="secret", use_tls=True)

    with patch("smtplib.SMTP") as smtp:
        message_id = service.send(make_email())

    server = smtp.return_value.__enter__.return_value
    assert smtp.call_args.args == ("smtp.test", 2525)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("user", "secret")
    server.send_message.assert_called_once()
    assert message_id.startswith("<")


def test_send_wraps_smtp_errors():
    service = EmailService(host="smtp.test", use_tls=False)

    with patch("smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, "busy")):
        with pytest.raises(EmailDeliveryError):
            service.send(make_email())
