import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from datetime import datetime, timedelta

import pytest

from healthrecords.app.models.share import PdfRequest, ShareRequest
from healthrecords.app.services.share_service import (
    NoRecordsToShareError,
    ShareExpiredError,
    ShareNotFoundError,
    ShareService,
)
from healthrecords.services.email_service import EmailDeliveryError


class FakeEmail:
    configured = True

    def __init__(self, error=None):
        self.error = error
        self.sent = []

    def send(self, email):
        self.sent.append(email)
        if self.error:
            raise self.error
        return "<message-1@revado>"


@pytest.mark.asyncio
async def test_share_without_smtp_prepares_mailto_link(storage, make_record, tmp_path):
    record = await make_record(status="completed")
    await make_record(status="processing")
    service = ShareService(storage, share_dir=tmp_path / "shares")

    outcome = await service.share(
        "demo-user",
        ShareRequest(recipient_email="doctor@example.com", patient_name="Jane Doe"),
        base_url="http://testserver",
    )

    assert outcome.success is True
    assert outcome.share["status"] == "prepared"
    assert outcome.share["method"] == "mailto"
    assert outcome.share["record_ids"] == [record["id"]]
    assert outcome.mailto_link.startswith("mailto:doctor%40example.com?subject=Health%20Records%20-%20Jane%20Doe")
    assert outcome.access_url.startswith("http://testserver/api/share/access/")
    assert Path(outcome.share["pdf_path"]).read_bytes().startswith(b"%PDF")


@pytest.mark.asyncio
async def test_share_over_smtp_attaches_pdf_and_small_originals(storage, make_record, tmp_path):
    await make_record(status="completed")
    email = FakeEmail()
    service = ShareService(storage, email_client=email, share_dir=tmp_path / "shares")

    outcome = await service.share(
        "demo-user",
        ShareRequest(recipient_email="doctor@example.com", recipientName="Dr. Lee", message="See attached"),
    )

    assert outcome.share["status"] == "sent"
    assert outcome.share["method"] == "smtp"
    assert outcome.share["message_id"] == "<message-1@revado>"
    sent = email.sent[0]
    assert sent.to_name == "Dr. Lee"
    assert sent.text_body.startswith("See attached")
    assert [a.mime_type for a in sent.attachments] == ["application/pdf", "text/plain"]


@pytest.mark.asyncio
async def test_failed_delivery_is_recorded(storage, make_record, tmp_path):
    await make_record(status="completed")
    service = ShareService(
        storage, email_client=FakeEmail(error=EmailDeliveryError("relay denied")), share_dir=tmp_path / "shares"
    )

    outcome = await service.share("demo-user", ShareRequest(recipient_email="doctor@example.com"))

    assert outcome.success is False
    history = await storage.list_shares("demo-user")
    assert history[0]["status"] == "failed"
    assert history[0]["error"] == "relay denied"


@pytest.mark.asyncio
async def test_hidden_or_missing_records_cannot_be_shared(storage, make_record, tmp_path):
    record = await make_record(status="completed")
    await storage.update_record(record["id"], {"hidden": True})
    service = ShareService(storage, share_dir=tmp_path / "shares")

    with pytest.raises(NoRecordsToShareError):
        await service.share("demo-user", ShareRequest(recipient_email="doctor@example.com"))
    with pytest.raises(NoRecordsToShareError):
        await service.build_pdf("demo-user", PdfRequest(recordId=record["id"]))


@pytest.mark.asyncio
async def test_build_pdf_for_single_record(storage, make_record, tmp_path):
    record = await make_record()
    service = ShareService(storage, share_dir=tmp_path / "shares")

    filename, content = await service.build_pdf("demo-user", PdfRequest(record_id=record["id"]))

    assert filename.startswith("health_records_Patient_")
    assert content.startswith(b"%PDF")


@pytest.mark.asyncio
async def test_open_shared_pdf_counts_access(storage, make_record, tmp_path):
    await make_record(status="completed")
    service = ShareService(storage, share_dir=tmp_path / "shares")
    outcome = await service.share("demo-user", ShareRequest(recipient_email="doctor@example.com"))
    token = outcome.share["access_token"]

    path, filename = await service.open_shared_pdf(token)

    assert path == Path(outcome.share["pdf_path"])
    assert filename == f"health_records_{outcome.share['id']}.pdf"
    assert (await storage.get_share_by_token(token))["accessed_count"] == 1

    with pytest.raises(ShareNotFoundError):
        await service.open_shared_pdf("unknown-token")


@pytest.mark.asyncio
async def test_expired_share_link(storage, tmp_path):
    pdf_path = tmp_path / "old.pdf"
    pdf_path.write_bytes(b"%PDF-1.4")
    await storage.create_share(
        "demo-user",
        {
            "recipient_email": "doctor@example.com",
            "record_ids": [],
            "record_count": 0,
            "pdf_path": str(pdf_path),
            "expires_at": datetime.utcnow() - timedelta(days=1),
            "access_token": "expired-token",
        },
    )
    service = ShareService(storage, share_dir=tmp_path / "shares")

    with pytest.raises(ShareExpiredError):
        await service.open_shared_pdf("expired-token")
