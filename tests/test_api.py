"""
End-to-end tests of the REST API through the FastAPI test client.
Background processing runs inline after each upload response.
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import io
from datetime import date, timedelta
from unittest.mock import patch

import httpx
import numpy as np
from fastapi.testclient import TestClient
from PIL import Image
from reportlab.pdfgen import canvas

from healthrecords.services.email_service import email_service
from healthrecords.services.llm_service import llm_service
from healthrecords.utils.config import settings

LAB_TEXT = b"Lab results: glucose 95 mg/dL, hemoglobin 14.5 g/dL, reference range normal."


def png_bytes(width=64, height=64, value=120):
    buffer = io.BytesIO()
    Image.fromarray(np.full((height, width), value, dtype=np.uint8), mode="L").save(buffer, format="PNG")
    return buffer.getvalue()


def pdf_bytes(text="Blood glucose 95 mg/dL"):
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer)
    pdf.drawString(72, 800, text)
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def upload(client, name="labs.txt", content=LAB_TEXT, mime_type="text/plain", headers=None):
    response = client.post("/api/upload/single", files={"file": (name, content, mime_type)}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["file"]


class TestService:
    def test_root_lists_endpoints(self, client):
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["endpoints"]["share"] == "/api/share"

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == {"status": "connected", "recordCount": 0}
        assert body["storage"]["status"] == "available"
        assert client.get("/api/health/ready").json() == {"status": "ready"}
        assert client.get("/api/health/live").json() == {"status": "alive"}

    def test_request_id_is_echoed(self, client):
        response = client.get("/api/health/live", headers={"X-Request-Id": "req-42"})

        assert response.headers["X-Request-Id"] == "req-42"

    def test_validation_errors_are_400(self, client):
        response = client.post("/api/records/voice", json={})

        assert response.status_code == 400
        body = response.json()
        assert body["status_code"] == 400
        assert body["details"][0]["loc"] == ["body", "transcript"]
        assert "timestamp" in body


class TestUploadAndRecords:
    def test_upload_single_processes_record(self, client):
        uploaded = upload(client)

        assert uploaded["originalName"] == "labs.txt"
        assert uploaded["type"] == "document"
        assert uploaded["status"] == "processing"
        assert "/uploads/documents/" in uploaded["url"]

        status_body = client.get(f"/api/upload/status/{uploaded['id']}").json()
        assert status_body["status"] == "completed"
        assert status_body["record"]["processedAt"] is not None

        stored = client.get(uploaded["url"])
        assert stored.status_code == 200
        assert stored.content == LAB_TEXT

    def test_upload_rejects_unsupported_type(self, client):
        response = client.post(
            "/api/upload/single", files={"file": ("tool.exe", b"MZ", "application/x-msdownload")}
        )

        assert response.status_code == 400
        assert "not allowed" in response.json()["error"]

    def test_upload_multiple(self, client):
        response = client.post(
            "/api/upload/multiple",
            files=[
                ("files", ("a.txt", b"first", "text/plain")),
                ("files", ("scan.png", png_bytes(), "image/png")),
            ],
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "2 files uploaded successfully"
        assert [f["type"] for f in body["files"]] == ["document", "image"]

    def test_upload_too_many_files(self, client):
        files = [("files", (f"{i}.txt", b"x", "text/plain")) for i in range(settings.max_upload_files + 1)]

        response = client.post("/api/upload/multiple", files=files)

        assert response.status_code == 400

    def test_delete_upload(self, client):
        uploaded = upload(client)

        assert client.delete(f"/api/upload/{uploaded['id']}").json()["success"] is True
        assert client.get(f"/api/upload/status/{uploaded['id']}").status_code == 404
        assert client.get(uploaded["url"]).status_code == 404

    def test_upload_multiple_rolls_back_on_failure(self, client, storage, files, monkeypatch):
        original_create = storage.create_record
        calls = []

        async def fail_second(user_id, record_data):
            calls.append(record_data["original_name"])
            if len(calls) == 2:
                raise RuntimeError("database unavailable")
            return await original_create(user_id, record_data)

        monkeypatch.setattr(storage, "create_record", fail_second)

        response = client.post(
            "/api/upload/multiple",
            files=[
                ("files", ("a.txt", b"first", "text/plain")),
                ("files", ("b.txt", b"second", "text/plain")),
            ],
        )

        assert response.status_code == 500
        assert client.get("/api/records").json()["count"] == 0
        assert [path for path in files.root.rglob("*") if path.is_file()] == []

    def test_reprocess_record(self, client):
        record_id = upload(client)["id"]

        response = client.post(f"/api/records/process/{record_id}")

        assert response.json() == {"success": True, "message": "Processing started", "estimatedTime": 0}
        assert client.get(f"/api/records/{record_id}").json()["record"]["status"] == "completed"

    def test_records_are_per_user(self, client):
        upload(client, headers={"X-User-Id": "alice"})

        assert client.get("/api/records", headers={"X-User-Id": "alice"}).json()["count"] == 1
        assert client.get("/api/records", headers={"X-User-Id": "bob"}).json()["count"] == 0

    def test_update_and_hide_record(self, client):
        record_id = upload(client)["id"]

        renamed = client.put(f"/api/records/{record_id}", json={"displayName": "  March labs "})
        assert renamed.json()["record"]["displayName"] == "March labs"

        assert client.put(f"/api/records/{record_id}", json={}).status_code == 400

        toggled = client.post(f"/api/records/{record_id}/visibility").json()
        assert toggled["record"]["hidden"] is True
        assert client.get("/api/records", params={"hidden": False}).json()["count"] == 0

    def test_delete_record_soft_then_permanent(self, client):
        record_id = upload(client)["id"]

        soft = client.delete(f"/api/records/{record_id}")
        assert soft.json()["message"] == "Record hidden"
        assert client.get(f"/api/records/{record_id}").json()["record"]["hidden"] is True

        permanent = client.delete(f"/api/records/{record_id}", params={"permanent": True})
        assert permanent.json()["message"] == "Record permanently deleted"

        missing = client.get(f"/api/records/{record_id}")
        assert missing.status_code == 404
        assert missing.json()["error"] == "Record not found"

    def test_voice_note_extracts_events_and_syncs(self, client):
        response = client.post(
            "/api/records/voice",
            json={
                "transcript": "Doctor scheduled a follow up appointment next week.",
                "durationSeconds": 30,
                "syncWithCalendar": True,
                "title": "Clinic call",
            },
        )

        assert response.status_code == 201
        record_id = response.json()["record"]["id"]

        record = client.get(f"/api/records/{record_id}").json()["record"]
        assert record["type"] == "voice"
        assert record["status"] == "completed"
        assert record["extractedData"]["duration"] == 30
        assert record["extractedEvents"]["summary"]["totalEvents"] == 1
        assert record["calendarSyncedAt"] is not None

        history = client.get("/api/calendar/history").json()
        assert history["count"] == 1
        assert history["syncs"][0]["recordId"] == record_id


class TestAnalysis:
    def test_completed_analysis_is_cached(self, client):
        record_id = upload(client)["id"]

        cached = client.post(f"/api/analyze/{record_id}").json()
        assert cached["cached"] is True
        assert cached["documentType"] == "lab"

        fresh = client.post(f"/api/analyze/{record_id}", json={"reanalyze": True}).json()
        assert fresh["cached"] is False
        assert fresh["analysis"]["isSimulated"] is True

    def test_reanalyze_asks_the_llm_again(self, client, monkeypatch):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(
                200,
                json={
                    "model": "served-model",
                    "choices": [{"message": {"content": f'{{"summary": "reply {len(calls)}"}}'}}],
                },
            )

        monkeypatch.setattr(llm_service, "api_key", "test-key")
        monkeypatch.setattr(llm_service, "_transport", httpx.MockTransport(handler))
        record_id = upload(client)["id"]
        assert len(calls) == 1

        fresh = client.post(f"/api/analyze/{record_id}", json={"reanalyze": True}).json()

        assert len(calls) == 2
        assert fresh["cached"] is False
        assert fresh["analysis"]["summary"] == "reply 2"

    def test_clear_analysis(self, client):
        record_id = upload(client)["id"]

        assert client.delete(f"/api/analyze/{record_id}").status_code == 200

        status_body = client.get(f"/api/analyze/status/{record_id}").json()
        assert status_body["analysisStatus"] == "pending"
        assert status_body["hasAnalysis"] is False

    def test_images_cannot_be_analyzed(self, client):
        record_id = upload(client, name="scan.png", content=png_bytes(), mime_type="image/png")["id"]

        response = client.post(f"/api/analyze/{record_id}")

        assert response.status_code == 400

    def test_pending_and_batch(self, client, monkeypatch):
        monkeypatch.setattr(settings, "auto_analyze", False)
        pdf_id = upload(client, name="labs.pdf", content=pdf_bytes(), mime_type="application/pdf")["id"]
        text_id = upload(client)["id"]

        pending = client.get("/api/analyze/pending").json()
        assert [r["id"] for r in pending["records"]] == [pdf_id]

        batch = client.post("/api/analyze/batch", json={"recordIds": [pdf_id, text_id]}).json()
        assert batch["message"] == "Analyzed 1 of 1 records"
        assert batch["results"][0]["recordId"] == pdf_id

        assert client.post("/api/analyze/batch", json={"recordIds": [text_id]}).status_code == 400
        assert client.post("/api/analyze/batch", json={"recordIds": ["missing"]}).status_code == 404


class TestImageAnalysis:
    def test_analyze_and_fetch(self, client):
        response = client.post(
            "/api/image-analysis/analyze",
            files={"image": ("chest_xray.png", png_bytes(), "image/png")},
            data={"description": "PA view"},
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["success"] is True
        assert body["imageType"] == "xray"
        assert "/uploads/images/" in body["imageUrl"]

        fetched = client.get(f"/api/image-analysis/{body['analysisId']}").json()["analysis"]
        assert fetched["imageType"] == "xray"

        stats = client.get("/api/image-analysis/stats/summary").json()["stats"]
        assert stats["totalAnalyses"] == 1
        assert stats["typeDistribution"][0]["imageType"] == "xray"

    def test_linked_to_record(self, client):
        record_id = upload(client)["id"]

        client.post(
            "/api/image-analysis/analyze",
            files={"image": ("photo.png", png_bytes(), "image/png")},
            data={"recordId": record_id, "imageType": "dental"},
        )

        linked = client.get(f"/api/image-analysis/record/{record_id}").json()
        assert linked["count"] == 1
        assert linked["analyses"][0]["imageType"] == "dental"

    def test_rejections(self, client):
        unknown_record = client.post(
            "/api/image-analysis/analyze",
            files={"image": ("a.png", png_bytes(), "image/png")},
            data={"recordId": "missing"},
        )
        wrong_type = client.post(
            "/api/image-analysis/analyze", files={"image": ("a.txt", b"text", "text/plain")}
        )
        too_many = client.post(
            "/api/image-analysis/batch",
            files=[("images", (f"{i}.png", b"x", "image/png")) for i in range(11)],
        )

        assert unknown_record.status_code == 404
        assert wrong_type.status_code == 400
        assert too_many.status_code == 400
        assert client.get("/api/image-analysis/missing").status_code == 404

    def test_batch_reports_per_file_errors(self, client):
        response = client.post(
            "/api/image-analysis/batch",
            files=[
                ("images", ("good.png", png_bytes(), "image/png")),
                ("images", ("bad.png", b"not an image", "image/png")),
            ],
        )

        body = response.json()
        assert body["totalProcessed"] == 2
        assert [r["success"] for r in body["results"]] == [True, False]

    def test_batch_checks_record_owner(self, client, files):
        record_id = upload(client, headers={"X-User-Id": "alice"})["id"]
        images = [("images", ("scan.png", png_bytes(), "image/png"))]

        unknown = client.post("/api/image-analysis/batch", files=images, data={"recordId": "missing"})
        other_user = client.post(
            "/api/image-analysis/batch",
            files=images,
            data={"recordId": record_id},
            headers={"X-User-Id": "bob"},
        )

        assert unknown.status_code == 404
        assert other_user.status_code == 404
        assert list((files.root / "images").glob("*")) == []
        assert client.get("/api/image-analysis/stats/summary", headers={"X-User-Id": "bob"}).json()[
            "stats"
        ]["totalAnalyses"] == 0

    def test_image_is_removed_when_analysis_cannot_be_saved(self, storage, files, monkeypatch):
        from healthrecords.api.main import app

        async def broken(user_id, data):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(storage, "create_image_analysis", broken)
        client = TestClient(app, raise_server_exceptions=False)

        response = client.post(
            "/api/image-analysis/analyze", files={"image": ("scan.png", png_bytes(), "image/png")}
        )

        assert response.status_code == 500
        assert list((files.root / "images").glob("*")) == []


class TestShare:
    def test_share_without_smtp_returns_mailto(self, client):
        record_id = upload(client)["id"]

        response = client.post("/api/share", json={"recipientEmail": "doctor@example.com"})

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["share"]["status"] == "prepared"
        assert body["share"]["recordIds"] == [record_id]
        assert body["mailtoLink"].startswith("mailto:")

        pdf = client.get(body["accessUrl"])
        assert pdf.status_code == 200
        assert pdf.headers["content-type"] == "application/pdf"
        assert pdf.content.startswith(b"%PDF")

        assert client.get("/api/share/history").json()["count"] == 1
        assert client.get(f"/api/share/count/{record_id}").json()["count"] == 1

    def test_failed_smtp_delivery_is_502_and_recorded(self, client, monkeypatch):
        record_id = upload(client)["id"]
        monkeypatch.setattr(email_service, "host", "smtp.example.com")

        with patch("smtplib.SMTP", side_effect=OSError("connection refused")):
            response = client.post("/api/share", json={"recipientEmail": "doctor@example.com"})

        assert response.status_code == 502
        assert "connection refused" in response.json()["error"]

        history = client.get("/api/share/history").json()
        assert history["count"] == 1
        assert history["shares"][0]["status"] == "failed"
        assert history["shares"][0]["method"] == "smtp"
        assert history["shares"][0]["recordIds"] == [record_id]

    def test_share_validation(self, client):
        invalid = client.post("/api/share", json={"recipientEmail": "not-an-email"})
        nothing = client.post("/api/share", json={"recipientEmail": "doctor@example.com"})

        assert invalid.status_code == 400
        assert "Valid recipient email is required" in invalid.json()["error"]
        assert nothing.status_code == 400
        assert nothing.json()["error"] == "No records available to share"

    def test_download_pdf(self, client):
        record_id = upload(client)["id"]

        response = client.post("/api/share/pdf", json={"recordId": record_id, "patientName": "Jane Doe"})

        assert response.status_code == 200
        assert response.headers["content-disposition"].startswith('attachment; filename="health_records_Jane_Doe_')
        assert response.content.startswith(b"%PDF")

    def test_unknown_access_token(self, client):
        assert client.get("/api/share/access/nope").status_code == 404


class TestEventsAndMedications:
    def test_extract(self, client):
        body = client.post("/api/events/extract", json={"transcript": "Schedule the surgery"}).json()

        assert body["success"] is True
        assert body["summary"]["totalEvents"] == 1
        assert body["events"][0]["type"] == "surgery"

    def test_event_crud(self, client):
        soon = (date.today() + timedelta(days=3)).isoformat()
        created = client.post(
            "/api/events", json={"type": "appointment", "title": "Dentist", "date": soon, "priority": "high"}
        )

        assert created.status_code == 201
        event = created.json()["event"]
        assert event["priority"] == "high"

        assert client.get("/api/events/upcoming", params={"days": 7}).json()["count"] == 1
        assert client.put(f"/api/events/{event['id']}", json={}).status_code == 400
        assert client.put(f"/api/events/{event['id']}", json={"title": "Dental cleaning"}).json()["event"][
            "title"
        ] == "Dental cleaning"
        assert client.put("/api/events/missing", json={"title": "x"}).status_code == 404
        assert client.delete(f"/api/events/{event['id']}").status_code == 200
        assert client.delete(f"/api/events/{event['id']}").status_code == 404

    def test_event_for_unknown_record(self, client):
        response = client.post(
            "/api/events",
            json={"type": "test", "title": "Labs", "date": "2030-01-01", "recordId": "missing"},
        )

        assert response.status_code == 404

    def test_medication_lifecycle(self, client):
        created = client.post(
            "/api/medications",
            json={"name": "Metformin", "dosage": "500mg", "frequency": "twice daily", "startDate": "2024-01-01"},
        )

        assert created.status_code == 201
        medication_id = created.json()["medication"]["id"]
        assert client.get("/api/medications/active").json()["count"] == 1

        stopped = client.put(f"/api/medications/{medication_id}", json={"stopped": True}).json()
        assert stopped["medication"]["stopped"] is True
        assert client.get("/api/medications/active").json()["count"] == 0
        assert client.get("/api/medications").json()["count"] == 1

        assert client.delete(f"/api/medications/{medication_id}").status_code == 200
        assert client.delete(f"/api/medications/{medication_id}").status_code == 404

    def test_medication_dates_are_checked(self, client):
        response = client.post(
            "/api/medications",
            json={"name": "Amoxicillin", "startDate": "2024-02-10", "endDate": "2024-02-01"},
        )

        assert response.status_code == 400


class TestCalendar:
    def test_sync_history_and_delete(self, client):
        response = client.post(
            "/api/calendar/sync",
            json={
                "events": [{"id": "evt_1", "type": "test", "title": "Blood work", "date": "2030-01-05"}],
                "medications": [
                    {"name": "Lisinopril", "frequency": "once daily", "startDate": "2030-01-01",
                     "endDate": "2030-01-02"}
                ],
            },
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["eventsCreated"] == 3
        calendar_event_id = body["results"][0]["calendarEventId"]

        history = client.get("/api/calendar/history").json()
        assert history["syncs"][0]["eventsCount"] == 3

        assert client.delete(f"/api/calendar/events/{calendar_event_id}").status_code == 200
        assert client.delete("/api/calendar/events/cal_unknown").status_code == 404

    def test_sync_rejects_empty_and_invalid(self, client):
        empty = client.post("/api/calendar/sync", json={})
        invalid = client.post("/api/calendar/sync", json={"events": [{"title": "No date"}]})

        assert empty.status_code == 400
        assert empty.json()["error"] == "Nothing to sync"
        assert invalid.status_code == 400

    def test_sync_rejects_mistyped_fields(self, client):
        event = {"title": "Blood work", "date": "2030-01-05"}
        medication = {"name": "Lisinopril", "frequency": "once daily", "startDate": "2030-01-01"}

        for bad_event in (
            {**event, "priority": 1},
            {**event, "time": 900},
            {**event, "time": "soon"},
            {**event, "confidence": "high"},
            {**event, "type": ["test"]},
        ):
            response = client.post("/api/calendar/sync", json={"events": [bad_event]})
            assert response.status_code == 400, bad_event

        bad_frequency = client.post(
            "/api/calendar/sync", json={"medications": [{**medication, "frequency": 2}]}
        )
        assert bad_frequency.status_code == 400

        ok = client.post(
            "/api/calendar/sync", json={"events": [{**event, "priority": "high", "time": "2:30 PM"}]}
        )
        assert ok.status_code == 200
        assert ok.json()["results"][0]["start"]["dateTime"].startswith("2030-01-05T14:30")
