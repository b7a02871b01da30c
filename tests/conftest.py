import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import pytest
from fastapi.testclient import TestClient

from healthrecords.services import file_storage as file_storage_module
from healthrecords.services import storage_service as storage_service_module
from healthrecords.services.email_service import email_service
from healthrecords.services.file_storage import FileStorage
from healthrecords.services.llm_service import llm_service
from healthrecords.services.storage_service import StorageService
from healthrecords.utils.cache import clear_cache
from healthrecords.utils.config import settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """No processing delay, no LLM key, no SMTP server, shares in a temp dir."""
    monkeypatch.setattr(settings, "processing_delay_seconds", 0)
    monkeypatch.setattr(settings, "share_dir", tmp_path / "shares")
    monkeypatch.setattr(settings, "auto_analyze", True)
    monkeypatch.setattr(settings, "enable_ai_analysis", True)
    monkeypatch.setattr(llm_service, "api_key", None)
    monkeypatch.setattr(email_service, "host", None)
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def storage(tmp_path, monkeypatch):
    service = StorageService(f"sqlite:///{tmp_path / 'health_records.db'}")
    monkeypatch.setattr(storage_service_module, "_storage_service", service)
    yield service
    service.close()


@pytest.fixture
def files(tmp_path, monkeypatch):
    store = FileStorage(tmp_path / "uploads")
    monkeypatch.setattr(file_storage_module, "_file_storage", store)
    return store


@pytest.fixture
def client(storage, files):
    from healthrecords.api.main import app

    return TestClient(app)


@pytest.fixture
def make_record(storage, files):
    """Create a stored text document record for a user."""

    async def _make(user_id="demo-user", text="Patient visit notes.", **overrides):
        stored = files.save_upload("visit-notes.txt", text.encode("utf-8"), "text/plain")
        data = {
            "original_name": stored.original_name,
            "display_name": "visit-notes",
            "filename": stored.filename,
            "file_path": str(stored.path),
            "file_type": stored.file_type,
            "file_size": stored.size,
            "mime_type": stored.mime_type,
        }
        data.update(overrides)
        return await storage.create_record(user_id, data)

    return _make
