"""
Storage service for the health records service.
Handles SQLite persistence of records, analyses, shares, calendar syncs,
medications and medical events through SQLAlchemy.
"""

import uuid
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, event, func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ..models.orm import (
    Base,
    CalendarSync,
    ImageAnalysis,
    MedicalEvent,
    Medication,
    Record,
    ShareHistory,
    User,
)
from ..utils.config import settings
from ..utils.logging import get_compliance_logger, get_logger, monitor_latency

logger = get_logger(__name__)
compliance_logger = get_compliance_logger()

_RECORD_UPDATABLE = {
    "status",
    "hidden",
    "display_name",
    "extracted_data",
    "extracted_events",
    "ai_analysis",
    "analysis_status",
    "analysis_confidence",
    "document_type",
    "processed_at",
    "analyzed_at",
    "sync_with_calendar",
    "calendar_synced_at",
}


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class StorageService:
    """Storage service for SQLite persistence."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.database_url
        self.engine = self._create_engine(self.database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database initialized", extra={"extra_fields": {"url": self.database_url}})

    def _create_engine(self, url: str) -> Engine:
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
            db_path = url.split("///", 1)[-1]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        engine = create_engine(url, connect_args=connect_args)
        if url.startswith("sqlite"):
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def close(self) -> None:
        self.engine.dispose()

    # Users

    def ensure_user(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> Dict[str, Any]:
        """Return the user row, creating it on first use."""
        with self.session() as db:
            user = db.get(User, user_id)
            if user is None:
                user = User(id=user_id, email=email or f"{user_id}@users.local", name=name)
                db.add(user)
                db.flush()
                logger.info(f"Created user {user_id}")
            return user.to_dict()

    # Records

    @monitor_latency("storage_create_record", "sqlite")
    async def create_record(self, user_id: str, record_data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new health record for ``user_id``."""
        self.ensure_user(user_id)
        record_id = record_data.get("id") or str(uuid.uuid4())
        try:
            with self.session() as db:
                record = Record(
                    id=record_id,
                    user_id=user_id,
                    original_name=record_data["original_name"],
                    display_name=record_data["display_name"],
                    filename=record_data["filename"],
                    file_path=record_data["file_path"],
                    file_type=record_data["file_type"],
                    file_size=record_data["file_size"],
                    mime_type=record_data.get("mime_type"),
                    status=record_data.get("status", "uploaded"),
                    sync_with_calendar=record_data.get("sync_with_calendar", False),
                    extracted_data=record_data.get("extracted_data"),
                )
                if record_data.get("uploaded_at"):
                    record.uploaded_at = record_data["uploaded_at"]
                db.add(record)
                db.flush()
                result = record.to_dict()
        except Exception as e:
            compliance_logger.log_data_access(
                resource_type="record",
                resource_id=record_id,
                user_id=user_id,
                operation="create",
                success=False,
                error=str(e),
            )
            logger.error(f"Failed to create record: {e}")
            raise

        compliance_logger.log_data_access(
            resource_type="record",
            resource_id=record_id,
            user_id=user_id,
            operation="create",
            success=True,
        )
        return result

    @monitor_latency("storage_get_record", "sqlite")
    async def get_record(self, record_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one record owned by ``user_id``."""
        with self.session() as db:
            record = (
                db.query(Record)
                .filter(Record.id == record_id, Record.user_id == user_id)
                .one_or_none()
            )
            result = record.to_dict() if record else None

        compliance_logger.log_data_access(
            resource_type="record",
            resource_id=record_id,
            user_id=user_id,
            operation="read",
            success=result is not None,
        )
        return result

    async def get_record_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a record regardless of owner; used by background processing."""
        with self.session() as db:
            record = db.get(Record, record_id)
            return record.to_dict() if record else None

    @monitor_latency("storage_list_records", "sqlite")
    async def list_records(
        self,
        user_id: str,
        status: Optional[str] = None,
        hidden: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """List a user's records, newest first."""
        with self.session() as db:
            query = db.query(Record).filter(Record.user_id == user_id)
            if status:
                query = query.filter(Record.status == status)
            if hidden is not None:
                query = query.filter(Record.hidden == hidden)
            records = (
                query.order_by(Record.uploaded_at.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )
            return [record.to_dict() for record in records]

    async def list_records_by_ids(self, user_id: str, record_ids: List[str]) -> List[Dict[str, Any]]:
        if not record_ids:
            return []
        with self.session() as db:
            records = (
                db.query(Record)
                .filter(Record.user_id == user_id, Record.id.in_(record_ids))
                .order_by(Record.uploaded_at.desc())
                .all()
            )
            return [record.to_dict() for record in records]

    async def list_pending_analysis(self, user_id: str) -> List[Dict[str, Any]]:
        """PDF records that have not been analysed yet."""
        with self.session() as db:
            records = (
                db.query(Record)
                .filter(
                    Record.user_id == user_id,
                    Record.file_type == "pdf",
                    or_(Record.analysis_status == "pending", Record.analysis_status.is_(None)),
                )
                .order_by(Record.uploaded_at.desc())
                .all()
            )
            return [record.to_dict() for record in records]

    @monitor_latency("storage_update_record", "sqlite")
    async def update_record(
        self, record_id: str, updates: Dict[str, Any], user_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Apply ``updates`` to a record; returns the updated row or ``None``."""
        unknown = set(updates) - _RECORD_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown record fields: {sorted(unknown)}")

        with self.session() as db:
            query = db.query(Record).filter(Record.id == record_id)
            if user_id is not None:
                query = query.filter(Record.user_id == user_id)
            record = query.one_or_none()
            if record is None:
                return None
            for key, value in updates.items():
                setattr(record, key, value)
            db.flush()
            result = record.to_dict()

        compliance_logger.log_data_access(
            resource_type="record",
            resource_id=record_id,
            user_id=result["user_id"],
            operation="update",
            success=True,
            fields=sorted(updates),
        )
        return result

    @monitor_latency("storage_delete_record", "sqlite")
    async def delete_record(self, record_id: str, user_id: str) -> bool:
        with self.session() as db:
            deleted = (
                db.query(Record)
                .filter(Record.id == record_id, Record.user_id == user_id)
                .delete(synchronize_session=False)
            )

        compliance_logger.log_data_access(
            resource_type="record",
            resource_id=record_id,
            user_id=user_id,
            operation="delete",
            success=bool(deleted),
        )
        return bool(deleted)

    def count_records(self) -> int:
        with self.session() as db:
            return db.query(func.count(Record.id)).scalar() or 0

    # Image analyses

    async def create_image_analysis(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.ensure_user(user_id)
        with self.session() as db:
            analysis = ImageAnalysis(id=data.get("id") or str(uuid.uuid4()), user_id=user_id)
            for key in (
                "record_id",
                "filename",
                "original_name",
                "file_path",
                "file_size",
                "mime_type",
                "image_type",
                "analysis_data",
                "quality_score",
                "confidence_score",
                "clinical_flags",
            ):
                setattr(analysis, key, data.get(key))
            db.add(analysis)
            db.flush()
            result = analysis.to_dict()

        compliance_logger.log_data_access(
            resource_type="image_analysis",
            resource_id=result["id"],
            user_id=user_id,
            operation="create",
            success=True,
        )
        return result

    async def get_image_analysis(self, analysis_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        with self.session() as db:
            analysis = (
                db.query(ImageAnalysis)
                .filter(ImageAnalysis.id == analysis_id, ImageAnalysis.user_id == user_id)
                .one_or_none()
            )
            return analysis.to_dict() if analysis else None

    async def list_image_analyses_for_record(self, record_id: str, user_id: str) -> List[Dict[str, Any]]:
        with self.session() as db:
            analyses = (
                db.query(ImageAnalysis)
                .filter(ImageAnalysis.record_id == record_id, ImageAnalysis.user_id == user_id)
                .order_by(ImageAnalysis.created_at.desc())
                .all()
            )
            return [analysis.to_dict() for analysis in analyses]

    async def list_image_analyses(self, user_id: str) -> List[Dict[str, Any]]:
        with self.session() as db:
            analyses = (
                db.query(ImageAnalysis)
                .filter(ImageAnalysis.user_id == user_id)
                .order_by(ImageAnalysis.created_at.desc())
                .all()
            )
            return [analysis.to_dict() for analysis in analyses]

    # Share history

    async def create_share(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.ensure_user(user_id)
        with self.session() as db:
            share = ShareHistory(id=data.get("id") or str(uuid.uuid4()), user_id=user_id)
            for key in (
                "recipient_email",
                "recipient_name",
                "record_ids",
                "record_count",
                "status",
                "method",
                "pdf_size",
                "pdf_path",
                "message_id",
                "error",
                "expires_at",
                "access_token",
            ):
                if key in data:
                    setattr(share, key, data[key])
            db.add(share)
            db.flush()
            return share.to_dict()

    async def list_shares(self, user_id: str) -> List[Dict[str, Any]]:
        with self.session() as db:
            shares = (
                db.query(ShareHistory)
                .filter(ShareHistory.user_id == user_id)
                .order_by(ShareHistory.shared_at.desc())
                .all()
            )
            return [share.to_dict() for share in shares]

    async def count_shares_for_record(self, user_id: str, record_id: str) -> int:
        shares = await self.list_shares(user_id)
        return sum(1 for share in shares if record_id in (share["record_ids"] or []))

    async def get_share_by_token(self, token: str) -> Optional[Dict[str, Any]]:
        with self.session() as db:
            share = db.query(ShareHistory).filter(ShareHistory.access_token == token).one_or_none()
            return share.to_dict() if share else None

    async def register_share_access(self, share_id: str) -> Optional[Dict[str, Any]]:
        with self.session() as db:
            share = db.get(ShareHistory, share_id)
            if share is None:
                return None
            share.accessed_count = (share.accessed_count or 0) + 1
            db.flush()
            result = share.to_dict()

        compliance_logger.log_data_access(
            resource_type="share",
            resource_id=share_id,
            user_id=result["user_id"],
            operation="access",
            success=True,
            accessed_count=result["accessed_count"],
        )
        return result

    # Calendar syncs

    async def create_calendar_sync(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.ensure_user(user_id)
        with self.session() as db:
            sync = CalendarSync(
                id=data.get("id") or str(uuid.uuid4()),
                user_id=user_id,
                record_id=data.get("record_id"),
                events_count=data.get("events_count", 0),
                results=data.get("results", []),
                success=data.get("success", True),
            )
            db.add(sync)
            db.flush()
            return sync.to_dict()

    async def list_calendar_syncs(self, user_id: str) -> List[Dict[str, Any]]:
        with self.session() as db:
            syncs = (
                db.query(CalendarSync)
                .filter(CalendarSync.user_id == user_id)
                .order_by(CalendarSync.synced_at.desc())
                .all()
            )
            return [sync.to_dict() for sync in syncs]

    async def mark_calendar_event_deleted(self, user_id: str, calendar_event_id: str) -> bool:
        """Flag a synced calendar event as deleted; returns ``False`` if unknown."""
        found = False
        with self.session() as db:
            syncs = db.query(CalendarSync).filter(CalendarSync.user_id == user_id).all()
            for sync in syncs:
                results = [dict(item) for item in sync.results or []]
                changed = False
                for item in results:
                    if item.get("calendarEventId") == calendar_event_id:
                        item["status"] = "deleted"
                        item["deletedAt"] = datetime.utcnow().isoformat()
                        changed = True
                if changed:
                    sync.results = results
                    found = True
        return found

    # Medications

    async def create_medication(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.ensure_user(user_id)
        with self.session() as db:
            medication = Medication(id=data.get("id") or str(uuid.uuid4()), user_id=user_id)
            for key, value in data.items():
                if key != "id" and hasattr(Medication, key):
                    setattr(medication, key, value)
            db.add(medication)
            db.flush()
            return medication.to_dict()

    async def list_medications(self, user_id: str, active_only: bool = False) -> List[Dict[str, Any]]:
        with self.session() as db:
            query = db.query(Medication).filter(Medication.user_id == user_id)
            if active_only:
                query = query.filter(
                    Medication.stopped.is_(False),
                    or_(Medication.end_date.is_(None), Medication.end_date >= date.today()),
                )
            medications = query.order_by(Medication.created_at.desc()).all()
            return [medication.to_dict() for medication in medications]

    async def update_medication(
        self, medication_id: str, user_id: str, updates: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        with self.session() as db:
            medication = (
                db.query(Medication)
                .filter(Medication.id == medication_id, Medication.user_id == user_id)
                .one_or_none()
            )
            if medication is None:
                return None
            for key, value in updates.items():
                if key not in ("id", "user_id") and hasattr(Medication, key):
                    setattr(medication, key, value)
            db.flush()
            return medication.to_dict()

    async def delete_medication(self, medication_id: str, user_id: str) -> bool:
        with self.session() as db:
            deleted = (
                db.query(Medication)
                .filter(Medication.id == medication_id, Medication.user_id == user_id)
                .delete(synchronize_session=False)
            )
        return bool(deleted)

    # Medical events

    async def create_event(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.ensure_user(user_id)
        with self.session() as db:
            medical_event = MedicalEvent(id=data.get("id") or str(uuid.uuid4()), user_id=user_id)
            for key, value in data.items():
                if key != "id" and hasattr(MedicalEvent, key):
                    setattr(medical_event, key, value)
            db.add(medical_event)
            db.flush()
            return medical_event.to_dict()

    async def list_events(
        self,
        user_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        with self.session() as db:
            query = db.query(MedicalEvent).filter(MedicalEvent.user_id == user_id)
            if start is not None:
                query = query.filter(MedicalEvent.date >= start)
            if end is not None:
                query = query.filter(MedicalEvent.date <= end)
            events = query.order_by(MedicalEvent.date.asc()).all()
            return [medical_event.to_dict() for medical_event in events]

    async def update_event(
        self, event_id: str, user_id: str, updates: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        with self.session() as db:
            medical_event = (
                db.query(MedicalEvent)
                .filter(MedicalEvent.id == event_id, MedicalEvent.user_id == user_id)
                .one_or_none()
            )
            if medical_event is None:
                return None
            for key, value in updates.items():
                if key not in ("id", "user_id") and hasattr(MedicalEvent, key):
                    setattr(medical_event, key, value)
            db.flush()
            return medical_event.to_dict()

    async def delete_event(self, event_id: str, user_id: str) -> bool:
        with self.session() as db:
            deleted = (
                db.query(MedicalEvent)
                .filter(MedicalEvent.id == event_id, MedicalEvent.user_id == user_id)
                .delete(synchronize_session=False)
            )
        return bool(deleted)

    def health_check(self) -> Dict[str, Any]:
        """Check database connectivity and report the record count."""
        try:
            count = self.count_records()
            return {"status": "connected", "recordCount": count}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "error", "error": str(e)}


_storage_service: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    """Return the process-wide storage service, creating it lazily."""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
