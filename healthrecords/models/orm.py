"""SQLAlchemy tables backing the health records store."""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class _DictMixin:
    """Expose a row as a plain ``dict`` keyed by column name."""

    def to_dict(self) -> Dict[str, Any]:
        return {column.name: getattr(self, column.name) for column in self.__table__.columns}


class User(_DictMixin, Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False)
    name = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Record(_DictMixin, Base):
    __tablename__ = "records"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    original_name = Column(String, nullable=False)
    display_name = Column(String, nullable=False)
    filename = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String)
    status = Column(String, default="uploaded", index=True)
    hidden = Column(Boolean, default=False)

    extracted_data = Column(JSON)
    extracted_events = Column(JSON)

    # Document analysis
    ai_analysis = Column(JSON)
    analysis_status = Column(String, default="pending")
    analysis_confidence = Column(Float)
    document_type = Column(String)

    # Voice notes
    sync_with_calendar = Column(Boolean, default=False)
    calendar_synced_at = Column(DateTime)

    uploaded_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime)
    analyzed_at = Column(DateTime)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ImageAnalysis(_DictMixin, Base):
    __tablename__ = "image_analyses"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    record_id = Column(String, ForeignKey("records.id", ondelete="SET NULL"), nullable=True, index=True)
    filename = Column(String, nullable=False)
    original_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_size = Column(Integer)
    mime_type = Column(String)
    image_type = Column(String)
    analysis_data = Column(JSON)
    quality_score = Column(Float)
    confidence_score = Column(Float)
    clinical_flags = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)


class ShareHistory(_DictMixin, Base):
    __tablename__ = "share_history"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_email = Column(String, nullable=False)
    recipient_name = Column(String)
    record_ids = Column(JSON, nullable=False)
    record_count = Column(Integer, nullable=False)
    status = Column(String, default="sent")
    method = Column(String, default="email")
    pdf_size = Column(Integer)
    pdf_path = Column(String)
    message_id = Column(String)
    error = Column(Text)
    shared_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime)
    access_token = Column(String, index=True)
    accessed_count = Column(Integer, default=0)


class CalendarSync(_DictMixin, Base):
    __tablename__ = "calendar_syncs"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    record_id = Column(String, ForeignKey("records.id", ondelete="SET NULL"), nullable=True)
    synced_at = Column(DateTime, default=datetime.utcnow)
    events_count = Column(Integer, default=0)
    results = Column(JSON)
    success = Column(Boolean, default=True)


class Medication(_DictMixin, Base):
    __tablename__ = "medications"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    record_id = Column(String, ForeignKey("records.id", ondelete="SET NULL"), nullable=True)
    name = Column(String, nullable=False)
    dosage = Column(String)
    frequency = Column(String)
    instructions = Column(Text)
    start_date = Column(Date)
    end_date = Column(Date)
    prescriber = Column(String)
    reason = Column(String)
    side_effects = Column(JSON)
    interactions = Column(JSON)
    reminder_time = Column(String)
    stopped = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class MedicalEvent(_DictMixin, Base):
    __tablename__ = "medical_events"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    record_id = Column(String, ForeignKey("records.id", ondelete="SET NULL"), nullable=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text)
    date = Column(Date, nullable=False)
    time = Column(String)
    location = Column(String)
    priority = Column(String, default="medium")
    provider = Column(String)
    needs_prep = Column(Boolean, default=False)
    prep_instructions = Column(JSON)
    confidence = Column(Float)
    created_at = Column(DateTime, default=datetime.utcnow)
