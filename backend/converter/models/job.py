"""Conversion job database model."""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Float, Text, DateTime, Index
from converter.database import Base


def _new_job_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job(Base):
    """One conversion request and its lifecycle state."""

    __tablename__ = "conversions"

    # Primary key
    id = Column(String(32), primary_key=True, default=_new_job_id)

    # Source
    input_filename = Column(String, nullable=False)
    input_path = Column(String, nullable=True)  # object-store key in the uploads bucket
    input_format = Column(String, nullable=False, default="")

    # Requested output
    output_format = Column(String, nullable=False)
    settings = Column(Text, default="{}")  # JSON snapshot of ConversionSettings

    # Status tracking
    status = Column(String, nullable=False, default="uploading")
    progress = Column(Float, nullable=False, default=0.0)

    # Result
    output_path = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    completed_at = Column(DateTime, nullable=True)

    # Indexes
    __table_args__ = (
        Index('idx_conversions_status', 'status'),
        Index('idx_conversions_created_at', 'created_at'),
    )
