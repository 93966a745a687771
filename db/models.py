"""
ECG System - ORM models
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utc_now():
    return datetime.now(timezone.utc)


class EcgSessionRecord(Base):
    """One sealed ECG capture session with its samples and metrics."""

    __tablename__ = 'ecg_sessions'

    session_id = Column(String(36), primary_key=True)
    user_id = Column(String(128), nullable=False, index=True)
    session_name = Column(String(128), nullable=False)
    session_number = Column(Integer, nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True))
    duration_seconds = Column(Float, nullable=False, default=0.0)
    planned_duration = Column(Integer)
    sample_rate = Column(Integer, nullable=False)
    sample_count = Column(Integer, nullable=False, default=0)

    device_id = Column(String(64))
    device_name = Column(String(128))

    terminal_status = Column(String(16), nullable=False)  # completed / aborted
    abort_reason = Column(Text)

    avg_bpm = Column(Float, default=0.0)
    min_bpm = Column(Float, default=0.0)
    max_bpm = Column(Float, default=0.0)
    rhythm = Column(String(64))
    heart_rate_status = Column(String(32))
    assessment = Column(String(128))
    quality = Column(String(64))
    hrv_sdnn = Column(Float)
    hrv_rmssd = Column(Float)
    peak_count = Column(Integer, default=0)

    samples = Column(JSON, nullable=False, default=list)
    heart_rates = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)

    def __repr__(self):
        return (
            f"<EcgSessionRecord(id={self.session_id[:8]}, name='{self.session_name}', "
            f"status={self.terminal_status})>"
        )
