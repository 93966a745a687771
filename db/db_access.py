"""
ECG System - Database Access Layer
Wraps the ORM models to provide a simple interface for:
- Connecting to the database
- Saving sealed capture sessions
- Listing, renaming and deleting a user's sessions
"""

import uuid
import logging
import threading
from typing import List, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ecg_system.errors import InvalidStateError, PersistenceError
from ecg_system.models import Session, SessionStatus, SessionSummary

from .connection import get_db_connection
from .models import Base, EcgSessionRecord

logger = logging.getLogger(__name__)

# Default database; override with ECG_DATABASE_URL (see AppSettings)
DB_CONFIG = {
    'url':  'sqlite:///ecg_sessions.db',
    'echo': False,
}

SessionKey = Union[uuid.UUID, str]


def _key(session_id: SessionKey) -> str:
    return str(session_id)


def to_summary(record: EcgSessionRecord) -> SessionSummary:
    """Convert a stored row to the SessionSummary view."""
    return SessionSummary(
        session_id=uuid.UUID(record.session_id),
        user_id=record.user_id,
        session_name=record.session_name,
        session_number=record.session_number,
        started_at=record.started_at,
        duration_seconds=record.duration_seconds or 0.0,
        sample_count=record.sample_count or 0,
        avg_bpm=record.avg_bpm or 0.0,
        min_bpm=record.min_bpm or 0.0,
        max_bpm=record.max_bpm or 0.0,
        rhythm=record.rhythm or 'Unknown',
        status=record.heart_rate_status or 'Unknown',
        terminal_status=record.terminal_status,
        heart_rates=tuple(record.heart_rates or ()),
    )


class SessionStore:
    """
    Persistence gateway for sealed ECG sessions.

    Each saved session gets the next per-user session number and the
    default name "Session N". All operations share a single SQLAlchemy
    session guarded by a lock, so the store can be called from an executor
    thread.

    Usage:
        store = SessionStore()
        session_id = store.save_session(session, user_id)
        for summary in store.list_sessions(user_id):
            ...
        store.close()
    """

    def __init__(self, config: dict = None):
        cfg = config or DB_CONFIG
        try:
            self.engine, self.session = get_db_connection(**cfg)
            Base.metadata.create_all(self.engine)
            logger.info(f"✓ Connected to session store ({cfg['url'].split('://')[0]})")
        except Exception as e:
            logger.error(f"✗ Failed to connect to session store: {e}")
            raise

        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> 'SessionStore':
        return cls({**DB_CONFIG, 'url': settings.database_url})

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def save_session(self, session: Session, user_id: str) -> uuid.UUID:
        """
        Persist a sealed session.

        Args:
            session: Sealed Session (completed, or aborted with partial save on)
            user_id: Owner of the recording

        Returns:
            The session's UUID

        Raises:
            InvalidStateError: the session is still open
            PersistenceError:  the write failed (transaction rolled back)
        """
        if not session.sealed:
            raise InvalidStateError(
                f"Cannot save open session {session.session_id}",
                code='session-open',
            )

        metrics = session.metrics
        with self._lock:
            try:
                number = self._count(user_id) + 1
                record = EcgSessionRecord(
                    session_id=_key(session.session_id),
                    user_id=user_id,
                    session_name=f"Session {number}",
                    session_number=number,
                    started_at=session.started_at,
                    ended_at=session.ended_at,
                    duration_seconds=session.duration_seconds or 0.0,
                    planned_duration=session.planned_duration,
                    sample_rate=session.sample_rate,
                    sample_count=session.sample_count,
                    device_id=session.device.device_id if session.device else None,
                    device_name=session.device.name if session.device else None,
                    terminal_status=session.status.value,
                    abort_reason=session.abort_reason,
                    avg_bpm=metrics.avg_bpm if metrics else 0.0,
                    min_bpm=metrics.min_bpm if metrics else 0.0,
                    max_bpm=metrics.max_bpm if metrics else 0.0,
                    rhythm=metrics.rhythm if metrics else 'Unknown',
                    heart_rate_status=metrics.heart_rate_status if metrics else 'Unknown',
                    assessment=metrics.assessment if metrics else None,
                    quality=metrics.quality if metrics else None,
                    hrv_sdnn=metrics.hrv_sdnn if metrics else None,
                    hrv_rmssd=metrics.hrv_rmssd if metrics else None,
                    peak_count=metrics.peak_count if metrics else 0,
                    samples=list(session.samples),
                    heart_rates=list(session.heart_rates),
                )
                self.session.add(record)
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"✗ Failed to save session {session.session_id}: {e}")
                raise PersistenceError(
                    f"Failed to save session {session.session_id}",
                    code='write-failed',
                    details=str(e),
                ) from e

        if session.status is SessionStatus.ABORTED:
            logger.info(f"✓ Saved partial session {session.session_id} as 'Session {number}'")
        else:
            logger.info(f"✓ Saved session {session.session_id} as 'Session {number}'")
        return session.session_id

    def rename_session(self, session_id: SessionKey, new_name: str) -> bool:
        """
        Rename a stored session.

        Returns:
            True if the session existed and was renamed.

        Raises:
            ValueError:       empty name
            PersistenceError: the write failed
        """
        new_name = (new_name or '').strip()
        if not new_name:
            raise ValueError("Session name must not be empty")

        with self._lock:
            try:
                record = self.session.get(EcgSessionRecord, _key(session_id))
                if record is None:
                    logger.warning(f"Session {session_id} not found, nothing to rename")
                    return False
                record.session_name = new_name
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"✗ Failed to rename session {session_id}: {e}")
                raise PersistenceError(f"Failed to rename session {session_id}", details=str(e)) from e

        logger.info(f"✓ Renamed session {session_id} to '{new_name}'")
        return True

    def delete_session(self, session_id: SessionKey) -> bool:
        """
        Delete a stored session.

        Returns:
            True if a session was deleted.
        """
        with self._lock:
            try:
                record = self.session.get(EcgSessionRecord, _key(session_id))
                if record is None:
                    return False
                self.session.delete(record)
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"✗ Failed to delete session {session_id}: {e}")
                raise PersistenceError(f"Failed to delete session {session_id}", details=str(e)) from e

        logger.info(f"✓ Deleted session {session_id}")
        return True

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def list_sessions(self, user_id: str) -> List[SessionSummary]:
        """
        List a user's sessions, newest first.

        Raises:
            PersistenceError: the query failed
        """
        with self._lock:
            try:
                records = (
                    self.session.query(EcgSessionRecord)
                    .filter_by(user_id=user_id)
                    .order_by(EcgSessionRecord.started_at.desc())
                    .all()
                )
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"✗ Failed to list sessions for '{user_id}': {e}")
                raise PersistenceError(f"Failed to list sessions for '{user_id}'", details=str(e)) from e

        return [to_summary(r) for r in records]

    def get_session(self, session_id: SessionKey) -> Optional[EcgSessionRecord]:
        """
        Fetch one stored session including its samples.

        Returns:
            EcgSessionRecord if found, None otherwise.
        """
        with self._lock:
            try:
                return self.session.get(EcgSessionRecord, _key(session_id))
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error(f"Error fetching session {session_id}: {e}")
                raise PersistenceError(f"Failed to fetch session {session_id}", details=str(e)) from e

    def count_sessions(self, user_id: str) -> int:
        with self._lock:
            return self._count(user_id)

    def _count(self, user_id: str) -> int:
        return (
            self.session.query(func.count(EcgSessionRecord.session_id))
            .filter_by(user_id=user_id)
            .scalar()
        ) or 0

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self):
        """Close the SQLAlchemy session and dispose of the engine."""
        try:
            self.session.close()
            self.engine.dispose()
            logger.info("✓ DB session closed")
        except SQLAlchemyError as e:
            logger.error(f"Error closing DB session: {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
