"""
ECG Session Data Model
Devices, capture sessions and their derived metrics
"""

import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from .errors import SessionSealedError

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    """Bluetooth connection status of the ECG device."""
    DISCONNECTED = 'disconnected'
    SCANNING = 'scanning'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    ERROR = 'error'


class SessionStatus(str, Enum):
    """Lifecycle status of a capture session."""
    OPEN = 'open'
    COMPLETED = 'completed'
    ABORTED = 'aborted'


@dataclass(frozen=True)
class Device:
    """A discovered or connected ECG sensor."""
    device_id: str
    name: str = ''
    rssi: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.name or self.device_id


@dataclass(frozen=True)
class SessionMetrics:
    """
    Summary metrics computed when a session is sealed.

    HRV fields are None when the recording did not yield enough RR
    intervals to compute them.
    """
    avg_bpm: float = 0.0
    min_bpm: float = 0.0
    max_bpm: float = 0.0
    rhythm: str = 'Normal Sinus Rhythm'
    heart_rate_status: str = 'Normal'
    assessment: str = 'Normal ECG'
    quality: str = 'Limited data'
    hrv_sdnn: Optional[float] = None
    hrv_rmssd: Optional[float] = None
    peak_count: int = 0

    def to_dict(self) -> dict:
        return {
            'avg_bpm': self.avg_bpm,
            'min_bpm': self.min_bpm,
            'max_bpm': self.max_bpm,
            'rhythm': self.rhythm,
            'heart_rate_status': self.heart_rate_status,
            'assessment': self.assessment,
            'quality': self.quality,
            'hrv_sdnn': self.hrv_sdnn,
            'hrv_rmssd': self.hrv_rmssd,
            'peak_count': self.peak_count,
        }


class Session:
    """
    One bounded ECG recording.

    The sample sequence is append-only while the session is open and becomes
    an immutable tuple once sealed. Sealing happens exactly once, either as
    COMPLETED (normal stop) or ABORTED (disconnect / device fault).
    """

    def __init__(
        self,
        started_at: datetime,
        sample_rate: int,
        device: Optional[Device] = None,
        planned_duration: Optional[int] = None,
        session_id: Optional[uuid.UUID] = None,
    ):
        self.session_id = session_id or uuid.uuid4()
        self.started_at = started_at
        self.sample_rate = sample_rate
        self.device = device
        self.planned_duration = planned_duration

        self.status = SessionStatus.OPEN
        self.ended_at: Optional[datetime] = None
        self.metrics: Optional[SessionMetrics] = None
        self.abort_reason: Optional[str] = None

        self._samples: List[float] = []
        self._heart_rates: List[float] = []
        self._sealed_samples: Optional[Tuple[float, ...]] = None
        self._sealed_heart_rates: Optional[Tuple[float, ...]] = None

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    @property
    def sealed(self) -> bool:
        return self.status is not SessionStatus.OPEN

    def append(self, samples: Iterable[float]):
        """
        Append a batch of voltage samples in arrival order.

        Raises:
            SessionSealedError: if the session has already been sealed.
        """
        if self.sealed:
            raise SessionSealedError(
                f"Session {self.session_id} is sealed ({self.status.value})",
                code='session-sealed',
            )
        self._samples.extend(float(s) for s in samples)

    def record_heart_rate(self, bpm: float):
        """Add one derived heart-rate value to the session series."""
        if self.sealed:
            raise SessionSealedError(
                f"Session {self.session_id} is sealed ({self.status.value})",
                code='session-sealed',
            )
        self._heart_rates.append(float(bpm))

    def seal(
        self,
        status: SessionStatus,
        ended_at: datetime,
        metrics: Optional[SessionMetrics] = None,
        keep_samples: bool = True,
        reason: Optional[str] = None,
    ):
        """
        Freeze the session.

        Args:
            status:       COMPLETED or ABORTED.
            ended_at:     Timestamp of the stop / abort.
            metrics:      Summary metrics for completed sessions.
            keep_samples: False discards the partial buffer of an aborted session.
            reason:       Free-text abort reason.
        """
        if self.sealed:
            raise SessionSealedError(
                f"Session {self.session_id} already sealed ({self.status.value})",
                code='session-sealed',
            )
        if status is SessionStatus.OPEN:
            raise ValueError("Cannot seal a session as OPEN")

        self.status = status
        self.ended_at = ended_at
        self.metrics = metrics
        self.abort_reason = reason

        if keep_samples:
            self._sealed_samples = tuple(self._samples)
            self._sealed_heart_rates = tuple(self._heart_rates)
        else:
            self._sealed_samples = ()
            self._sealed_heart_rates = ()
        self._samples = []
        self._heart_rates = []

        logger.debug(
            f"Session {self.session_id} sealed as {status.value} "
            f"({len(self._sealed_samples)} samples)"
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def samples(self) -> Tuple[float, ...]:
        if self._sealed_samples is not None:
            return self._sealed_samples
        return tuple(self._samples)

    @property
    def heart_rates(self) -> Tuple[float, ...]:
        if self._sealed_heart_rates is not None:
            return self._sealed_heart_rates
        return tuple(self._heart_rates)

    @property
    def sample_count(self) -> int:
        if self._sealed_samples is not None:
            return len(self._sealed_samples)
        return len(self._samples)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Wall-clock length of the session, None while still open."""
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def recorded_seconds(self) -> float:
        """Length of signal actually captured, from the sample count."""
        if not self.sample_rate:
            return 0.0
        return self.sample_count / float(self.sample_rate)

    def __repr__(self):
        return (
            f"<Session(id={str(self.session_id)[:8]}, status={self.status.value}, "
            f"samples={self.sample_count})>"
        )


@dataclass(frozen=True)
class SessionSummary:
    """Row-level view of a stored session, as returned by list_sessions()."""
    session_id: uuid.UUID
    user_id: str
    session_name: str
    session_number: int
    started_at: datetime
    duration_seconds: float
    sample_count: int
    avg_bpm: float
    min_bpm: float
    max_bpm: float
    rhythm: str
    status: str
    terminal_status: str
    heart_rates: Tuple[float, ...] = field(default_factory=tuple)
