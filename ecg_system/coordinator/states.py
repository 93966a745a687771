"""
Coordinator State
Recording lifecycle enum and the snapshot handed to subscribers
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ecg_system.errors import ECGSystemError
from ecg_system.models import ConnectionStatus, Device


class RecordingState(str, Enum):
    """Lifecycle stage of a capture. Exactly one is active per coordinator."""
    IDLE = 'idle'
    COUNTDOWN = 'countdown'
    RECORDING = 'recording'
    PROCESSING = 'processing'
    COMPLETED = 'completed'


@dataclass(frozen=True)
class CoordinatorSnapshot:
    """Immutable view of the coordinator after an event has been applied."""
    connection_status: ConnectionStatus
    recording_state: RecordingState
    device: Optional[Device]
    discovered_devices: Tuple[Device, ...]
    status_message: str
    duration: int
    countdown_remaining: int
    recording_remaining: int
    current_heart_rate: float
    heart_rate_history: Tuple[float, ...]
    display_samples: Tuple[float, ...]
    last_error: Optional[ECGSystemError] = None

    @property
    def is_connected(self) -> bool:
        return self.connection_status is ConnectionStatus.CONNECTED

    @property
    def is_recording(self) -> bool:
        return self.recording_state is RecordingState.RECORDING

    @property
    def can_start_recording(self) -> bool:
        return self.is_connected and self.recording_state in (
            RecordingState.IDLE, RecordingState.COMPLETED,
        )
