"""
ECG Session Coordinator
Device binding and recording lifecycle for one capture at a time
"""

from .clock import CentralClock
from .coordinator import SessionCoordinator
from .scheduler import AsyncioScheduler, Scheduler
from .states import CoordinatorSnapshot, RecordingState

__all__ = [
    'AsyncioScheduler',
    'CentralClock',
    'CoordinatorSnapshot',
    'RecordingState',
    'Scheduler',
    'SessionCoordinator',
]

__version__ = '1.0.0'
