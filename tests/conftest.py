"""
Shared fixtures: a hand-driven scheduler, a recording session sink and an
in-memory session store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from db.db_access import SessionStore
from ecg_system.coordinator import CentralClock, SessionCoordinator
from ecg_system.models import Device, Session, SessionStatus
from ecg_system.sensors.ecg.config import ECGConfig
from ecg_system.sensors.ecg.processor import ECGProcessor
from ecg_system.sensors.ecg.simulator import synthesize_ecg

TEST_DEVICE = Device(device_id='AA:BB:CC:DD:EE:FF', name='BioAmp ECG', rssi=-60)


class ManualTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers only fire when a test says so."""

    def __init__(self):
        self.timers = []

    def call_later(self, delay, callback):
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def live(self):
        return [t for t in self.timers if not t.cancelled]

    def fire(self) -> bool:
        """Fire the oldest live timer. Returns False when none is pending."""
        for timer in self.timers:
            if not timer.cancelled:
                self.timers.remove(timer)
                timer.callback()
                return True
        return False

    def fire_n(self, n: int):
        for _ in range(n):
            assert self.fire(), "no pending timer"

    def fire_all(self, limit: int = 10000) -> int:
        count = 0
        while count < limit and self.fire():
            count += 1
        return count


class RecordingSink:
    """Session sink that keeps every handed-off session."""

    def __init__(self):
        self.sessions = []

    def __call__(self, session):
        self.sessions.append(session)


class SteppingClock(CentralClock):
    """Clock advancing one second per call, starting at a fixed time."""

    def __init__(self, start=None):
        self._next = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
        super().__init__(time_source=self._tick)

    def _tick(self):
        current = self._next
        self._next = current + timedelta(seconds=1)
        return current


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def config():
    return ECGConfig.for_session()


@pytest.fixture
def coordinator(config, scheduler, sink):
    coord = SessionCoordinator(
        config=config,
        scheduler=scheduler,
        clock=SteppingClock(),
        session_sink=sink,
    )
    coord.on_device_connected(TEST_DEVICE)
    yield coord
    coord.close()


@pytest.fixture
def store():
    s = SessionStore({'url': 'sqlite://', 'echo': False})
    yield s
    s.close()


def make_sealed_session(
    seconds: float = 12.0,
    bpm: float = 72.0,
    started_at: datetime = None,
    status: SessionStatus = SessionStatus.COMPLETED,
) -> Session:
    """A sealed session of synthetic ECG with computed metrics."""
    config = ECGConfig.for_session()
    started_at = started_at or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    samples = synthesize_ecg(seconds, sample_rate=config.sample_rate, bpm=bpm)

    session = Session(
        started_at=started_at,
        sample_rate=config.sample_rate,
        device=TEST_DEVICE,
        planned_duration=int(seconds),
    )
    session.append(samples)
    metrics = ECGProcessor(config).session_metrics(session.samples, [])
    session.seal(status, ended_at=started_at + timedelta(seconds=seconds), metrics=metrics)
    return session
