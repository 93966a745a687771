from datetime import datetime, timedelta, timezone

import pytest

from ecg_system.errors import InvalidStateError, SessionSealedError
from ecg_system.models import Device, Session, SessionMetrics, SessionStatus

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def test_session_is_append_only_then_immutable():
    session = Session(started_at=T0, sample_rate=250)
    session.append([0.1, 0.2])
    session.append([0.3])
    session.record_heart_rate(71)

    session.seal(SessionStatus.COMPLETED, ended_at=T0 + timedelta(seconds=2), metrics=SessionMetrics(avg_bpm=71))

    assert session.samples == (0.1, 0.2, 0.3)
    assert session.heart_rates == (71.0,)
    assert session.duration_seconds == 2.0
    assert session.recorded_seconds == pytest.approx(3 / 250)

    with pytest.raises(SessionSealedError) as exc:
        session.append([0.4])
    assert exc.value.code == 'session-sealed'
    assert isinstance(exc.value, InvalidStateError)

    with pytest.raises(SessionSealedError):
        session.record_heart_rate(70)
    with pytest.raises(SessionSealedError):
        session.seal(SessionStatus.ABORTED, ended_at=T0)
    assert session.sample_count == 3


def test_seal_without_keeping_samples():
    session = Session(started_at=T0, sample_rate=250)
    session.append([0.1] * 10)

    session.seal(SessionStatus.ABORTED, ended_at=T0, keep_samples=False, reason='Connection lost')

    assert session.samples == ()
    assert session.abort_reason == 'Connection lost'


def test_cannot_seal_as_open():
    session = Session(started_at=T0, sample_rate=250)
    with pytest.raises(ValueError):
        session.seal(SessionStatus.OPEN, ended_at=T0)


def test_open_session_has_no_duration():
    session = Session(started_at=T0, sample_rate=250)
    assert session.duration_seconds is None
    assert session.sealed is False
    assert session.session_id.version == 4


def test_device_display_name():
    assert Device('AA:BB', 'BioAmp').display_name == 'BioAmp'
    assert Device('AA:BB').display_name == 'AA:BB'
