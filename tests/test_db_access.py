import csv
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError

from db.export_session import export_session
from ecg_system.errors import InvalidStateError, PersistenceError
from ecg_system.models import Session, SessionStatus

from conftest import make_sealed_session

START = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def test_save_assigns_sequential_session_names(store):
    first = make_sealed_session(started_at=START)
    second = make_sealed_session(started_at=START + timedelta(days=1), bpm=80)

    assert store.save_session(first, 'user-1') == first.session_id
    store.save_session(second, 'user-1')

    summaries = store.list_sessions('user-1')
    assert [s.session_name for s in summaries] == ['Session 2', 'Session 1']
    assert [s.session_number for s in summaries] == [2, 1]
    assert summaries[1].session_id == first.session_id


def test_session_numbers_are_per_user(store):
    store.save_session(make_sealed_session(), 'user-1')
    store.save_session(make_sealed_session(), 'user-2')

    assert store.list_sessions('user-2')[0].session_name == 'Session 1'
    assert store.count_sessions('user-1') == 1
    assert store.list_sessions('nobody') == []


def test_summary_carries_metrics(store):
    session = make_sealed_session(seconds=30, bpm=72)
    store.save_session(session, 'user-1')

    summary = store.list_sessions('user-1')[0]
    assert summary.sample_count == 7500
    assert summary.duration_seconds == 30.0
    assert summary.avg_bpm == pytest.approx(session.metrics.avg_bpm)
    assert summary.rhythm == 'Normal Sinus Rhythm'
    assert summary.status == 'Normal'
    assert summary.terminal_status == 'completed'


def test_get_session_round_trips_samples(store):
    session = make_sealed_session(seconds=12)
    store.save_session(session, 'user-1')

    record = store.get_session(session.session_id)
    assert record.samples == pytest.approx(list(session.samples))
    assert record.device_name == 'BioAmp ECG'
    assert store.get_session('00000000-0000-0000-0000-000000000000') is None


def test_open_session_is_rejected(store):
    session = Session(started_at=START, sample_rate=250)
    with pytest.raises(InvalidStateError):
        store.save_session(session, 'user-1')
    assert store.count_sessions('user-1') == 0


def test_aborted_session_without_metrics(store):
    session = Session(started_at=START, sample_rate=250)
    session.append([0.1] * 300)
    session.seal(SessionStatus.ABORTED, ended_at=START + timedelta(seconds=2), reason='Connection lost')

    store.save_session(session, 'user-1')

    summary = store.list_sessions('user-1')[0]
    assert summary.terminal_status == 'aborted'
    assert summary.rhythm == 'Unknown'
    assert store.get_session(session.session_id).abort_reason == 'Connection lost'


def test_rename_session(store):
    session = make_sealed_session()
    store.save_session(session, 'user-1')

    assert store.rename_session(session.session_id, '  Morning run ') is True
    assert store.list_sessions('user-1')[0].session_name == 'Morning run'
    assert store.rename_session('00000000-0000-0000-0000-000000000000', 'x') is False

    with pytest.raises(ValueError):
        store.rename_session(session.session_id, '   ')


def test_delete_session(store):
    session = make_sealed_session()
    store.save_session(session, 'user-1')

    assert store.delete_session(session.session_id) is True
    assert store.delete_session(session.session_id) is False
    assert store.list_sessions('user-1') == []


def test_write_failure_rolls_back_and_raises(store, monkeypatch):
    def failing_commit():
        raise SQLAlchemyError('disk I/O error')

    monkeypatch.setattr(store.session, 'commit', failing_commit)

    with pytest.raises(PersistenceError):
        store.save_session(make_sealed_session(), 'user-1')

    monkeypatch.undo()
    assert store.list_sessions('user-1') == []


def test_export_writes_csv_files(store, tmp_path):
    session = make_sealed_session(seconds=12)
    store.save_session(session, 'user-1')

    export_dir = export_session(store.get_session(session.session_id), tmp_path)

    assert export_dir.name.startswith('Session_1_')
    with open(export_dir / 'samples.csv', newline='') as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 3000
    assert rows[250]['time_s'] == '1.0'
    assert (export_dir / 'session_info.csv').exists()
    assert 'Session name : Session 1' in (export_dir / 'export_manifest.txt').read_text()
