from datetime import datetime, timedelta, timezone

from ecg_system.coordinator.clock import CentralClock

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def test_timestamps_are_strictly_increasing():
    clock = CentralClock(time_source=lambda: T0)

    a, b, c = clock.now(), clock.now(), clock.now()

    assert a == T0
    assert a < b < c
    assert b - a == timedelta(microseconds=1)


def test_clock_never_goes_backwards():
    times = iter([T0, T0 - timedelta(seconds=5)])
    clock = CentralClock(time_source=lambda: next(times))

    first = clock.now()
    assert clock.now() > first


def test_stats_count_calls():
    clock = CentralClock(time_source=lambda: T0)
    assert clock.get_stats() == {'total_calls': 0, 'last_timestamp': None}

    clock.now()
    clock.now()
    stats = clock.get_stats()
    assert stats['total_calls'] == 2
    assert stats['last_timestamp'] == (T0 + timedelta(microseconds=1)).isoformat()
