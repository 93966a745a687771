from ecg_system.sensors.ecg.buffer import SampleBuffer
from ecg_system.sensors.ecg.config import ECGConfig
from ecg_system.sensors.ecg.processor import HEART_RATE_UNAVAILABLE
from ecg_system.sensors.ecg.simulator import synthesize_ecg


def test_heart_rate_sentinel_until_enough_samples():
    buffer = SampleBuffer(ECGConfig.for_session())
    assert buffer.current_heart_rate() == HEART_RATE_UNAVAILABLE

    buffer.append([0.2] * 19)
    assert buffer.current_heart_rate() == HEART_RATE_UNAVAILABLE


def test_append_keeps_order_without_dedup():
    buffer = SampleBuffer(ECGConfig.for_session())
    buffer.append([1.0, 1.0, 2.0])
    buffer.append([2.0, 3.0])

    assert list(buffer.display) == [1.0, 1.0, 2.0, 2.0, 3.0]
    assert len(buffer) == 5


def test_display_window_is_bounded_but_total_is_not():
    config = ECGConfig.for_session()
    buffer = SampleBuffer(config)

    for _ in range(30):
        buffer.append([0.0] * 250)

    assert len(buffer.display) == config.display_window
    assert buffer.total_samples == 7500
    assert buffer.dropped_samples == 0


def test_session_cap_keeps_oldest_and_counts_dropped():
    config = ECGConfig(max_session_samples=100)
    buffer = SampleBuffer(config)

    assert len(buffer.append(list(range(60)))) == 60
    accepted = buffer.append(list(range(60, 120)))

    assert accepted == [float(i) for i in range(60, 100)]
    assert buffer.total_samples == 100
    assert buffer.dropped_samples == 20
    assert buffer.append([1.0, 2.0]) == []
    assert buffer.dropped_samples == 22


def test_running_heart_rate_from_synthetic_ecg():
    buffer = SampleBuffer(ECGConfig.for_session())
    signal = synthesize_ecg(8, bpm=60)

    for i in range(0, len(signal), 250):
        buffer.append(signal[i:i + 250])

    assert 57 < buffer.current_heart_rate() < 63
    assert len(buffer.heart_rate_history) > 0


def test_heart_rate_history_is_bounded():
    config = ECGConfig(hr_history_size=5)
    buffer = SampleBuffer(config)
    signal = synthesize_ecg(20, bpm=75)

    for i in range(0, len(signal), 125):
        buffer.append(signal[i:i + 125])

    assert len(buffer.heart_rate_history) == 5
    assert buffer.total_samples == len(signal)


def test_realtime_processing_off_skips_heart_rate():
    config = ECGConfig(realtime_processing=False)
    buffer = SampleBuffer(config)
    buffer.append(synthesize_ecg(5))

    assert buffer.current_heart_rate() == HEART_RATE_UNAVAILABLE
    assert len(buffer.heart_rate_history) == 0


def test_reset_clears_everything():
    config = ECGConfig(max_session_samples=10)
    buffer = SampleBuffer(config)
    buffer.append([0.5] * 15)

    buffer.reset()

    assert buffer.total_samples == 0
    assert buffer.dropped_samples == 0
    assert len(buffer.display) == 0
    assert buffer.current_heart_rate() == HEART_RATE_UNAVAILABLE
