import numpy as np

from ecg_system.sensors.ecg.config import ECGConfig
from ecg_system.sensors.ecg.processor import HEART_RATE_UNAVAILABLE, ECGProcessor
from ecg_system.sensors.ecg.simulator import synthesize_ecg


def make_processor(**overrides):
    return ECGProcessor(ECGConfig(**overrides))


def test_detect_r_peaks_finds_each_beat():
    processor = make_processor()
    signal = synthesize_ecg(10, bpm=60)

    peaks = processor.detect_r_peaks(signal)

    assert len(peaks) == 10
    # beats at 0.5 s, 1.5 s, ...
    expected = np.arange(10) * 250 + 125
    assert np.all(np.abs(peaks - expected) <= 2)


def test_flat_line_has_no_peaks():
    processor = make_processor()
    assert len(processor.detect_r_peaks(np.zeros(1000))) == 0
    assert processor.heart_rate(np.zeros(1000)) == HEART_RATE_UNAVAILABLE


def test_heart_rate_matches_synthetic_bpm():
    processor = make_processor()
    for bpm in (50, 72, 110):
        hr = processor.heart_rate(synthesize_ecg(10, bpm=bpm))
        assert abs(hr - bpm) < 2, bpm


def test_heart_rate_sentinel_for_short_input():
    processor = make_processor()
    assert processor.heart_rate([]) == HEART_RATE_UNAVAILABLE
    assert processor.heart_rate([0.1] * 19) == HEART_RATE_UNAVAILABLE


def test_heart_rate_uses_most_recent_window():
    processor = make_processor()
    signal = np.concatenate([synthesize_ecg(10, bpm=60), synthesize_ecg(10, bpm=100)])
    assert abs(processor.heart_rate(signal) - 100) < 3


def test_session_metrics_for_normal_recording():
    processor = make_processor()
    metrics = processor.session_metrics(synthesize_ecg(30, bpm=72), [])

    assert abs(metrics.avg_bpm - 72) < 2
    assert metrics.rhythm == 'Normal Sinus Rhythm'
    assert metrics.heart_rate_status == 'Normal'
    assert metrics.assessment == 'Normal ECG'
    assert metrics.quality == 'Good quality data'
    assert metrics.hrv_sdnn is not None
    assert metrics.hrv_rmssd is not None
    assert metrics.peak_count >= 35


def test_session_metrics_prefers_live_heart_rate_series():
    processor = make_processor()
    metrics = processor.session_metrics(synthesize_ecg(12, bpm=72), [70.0, 0.0, 74.0])

    assert metrics.avg_bpm == 72.0
    assert metrics.min_bpm == 70.0
    assert metrics.max_bpm == 74.0


def alternating_rr_trace(rr_pattern=(0.6, 1.0), beats=20, sample_rate=250):
    """QRS complexes placed at alternating RR intervals."""
    intervals = [rr_pattern[i % 2] for i in range(beats - 1)]
    beat_times = 0.5 + np.concatenate(([0.0], np.cumsum(intervals)))
    duration = beat_times[-1] + 0.5
    t = np.arange(int(duration * sample_rate)) / float(sample_rate)

    trace = np.zeros_like(t)
    for beat in beat_times:
        for offset, amplitude, width in ((-0.03, -0.10, 0.008), (0.0, 1.0, 0.012), (0.03, -0.15, 0.008)):
            trace += amplitude * np.exp(-((t - beat - offset) ** 2) / (2.0 * width ** 2))
    return trace


def test_alternating_rr_intervals_are_irregular():
    processor = make_processor()
    trace = alternating_rr_trace()

    rr = processor.rr_intervals(trace)
    assert len(rr) == 19
    assert np.allclose(rr[::2], 0.6, atol=0.02)
    assert np.allclose(rr[1::2], 1.0, atol=0.02)

    metrics = processor.session_metrics(trace, [])
    assert metrics.rhythm == 'Irregular Rhythm'
    assert metrics.assessment == 'Abnormal ECG: Abnormal rhythm'


def test_session_metrics_without_data():
    processor = make_processor()
    metrics = processor.session_metrics([], [])

    assert metrics.avg_bpm == HEART_RATE_UNAVAILABLE
    assert metrics.heart_rate_status == 'Unknown'
    assert metrics.quality == 'Short duration'
    assert metrics.hrv_sdnn is None


def test_short_recording_has_no_hrv():
    processor = make_processor()
    metrics = processor.session_metrics(synthesize_ecg(5, bpm=72), [])
    assert metrics.hrv_sdnn is None
    assert metrics.quality == 'Short duration'


def test_heart_rate_status_thresholds():
    assert ECGProcessor.heart_rate_status(55) == 'Bradycardia'
    assert ECGProcessor.heart_rate_status(60) == 'Normal'
    assert ECGProcessor.heart_rate_status(100) == 'Normal'
    assert ECGProcessor.heart_rate_status(101) == 'Tachycardia'


def test_overall_assessment():
    assert ECGProcessor.overall_assessment(72, 'Normal Sinus Rhythm') == 'Normal ECG'
    assert ECGProcessor.overall_assessment(45, 'Irregular Rhythm') == \
        'Abnormal ECG: Bradycardia, Abnormal rhythm'


def test_quality_labels():
    assert ECGProcessor.assess_quality(72, 5, 1250) == 'Short duration'
    assert ECGProcessor.assess_quality(72, 20, 50) == 'Limited data'
    assert ECGProcessor.assess_quality(130, 20, 5000) == 'Irregular heart rate detected'
    assert ECGProcessor.assess_quality(72, 20, 5000) == 'Good quality data'
