"""
ECG Signal Processor
R-peak detection, heart rate, HRV and session summary metrics
"""

import logging
from typing import Optional, Sequence

import numpy as np
from scipy import signal

from ecg_system.models import SessionMetrics
from .config import ECGConfig

logger = logging.getLogger(__name__)

# Returned by every heart-rate computation that does not have enough signal
HEART_RATE_UNAVAILABLE = 0.0

# Heart-rate classification thresholds (BPM)
BRADYCARDIA_THRESHOLD = 60
TACHYCARDIA_THRESHOLD = 100

# Mean successive RR deviation (fraction of mean RR) above which rhythm is irregular
IRREGULARITY_THRESHOLD = 0.15

# Fraction of the way from the window mean to its maximum an R-peak must reach
PEAK_HEIGHT_RATIO = 0.6


class ECGProcessor:
    """
    Signal processing for single-lead ECG data

    Two uses:
    - Real-time: heart rate from the most recent window while recording
    - Post-session: summary metrics (BPM range, rhythm, HRV) when a session is sealed
    """

    def __init__(self, config: Optional[ECGConfig] = None):
        """
        Initialize ECG processor

        Args:
            config: ECG configuration
        """
        self.config = config if config else ECGConfig()
        self.sample_rate = self.config.sample_rate

        # Band-pass coefficients are fixed for the processor's lifetime
        self._b, self._a = signal.butter(
            self.config.bandpass_order,
            [self.config.bandpass_low, self.config.bandpass_high],
            btype='band',
            fs=self.sample_rate,
        )
        self._min_filter_length = 3 * max(len(self._a), len(self._b)) + 1

        logger.info(
            f"ECG Processor initialized ({self.sample_rate} Hz, "
            f"band-pass {self.config.bandpass_low}-{self.config.bandpass_high} Hz)"
        )

    # ------------------------------------------------------------------
    # Peak detection
    # ------------------------------------------------------------------

    def filter_signal(self, samples: Sequence[float]) -> np.ndarray:
        """
        Zero-phase band-pass filter to remove baseline wander and HF noise.

        Windows too short for filtfilt are returned mean-centred instead.
        """
        data = np.asarray(samples, dtype=float)
        if len(data) < self._min_filter_length:
            return data - data.mean() if len(data) else data
        return signal.filtfilt(self._b, self._a, data)

    def detect_r_peaks(self, samples: Sequence[float]) -> np.ndarray:
        """
        Locate R-peaks in a window of samples.

        Args:
            samples: Voltage samples in arrival order

        Returns:
            Array of sample indices of detected R-peaks (may be empty)
        """
        filtered = self.filter_signal(samples)
        if len(filtered) < 3:
            return np.array([], dtype=int)

        baseline = float(np.mean(filtered))
        peak = float(np.max(filtered))
        if peak - baseline <= 1e-9:
            # Flat line
            return np.array([], dtype=int)

        height = baseline + PEAK_HEIGHT_RATIO * (peak - baseline)
        distance = max(1, int(self.config.refractory_period * self.sample_rate))

        peaks, _ = signal.find_peaks(filtered, height=height, distance=distance)
        return peaks

    def rr_intervals(self, samples: Sequence[float]) -> np.ndarray:
        """RR intervals in seconds between consecutive R-peaks."""
        peaks = self.detect_r_peaks(samples)
        if len(peaks) < 2:
            return np.array([], dtype=float)
        return np.diff(peaks) / float(self.sample_rate)

    # ------------------------------------------------------------------
    # Real-time heart rate
    # ------------------------------------------------------------------

    def heart_rate(self, samples: Sequence[float]) -> float:
        """
        Heart rate from the most recent window of samples.

        Uses the mean RR interval of the window, clamped to the physiological
        range in the config.

        Returns:
            BPM, or HEART_RATE_UNAVAILABLE when there are too few samples
            or fewer than two R-peaks.
        """
        if len(samples) < self.config.min_samples_for_hr:
            return HEART_RATE_UNAVAILABLE

        window = np.asarray(samples, dtype=float)[-self.config.hr_window_size:]

        try:
            rr = self.rr_intervals(window)
        except ValueError as e:
            logger.error(f"Error in real-time heart rate: {e}")
            return HEART_RATE_UNAVAILABLE

        if len(rr) == 0:
            return HEART_RATE_UNAVAILABLE

        bpm = 60.0 / float(np.mean(rr))
        return float(np.clip(bpm, self.config.hr_min_bpm, self.config.hr_max_bpm))

    # ------------------------------------------------------------------
    # Post-session metrics
    # ------------------------------------------------------------------

    def session_metrics(
        self,
        samples: Sequence[float],
        heart_rates: Sequence[float],
    ) -> SessionMetrics:
        """
        Summary metrics for a sealed session.

        BPM range comes from the live heart-rate series; if none was recorded
        it falls back to the full-record RR intervals. HRV (SDNN, RMSSD) is
        computed from full-record RR intervals when at least 10 exist.

        Args:
            samples:     Full session sample record
            heart_rates: Heart-rate series recorded during the session

        Returns:
            SessionMetrics
        """
        rr = self.rr_intervals(samples) if len(samples) else np.array([], dtype=float)

        valid_hr = [hr for hr in heart_rates if hr > HEART_RATE_UNAVAILABLE]
        if not valid_hr and len(rr) > 0:
            valid_hr = list(np.clip(60.0 / rr, self.config.hr_min_bpm, self.config.hr_max_bpm))

        if valid_hr:
            avg_bpm = float(np.mean(valid_hr))
            min_bpm = float(np.min(valid_hr))
            max_bpm = float(np.max(valid_hr))
        else:
            avg_bpm = min_bpm = max_bpm = HEART_RATE_UNAVAILABLE

        hrv_sdnn, hrv_rmssd = self._calculate_hrv(rr)
        rhythm = self._classify_rhythm(rr)
        hr_status = self.heart_rate_status(avg_bpm)
        duration = len(samples) / float(self.sample_rate)

        metrics = SessionMetrics(
            avg_bpm=avg_bpm,
            min_bpm=min_bpm,
            max_bpm=max_bpm,
            rhythm=rhythm,
            heart_rate_status=hr_status,
            assessment=self.overall_assessment(avg_bpm, rhythm),
            quality=self.assess_quality(avg_bpm, duration, len(samples)),
            hrv_sdnn=hrv_sdnn,
            hrv_rmssd=hrv_rmssd,
            peak_count=len(rr) + 1 if len(rr) else 0,
        )

        logger.info(
            f"✓ Session metrics: avg={avg_bpm:.1f} bpm "
            f"(range {min_bpm:.0f}-{max_bpm:.0f}), rhythm={rhythm}, quality={metrics.quality}"
        )
        return metrics

    def _calculate_hrv(self, rr: np.ndarray):
        """
        Time-domain HRV from RR intervals.

        Returns:
            (SDNN ms, RMSSD ms), or (None, None) with fewer than 10 intervals
        """
        if len(rr) < 10:
            logger.debug("Not enough RR intervals for HRV calculation")
            return None, None

        rr_ms = rr * 1000.0
        sdnn = float(np.std(rr_ms))
        rmssd = float(np.sqrt(np.mean(np.diff(rr_ms) ** 2)))
        return sdnn, rmssd

    def _classify_rhythm(self, rr: np.ndarray) -> str:
        """Label rhythm irregular when successive RR intervals vary too much."""
        if len(rr) < 3:
            return 'Normal Sinus Rhythm'

        irregularity = float(np.mean(np.abs(np.diff(rr)))) / float(np.mean(rr))
        if irregularity > IRREGULARITY_THRESHOLD:
            return 'Irregular Rhythm'
        return 'Normal Sinus Rhythm'

    @staticmethod
    def heart_rate_status(avg_bpm: float) -> str:
        if avg_bpm <= HEART_RATE_UNAVAILABLE:
            return 'Unknown'
        if avg_bpm < BRADYCARDIA_THRESHOLD:
            return 'Bradycardia'
        if avg_bpm > TACHYCARDIA_THRESHOLD:
            return 'Tachycardia'
        return 'Normal'

    @classmethod
    def overall_assessment(cls, avg_bpm: float, rhythm: str) -> str:
        abnormalities = []
        status = cls.heart_rate_status(avg_bpm)
        if status in ('Bradycardia', 'Tachycardia'):
            abnormalities.append(status)
        if 'Normal' not in rhythm:
            abnormalities.append('Abnormal rhythm')

        if not abnormalities:
            return 'Normal ECG'
        return f"Abnormal ECG: {', '.join(abnormalities)}"

    @staticmethod
    def assess_quality(avg_bpm: float, duration: float, sample_count: int) -> str:
        if duration < 10:
            return 'Short duration'
        if sample_count < 100:
            return 'Limited data'
        if avg_bpm < 50 or avg_bpm > 120:
            return 'Irregular heart rate detected'
        return 'Good quality data'
