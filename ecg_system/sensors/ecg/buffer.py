"""
ECG Sample Buffer
Bounded accumulation of streamed voltage samples with running heart rate
"""

import logging
from collections import deque
from typing import List, Optional, Sequence

from .config import ECGConfig
from .processor import ECGProcessor, HEART_RATE_UNAVAILABLE

logger = logging.getLogger(__name__)


class SampleBuffer:
    """
    Live sample buffer for one recording

    Keeps three bounded views of the incoming stream:
    - display window (last `display_window` samples) for live plotting
    - heart-rate window (last `hr_window_size` samples) for HR derivation
    - heart-rate history (last `hr_history_size` valid HR values)

    The buffer also enforces the per-session sample cap. Samples that fit
    under the cap are returned from append() so the caller can add them to
    the session record; the oldest samples are always kept, anything past
    the cap is counted in `dropped_samples`.
    """

    def __init__(self, config: Optional[ECGConfig] = None, processor: Optional[ECGProcessor] = None):
        """
        Initialize sample buffer

        Args:
            config:    ECG configuration
            processor: Processor used for heart-rate derivation
        """
        self.config = config if config else ECGConfig()
        self.processor = processor if processor else ECGProcessor(self.config)

        self.display = deque(maxlen=self.config.display_window)
        self.heart_rate_history = deque(maxlen=self.config.hr_history_size)
        self._hr_window = deque(maxlen=self.config.hr_window_size)

        self.total_samples = 0
        self.dropped_samples = 0
        self._current_hr = HEART_RATE_UNAVAILABLE
        self._overflow_warned = False

    def append(self, samples: Sequence[float]) -> List[float]:
        """
        Append a batch of samples in arrival order.

        No deduplication is performed; ordering is the caller's responsibility.

        Args:
            samples: Voltage samples

        Returns:
            The samples accepted under the session cap (all of them unless
            the cap has been reached)
        """
        batch = [float(s) for s in samples]
        if not batch:
            return []

        room = self.config.max_session_samples - self.total_samples
        if room < len(batch):
            accepted = batch[:max(room, 0)]
            self.dropped_samples += len(batch) - len(accepted)
            if not self._overflow_warned:
                logger.warning(
                    f"⚠ Session sample cap reached ({self.config.max_session_samples}); "
                    f"further samples are dropped"
                )
                self._overflow_warned = True
        else:
            accepted = batch

        if accepted:
            self.display.extend(accepted)
            self._hr_window.extend(accepted)
            self.total_samples += len(accepted)

            if self.config.realtime_processing:
                self._recompute_heart_rate()

        return accepted

    def _recompute_heart_rate(self):
        hr = self.processor.heart_rate(list(self._hr_window))
        self._current_hr = hr
        if hr > HEART_RATE_UNAVAILABLE:
            self.heart_rate_history.append(hr)

    def current_heart_rate(self) -> float:
        """
        Most recent heart rate.

        Returns:
            BPM, or HEART_RATE_UNAVAILABLE until enough samples exist
        """
        if self.total_samples < self.config.min_samples_for_hr:
            return HEART_RATE_UNAVAILABLE
        return self._current_hr

    def reset(self):
        """
        Clear all buffers.

        Called when a new session starts so stale samples never affect
        the next recording.
        """
        self.display.clear()
        self.heart_rate_history.clear()
        self._hr_window.clear()
        self.total_samples = 0
        self.dropped_samples = 0
        self._current_hr = HEART_RATE_UNAVAILABLE
        self._overflow_warned = False

    def __len__(self):
        return self.total_samples

    def __repr__(self):
        return f"<SampleBuffer(samples={self.total_samples}, dropped={self.dropped_samples})>"
