"""
ECG Sensor Configuration
Capture timing, buffer bounds and heart-rate derivation parameters
"""

from dataclasses import dataclass, field
from typing import Tuple

DEFAULT_DEVICE_KEYWORDS = ('b869h', 'v5.0', 'hm-10', 'hm10', 'ecg', 'heart', 'bioamp')


@dataclass
class ECGConfig:
    """
    Configuration parameters for a single-lead Bluetooth ECG sensor.

    Controls capture timing (countdown, duration), sample buffer bounds,
    heart-rate derivation, BLE timeouts and the partial-save policy used
    when the device drops mid-recording.
    """

    # Operating mode
    mode: str = 'session'  # 'calibration', 'session' or 'simulation'

    # Sampling settings
    sample_rate: int = 250  # Hz
    voltage_reference: float = 3.3  # Volts, used to scale integer samples

    # Capture timing (seconds)
    default_duration: int = 30
    min_duration: int = 10
    max_duration: int = 600
    countdown_seconds: int = 3
    tick_interval: float = 1.0

    # Heart rate derivation
    hr_window_size: int = 1250  # Most recent samples used for HR (5 s @ 250 Hz)
    min_samples_for_hr: int = 20
    hr_min_bpm: float = 40.0
    hr_max_bpm: float = 200.0
    refractory_period: float = 0.25  # Minimum seconds between R-peaks
    bandpass_low: float = 0.5
    bandpass_high: float = 40.0
    bandpass_order: int = 2

    # Buffer bounds
    display_window: int = 5000  # Live display samples
    hr_history_size: int = 100
    max_session_samples: int = 0  # 0 = derive from max_duration * sample_rate

    # Session handling
    persist_partial_sessions: bool = False
    realtime_processing: bool = True

    # Bluetooth settings
    scan_timeout: float = 30.0
    connect_timeout: float = 15.0
    auto_reconnect: bool = False
    reconnect_delay: float = 5.0
    device_keywords: Tuple[str, ...] = field(default=DEFAULT_DEVICE_KEYWORDS)

    def __post_init__(self):
        """Derive the session sample cap from the longest allowed recording."""
        if self.max_session_samples <= 0:
            self.max_session_samples = self.max_duration * self.sample_rate

    def clamp_duration(self, duration) -> int:
        """
        Clamp a requested recording duration into the allowed range.

        Args:
            duration: Requested seconds, or None for the default.

        Returns:
            Duration in whole seconds within [min_duration, max_duration].
        """
        if duration is None:
            return self.default_duration
        return int(max(self.min_duration, min(self.max_duration, duration)))

    @classmethod
    def for_calibration(cls) -> 'ECGConfig':
        """
        Create a configuration for electrode placement checks.

        Short recordings with live heart-rate display enabled.

        Returns:
            ECGConfig with mode='calibration'.
        """
        return cls(
            mode='calibration',
            default_duration=10,
            realtime_processing=True,
        )

    @classmethod
    def for_session(cls) -> 'ECGConfig':
        """
        Create a configuration for a normal recording session.

        Returns:
            ECGConfig with mode='session'.
        """
        return cls(mode='session')

    @classmethod
    def for_simulation(cls, mode: str = 'session') -> 'ECGConfig':
        """
        Create a configuration for the simulated transport.

        Used for development and testing without a physical sensor.

        Args:
            mode: Operating mode, either 'calibration' or 'session'.

        Returns:
            ECGConfig with mode='simulation' semantics and realtime HR on.
        """
        config = cls.for_calibration() if mode == 'calibration' else cls.for_session()
        config.mode = 'simulation'
        return config
