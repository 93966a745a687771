"""
ECG System Sensors

Available Sensors:
- ECG: single-lead Bluetooth LE sensor (250 Hz), or a simulated one

All sensors support:
- Coordinator-driven capture lifecycle
- Live heart-rate derivation while recording
- Post-session metric computation
"""

from .ecg import ECGConfig, ECGProcessor, SampleBuffer, BleakTransport, SimulatedTransport

__all__ = [
    'ECGConfig',
    'ECGProcessor',
    'SampleBuffer',
    'BleakTransport',
    'SimulatedTransport',
]

__version__ = '1.0.0'
