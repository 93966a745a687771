"""
ECG Sensor Module
Single-lead Bluetooth ECG capture

Architecture:
- Transport: BLE discovery/connection and notification decoding (bleak)
- Buffer: bounded live sample windows and running heart rate
- Processor: R-peak detection, heart rate, HRV and session metrics

Capture modes:
- Calibration mode: short recordings for electrode placement checks
- Session mode: full recordings handed off for persistence
- Simulation: synthetic ECG instead of a physical sensor
"""

from .config import ECGConfig
from .processor import ECGProcessor, HEART_RATE_UNAVAILABLE
from .buffer import SampleBuffer
from .transport import BleakTransport, decode_payload, is_ecg_device
from .simulator import SimulatedTransport, synthesize_ecg

__all__ = [
    'ECGConfig',
    'ECGProcessor',
    'HEART_RATE_UNAVAILABLE',
    'SampleBuffer',
    'BleakTransport',
    'SimulatedTransport',
    'decode_payload',
    'is_ecg_device',
    'synthesize_ecg',
]

__version__ = '1.0.0'
