"""
Coordinator Events
Every input to the session coordinator is one of these frozen records
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from ecg_system.errors import DeviceError
from ecg_system.models import Device


@dataclass(frozen=True)
class ScanStarted:
    pass


@dataclass(frozen=True)
class ScanStopped:
    pass


@dataclass(frozen=True)
class DevicesDiscovered:
    devices: Tuple[Device, ...]


@dataclass(frozen=True)
class DeviceConnecting:
    device: Device


@dataclass(frozen=True)
class DeviceConnected:
    device: Device


@dataclass(frozen=True)
class DeviceDisconnected:
    reason: Optional[str] = None


@dataclass(frozen=True)
class DeviceFault:
    error: DeviceError


@dataclass(frozen=True)
class StartRequested:
    duration: Optional[int] = None


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class SamplesReceived:
    samples: Tuple[float, ...]


@dataclass(frozen=True)
class CountdownTick:
    epoch: int


@dataclass(frozen=True)
class RecordingTick:
    epoch: int


CoordinatorEvent = Union[
    ScanStarted,
    ScanStopped,
    DevicesDiscovered,
    DeviceConnecting,
    DeviceConnected,
    DeviceDisconnected,
    DeviceFault,
    StartRequested,
    StopRequested,
    SamplesReceived,
    CountdownTick,
    RecordingTick,
]
