"""
Simulated ECG Sensor
Synthetic single-lead ECG for development and tests without hardware
"""

import asyncio
import logging
from typing import List, Optional

import numpy as np

from ecg_system.models import Device
from .config import ECGConfig
from .transport import TransportListener

logger = logging.getLogger(__name__)

SIMULATED_DEVICE = Device(device_id='SIM:00:00:00:00:01', name='ECG Simulator')


def synthesize_ecg(
    duration: float,
    sample_rate: int = 250,
    bpm: float = 72.0,
    noise: float = 0.01,
    baseline: float = 0.0,
    seed: Optional[int] = 0,
) -> np.ndarray:
    """
    Generate a synthetic ECG trace.

    Each beat is a sum of Gaussians approximating the P wave, QRS complex and
    T wave, repeated at a fixed RR interval. Amplitudes are in millivolts.

    Args:
        duration:    Seconds of signal
        sample_rate: Samples per second
        bpm:         Heart rate
        noise:       Standard deviation of additive white noise
        baseline:    DC offset
        seed:        RNG seed (None for non-deterministic noise)

    Returns:
        Array of duration * sample_rate samples
    """
    n = int(round(duration * sample_rate))
    t = np.arange(n) / float(sample_rate)
    rr = 60.0 / bpm

    # (offset from R-peak in s, amplitude, width in s)
    waves = (
        (-0.16, 0.10, 0.025),   # P
        (-0.03, -0.10, 0.008),  # Q
        (0.00, 1.00, 0.012),    # R
        (0.03, -0.15, 0.008),   # S
        (0.25, 0.25, 0.040),    # T
    )

    trace = np.full(n, baseline, dtype=float)
    beat_times = np.arange(rr / 2.0, duration + rr, rr)
    for beat in beat_times:
        for offset, amplitude, width in waves:
            centre = beat + offset
            trace += amplitude * np.exp(-((t - centre) ** 2) / (2.0 * width ** 2))

    if noise > 0:
        rng = np.random.default_rng(seed)
        trace += rng.normal(0.0, noise, n)

    return trace


class SimulatedTransport:
    """
    Drop-in replacement for BleakTransport backed by synthesize_ecg

    Emits one batch every batch_size / sample_rate seconds on the running
    event loop, like a real sensor's notifications.
    """

    def __init__(
        self,
        listener: TransportListener,
        config: Optional[ECGConfig] = None,
        bpm: float = 72.0,
        batch_size: int = 25,
    ):
        self.listener = listener
        self.config = config if config else ECGConfig.for_simulation()
        self.bpm = bpm
        self.batch_size = batch_size

        self.device: Optional[Device] = None
        self._stream_task: Optional[asyncio.Task] = None
        self._position = 0
        self._signal = synthesize_ecg(
            duration=60.0, sample_rate=self.config.sample_rate, bpm=bpm,
        )
        self.batches_sent = 0

        logger.info(f"Simulated ECG transport initialized ({bpm:.0f} bpm)")

    async def scan(self, timeout: Optional[float] = None) -> List[Device]:
        self.listener.on_scan_started()
        await asyncio.sleep(0)
        self.listener.on_devices_discovered([SIMULATED_DEVICE])
        self.listener.on_scan_stopped()
        return [SIMULATED_DEVICE]

    async def connect(self, device_id: str, name: str = '') -> Device:
        device = Device(device_id=device_id, name=name or SIMULATED_DEVICE.name)
        self.listener.on_connecting(device)
        await asyncio.sleep(0)

        self.device = device
        self.listener.on_device_connected(device)
        self._stream_task = asyncio.get_running_loop().create_task(self._stream())
        return device

    async def disconnect(self):
        await self._cancel_stream()
        if self.device is not None:
            self.device = None
            self.listener.on_disconnect('Disconnected by user')

    async def drop(self):
        """Simulate the sensor going out of range."""
        await self._cancel_stream()
        self.device = None
        self.listener.on_disconnect('Connection lost')

    def next_batch(self) -> List[float]:
        """Next batch_size samples, looping over the pre-generated trace."""
        end = self._position + self.batch_size
        idx = np.arange(self._position, end) % len(self._signal)
        self._position = end % len(self._signal)
        return self._signal[idx].tolist()

    async def _stream(self):
        interval = self.batch_size / float(self.config.sample_rate)
        while True:
            await asyncio.sleep(interval)
            self.listener.on_samples(self.next_batch())
            self.batches_sent += 1

    async def _cancel_stream(self):
        if self._stream_task is None:
            return
        self._stream_task.cancel()
        try:
            await self._stream_task
        except asyncio.CancelledError:
            pass
        self._stream_task = None

    def get_status(self) -> dict:
        return {
            'transport': 'simulated',
            'device': self.device.display_name if self.device else None,
            'connected': self.device is not None,
            'batches_sent': self.batches_sent,
        }

    def __repr__(self):
        return f"<SimulatedTransport(bpm={self.bpm:.0f}, connected={self.device is not None})>"
