"""
ECG System - Capture Pipeline
==============================
Central module that wires one ECG device to the session coordinator and the
persistence / AI summary gateways on a single asyncio event loop.

Usage in run.py:
    pipeline = CapturePipeline(settings, simulate=True)
    await pipeline.connect()
    session = await pipeline.record(duration=30)
    summary = await pipeline.summarize('en')
    await pipeline.close()

Threading policy:
    The coordinator, transport callbacks and timers all run on the loop.
    Database writes and AI requests block, so they run in the default
    executor and their results are rejoined on the loop.
"""

import asyncio
import logging
import uuid
from typing import Callable, List, Optional, Set

from ecg_system.coordinator import CentralClock, RecordingState, Scheduler, SessionCoordinator
from ecg_system.coordinator.states import CoordinatorSnapshot
from ecg_system.errors import DeviceError, ECGSystemError
from ecg_system.gateways.summary import FALLBACK_SUMMARY, AISummary, SummaryGateway
from ecg_system.models import ConnectionStatus, Device, Session, SessionStatus
from ecg_system.sensors.ecg.config import ECGConfig
from ecg_system.sensors.ecg.simulator import SimulatedTransport
from ecg_system.sensors.ecg.transport import BleakTransport
from ecg_system.settings import AppSettings

logger = logging.getLogger(__name__)

TransportFactory = Callable[[SessionCoordinator, ECGConfig], object]


class CapturePipeline:
    """
    Owns the lifecycle of one ECG capture setup.

    Responsibilities:
      - Build the coordinator and the device transport (BLE or simulated)
      - Hand sealed sessions to the session store off the loop
      - Reconnect after an unexpected disconnect when configured to
      - Request AI summaries of the stored sessions
      - Report component states via get_status()
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        config: Optional[ECGConfig] = None,
        store=None,
        gateway: Optional[SummaryGateway] = None,
        transport_factory: Optional[TransportFactory] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[CentralClock] = None,
        simulate: bool = False,
    ):
        """
        Args:
            settings          : Application settings (environment by default)
            config            : ECG configuration
            store             : Session store; None disables persistence
            gateway           : AI summary gateway; None uses the canned summary
            transport_factory : Builds the transport from (listener, config)
            scheduler         : Timer source passed to the coordinator
            clock             : Shared clock passed to the coordinator
            simulate          : Use the synthetic ECG source instead of BLE
        """
        self.settings = settings if settings else AppSettings.from_env()
        if config is None:
            config = ECGConfig.for_simulation() if simulate else ECGConfig.for_session()
        self.config = config
        self.store = store
        self.gateway = gateway
        self.user_id = self.settings.user_id

        self.coordinator = SessionCoordinator(
            config=self.config,
            scheduler=scheduler,
            clock=clock,
            session_sink=self._on_session_sealed,
        )

        if transport_factory is None:
            transport_factory = SimulatedTransport if simulate else BleakTransport
        self.transport = transport_factory(self.coordinator, self.config)

        self.saved_sessions: List[uuid.UUID] = []
        self.failed_saves: List[uuid.UUID] = []
        self._pending_saves: Set[asyncio.Task] = set()

        self._last_device: Optional[Device] = None
        self._last_status = self.coordinator.connection_status
        self._user_disconnect = False
        self._reconnect_task: Optional[asyncio.Task] = None
        self.reconnect_attempts = 0

        self._unsubscribe = self.coordinator.subscribe(self._on_snapshot)

        logger.info(
            f"CapturePipeline created ({type(self.transport).__name__}, "
            f"persistence: {'on' if store is not None else 'off'}, "
            f"AI: {'on' if gateway is not None else 'off'})"
        )

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def scan(self, timeout: Optional[float] = None) -> List[Device]:
        return await self.transport.scan(timeout)

    async def connect(self, device_id: Optional[str] = None, name: str = '') -> Device:
        """
        Connect to a device, scanning for the first ECG device when no ID is given.

        Raises:
            DeviceError: no device found, or the connection failed
        """
        if device_id is None:
            devices = await self.scan()
            if not devices:
                raise DeviceError('No ECG devices found', code=DeviceError.NOT_FOUND)
            device_id, name = devices[0].device_id, devices[0].name

        self._user_disconnect = False
        return await self.transport.connect(device_id, name)

    async def disconnect(self):
        self._user_disconnect = True
        self._cancel_reconnect()
        await self.transport.disconnect()

    async def record(self, duration: Optional[int] = None) -> Optional[Session]:
        """
        Run one capture to the end: countdown, recording, hand-off.

        Returns when the coordinator is back to completed or idle (stopped,
        cancelled or aborted) and any resulting save has finished.

        Returns:
            The completed Session, or None if the capture did not complete

        Raises:
            InvalidStateError: no device connected, or a capture is running
        """
        previous = self.coordinator.last_session
        self.coordinator.start(duration)

        finished = asyncio.Event()

        def watch(snapshot: CoordinatorSnapshot):
            if snapshot.recording_state in (RecordingState.COMPLETED, RecordingState.IDLE):
                finished.set()

        unsubscribe = self.coordinator.subscribe(watch)
        try:
            await finished.wait()
        finally:
            unsubscribe()

        await self.flush()

        session = self.coordinator.last_session
        if session is previous or session is None or session.status is not SessionStatus.COMPLETED:
            return None
        return session

    def stop(self) -> Optional[Session]:
        """Stop the current capture (see SessionCoordinator.stop)."""
        return self.coordinator.stop()

    async def flush(self):
        """Wait for every pending session save."""
        while self._pending_saves:
            await asyncio.gather(*list(self._pending_saves))

    async def summarize(self, target_language: str = 'en') -> AISummary:
        """
        Summarize the user's stored sessions.

        Falls back to the canned summary when there is no gateway, no store,
        or the store cannot be read.
        """
        if self.gateway is None or self.store is None:
            logger.info("AI summary not configured, using fallback")
            return FALLBACK_SUMMARY

        loop = asyncio.get_running_loop()
        try:
            sessions = await loop.run_in_executor(None, self.store.list_sessions, self.user_id)
        except ECGSystemError as e:
            logger.error(f"✗ Could not load sessions for summary: {e}")
            return FALLBACK_SUMMARY

        return await loop.run_in_executor(
            None, self.gateway.summarize_sessions, sessions, target_language,
        )

    async def close(self):
        """Stop any capture, disconnect, finish pending saves and release resources."""
        logger.info("Stopping capture pipeline...")
        self._cancel_reconnect()
        self.coordinator.stop()

        try:
            await self.disconnect()
        except DeviceError as e:
            logger.warning(f"⚠ Error while disconnecting: {e}")

        await self.flush()
        self._unsubscribe()
        self.coordinator.close()
        if self.store is not None:
            self.store.close()
        logger.info("✓ Capture pipeline stopped")

    def get_status(self) -> dict:
        """Summary of component states for logging."""
        return {
            'user_id': self.user_id,
            'coordinator': self.coordinator.get_status(),
            'transport': self.transport.get_status(),
            'saved_sessions': len(self.saved_sessions),
            'failed_saves': len(self.failed_saves),
            'pending_saves': len(self._pending_saves),
            'reconnect_attempts': self.reconnect_attempts,
            'gateway': self.gateway.get_status() if self.gateway else None,
        }

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def __repr__(self):
        return (
            f"<CapturePipeline(transport={type(self.transport).__name__}, "
            f"saved={len(self.saved_sessions)})>"
        )

    # -----------------------------------------------------------------------
    # Private - persistence hand-off
    # -----------------------------------------------------------------------

    def _on_session_sealed(self, session: Session):
        """Session sink: called on the loop by the coordinator."""
        if self.store is None:
            logger.info(f"Persistence disabled, session {session.session_id} not saved")
            return

        task = asyncio.get_running_loop().create_task(self._save(session))
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    async def _save(self, session: Session):
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.store.save_session, session, self.user_id)
        except ECGSystemError as e:
            self.failed_saves.append(session.session_id)
            logger.error(f"✗ Session {session.session_id} was not saved: {e}")
            return
        self.saved_sessions.append(session.session_id)

    # -----------------------------------------------------------------------
    # Private - reconnect policy
    # -----------------------------------------------------------------------

    def _on_snapshot(self, snapshot: CoordinatorSnapshot):
        if snapshot.device is not None:
            self._last_device = snapshot.device

        lost = (
            self._last_status is ConnectionStatus.CONNECTED
            and snapshot.connection_status is ConnectionStatus.DISCONNECTED
        )
        self._last_status = snapshot.connection_status

        if lost and not self._user_disconnect and self.config.auto_reconnect and self._last_device:
            self._cancel_reconnect()
            self._reconnect_task = asyncio.get_running_loop().create_task(
                self._reconnect(self._last_device)
            )

    async def _reconnect(self, device: Device):
        delay = self.config.reconnect_delay
        logger.info(f"Reconnecting to {device.display_name} in {delay}s...")
        await asyncio.sleep(delay)

        self.reconnect_attempts += 1
        try:
            await self.transport.connect(device.device_id, device.name)
        except DeviceError as e:
            logger.warning(f"⚠ Reconnect to {device.display_name} failed: {e}")

    def _cancel_reconnect(self):
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None
