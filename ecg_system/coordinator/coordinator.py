"""
Session Coordinator
Owns device binding and the recording lifecycle of one ECG capture
"""

import logging
from collections import deque
from typing import Callable, Dict, Iterable, List, Optional

from ecg_system.errors import DeviceError, InvalidStateError
from ecg_system.models import ConnectionStatus, Device, Session, SessionStatus
from ecg_system.sensors.ecg.buffer import SampleBuffer
from ecg_system.sensors.ecg.config import ECGConfig
from ecg_system.sensors.ecg.processor import ECGProcessor, HEART_RATE_UNAVAILABLE

from .clock import CentralClock
from .events import (
    CoordinatorEvent,
    CountdownTick,
    DeviceConnected,
    DeviceConnecting,
    DeviceDisconnected,
    DeviceFault,
    DevicesDiscovered,
    RecordingTick,
    SamplesReceived,
    ScanStarted,
    ScanStopped,
    StartRequested,
    StopRequested,
)
from .scheduler import AsyncioScheduler, Scheduler
from .states import CoordinatorSnapshot, RecordingState

logger = logging.getLogger(__name__)

SessionSink = Callable[[Session], None]
SnapshotListener = Callable[[CoordinatorSnapshot], None]

ACTIVE_STATES = (RecordingState.COUNTDOWN, RecordingState.RECORDING)


class SessionCoordinator:
    """
    Coordinates one ECG device and its recording sessions

    Responsibilities:
    - Track connection status and discovered devices
    - Drive the recording state machine
      (idle -> countdown -> recording -> processing -> completed)
    - Own the sample buffer and the currently open session
    - Seal sessions and hand them to the session sink
    - Abort the open session on disconnect / device fault

    All events go through post(), which queues them and applies them one at
    a time. An event posted while another is being applied (a timer firing,
    a listener reacting to a snapshot) runs after the current transition.
    """

    def __init__(
        self,
        config: Optional[ECGConfig] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[CentralClock] = None,
        session_sink: Optional[SessionSink] = None,
        processor: Optional[ECGProcessor] = None,
    ):
        """
        Initialize session coordinator

        Args:
            config:       ECG configuration
            scheduler:    Timer source for countdown / recording ticks
            clock:        Timestamp source for sessions
            session_sink: Receives every sealed session handed off for persistence
            processor:    Signal processor (shared with the sample buffer)
        """
        self.config = config if config else ECGConfig.for_session()
        self.scheduler = scheduler if scheduler else AsyncioScheduler()
        self.clock = clock if clock else CentralClock()
        self.session_sink = session_sink

        self.buffer = SampleBuffer(self.config, processor)
        self.processor = self.buffer.processor

        # Device state
        self.connection_status = ConnectionStatus.DISCONNECTED
        self.device: Optional[Device] = None
        self.discovered_devices: Dict[str, Device] = {}

        # Recording state
        self.recording_state = RecordingState.IDLE
        self.duration = self.config.default_duration
        self.countdown_remaining = 0
        self.recording_remaining = 0
        self.status_message = 'Ready to scan for ECG devices'
        self.last_error: Optional[Exception] = None

        # Sessions
        self.session: Optional[Session] = None
        self.last_session: Optional[Session] = None
        self.sessions_opened = 0
        self.sessions_sealed = 0

        # Event serialization
        self._pending = deque()
        self._draining = False
        self._epoch = 0
        self._timer = None
        self._listeners: List[SnapshotListener] = []

        self._handlers = {
            ScanStarted: self._on_scan_started,
            ScanStopped: self._on_scan_stopped,
            DevicesDiscovered: self._on_devices_discovered,
            DeviceConnecting: self._on_device_connecting,
            DeviceConnected: self._on_device_connected,
            DeviceDisconnected: self._on_device_disconnected,
            DeviceFault: self._on_device_fault,
            StartRequested: self._on_start_requested,
            StopRequested: self._on_stop_requested,
            SamplesReceived: self._on_samples_received,
            CountdownTick: self._on_countdown_tick,
            RecordingTick: self._on_recording_tick,
        }

        logger.info(
            f"Session Coordinator initialized (mode: {self.config.mode}, "
            f"{self.config.sample_rate} Hz, partial save: {self.config.persist_partial_sessions})"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def post(self, event: CoordinatorEvent):
        """
        Queue an event and apply pending events in order.

        Re-entrant calls (from inside a handler or listener) only enqueue;
        the outermost call drains the queue.
        """
        self._pending.append(event)
        if self._draining:
            return

        self._draining = True
        try:
            while self._pending:
                self._apply(self._pending.popleft())
        finally:
            self._draining = False

    def start(self, duration: Optional[int] = None):
        """
        Begin a capture: countdown, then recording.

        Args:
            duration: Recording length in seconds (clamped to the configured range)

        Raises:
            InvalidStateError: no device connected, or a capture is already running
        """
        self._check_can_start()
        self.post(StartRequested(duration=duration))

    def stop(self) -> Optional[Session]:
        """
        Stop the current capture.

        In countdown the capture is cancelled; in recording the session is
        sealed and handed off. A no-op in any other state.

        Returns:
            The session sealed by this call, if any
        """
        previous = self.last_session
        self.post(StopRequested())
        if self.last_session is not previous:
            return self.last_session
        return None

    # Transport listener interface; each call becomes one queued event

    def on_scan_started(self):
        self.post(ScanStarted())

    def on_scan_stopped(self):
        self.post(ScanStopped())

    def on_devices_discovered(self, devices: Iterable[Device]):
        self.post(DevicesDiscovered(devices=tuple(devices)))

    def on_connecting(self, device: Device):
        self.post(DeviceConnecting(device=device))

    def on_device_connected(self, device: Device):
        self.post(DeviceConnected(device=device))

    def on_disconnect(self, reason: Optional[str] = None):
        self.post(DeviceDisconnected(reason=reason))

    def on_samples(self, samples: Iterable[float]):
        self.post(SamplesReceived(samples=tuple(samples)))

    def on_device_fault(self, error: DeviceError):
        self.post(DeviceFault(error=error))

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a listener called with a snapshot after every applied event.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> CoordinatorSnapshot:
        return CoordinatorSnapshot(
            connection_status=self.connection_status,
            recording_state=self.recording_state,
            device=self.device,
            discovered_devices=tuple(self.discovered_devices.values()),
            status_message=self.status_message,
            duration=self.duration,
            countdown_remaining=self.countdown_remaining,
            recording_remaining=self.recording_remaining,
            current_heart_rate=self.buffer.current_heart_rate(),
            heart_rate_history=tuple(self.buffer.heart_rate_history),
            display_samples=tuple(self.buffer.display),
            last_error=self.last_error,
        )

    @property
    def is_connected(self) -> bool:
        return self.connection_status is ConnectionStatus.CONNECTED

    @property
    def can_start_recording(self) -> bool:
        return self.is_connected and self.recording_state in (
            RecordingState.IDLE, RecordingState.COMPLETED,
        )

    def get_status(self) -> dict:
        return {
            'connection_status': self.connection_status.value,
            'recording_state': self.recording_state.value,
            'device': self.device.display_name if self.device else None,
            'discovered_devices': len(self.discovered_devices),
            'session_id': str(self.session.session_id) if self.session else None,
            'samples_buffered': self.buffer.total_samples,
            'samples_dropped': self.buffer.dropped_samples,
            'current_heart_rate': self.buffer.current_heart_rate(),
            'sessions_opened': self.sessions_opened,
            'sessions_sealed': self.sessions_sealed,
            'status_message': self.status_message,
            'clock_stats': self.clock.get_stats(),
        }

    def close(self):
        """Cancel timers, abort any open capture and drop listeners."""
        if self.recording_state in ACTIVE_STATES:
            self._abort('Coordinator closed', error=None)
        self._cancel_timer()
        self._listeners.clear()
        logger.info("✓ Session Coordinator closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return (
            f"<SessionCoordinator(connection={self.connection_status.value}, "
            f"state={self.recording_state.value})>"
        )

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------

    def _apply(self, event: CoordinatorEvent):
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unsupported coordinator event: {event!r}")

        handler(event)
        self._notify()

    def _notify(self):
        if not self._listeners:
            return

        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Snapshot listener failed: {e}", exc_info=True)

    # --- Device events -------------------------------------------------

    def _on_scan_started(self, event: ScanStarted):
        if self.recording_state in ACTIVE_STATES:
            logger.warning("Scan requested during an active capture, ignoring")
            return
        self.connection_status = ConnectionStatus.SCANNING
        self.discovered_devices = {}
        self.status_message = 'Scanning for ECG devices...'

    def _on_scan_stopped(self, event: ScanStopped):
        if self.connection_status is ConnectionStatus.SCANNING:
            self.connection_status = ConnectionStatus.DISCONNECTED
        self.status_message = 'Scan completed' if self.discovered_devices else 'No ECG devices found'

    def _on_devices_discovered(self, event: DevicesDiscovered):
        for device in event.devices:
            self.discovered_devices.setdefault(device.device_id, device)
        self.status_message = f"{len(self.discovered_devices)} ECG device(s) found"

    def _on_device_connecting(self, event: DeviceConnecting):
        self.connection_status = ConnectionStatus.CONNECTING
        self.status_message = f"Connecting to {event.device.display_name}..."

    def _on_device_connected(self, event: DeviceConnected):
        self.connection_status = ConnectionStatus.CONNECTED
        self.device = event.device
        self.discovered_devices.setdefault(event.device.device_id, event.device)
        self.last_error = None
        self.status_message = f"Connected to {event.device.display_name}"
        logger.info(f"✓ ECG device connected: {event.device.display_name}")

    def _on_device_disconnected(self, event: DeviceDisconnected):
        was_active = self.recording_state in ACTIVE_STATES
        reason = event.reason or 'Device disconnected'

        if was_active:
            error = DeviceError(f"{reason} during capture", code=DeviceError.CONNECTION_FAILED)
            self._abort(reason, error=error)
        else:
            self._cancel_timer()

        self.connection_status = ConnectionStatus.DISCONNECTED
        self.device = None
        self.status_message = 'Recording aborted: device disconnected' if was_active else 'Disconnected'
        logger.info(f"ECG device disconnected ({reason})")

    def _on_device_fault(self, event: DeviceFault):
        error = event.error
        logger.error(f"✗ ECG device error: {error}")

        if self.recording_state in ACTIVE_STATES:
            self._abort(error.message, error=error)
        else:
            self.last_error = error

        if self.connection_status in (ConnectionStatus.SCANNING, ConnectionStatus.CONNECTING):
            self.connection_status = ConnectionStatus.ERROR
        self.status_message = f"Device error: {error.message}"

    # --- Recording lifecycle -------------------------------------------

    def _check_can_start(self):
        if not self.is_connected:
            raise InvalidStateError(
                'Cannot start recording: no ECG device connected',
                code='not-connected',
            )
        if self.recording_state not in (RecordingState.IDLE, RecordingState.COMPLETED):
            raise InvalidStateError(
                f"Cannot start recording while {self.recording_state.value}",
                code='busy',
            )

    def _on_start_requested(self, event: StartRequested):
        try:
            self._check_can_start()
        except InvalidStateError as e:
            # State moved on between start() and this event being applied
            logger.warning(f"Ignoring stale start request: {e}")
            return

        self._epoch += 1
        self.duration = self.config.clamp_duration(event.duration)
        self.buffer.reset()
        self.last_error = None

        self.recording_state = RecordingState.COUNTDOWN
        self.countdown_remaining = self.config.countdown_seconds
        self.recording_remaining = 0
        logger.info(f"Starting ECG capture ({self.duration}s, countdown {self.countdown_remaining}s)")

        if self.countdown_remaining <= 0:
            self._begin_recording()
            return

        self.status_message = f"Get ready... Recording starts in {self.countdown_remaining} seconds"
        self._schedule(CountdownTick)

    def _on_countdown_tick(self, event: CountdownTick):
        if event.epoch != self._epoch or self.recording_state is not RecordingState.COUNTDOWN:
            logger.debug(f"Ignoring stale countdown tick (epoch {event.epoch})")
            return

        self._timer = None
        self.countdown_remaining -= 1

        if self.countdown_remaining <= 0:
            self.countdown_remaining = 0
            self._begin_recording()
        else:
            self.status_message = f"Get ready... Recording starts in {self.countdown_remaining}s"
            self._schedule(CountdownTick)

    def _begin_recording(self):
        if self.session is not None:
            raise InvalidStateError(
                f"Session {self.session.session_id} is still open",
                code='session-open',
            )

        self.session = Session(
            started_at=self.clock.now(),
            sample_rate=self.config.sample_rate,
            device=self.device,
            planned_duration=self.duration,
        )
        self.sessions_opened += 1
        self.buffer.reset()

        self.recording_state = RecordingState.RECORDING
        self.recording_remaining = self.duration
        self.status_message = f"Recording ECG... {self.recording_remaining}s remaining"
        logger.info(f"✓ Recording started: session {self.session.session_id}")

        self._schedule(RecordingTick)

    def _on_recording_tick(self, event: RecordingTick):
        if event.epoch != self._epoch or self.recording_state is not RecordingState.RECORDING:
            logger.debug(f"Ignoring stale recording tick (epoch {event.epoch})")
            return

        self._timer = None
        self.recording_remaining -= 1

        if self.recording_remaining <= 0:
            self.recording_remaining = 0
            self._finish_recording()
        else:
            self.status_message = f"Recording ECG... {self.recording_remaining}s remaining"
            self._schedule(RecordingTick)

    def _on_stop_requested(self, event: StopRequested):
        if self.recording_state is RecordingState.COUNTDOWN:
            self._cancel_timer()
            self._epoch += 1
            self.recording_state = RecordingState.IDLE
            self.countdown_remaining = 0
            self.status_message = 'Recording cancelled'
            logger.info("Capture cancelled during countdown")
        elif self.recording_state is RecordingState.RECORDING:
            self._finish_recording()
        else:
            logger.debug(f"Stop ignored while {self.recording_state.value}")

    def _on_samples_received(self, event: SamplesReceived):
        if self.recording_state is not RecordingState.RECORDING or self.session is None:
            return

        accepted = self.buffer.append(event.samples)
        if not accepted:
            return

        self.session.append(accepted)

        hr = self.buffer.current_heart_rate()
        if self.config.realtime_processing and hr > HEART_RATE_UNAVAILABLE:
            self.session.record_heart_rate(hr)

    def _finish_recording(self):
        """recording -> processing -> completed; seal and hand off the session."""
        self._cancel_timer()
        self._epoch += 1

        self.recording_state = RecordingState.PROCESSING
        self.status_message = 'Processing ECG data...'
        self._notify()

        session = self.session
        try:
            metrics = self.processor.session_metrics(session.samples, session.heart_rates)
        except Exception as e:
            logger.error(f"✗ Error computing session metrics: {e}", exc_info=True)
            metrics = None

        session.seal(SessionStatus.COMPLETED, ended_at=self.clock.now(), metrics=metrics)
        self._release(session)

        self.recording_state = RecordingState.COMPLETED
        self.recording_remaining = 0
        self.status_message = 'ECG recording completed'
        logger.info(
            f"✓ Recording completed: session {session.session_id} "
            f"({session.sample_count} samples)"
        )

        self._hand_off(session)

    def _abort(self, reason: str, error: Optional[Exception]):
        """Abort an active capture and return to idle."""
        self._cancel_timer()
        self._epoch += 1

        session = self.session
        if session is not None:
            keep = self.config.persist_partial_sessions
            metrics = None
            if keep:
                try:
                    metrics = self.processor.session_metrics(session.samples, session.heart_rates)
                except Exception as e:
                    logger.error(f"✗ Error computing partial session metrics: {e}", exc_info=True)

            session.seal(
                SessionStatus.ABORTED,
                ended_at=self.clock.now(),
                metrics=metrics,
                keep_samples=keep,
                reason=reason,
            )
            self._release(session)
            logger.warning(
                f"⚠ Session {session.session_id} aborted ({reason}); "
                f"partial data {'kept' if keep else 'discarded'}"
            )
            if keep:
                self._hand_off(session)

        self.recording_state = RecordingState.IDLE
        self.countdown_remaining = 0
        self.recording_remaining = 0
        self.last_error = error

    def _release(self, session: Session):
        self.last_session = session
        self.session = None
        self.sessions_sealed += 1

    def _hand_off(self, session: Session):
        if self.session_sink is None:
            return
        try:
            self.session_sink(session)
        except Exception as e:
            logger.error(f"✗ Session hand-off failed for {session.session_id}: {e}", exc_info=True)

    # --- Timers -------------------------------------------------------

    def _schedule(self, tick_cls):
        epoch = self._epoch
        self._timer = self.scheduler.call_later(
            self.config.tick_interval,
            lambda: self.post(tick_cls(epoch=epoch)),
        )

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
