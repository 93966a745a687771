"""
ECG Device Transport
BLE discovery, connection and notification streaming via bleak

The transport never touches coordinator state directly. It reports
everything to a TransportListener (the SessionCoordinator implements this
interface), and bleak delivers its callbacks on the event loop thread, so
every report lands in the coordinator's single execution context.
"""

import asyncio
import logging
from typing import Iterable, List, Optional, Protocol, Sequence

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from ecg_system.errors import DeviceError
from ecg_system.models import Device
from .config import ECGConfig, DEFAULT_DEVICE_KEYWORDS

logger = logging.getLogger(__name__)

# Standard GATT characteristics that can notify but never carry ECG data
# (device name, appearance, connection parameters, service changed)
SYSTEM_CHARACTERISTICS = ('2a00', '2a01', '2a04', '2a05')

INT16_MAX = 32767
INT16_RANGE = 65536


class TransportListener(Protocol):
    def on_scan_started(self) -> None: ...
    def on_scan_stopped(self) -> None: ...
    def on_devices_discovered(self, devices: Iterable[Device]) -> None: ...
    def on_connecting(self, device: Device) -> None: ...
    def on_device_connected(self, device: Device) -> None: ...
    def on_disconnect(self, reason: Optional[str] = None) -> None: ...
    def on_samples(self, samples: Iterable[float]) -> None: ...
    def on_device_fault(self, error: DeviceError) -> None: ...


# ---------------------------------------------------------------------------
# Payload decoding / device matching
# ---------------------------------------------------------------------------

def decode_payload(data: bytes, voltage_reference: float = 3.3) -> List[float]:
    """
    Decode one notification payload into voltage samples.

    The sensor firmware sends newline separated ASCII values. Decimal values
    are already volts; integers are raw 16-bit ADC counts, interpreted as
    signed and scaled against the voltage reference. Lines that parse as
    neither are skipped.

    Args:
        data:              Raw notification bytes
        voltage_reference: Full-scale voltage for integer samples

    Returns:
        List of samples in payload order
    """
    values = []
    text = bytes(data).decode('ascii', errors='ignore')

    for line in text.split('\n'):
        token = line.strip()
        if not token:
            continue

        try:
            raw = int(token)
        except ValueError:
            try:
                values.append(float(token))
            except ValueError:
                logger.debug(f"Skipping unparseable ECG token: {token!r}")
            continue

        if raw > INT16_MAX:
            raw -= INT16_RANGE
        values.append(raw / float(INT16_MAX) * voltage_reference)

    return values


def is_ecg_device(name: Optional[str], keywords: Sequence[str] = DEFAULT_DEVICE_KEYWORDS) -> bool:
    """True when the advertised name matches one of the known ECG sensor keywords."""
    if not name:
        return False
    lowered = name.lower()
    return any(keyword in lowered for keyword in keywords)


def select_notify_characteristic(services):
    """
    Pick the first notifying characteristic that is not a standard GATT one.

    Args:
        services: Iterable of bleak services (client.services)

    Returns:
        The characteristic, or None if the device exposes no candidate
    """
    for service in services:
        for char in service.characteristics:
            properties = set(char.properties)
            if not ({'notify', 'indicate'} & properties):
                continue
            uuid = str(char.uuid).lower()
            if any(code in uuid for code in SYSTEM_CHARACTERISTICS):
                continue
            return char
    return None


# ---------------------------------------------------------------------------
# BLE transport
# ---------------------------------------------------------------------------

class BleakTransport:
    """
    Bluetooth LE transport for a single ECG sensor

    Scans for sensors by name, connects with a timeout, subscribes to the
    first usable notify characteristic and forwards decoded sample batches
    to the listener.
    """

    def __init__(self, listener: TransportListener, config: Optional[ECGConfig] = None):
        """
        Args:
            listener: Receives discovery, connection and sample reports
            config:   ECG configuration (timeouts, keywords, voltage reference)
        """
        self.listener = listener
        self.config = config if config else ECGConfig.for_session()

        self.client: Optional[BleakClient] = None
        self.device: Optional[Device] = None
        self._characteristic = None
        self._closing = False
        self.notification_count = 0

        logger.info("BLE transport initialized")

    async def scan(self, timeout: Optional[float] = None) -> List[Device]:
        """
        Scan for ECG sensors.

        Args:
            timeout: Scan length in seconds (defaults to config.scan_timeout)

        Returns:
            Matching devices, also reported to the listener
        """
        timeout = timeout if timeout is not None else self.config.scan_timeout
        self.listener.on_scan_started()
        logger.info(f"Scanning for ECG devices ({timeout:.0f}s)...")

        try:
            found = await BleakScanner.discover(timeout=timeout)
        except BleakError as e:
            error = DeviceError(f"Bluetooth scan failed: {e}", code=DeviceError.BLUETOOTH_DISABLED)
            logger.error(f"✗ {error}", exc_info=True)
            self.listener.on_device_fault(error)
            self.listener.on_scan_stopped()
            raise error from e

        devices = [
            Device(device_id=d.address, name=d.name or '')
            for d in found
            if is_ecg_device(d.name, self.config.device_keywords)
        ]

        if devices:
            self.listener.on_devices_discovered(devices)
        self.listener.on_scan_stopped()

        logger.info(f"✓ Scan complete: {len(devices)} ECG device(s) of {len(found)} found")
        return devices

    async def connect(self, device_id: str, name: str = '') -> Device:
        """
        Connect to a sensor and start streaming.

        Raises:
            DeviceError: connection failure, timeout or no usable characteristic
        """
        device = Device(device_id=device_id, name=name)
        self.listener.on_connecting(device)
        self._closing = False

        client = BleakClient(
            device_id,
            disconnected_callback=self._handle_disconnect,
            timeout=self.config.connect_timeout,
        )

        try:
            await client.connect()

            characteristic = select_notify_characteristic(client.services)
            if characteristic is None:
                raise DeviceError(
                    'No suitable ECG characteristic found',
                    code=DeviceError.NO_ECG_CHARACTERISTIC,
                )

            await client.start_notify(characteristic, self._handle_notification)

        except DeviceError as e:
            logger.error(f"✗ {e}")
            await self._release(client)
            self.listener.on_device_fault(e)
            raise
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            error = DeviceError(
                f"Failed to connect to ECG device {device.display_name}",
                code=DeviceError.CONNECTION_FAILED,
                details=str(e),
            )
            logger.error(f"✗ {error}: {e}", exc_info=True)
            await self._release(client)
            self.listener.on_device_fault(error)
            raise error from e

        self.client = client
        self.device = device
        self._characteristic = characteristic
        self.notification_count = 0

        self.listener.on_device_connected(device)
        logger.info(f"✓ Streaming from {device.display_name} ({characteristic.uuid})")
        return device

    async def disconnect(self):
        """Stop notifications and drop the connection."""
        if self.client is None:
            return

        self._closing = True
        client, self.client = self.client, None

        try:
            if client.is_connected:
                if self._characteristic is not None:
                    await client.stop_notify(self._characteristic)
                await client.disconnect()
        except BleakError as e:
            logger.error(f"Error during BLE disconnect: {e}")
        finally:
            self._characteristic = None
            self.device = None
            self.listener.on_disconnect('Disconnected by user')
            logger.info("✓ BLE transport disconnected")

    async def _release(self, client: BleakClient):
        """Drop a half-open connection after a failed connect."""
        self._closing = True
        try:
            if client.is_connected:
                await client.disconnect()
        except (BleakError, OSError) as e:
            logger.error(f"Error releasing BLE client: {e}")

    def _handle_notification(self, sender, data: bytearray):
        samples = decode_payload(data, self.config.voltage_reference)
        self.notification_count += 1
        if samples:
            self.listener.on_samples(samples)

    def _handle_disconnect(self, client: BleakClient):
        if self._closing:
            return
        logger.warning("⚠ ECG device connection lost")
        self.client = None
        self.device = None
        self._characteristic = None
        self.listener.on_disconnect('Connection lost')

    def get_status(self) -> dict:
        return {
            'transport': 'ble',
            'device': self.device.display_name if self.device else None,
            'connected': bool(self.client and self.client.is_connected),
            'notifications': self.notification_count,
        }

    def __repr__(self):
        status = "connected" if self.client else "disconnected"
        return f"<BleakTransport(status={status})>"
