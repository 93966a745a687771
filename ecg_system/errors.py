"""
ECG System Errors
Exception taxonomy shared by the coordinator, transport and gateways
"""

from typing import Any, Optional


class ECGSystemError(Exception):
    """
    Base class for all ECG system errors.

    Carries a human readable message and an optional short machine code
    (e.g. 'connection-failed') so callers can branch without parsing text.
    """

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def __str__(self):
        if self.code:
            return f"{self.message} (code: {self.code})"
        return self.message


class DeviceError(ECGSystemError):
    """Bluetooth / sensor failure. Reported to the UI, never crashes the coordinator."""

    NOT_FOUND = 'not-found'
    CONNECTION_FAILED = 'connection-failed'
    PERMISSION_DENIED = 'permission-denied'
    SIGNAL_POOR = 'signal-poor'
    BLUETOOTH_DISABLED = 'bluetooth-disabled'
    NO_ECG_CHARACTERISTIC = 'no-ecg-characteristic'


class PersistenceError(ECGSystemError):
    """Failure to store or read sessions."""


class GatewayError(ECGSystemError):
    """Failure talking to the AI summary endpoint."""

    TIMEOUT = 'timeout'
    MALFORMED_RESPONSE = 'malformed-response'
    HTTP_ERROR = 'http-error'


class InvalidStateError(ECGSystemError):
    """
    Illegal transition request.

    This is a usage fault by the caller (e.g. starting a recording with no
    device connected), not a recoverable runtime condition.
    """


class SessionSealedError(InvalidStateError):
    """Attempt to modify a session after it has been sealed."""
