"""
Session Clock
Monotonic UTC timestamps for session start/stop and persisted records
"""

import threading
import logging
from datetime import datetime, timezone, timedelta
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CentralClock:
    """
    Thread-safe clock shared by the coordinator and the transport

    Guarantees:
    - Monotonic timestamps (always increasing, no duplicates), so a session
      never ends before it starts even if the wall clock steps backwards
    - Microsecond precision
    - Injectable time source for tests
    """

    def __init__(self, time_source: Optional[Callable[[], datetime]] = None):
        """
        Initialize clock

        Args:
            time_source: Callable returning an aware UTC datetime.
                         Defaults to datetime.now(timezone.utc).
        """
        self._time_source = time_source or _utc_now
        self._lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None
        self._call_count = 0

    def now(self) -> datetime:
        """
        Get current timestamp

        Returns:
            datetime: Current UTC timestamp, strictly after the previous one
        """
        with self._lock:
            current_time = self._time_source()

            if self._last_timestamp and current_time <= self._last_timestamp:
                current_time = self._last_timestamp + timedelta(microseconds=1)
                logger.debug("Adjusted timestamp to maintain monotonic sequence")

            self._last_timestamp = current_time
            self._call_count += 1

            return current_time

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'total_calls': self._call_count,
                'last_timestamp': self._last_timestamp.isoformat() if self._last_timestamp else None,
            }

    def __repr__(self):
        return f"<CentralClock(calls={self._call_count})>"
