"""Server/system clock offset estimation."""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ClockSync:
    """Tracks the offset between the server clock and the local clock.

    The offset is estimated from a single observed server timestamp:
    ``delta_time = server_time - local_time`` at the moment of observation.
    Each new observation replaces the previous estimate.

    Examples:
        >>> clock = ClockSync()
        >>> clock.observe(None)  # no timing info, nothing changes
        >>> clock.delta_time
        0.0
    """

    def __init__(self, time_fn: Callable[[], float] = time.time):
        """Initialize with a zero offset.

        Args:
            time_fn: Source of local time in seconds since the epoch
        """
        self._time_fn = time_fn
        self._lock = threading.Lock()
        self._server_time = 0.0
        self._delta_time = 0.0

    @property
    def server_time(self) -> float:
        """Last observed server timestamp (seconds since the epoch)."""
        return self._server_time

    @property
    def delta_time(self) -> float:
        """Estimated server time minus local time, in seconds."""
        return self._delta_time

    def observe(self, server_time: Optional[float]) -> None:
        """Record a server timestamp and recompute the offset.

        Args:
            server_time: Server timestamp in seconds, or None when the
                response carried no timing information
        """
        if server_time is None:
            return

        with self._lock:
            self._server_time = float(server_time)
            self._delta_time = self._server_time - self._time_fn()
        logger.debug(f"Server clock offset updated: {self._delta_time:+.3f}s")

    def to_local_time(self, server_time: Optional[float] = None) -> float:
        """Current time expressed with server clock semantics.

        The argument is accepted for interface compatibility but not used:
        the result is always ``now + delta_time``, i.e. what the server clock
        reads right now according to the last observation.

        Args:
            server_time: Ignored

        Returns:
            Seconds since the epoch
        """
        with self._lock:
            delta = self._delta_time
        return self._time_fn() + delta

    def to_local_datetime(self, server_time: Optional[float] = None) -> datetime:
        """Same value as ``to_local_time`` as a timezone-aware UTC datetime."""
        return datetime.fromtimestamp(self.to_local_time(server_time), tz=timezone.utc)
