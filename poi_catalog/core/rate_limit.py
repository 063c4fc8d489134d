"""Request pacing for the places service."""

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Enforces a fixed minimum interval between requests.

    One instance is shared by every caller that talks to the same API key;
    `clock` and `sleep` are injectable so tests never wait.
    """

    def __init__(
        self,
        requests_per_second: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.interval = 1.0 / requests_per_second
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request = None
        self.request_count = 0

    def acquire(self) -> float:
        """Block until the next request may be sent; returns the time waited."""
        with self._lock:
            waited = 0.0
            now = self._clock()
            if self._last_request is not None:
                elapsed = now - self._last_request
                if elapsed < self.interval:
                    waited = self.interval - elapsed
                    self._sleep(waited)
                    now = self._clock()
            self._last_request = now
            self.request_count += 1
            return waited
