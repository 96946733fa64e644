"""
Token-bucket rate limiter shared by every MoviePilot API call.

The backend is the binding constraint of a sync pass, so all callers
(sync pipeline, tracker polling loop) draw permits from the same bucket.
Waiting for a permit is a suspension point: it observes the shared
cancellation event and raises OperationCancelled when shutdown begins.
"""

import threading
import time

from media_syncer.core.exceptions import OperationCancelled


class RateLimiter:
    """
    Thread-safe token bucket.

    Attributes:
        rate: Permits added per second.
        burst: Bucket capacity. Defaults to `rate`, which allows a short
               burst of one second's worth of calls after an idle period.

    Example:
        limiter = RateLimiter(rate=3)
        limiter.acquire(cancel_event)  # blocks until a permit is available
    """

    def __init__(self, rate: float, burst: int | None = None) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = float(rate)
        self.burst = float(burst if burst is not None else max(1, int(rate)))
        self._tokens = self.burst
        self._last_refill = time.monotonic()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
        self._last_refill = now

    def try_acquire(self) -> float:
        """
        Take a permit if one is available.

        Returns:
            0.0 if a permit was taken, otherwise the seconds to wait
            before one becomes available.
        """
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            return (1.0 - self._tokens) / self.rate

    def acquire(self, cancel_event: threading.Event) -> None:
        """
        Block until a permit is available.

        Args:
            cancel_event: Shared shutdown signal.

        Raises:
            OperationCancelled: If the event is set before or while waiting.
        """
        while True:
            if cancel_event.is_set():
                raise OperationCancelled("Rate limiter wait cancelled")
            wait_time = self.try_acquire()
            if wait_time == 0.0:
                return
            if cancel_event.wait(wait_time):
                raise OperationCancelled("Rate limiter wait cancelled")
