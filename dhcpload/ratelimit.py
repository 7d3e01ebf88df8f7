from __future__ import annotations

import threading
import time
from typing import Callable


class TokenBucketLimiter:
    """Admission gate shared by every worker; bounds the aggregate start rate."""

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be > 0")
        if burst < 1:
            raise ValueError("burst must be >= 1")
        self._rate = float(rate)
        self._burst = int(burst)
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last = clock()

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def burst(self) -> int:
        return self._burst

    def acquire(self, stop_event: threading.Event) -> bool:
        """Block until a token is granted or ``stop_event`` fires.

        Returns ``True`` when admitted and ``False`` when the caller must stop.
        Tokens are reserved under the lock, so grants are handed out in
        arrival order even though the waiting happens outside it.
        """
        if stop_event.is_set():
            return False

        delay = self._reserve()
        if delay <= 0:
            return True

        if stop_event.wait(timeout=delay):
            self._cancel_reservation()
            return False
        return True

    def _reserve(self) -> float:
        with self._lock:
            self._refill(self._clock())
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self._rate

    def _cancel_reservation(self) -> None:
        with self._lock:
            self._refill(self._clock())
            self._tokens = min(self._tokens + 1.0, float(self._burst))

    def _refill(self, now: float) -> None:
        elapsed = max(now - self._last, 0.0)
        self._last = now
        self._tokens = min(self._tokens + elapsed * self._rate, float(self._burst))


__all__ = ["TokenBucketLimiter"]
