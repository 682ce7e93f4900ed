"""Rate limiting for OpenStack API calls."""

import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Generator

from openstack_cloud.metrics import RATE_LIMIT_WAIT_SECONDS

logger = logging.getLogger(__name__)


class RateLimiter:
    """Thread-safe rate limiter using semaphore and minimum call interval.

    Image initialization, instance starts and floating-IP polling all run on
    different threads; the limiter keeps their combined load on the OpenStack
    APIs bounded.
    """

    def __init__(
        self,
        max_concurrent: int = 10,
        requests_per_second: float = 20.0,
    ) -> None:
        """Initialize rate limiter.

        Args:
            max_concurrent: Maximum number of concurrent API calls
            requests_per_second: Maximum requests per second (averaged)
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._semaphore = threading.BoundedSemaphore(max_concurrent)
        self._min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._next_slot = 0.0
        self._lock = threading.Lock()
        self.max_concurrent = max_concurrent
        self.requests_per_second = requests_per_second

        logger.debug(
            "Rate limiter initialized: max_concurrent=%d, requests_per_second=%.1f",
            max_concurrent,
            requests_per_second,
        )

    def _reserve_slot(self) -> float:
        """Reserve the next call slot and return how long to sleep for it."""
        with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self._min_interval
            return slot - now

    @contextmanager
    def acquire(self, operation: str = "unknown") -> Generator[None, None, None]:
        """Hold a concurrency slot and a rate slot for one API call.

        The wait for both slots is observed per operation, so slow image
        initialization can be told apart from throttled instance starts.
        """
        queued_at = time.monotonic()
        with self._semaphore:
            delay = self._reserve_slot()
            if delay > 0:
                time.sleep(delay)

            waited = time.monotonic() - queued_at
            if waited > 0.001:
                RATE_LIMIT_WAIT_SECONDS.labels(operation=operation).observe(waited)

            yield

    def __repr__(self) -> str:
        return (
            f"RateLimiter(max_concurrent={self.max_concurrent}, "
            f"requests_per_second={self.requests_per_second})"
        )


_rate_limiter: RateLimiter | None = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    """Get or create the process-wide rate limiter.

    Configuration via environment variables:
        OPENSTACK_MAX_CONCURRENT_CALLS: Max concurrent API calls (default: 10)
        OPENSTACK_REQUESTS_PER_SECOND: Max requests/second (default: 20)
    """
    global _rate_limiter

    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                _rate_limiter = RateLimiter(
                    max_concurrent=int(
                        os.environ.get("OPENSTACK_MAX_CONCURRENT_CALLS", "10")
                    ),
                    requests_per_second=float(
                        os.environ.get("OPENSTACK_REQUESTS_PER_SECOND", "20")
                    ),
                )

    return _rate_limiter
