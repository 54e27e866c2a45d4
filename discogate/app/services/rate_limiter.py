"""Process-wide admission gate for outbound Discogs requests.

Discogs enforces a single quota per API token, shared by every user of this
service, so the window here is global rather than keyed by user or IP.

The algorithm is a fixed-window counter. Across a window boundary it can
admit up to twice the threshold within 60 seconds; the upstream's own 429
handling in the Discogs client remains the backstop for that case.
"""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from discogate.app.core.config import settings
from discogate.app.core.logging import get_logger
from discogate.app.exceptions import RateLimitExceeded

logger = get_logger(__name__)


@dataclass
class AdmissionResult:
    """Result of an admission check."""
    allowed: bool
    limit: int
    remaining: int
    reset_time: int
    retry_after: int = 0


@dataclass
class RateWindow:
    """Counter state for the current fixed window."""
    count: int = 0
    window_start: float = field(default_factory=time.time)


class RateLimiter:
    """Fixed-window counter shared by all request handlers in the process.

    All reads and writes of the window happen under one ``threading.Lock`` so
    concurrent callers (event loop tasks or thread-pool handlers) never lose
    an increment.

    Example:
        >>> limiter = RateLimiter(max_requests=55, window_seconds=60)
        >>> limiter.admit().allowed
        True
    """

    def __init__(
        self,
        max_requests: int = 55,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._window: Optional[RateWindow] = None
        self._lock = threading.Lock()

    def admit(self) -> AdmissionResult:
        """Count one request against the window and decide whether it may proceed."""
        with self._lock:
            now = self._clock()

            window = self._window
            if window is None or now - window.window_start >= self.window_seconds:
                window = RateWindow(count=0, window_start=now)
                self._window = window

            window.count += 1
            elapsed = now - window.window_start
            reset_time = int(window.window_start + self.window_seconds)

            if window.count > self.max_requests:
                retry_after = max(1, math.ceil(self.window_seconds - elapsed))
                return AdmissionResult(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_time=reset_time,
                    retry_after=retry_after,
                )

            return AdmissionResult(
                allowed=True,
                limit=self.max_requests,
                remaining=self.max_requests - window.count,
                reset_time=reset_time,
            )

    def check(self) -> AdmissionResult:
        """Admit one request or raise ``RateLimitExceeded``."""
        result = self.admit()
        if not result.allowed:
            logger.warning(
                f"Discogs admission budget exhausted, retry after {result.retry_after}s"
            )
            raise RateLimitExceeded(retry_after=result.retry_after)
        return result

    def reset(self) -> None:
        """Drop the current window; the next call opens a fresh one."""
        with self._lock:
            self._window = None

    @property
    def current_count(self) -> int:
        with self._lock:
            return self._window.count if self._window else 0


_rate_limiter: Optional[RateLimiter] = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide limiter, constructing it from settings on first use."""
    global _rate_limiter
    with _rate_limiter_lock:
        if _rate_limiter is None:
            _rate_limiter = RateLimiter(
                max_requests=settings.discogs_rate_limit_max_requests,
                window_seconds=settings.discogs_rate_limit_window_seconds,
            )
        return _rate_limiter


def reset_rate_limiter() -> None:
    """Discard the process-wide limiter (useful for testing)."""
    global _rate_limiter
    with _rate_limiter_lock:
        _rate_limiter = None
