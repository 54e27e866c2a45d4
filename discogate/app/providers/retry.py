"""Backoff policy for upstream throttling.

Discogs signals throttling with HTTP 429 and an optional ``Retry-After``
header. The policy here honours that header once; it never loops.
"""

import re
from dataclasses import dataclass
from typing import Optional

import httpx

_LEADING_DIGITS = re.compile(r"\s*(\d+)")


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Parse a Retry-After header given in delta-seconds.

    Only the leading digits count, so ``"2.5"`` waits 2 seconds.

    Returns:
        The positive number of seconds, or None when the header is absent,
        does not start with a number, or is not positive.
    """
    if value is None:
        return None
    match = _LEADING_DIGITS.match(value)
    if match is None:
        return None
    seconds = int(match.group(1))
    return seconds if seconds > 0 else None


@dataclass
class ThrottlePolicy:
    """How to react to an upstream 429.

    Attributes:
        max_retries: Retries allowed after a 429 (default: 1)
        default_delay: Seconds to wait when Retry-After is missing or unusable

    Example:
        >>> policy = ThrottlePolicy(default_delay=60)
        >>> policy.delay_for(httpx.Response(429, headers={"Retry-After": "2"}))
        2
    """

    max_retries: int = 1
    default_delay: int = 60

    def is_throttled(self, response: httpx.Response) -> bool:
        return response.status_code == 429

    def delay_for(self, response: httpx.Response) -> int:
        """Seconds to wait before retrying a throttled response."""
        parsed = parse_retry_after(response.headers.get("Retry-After"))
        return parsed if parsed is not None else self.default_delay
