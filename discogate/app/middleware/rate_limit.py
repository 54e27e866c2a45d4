"""Admission control for outbound Discogs requests.

Unlike per-client rate limiting, the budget enforced here is shared by every
caller of the process: Discogs counts requests per API token, not per user.
A slot is charged by the Discogs client immediately before each request it
sends, so a route that makes two upstream calls pays twice and a request
rejected before reaching Discogs (bad API key, account not connected,
missing search term) pays nothing.
"""

from typing import Optional

from fastapi import Request, Response

from discogate.app.services.rate_limiter import AdmissionResult, RateLimiter, get_rate_limiter


def get_app_rate_limiter(request: Request) -> RateLimiter:
    """Return the limiter constructed at startup, or the module default."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    return limiter if limiter is not None else get_rate_limiter()


class UpstreamBudget:
    """Per-request handle on the process-wide limiter.

    ``charge()`` admits one outbound call and mirrors the latest admission
    in the ``X-RateLimit-*`` headers of the inbound response.
    """

    def __init__(self, limiter: RateLimiter, response: Optional[Response] = None):
        self.limiter = limiter
        self.response = response

    def charge(self) -> AdmissionResult:
        """Admit one upstream call.

        Raises:
            RateLimitExceeded: When the window is full; the app's exception
                handler renders it as 429 with a Retry-After header.
        """
        result = self.limiter.check()
        if self.response is not None:
            self.response.headers["X-RateLimit-Limit"] = str(result.limit)
            self.response.headers["X-RateLimit-Remaining"] = str(result.remaining)
            self.response.headers["X-RateLimit-Reset"] = str(result.reset_time)
        return result


async def get_upstream_budget(request: Request, response: Response) -> UpstreamBudget:
    return UpstreamBudget(get_app_rate_limiter(request), response)
