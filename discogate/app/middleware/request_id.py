"""Request correlation IDs.

Every response carries ``X-Request-ID``. A caller-supplied value is reused
when it looks sane, so a frontend can correlate its own logs with ours.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from discogate.app.core.logging import get_log_context, get_logger

logger = get_logger(__name__)

MAX_REQUEST_ID_LENGTH = 128
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]+$")


def _incoming_request_id(request: Request, header_name: str) -> str | None:
    value = request.headers.get(header_name, "").strip()
    if not value or len(value) > MAX_REQUEST_ID_LENGTH:
        return None
    return value if _REQUEST_ID_PATTERN.match(value) else None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Stamp each request with an ID and log its outcome at DEBUG."""

    def __init__(self, app, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _incoming_request_id(request, self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        response.headers[self.header_name] = request_id

        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra=get_log_context(
                request_id=request_id,
                user_id=getattr(request.state, "user_id", None),
                method=request.method,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            ),
        )
        return response


def get_request_id(request: Request) -> str:
    """Return the current request's ID, or ``"unknown"`` outside the middleware."""
    return getattr(request.state, "request_id", "unknown")
