"""Shared HTTP client management for connection pooling.

Two pooled clients are initialized on application startup: one for the
Discogs API and one for remote image downloads. The image client follows
redirects because image hosts routinely redirect to their CDN; the API client
does not.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from discogate.app.core.config import settings


_upstream_client: httpx.AsyncClient | None = None
_image_client: httpx.AsyncClient | None = None


def _build_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=settings.httpx_connect_timeout,
        read=settings.httpx_read_timeout,
        write=settings.httpx_write_timeout,
        pool=settings.httpx_pool_timeout,
    )


def _build_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=settings.httpx_max_connections,
        max_keepalive_connections=settings.httpx_max_keepalive_connections,
        keepalive_expiry=settings.httpx_keepalive_expiry,
    )


def create_http_client(follow_redirects: bool = False) -> httpx.AsyncClient:
    """Create a new HTTP client with default settings.

    The returned client should be closed when done:
        async with create_http_client() as client:
            ...
    """
    return httpx.AsyncClient(
        timeout=_build_timeout(),
        limits=_build_limits(),
        follow_redirects=follow_redirects,
    )


def get_http_client() -> httpx.AsyncClient:
    """Get the shared upstream API client.

    Raises:
        RuntimeError: If the HTTP client has not been initialized.
    """
    if _upstream_client is None:
        raise RuntimeError(
            "HTTP client not initialized. Ensure lifespan context is active."
        )
    return _upstream_client


def get_image_http_client() -> httpx.AsyncClient:
    """Get the shared image download client.

    Raises:
        RuntimeError: If the HTTP client has not been initialized.
    """
    if _image_client is None:
        raise RuntimeError(
            "Image HTTP client not initialized. Ensure lifespan context is active."
        )
    return _image_client


@asynccontextmanager
async def init_http_clients() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Initialize the shared clients for the duration of the app lifespan.

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_clients():
                yield
    """
    global _upstream_client, _image_client

    _upstream_client = create_http_client()
    _image_client = create_http_client(follow_redirects=True)

    try:
        yield _upstream_client
    finally:
        if _upstream_client is not None:
            await _upstream_client.aclose()
            _upstream_client = None
        if _image_client is not None:
            await _image_client.aclose()
            _image_client = None
