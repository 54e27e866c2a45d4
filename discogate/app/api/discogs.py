"""Discogs API endpoints.

Routes reach Discogs through ``get_discogs_client``, whose client charges the
process-wide budget once per outbound request. A request that fails
validation or authentication never reaches Discogs and costs nothing.
"""

from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from discogate.app.api.dependencies import (
    get_discogs_client,
    get_image_cache_storage,
    get_profile_store,
    get_secure_fetcher,
    require_discogs_credential,
)
from discogate.app.core.logging import get_log_context, get_logger
from discogate.app.db.models import Profile
from discogate.app.exceptions import (
    ConfigurationError,
    GatewayException,
    RateLimitExceeded,
    UpstreamError,
    UpstreamThrottled,
)
from discogate.app.middleware.auth import require_user
from discogate.app.middleware.request_id import get_request_id
from discogate.app.providers.discogs import DiscogsClient
from discogate.app.services.credentials import DelegatedCredential
from discogate.app.services.profile_store import ProfileStore
from discogate.app.services.search import (
    build_search_params,
    clamp_page,
    clamp_per_page,
    has_search_term,
)
from discogate.app.services.secure_fetcher import SecureFetcher
from discogate.app.services.storage import ObjectStorage

router = APIRouter(prefix="/api/discogs")
auth_router = APIRouter(prefix="/api/discogs/auth")
logger = get_logger(__name__)

# Cached release images may be reused by browsers and CDNs for a day.
IMAGE_CACHE_CONTROL = "public, max-age=86400"


def _upstream_failure(
    request: Request,
    exc: Exception,
    error: str,
    passthrough_404: bool = False,
) -> JSONResponse:
    """Render an upstream failure as a JSON error with diagnostic details."""
    status_code = 500
    if isinstance(exc, UpstreamThrottled):
        status_code = 503
    elif passthrough_404 and isinstance(exc, UpstreamError) and exc.status == 404:
        status_code = 404

    logger.error(
        f"{error}: {exc}",
        extra=get_log_context(
            request_id=get_request_id(request),
            endpoint=getattr(exc, "endpoint", None),
        ),
    )
    details = "Service is not configured" if isinstance(exc, ConfigurationError) else str(exc)
    return JSONResponse(status_code=status_code, content={"error": error, "details": details})


def _parse_positive_id(raw: str) -> int | None:
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 1 else None


@router.get("/search", response_model=None)
async def search(
    request: Request,
    client: DiscogsClient = Depends(get_discogs_client),
) -> Dict[str, Any] | JSONResponse:
    """Search the Discogs database.

    Requires at least one of ``q``, ``artist``, ``title`` or ``barcode``.
    ``per_page`` is clamped to 1-100 (default 20); ``page`` defaults to 1.
    """
    raw = dict(request.query_params)
    if not has_search_term(raw):
        return JSONResponse(
            status_code=400,
            content={
                "error": "At least one search param (q, artist, title, or barcode) is required"
            },
        )

    try:
        return await client.search(build_search_params(raw))
    except (UpstreamError, ConfigurationError, httpx.HTTPError) as exc:
        return _upstream_failure(request, exc, "Failed to search Discogs")


@router.get("/releases/{release_id}", response_model=None)
async def get_release(
    release_id: str,
    request: Request,
    client: DiscogsClient = Depends(get_discogs_client),
) -> Dict[str, Any] | JSONResponse:
    parsed = _parse_positive_id(release_id)
    if parsed is None:
        return JSONResponse(
            status_code=400, content={"error": "Release ID must be a positive integer"}
        )

    try:
        return await client.get_release(parsed)
    except (UpstreamError, ConfigurationError, httpx.HTTPError) as exc:
        return _upstream_failure(
            request, exc, "Failed to fetch Discogs release", passthrough_404=True
        )


@router.get("/masters/{master_id}", response_model=None)
async def get_master(
    master_id: str,
    request: Request,
    client: DiscogsClient = Depends(get_discogs_client),
) -> Dict[str, Any] | JSONResponse:
    parsed = _parse_positive_id(master_id)
    if parsed is None:
        return JSONResponse(
            status_code=400, content={"error": "Master release ID must be a positive integer"}
        )

    try:
        return await client.get_master(parsed)
    except (UpstreamError, ConfigurationError, httpx.HTTPError) as exc:
        return _upstream_failure(
            request, exc, "Failed to fetch Discogs master release", passthrough_404=True
        )


def _primary_image(images: Optional[List[Dict[str, Any]]]) -> Optional[Dict[str, Any]]:
    """The image marked ``primary``, else the first one listed."""
    if not images:
        return None
    return next((image for image in images if image.get("type") == "primary"), images[0])


@router.get("/images/{release_id}", response_model=None)
async def get_release_image(
    release_id: str,
    request: Request,
    size: Optional[str] = None,
    client: DiscogsClient = Depends(get_discogs_client),
    fetcher: SecureFetcher = Depends(get_secure_fetcher),
    cache: ObjectStorage = Depends(get_image_cache_storage),
) -> RedirectResponse | JSONResponse:
    """Redirect to a cached copy of a release's primary image.

    ``size=thumb`` selects the 150px variant; anything else the full image.
    On a cache miss the image is downloaded through ``SecureFetcher`` and
    stored before redirecting. If that fails after the Discogs image URL is
    known, the client is redirected to Discogs directly (uncached).
    """
    parsed = _parse_positive_id(release_id)
    if parsed is None:
        return JSONResponse(
            status_code=400, content={"error": "Release ID must be a positive integer"}
        )

    thumb = size == "thumb"
    file_name = f"{parsed}/{'thumb.jpg' if thumb else 'cover.jpg'}"
    fallback_url: Optional[str] = None

    try:
        cached_url = await cache.lookup(file_name)
        if cached_url:
            return RedirectResponse(
                cached_url, status_code=302, headers={"Cache-Control": IMAGE_CACHE_CONTROL}
            )

        release = await client.get_release(parsed)
        image = _primary_image(release.get("images"))
        if image is None:
            return JSONResponse(
                status_code=404, content={"error": "No images found for this release"}
            )
        image_url = image.get("uri150" if thumb else "uri")
        if not image_url:
            return JSONResponse(
                status_code=404,
                content={"error": "No image URL available for this release"},
            )
        fallback_url = image_url

        fetched = await fetcher.fetch(image_url)
        stored_url = await cache.upload(
            file_name, fetched.content, fetched.content_type, upsert=True
        )
    except RateLimitExceeded:
        raise
    except (GatewayException, httpx.HTTPError) as exc:
        logger.error(
            f"Failed to proxy image for release {parsed}: {exc}",
            extra=get_log_context(request_id=get_request_id(request)),
        )
        if fallback_url:
            return RedirectResponse(
                fallback_url, status_code=302, headers={"Cache-Control": "no-cache"}
            )
        return JSONResponse(status_code=500, content={"error": "Failed to proxy Discogs image"})

    logger.info(
        f"Cached Discogs image {file_name} ({len(fetched.content)} bytes)",
        extra=get_log_context(request_id=get_request_id(request)),
    )
    return RedirectResponse(
        stored_url, status_code=302, headers={"Cache-Control": IMAGE_CACHE_CONTROL}
    )


@router.get("/collection", response_model=None)
async def get_collection(
    request: Request,
    credential: DelegatedCredential = Depends(require_discogs_credential),
    client: DiscogsClient = Depends(get_discogs_client),
) -> Dict[str, Any] | JSONResponse:
    """List the authenticated user's Discogs collection."""
    try:
        return await client.get_collection(
            credential.token,
            credential.remote_username,
            page=clamp_page(request.query_params.get("page")),
            per_page=clamp_per_page(request.query_params.get("per_page")),
        )
    except (UpstreamError, ConfigurationError, httpx.HTTPError) as exc:
        return _upstream_failure(request, exc, "Failed to fetch Discogs collection")


@router.get("/auth/status")
async def auth_status(
    credential: DelegatedCredential = Depends(require_discogs_credential),
) -> Dict[str, Any]:
    """Confirm the linked Discogs account is still authorized."""
    return {
        "connected": True,
        "username": credential.remote_username,
        "discogsUserId": credential.remote_user_id,
    }


@auth_router.post("/disconnect", response_model=None)
async def disconnect(
    request: Request,
    user: Profile = Depends(require_user),
    store: ProfileStore = Depends(get_profile_store),
) -> Dict[str, Any] | JSONResponse:
    """Clear the user's stored Discogs credentials."""
    try:
        await store.clear_credential(user.id)
    except Exception as exc:
        logger.exception(
            "Failed to clear Discogs credentials",
            extra=get_log_context(request_id=get_request_id(request), user_id=user.id),
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to disconnect Discogs account", "details": str(exc)},
        )

    logger.info("User disconnected Discogs account", extra=get_log_context(user_id=user.id))
    return {"success": True}
