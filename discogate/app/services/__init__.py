"""Services package for the gateway.

This package provides:
- The process-wide Discogs admission gate
- Delegated credential validation against the profile store
- SSRF-safe remote image fetching and object storage
"""

from discogate.app.services.credentials import CredentialValidator, DelegatedCredential
from discogate.app.services.profile_store import ProfileStore, SqlProfileStore, StoredCredential
from discogate.app.services.rate_limiter import (
    AdmissionResult,
    RateLimiter,
    get_rate_limiter,
    reset_rate_limiter,
)
from discogate.app.services.search import build_search_params, clamp_page, clamp_per_page
from discogate.app.services.secure_fetcher import FetchedImage, SecureFetcher
from discogate.app.services.storage import ObjectStorage, SupabaseStorage

__all__ = [
    "AdmissionResult",
    "CredentialValidator",
    "DelegatedCredential",
    "FetchedImage",
    "ObjectStorage",
    "ProfileStore",
    "RateLimiter",
    "SecureFetcher",
    "SqlProfileStore",
    "StoredCredential",
    "SupabaseStorage",
    "build_search_params",
    "clamp_page",
    "clamp_per_page",
    "get_rate_limiter",
    "reset_rate_limiter",
]
