"""FastAPI dependencies wiring the services to the shared HTTP clients.

Each dependency is overridable through ``app.dependency_overrides`` in tests.
"""

from fastapi import Depends

from discogate.app.core.config import settings
from discogate.app.core.http_client import get_http_client, get_image_http_client
from discogate.app.db.models import Profile
from discogate.app.middleware.auth import require_user
from discogate.app.middleware.rate_limit import UpstreamBudget, get_upstream_budget
from discogate.app.providers.discogs import DiscogsClient
from discogate.app.services.credentials import CredentialValidator, DelegatedCredential
from discogate.app.services.profile_store import ProfileStore, SqlProfileStore
from discogate.app.services.secure_fetcher import SecureFetcher
from discogate.app.services.storage import ObjectStorage, SupabaseStorage


def get_discogs_client(
    budget: UpstreamBudget = Depends(get_upstream_budget),
) -> DiscogsClient:
    """Discogs client charging the shared budget once per outbound call."""
    try:
        http_client = get_http_client()
    except RuntimeError:
        # HTTP client not initialized; fall back to per-request clients
        http_client = None
    return DiscogsClient(http_client=http_client, acquire_slot=budget.charge)


def get_profile_store() -> ProfileStore:
    return SqlProfileStore()


def get_credential_validator(
    store: ProfileStore = Depends(get_profile_store),
    client: DiscogsClient = Depends(get_discogs_client),
) -> CredentialValidator:
    return CredentialValidator(store=store, client=client)


def get_secure_fetcher() -> SecureFetcher:
    try:
        return SecureFetcher(http_client=get_image_http_client())
    except RuntimeError:
        return SecureFetcher()


def get_object_storage() -> ObjectStorage:
    try:
        return SupabaseStorage(http_client=get_http_client())
    except RuntimeError:
        return SupabaseStorage()


def get_image_cache_storage() -> ObjectStorage:
    """Private bucket caching Discogs release images, served by signed URL."""
    options = {
        "bucket": settings.storage_images_bucket,
        "signed_url_ttl": settings.storage_signed_url_ttl,
    }
    try:
        return SupabaseStorage(http_client=get_http_client(), **options)
    except RuntimeError:
        return SupabaseStorage(**options)


async def require_discogs_credential(
    user: Profile = Depends(require_user),
    validator: CredentialValidator = Depends(get_credential_validator),
) -> DelegatedCredential:
    """Validate the authenticated user's linked Discogs account.

    NotConnected, CredentialExpired and InternalError propagate to the
    app's exception handlers.
    """
    return await validator.validate(user.id)
