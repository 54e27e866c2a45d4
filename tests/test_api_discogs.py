"""Route tests for the Discogs endpoints."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import respx
from fastapi import Depends, HTTPException
from fastapi.testclient import TestClient
from httpx import Response

from discogate.app.api.dependencies import (
    get_credential_validator,
    get_discogs_client,
    get_image_cache_storage,
    get_profile_store,
    get_secure_fetcher,
    require_discogs_credential,
)
from discogate.app.db.models import Profile
from discogate.app.exceptions import (
    CredentialExpired,
    InternalError,
    NotConnected,
    RateLimitExceeded,
    UpstreamError,
    UpstreamFetchFailed,
    UpstreamThrottled,
)
from discogate.app.main import create_app
from discogate.app.middleware.auth import require_user
from discogate.app.middleware.rate_limit import UpstreamBudget, get_upstream_budget
from discogate.app.providers.discogs import DiscogsClient, OAuthToken
from discogate.app.services.credentials import DelegatedCredential
from discogate.app.services.profile_store import ProfileStore, StoredCredential
from discogate.app.services.rate_limiter import RateLimiter
from discogate.app.services.secure_fetcher import FetchedImage, SecureFetcher
from discogate.app.services.storage import ObjectStorage

USER = Profile(
    id="user-1",
    email="user@example.com",
    api_key_hash="x",
    created_at=datetime.now(timezone.utc),
)

CREDENTIAL = DelegatedCredential(
    access_token="tok",
    access_token_secret="sec",
    remote_username="digger",
    remote_user_id=42,
)


class RecordingStore(ProfileStore):
    def __init__(self):
        self.cleared = []

    async def get_credential(self, user_id):
        return StoredCredential()

    async def clear_credential(self, user_id):
        self.cleared.append(user_id)


class ConnectedStore(RecordingStore):
    async def get_credential(self, user_id):
        return StoredCredential(access_token="tok", access_token_secret="sec")


@pytest.fixture
def discogs_client():
    return AsyncMock(spec=DiscogsClient)


@pytest.fixture
def app(discogs_client):
    application = create_app()
    application.state.rate_limiter = RateLimiter(max_requests=55, window_seconds=60)
    application.dependency_overrides[require_user] = lambda: USER
    application.dependency_overrides[get_discogs_client] = lambda: discogs_client
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


class TestSearch:
    def test_requires_a_search_term(self, client, discogs_client):
        resp = client.get("/api/discogs/search", params={"year": "1959"})

        assert resp.status_code == 400
        assert resp.json() == {
            "error": "At least one search param (q, artist, title, or barcode) is required"
        }
        discogs_client.search.assert_not_called()

    def test_forwards_normalized_params(self, client, discogs_client):
        discogs_client.search.return_value = {"pagination": {}, "results": [{"id": 1}]}

        resp = client.get(
            "/api/discogs/search",
            params={"q": "Kind of Blue", "per_page": "500", "page": "0", "format": ""},
        )

        assert resp.status_code == 200
        assert resp.json()["results"] == [{"id": 1}]
        discogs_client.search.assert_awaited_once_with(
            {"per_page": "100", "page": "1", "q": "Kind of Blue"}
        )

    def test_upstream_failure_returns_details(self, client, discogs_client):
        discogs_client.search.side_effect = UpstreamError("/database/search", 500, "boom")

        resp = client.get("/api/discogs/search", params={"q": "x"})

        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Failed to search Discogs",
            "details": "Discogs 500 boom (/database/search)",
        }

    def test_upstream_throttled_returns_503(self, client, discogs_client):
        discogs_client.search.side_effect = UpstreamThrottled("/database/search")

        resp = client.get("/api/discogs/search", params={"q": "x"})

        assert resp.status_code == 503
        assert resp.json()["error"] == "Failed to search Discogs"

    def test_whitespace_only_term_is_rejected(self, client, discogs_client):
        resp = client.get("/api/discogs/search", params={"q": "  ", "artist": "\t"})

        assert resp.status_code == 400
        discogs_client.search.assert_not_called()

    def test_local_budget_denial_returns_429(self, client, discogs_client):
        discogs_client.search.side_effect = RateLimitExceeded(retry_after=12)

        resp = client.get("/api/discogs/search", params={"q": "x"})

        assert resp.status_code == 429
        assert resp.json() == {
            "error": "Discogs rate limit reached. Please try again shortly.",
            "retryAfter": 12,
        }
        assert resp.headers["Retry-After"] == "12"


class TestLookups:
    @pytest.mark.parametrize("bad_id", ["abc", "0", "-4", "1.5"])
    def test_release_id_must_be_positive_integer(self, client, discogs_client, bad_id):
        resp = client.get(f"/api/discogs/releases/{bad_id}")

        assert resp.status_code == 400
        discogs_client.get_release.assert_not_called()

    def test_release_found(self, client, discogs_client):
        discogs_client.get_release.return_value = {"id": 249504, "title": "Never Gonna Give You Up"}

        resp = client.get("/api/discogs/releases/249504")

        assert resp.status_code == 200
        assert resp.json()["id"] == 249504
        discogs_client.get_release.assert_awaited_once_with(249504)

    def test_release_not_found_passes_through(self, client, discogs_client):
        discogs_client.get_release.side_effect = UpstreamError("/releases/9", 404, "Release not found.")

        resp = client.get("/api/discogs/releases/9")

        assert resp.status_code == 404
        assert resp.json()["error"] == "Failed to fetch Discogs release"

    def test_master_upstream_error(self, client, discogs_client):
        discogs_client.get_master.side_effect = UpstreamError("/masters/3", 502, "Bad Gateway")

        resp = client.get("/api/discogs/masters/3")

        assert resp.status_code == 500
        assert "Bad Gateway" in resp.json()["details"]


class TestReleaseImages:
    RELEASE = {
        "id": 249504,
        "images": [
            {"type": "secondary", "uri": "https://i.discogs.com/back.jpg"},
            {
                "type": "primary",
                "uri": "https://i.discogs.com/front.jpg",
                "uri150": "https://i.discogs.com/front-150.jpg",
            },
        ],
    }

    @pytest.fixture
    def fetcher(self, app):
        mock = AsyncMock(spec=SecureFetcher)
        mock.fetch.return_value = FetchedImage(content=b"jpeg", content_type="image/jpeg")
        app.dependency_overrides[get_secure_fetcher] = lambda: mock
        return mock

    @pytest.fixture
    def cache(self, app):
        mock = AsyncMock(spec=ObjectStorage)
        mock.lookup.return_value = None
        mock.upload.return_value = "https://storage.example.test/signed/249504?token=t"
        app.dependency_overrides[get_image_cache_storage] = lambda: mock
        return mock

    def _get(self, client, path, **params):
        return client.get(path, params=params, follow_redirects=False)

    def test_release_id_must_be_positive_integer(self, client, discogs_client, fetcher, cache):
        resp = self._get(client, "/api/discogs/images/abc")

        assert resp.status_code == 400
        assert resp.json() == {"error": "Release ID must be a positive integer"}
        cache.lookup.assert_not_called()
        discogs_client.get_release.assert_not_called()

    def test_cached_image_skips_discogs(self, client, discogs_client, fetcher, cache):
        cache.lookup.return_value = "https://storage.example.test/signed/cached"

        resp = self._get(client, "/api/discogs/images/249504")

        assert resp.status_code == 302
        assert resp.headers["location"] == "https://storage.example.test/signed/cached"
        assert resp.headers["cache-control"] == "public, max-age=86400"
        cache.lookup.assert_awaited_once_with("249504/cover.jpg")
        discogs_client.get_release.assert_not_called()

    def test_release_without_images(self, client, discogs_client, fetcher, cache):
        discogs_client.get_release.return_value = {"id": 249504, "images": []}

        resp = self._get(client, "/api/discogs/images/249504")

        assert resp.status_code == 404
        assert resp.json() == {"error": "No images found for this release"}
        fetcher.fetch.assert_not_called()

    def test_thumb_fetched_through_secure_fetcher_and_cached(
        self, client, discogs_client, fetcher, cache
    ):
        discogs_client.get_release.return_value = self.RELEASE

        resp = self._get(client, "/api/discogs/images/249504", size="thumb")

        assert resp.status_code == 302
        assert resp.headers["location"] == "https://storage.example.test/signed/249504?token=t"
        assert resp.headers["cache-control"] == "public, max-age=86400"
        fetcher.fetch.assert_awaited_once_with("https://i.discogs.com/front-150.jpg")
        cache.upload.assert_awaited_once_with(
            "249504/thumb.jpg", b"jpeg", "image/jpeg", upsert=True
        )

    def test_full_size_uses_primary_uri(self, client, discogs_client, fetcher, cache):
        discogs_client.get_release.return_value = self.RELEASE

        self._get(client, "/api/discogs/images/249504", size="huge")

        fetcher.fetch.assert_awaited_once_with("https://i.discogs.com/front.jpg")
        assert cache.upload.await_args.args[0] == "249504/cover.jpg"

    def test_fetch_failure_redirects_to_discogs(self, client, discogs_client, fetcher, cache):
        discogs_client.get_release.return_value = self.RELEASE
        fetcher.fetch.side_effect = UpstreamFetchFailed(503)

        resp = self._get(client, "/api/discogs/images/249504")

        assert resp.status_code == 302
        assert resp.headers["location"] == "https://i.discogs.com/front.jpg"
        assert resp.headers["cache-control"] == "no-cache"
        cache.upload.assert_not_called()

    def test_release_lookup_failure(self, client, discogs_client, fetcher, cache):
        discogs_client.get_release.side_effect = UpstreamError("/releases/9", 404, "Release not found.")

        resp = self._get(client, "/api/discogs/images/9")

        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to proxy Discogs image"}

    def test_budget_denial_is_not_masked(self, client, discogs_client, fetcher, cache):
        discogs_client.get_release.side_effect = RateLimitExceeded(retry_after=30)

        resp = self._get(client, "/api/discogs/images/249504")

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "30"


class TestCollection:
    def test_lists_collection_for_validated_account(self, app, client, discogs_client):
        app.dependency_overrides[require_discogs_credential] = lambda: CREDENTIAL
        discogs_client.get_collection.return_value = {"releases": [{"id": 1}]}

        resp = client.get("/api/discogs/collection", params={"page": "2", "per_page": "250"})

        assert resp.status_code == 200
        discogs_client.get_collection.assert_awaited_once_with(
            OAuthToken(key="tok", secret="sec"), "digger", page=2, per_page=100
        )


class TestAuthStatus:
    def _use_validator(self, app, **kwargs):
        validator = MagicMock()
        validator.validate = AsyncMock(**kwargs)
        app.dependency_overrides[get_credential_validator] = lambda: validator
        return validator

    def test_connected(self, app, client):
        validator = self._use_validator(app, return_value=CREDENTIAL)

        resp = client.get("/api/discogs/auth/status")

        assert resp.status_code == 200
        assert resp.json() == {"connected": True, "username": "digger", "discogsUserId": 42}
        validator.validate.assert_awaited_once_with("user-1")

    def test_not_connected(self, app, client):
        self._use_validator(app, side_effect=NotConnected())

        resp = client.get("/api/discogs/auth/status")

        assert resp.status_code == 403
        assert resp.json() == {
            "error": "Discogs account not connected",
            "code": "DISCOGS_NOT_CONNECTED",
        }

    def test_expired(self, app, client):
        self._use_validator(app, side_effect=CredentialExpired())

        resp = client.get("/api/discogs/auth/status")

        assert resp.status_code == 401
        assert resp.json()["code"] == "DISCOGS_TOKEN_EXPIRED"

    def test_internal_error(self, app, client):
        self._use_validator(app, side_effect=InternalError(RuntimeError("db down")))

        resp = client.get("/api/discogs/auth/status")

        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Failed to validate Discogs credentials",
            "details": "db down",
        }


class TestDisconnect:
    def test_clears_credentials(self, app, client):
        store = RecordingStore()
        app.dependency_overrides[get_profile_store] = lambda: store

        resp = client.post("/api/discogs/auth/disconnect")

        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert store.cleared == ["user-1"]

    def test_does_not_consume_upstream_budget(self, app, client):
        app.state.rate_limiter = RateLimiter(max_requests=1, window_seconds=60)
        app.dependency_overrides[get_profile_store] = lambda: RecordingStore()

        client.post("/api/discogs/auth/disconnect")

        assert app.state.rate_limiter.current_count == 0


class TestHealth:
    def test_health_reports_budget(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert "discogs_budget" in resp.json()["components"]

    def test_request_id_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"


class TestUpstreamBudgetAccounting:
    """The shared budget is charged per request sent to Discogs."""

    BASE = "https://api.discogs.test"

    @pytest.fixture
    def budget_app(self, test_settings):
        application = create_app()
        application.state.rate_limiter = RateLimiter(max_requests=55, window_seconds=60)

        def discogs_client(budget: UpstreamBudget = Depends(get_upstream_budget)):
            return DiscogsClient(config=test_settings, acquire_slot=budget.charge)

        application.dependency_overrides[require_user] = lambda: USER
        application.dependency_overrides[get_discogs_client] = discogs_client
        application.dependency_overrides[get_profile_store] = lambda: ConnectedStore()
        yield application
        application.dependency_overrides.clear()

    @respx.mock
    def test_collection_never_exceeds_budget(self, budget_app):
        identity = respx.get(f"{self.BASE}/oauth/identity").mock(
            return_value=Response(200, json={"id": 42, "username": "digger"})
        )
        collection = respx.get(url__startswith=f"{self.BASE}/users/digger/collection").mock(
            return_value=Response(200, json={"releases": []})
        )
        client = TestClient(budget_app, raise_server_exceptions=False)

        statuses = [client.get("/api/discogs/collection").status_code for _ in range(56)]

        # Identity check plus collection fetch: two slots per request.
        assert identity.call_count + collection.call_count == 55
        assert statuses[:27] == [200] * 27
        assert set(statuses[27:]) == {429}

    @respx.mock
    def test_search_reports_budget_and_denies_when_spent(self, budget_app):
        budget_app.state.rate_limiter = RateLimiter(max_requests=1, window_seconds=60)
        route = respx.get(url__startswith=f"{self.BASE}/database/search").mock(
            return_value=Response(200, json={"results": []})
        )
        client = TestClient(budget_app, raise_server_exceptions=False)

        first = client.get("/api/discogs/search", params={"q": "x"})
        second = client.get("/api/discogs/search", params={"q": "x"})

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "1"
        assert first.headers["X-RateLimit-Remaining"] == "0"
        assert second.status_code == 429
        assert second.json()["retryAfter"] > 0
        assert second.headers["Retry-After"] == str(second.json()["retryAfter"])
        assert route.call_count == 1

    def test_requests_rejected_before_discogs_are_free(self, budget_app):
        client = TestClient(budget_app, raise_server_exceptions=False)

        budget_app.dependency_overrides[get_profile_store] = lambda: RecordingStore()
        assert client.get("/api/discogs/auth/status").status_code == 403
        assert client.get("/api/discogs/collection").status_code == 403
        assert client.get("/api/discogs/search", params={"q": " "}).status_code == 400

        def reject_api_key():
            raise HTTPException(status_code=401, detail="Invalid API key")

        budget_app.dependency_overrides[require_user] = reject_api_key
        assert client.get("/api/discogs/collection").status_code == 401

        assert budget_app.state.rate_limiter.current_count == 0
