"""Discogs API client.

Application-level calls authenticate with the personal access token;
calls made on a user's behalf are signed with OAuth 1.0a (HMAC-SHA1) using
the consumer key pair and the user's access token pair.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Mapping, Optional
from urllib.parse import quote

import httpx
from oauthlib.oauth1 import SIGNATURE_HMAC
from oauthlib.oauth1 import Client as OAuth1Client

from discogate.app.core.config import Settings, settings as default_settings
from discogate.app.core.logging import get_log_context, get_logger
from discogate.app.exceptions import ConfigurationError, UpstreamError, UpstreamThrottled
from discogate.app.providers.retry import ThrottlePolicy

logger = get_logger(__name__)

REMAINING_HEADER = "X-Discogs-Ratelimit-Remaining"


@dataclass(frozen=True)
class OAuthToken:
    """A user's OAuth 1.0a access token pair."""
    key: str
    secret: str


class DiscogsClient:
    """Authenticated client for the Discogs REST API.

    If ``http_client`` is provided it is used for all requests (connection
    reuse). Otherwise a client is created and closed per request.

    ``acquire_slot`` is called once before every request that goes out,
    after the headers are built, and may raise ``RateLimitExceeded`` to stop
    it. The retry after an upstream 429 is not charged again.

    Example:
        >>> client = DiscogsClient(http_client=get_http_client())
        >>> await client.search({"q": "Kind of Blue", "per_page": "20", "page": "1"})
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
        throttle_policy: Optional[ThrottlePolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        acquire_slot: Optional[Callable[[], Any]] = None,
    ):
        self._http_client = http_client
        self._acquire_slot = acquire_slot
        self.config = config or default_settings
        self.base_url = self.config.discogs_base_url.rstrip("/")
        self.throttle_policy = throttle_policy or ThrottlePolicy(
            default_delay=self.config.discogs_default_retry_after
        )
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Client and header plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _client_context(self) -> AsyncGenerator[httpx.AsyncClient, None]:
        """Yield the shared client, or a short-lived one closed on exit."""
        if self._http_client is not None:
            yield self._http_client
            return
        client = httpx.AsyncClient(timeout=self.config.httpx_read_timeout)
        try:
            yield client
        finally:
            await client.aclose()

    def _get_endpoint_url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _build_url(self, endpoint: str, params: Optional[Mapping[str, Any]]) -> str:
        """Build the request URL, omitting empty or unspecified parameters."""
        query = {
            key: str(value)
            for key, value in (params or {}).items()
            if value is not None and str(value) != ""
        }
        return str(httpx.URL(self._get_endpoint_url(endpoint), params=query))

    def _require_user_agent(self) -> str:
        if not self.config.discogs_user_agent:
            raise ConfigurationError("DISCOGS_USER_AGENT is not configured")
        return self.config.discogs_user_agent

    def _build_headers(self, url: str, token: Optional[OAuthToken]) -> Dict[str, str]:
        """Build the headers for one request.

        Raises:
            ConfigurationError: if the identity or credentials needed for this
                kind of call are missing. Nothing is sent in that case.
        """
        headers = {
            "User-Agent": self._require_user_agent(),
            "Accept": "application/json",
        }

        if token is None:
            if not self.config.discogs_personal_token:
                raise ConfigurationError("DISCOGS_PERSONAL_TOKEN is not configured")
            headers["Authorization"] = f"Discogs token={self.config.discogs_personal_token}"
            return headers

        if not self.config.discogs_consumer_key or not self.config.discogs_consumer_secret:
            raise ConfigurationError(
                "DISCOGS_CONSUMER_KEY and DISCOGS_CONSUMER_SECRET must be configured"
            )
        signer = OAuth1Client(
            self.config.discogs_consumer_key,
            client_secret=self.config.discogs_consumer_secret,
            resource_owner_key=token.key,
            resource_owner_secret=token.secret,
            signature_method=SIGNATURE_HMAC,
        )
        _, signed_headers, _ = signer.sign(url, http_method="GET")
        headers["Authorization"] = signed_headers["Authorization"]
        return headers

    # ------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------

    def _check_remaining(self, response: httpx.Response, endpoint: str) -> None:
        """Warn when Discogs reports the quota is nearly spent."""
        remaining = response.headers.get(REMAINING_HEADER)
        if remaining is None:
            return
        try:
            remaining_num = int(remaining)
        except ValueError:
            return
        if remaining_num < self.config.discogs_ratelimit_warn_threshold:
            logger.warning(
                f"Discogs rate limit running low: {remaining_num} requests remaining",
                extra=get_log_context(endpoint=endpoint),
            )

    async def _send(
        self,
        client: httpx.AsyncClient,
        url: str,
        endpoint: str,
        token: Optional[OAuthToken],
        charge: bool = False,
    ) -> httpx.Response:
        # Headers are rebuilt per attempt so OAuth nonces are never reused.
        headers = self._build_headers(url, token)
        if charge and self._acquire_slot is not None:
            self._acquire_slot()
        response = await client.get(url, headers=headers)
        self._check_remaining(response, endpoint)
        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.reason_phrase
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return json.dumps(body) if body else response.reason_phrase

    async def request(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        token: Optional[OAuthToken] = None,
    ) -> Any:
        """Issue a GET request against the Discogs API.

        A 429 is retried exactly once after the provider's Retry-After delay
        (or the configured default).

        Args:
            endpoint: API path (e.g. "/database/search") or absolute URL
            params: Query parameters; None and empty values are omitted
            token: User access token pair for OAuth-signed calls

        Returns:
            The decoded JSON body

        Raises:
            ConfigurationError: If required settings are missing
            RateLimitExceeded: If ``acquire_slot`` refuses the request
            UpstreamThrottled: If Discogs still answers 429 after the retry
            UpstreamError: For any other non-2xx response
            httpx.HTTPError: For transport failures
        """
        url = self._build_url(endpoint, params)

        async with self._client_context() as client:
            response = await self._send(client, url, endpoint, token, charge=True)

            for _ in range(self.throttle_policy.max_retries):
                if not self.throttle_policy.is_throttled(response):
                    break
                delay = self.throttle_policy.delay_for(response)
                logger.warning(
                    f"Rate limited by Discogs (429). Retrying after {delay}s...",
                    extra=get_log_context(endpoint=endpoint),
                )
                await self._sleep(delay)
                response = await self._send(client, url, endpoint, token)

        if self.throttle_policy.is_throttled(response):
            raise UpstreamThrottled(endpoint, self._error_message(response))

        if not response.is_success:
            raise UpstreamError(endpoint, response.status_code, self._error_message(response))

        try:
            return response.json()
        except ValueError:
            raise UpstreamError(endpoint, response.status_code, "Malformed JSON body")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Search the Discogs database."""
        return await self.request("/database/search", params)

    async def get_release(self, release_id: int) -> Dict[str, Any]:
        return await self.request(f"/releases/{release_id}")

    async def get_master(self, master_id: int) -> Dict[str, Any]:
        return await self.request(f"/masters/{master_id}")

    async def get_identity(self, token: OAuthToken) -> Dict[str, Any]:
        """Return ``{"id", "username", ...}`` for the owner of ``token``."""
        return await self.request("/oauth/identity", token=token)

    async def get_collection(
        self,
        token: OAuthToken,
        username: str,
        page: int = 1,
        per_page: int = 20,
    ) -> Dict[str, Any]:
        """List releases in the user's "All" collection folder."""
        return await self.request(
            f"/users/{quote(username, safe='')}/collection/folders/0/releases",
            {"page": page, "per_page": per_page},
            token=token,
        )
