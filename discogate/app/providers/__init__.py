"""Upstream API clients."""

from discogate.app.providers.discogs import DiscogsClient, OAuthToken
from discogate.app.providers.retry import ThrottlePolicy, parse_retry_after

__all__ = ["DiscogsClient", "OAuthToken", "ThrottlePolicy", "parse_retry_after"]
