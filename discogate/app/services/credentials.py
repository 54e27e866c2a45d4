"""Validation of per-user Discogs OAuth credentials.

A stored token pair is confirmed against ``/oauth/identity`` before use. Only
a confirmed 401 from Discogs is treated as revocation and clears the stored
fields; every other failure leaves them in place, since the tokens may still
be valid.
"""

from dataclasses import dataclass

from discogate.app.core.logging import get_log_context, get_logger
from discogate.app.exceptions import (
    CredentialExpired,
    InternalError,
    NotConnected,
    RateLimitExceeded,
    UpstreamError,
)
from discogate.app.providers.discogs import DiscogsClient, OAuthToken
from discogate.app.services.profile_store import ProfileStore

logger = get_logger(__name__)

IDENTITY_ENDPOINT = "/oauth/identity"


@dataclass(frozen=True)
class DelegatedCredential:
    """A validated Discogs token pair and the account it belongs to."""
    access_token: str
    access_token_secret: str
    remote_username: str
    remote_user_id: int

    @property
    def token(self) -> OAuthToken:
        return OAuthToken(key=self.access_token, secret=self.access_token_secret)


class CredentialValidator:
    """Confirm a user's stored Discogs tokens are still accepted upstream."""

    def __init__(self, store: ProfileStore, client: DiscogsClient):
        self.store = store
        self.client = client

    async def validate(self, user_id: str) -> DelegatedCredential:
        """Validate the Discogs credential linked to ``user_id``.

        Raises:
            NotConnected: No token pair is stored; no network call is made
            CredentialExpired: Discogs answered 401; stored fields were cleared
            RateLimitExceeded: The shared Discogs budget is spent; nothing was sent
            InternalError: Anything else; stored fields are untouched
        """
        try:
            stored = await self.store.get_credential(user_id)
        except Exception as exc:
            raise InternalError(exc) from exc

        if not stored.is_complete:
            logger.info(
                "Discogs account not connected",
                extra=get_log_context(user_id=user_id),
            )
            raise NotConnected()

        token = OAuthToken(key=stored.access_token, secret=stored.access_token_secret)

        try:
            identity = await self.client.get_identity(token)
        except UpstreamError as exc:
            if exc.status != 401:
                raise InternalError(exc) from exc
            logger.warning(
                "Discogs tokens expired, clearing credentials",
                extra=get_log_context(user_id=user_id, endpoint=IDENTITY_ENDPOINT),
            )
            try:
                await self.store.clear_credential(user_id)
            except Exception as clear_exc:
                raise InternalError(clear_exc) from clear_exc
            raise CredentialExpired() from exc
        except RateLimitExceeded:
            raise
        except Exception as exc:
            raise InternalError(exc) from exc

        try:
            username = str(identity["username"])
            remote_user_id = int(identity["id"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InternalError(exc, "Malformed Discogs identity response") from exc

        return DelegatedCredential(
            access_token=stored.access_token,
            access_token_secret=stored.access_token_secret,
            remote_username=username,
            remote_user_id=remote_user_id,
        )
