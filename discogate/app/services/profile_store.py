"""Profile store interface and its SQL-backed implementation."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from discogate.app.db.async_session import get_async_session_maker
from discogate.app.db.crud import clear_discogs_credentials, get_profile_by_id


@dataclass(frozen=True)
class StoredCredential:
    """Credential fields as persisted; any of them may be absent."""
    access_token: Optional[str] = None
    access_token_secret: Optional[str] = None
    remote_username: Optional[str] = None
    remote_user_id: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.access_token and self.access_token_secret)


class ProfileStore(ABC):
    """Narrow interface to the external store holding user profiles."""

    @abstractmethod
    async def get_credential(self, user_id: str) -> StoredCredential:
        """Load the stored Discogs credential fields for ``user_id``.

        Raises:
            LookupError: If no profile exists for ``user_id``
        """

    @abstractmethod
    async def clear_credential(self, user_id: str) -> None:
        """Atomically null out all credential fields for ``user_id``."""


class SqlProfileStore(ProfileStore):
    """ProfileStore over the ``profiles`` table.

    Each call opens its own short-lived session so a credential clear is
    committed independently of whatever the request handler is doing.
    """

    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_maker = session_maker

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._session_maker or get_async_session_maker()

    async def get_credential(self, user_id: str) -> StoredCredential:
        async with self._sessions()() as session:
            profile = await get_profile_by_id(session, user_id)
        if profile is None:
            raise LookupError(f"Profile {user_id} not found")
        return StoredCredential(
            access_token=profile.discogs_oauth_token,
            access_token_secret=profile.discogs_oauth_secret,
            remote_username=profile.discogs_username,
            remote_user_id=profile.discogs_user_id,
        )

    async def clear_credential(self, user_id: str) -> None:
        async with self._sessions()() as session:
            await clear_discogs_credentials(session, user_id)
