"""Profile CRUD operations."""
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from discogate.app.db.models import Profile


async def get_profile_by_id(
    session: AsyncSession,
    profile_id: str
) -> Optional[Profile]:
    result = await session.execute(
        select(Profile).where(Profile.id == profile_id)
    )
    return result.scalar_one_or_none()


async def lookup_profile_by_hash(
    session: AsyncSession,
    api_key_hash: str
) -> Optional[Profile]:
    """Find a profile by the SHA-256 hash of its API key.

    Args:
        session: Database session
        api_key_hash: The hashed API key to look up

    Returns:
        Profile if found, None otherwise
    """
    result = await session.execute(
        select(Profile).where(Profile.api_key_hash == api_key_hash)
    )
    return result.scalar_one_or_none()


async def clear_discogs_credentials(
    session: AsyncSession,
    profile_id: str,
    auto_commit: bool = True,
) -> bool:
    """Null out every Discogs credential column in a single UPDATE.

    Either all fields are cleared or, if the statement fails, none are.

    Returns:
        True if a profile row was updated
    """
    result = await session.execute(
        update(Profile)
        .where(Profile.id == profile_id)
        .values(
            discogs_oauth_token=None,
            discogs_oauth_secret=None,
            discogs_username=None,
            discogs_user_id=None,
            discogs_connected_at=None,
        )
    )
    if auto_commit:
        await session.commit()
    return result.rowcount > 0
