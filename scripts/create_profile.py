#!/usr/bin/env python3
"""Create a gateway profile and print its API key.

Usage:
    python scripts/create_profile.py user@example.com
"""

import asyncio
import secrets
import sys
import uuid
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

sys.path.insert(0, ".")

from discogate.app.db.async_session import close_async_engine, get_async_session, init_async_db
from discogate.app.db.models import Profile
from discogate.app.middleware.auth import hash_api_key


async def create_profile(email: str) -> str:
    """Insert a profile for ``email`` and return the raw API key."""
    await init_async_db()

    api_key = secrets.token_urlsafe(32)
    profile = Profile(
        id=str(uuid.uuid4()),
        email=email.strip().lower(),
        api_key_hash=hash_api_key(api_key),
        created_at=datetime.now(timezone.utc),
    )

    async with get_async_session() as session:
        session.add(profile)
        await session.commit()

    await close_async_engine()
    return api_key


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)

    try:
        key = asyncio.run(create_profile(sys.argv[1]))
    except IntegrityError:
        print(f"A profile for {sys.argv[1]} already exists")
        sys.exit(1)

    print("Profile created. API key (shown once):")
    print(key)
