import hashlib

from fastapi import HTTPException, Request

from discogate.app.db.async_session import SessionDep
from discogate.app.db.crud import lookup_profile_by_hash
from discogate.app.db.models import Profile

MAX_API_KEY_LENGTH = 512


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header.

    Args:
        request: The incoming request

    Returns:
        The token string if present, None otherwise
    """
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip()


def hash_api_key(raw_key: str) -> str:
    """SHA-256 hex digest used as the stored lookup key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


async def require_user(
    request: Request,
    session: SessionDep,
) -> Profile:
    """Validate the caller's API key and return their profile.

    Raises:
        HTTPException: 401 if the key is missing or unknown
        HTTPException: 400 if the key is too long (checked before hashing)
    """
    token = get_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing API key")

    if len(token) > MAX_API_KEY_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"API key too long (max {MAX_API_KEY_LENGTH} characters)",
        )

    profile = await lookup_profile_by_hash(session, hash_api_key(token))
    if profile is None:
        raise HTTPException(status_code=401, detail="Invalid API key")

    request.state.user_id = profile.id
    return profile
