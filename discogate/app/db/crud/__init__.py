"""CRUD helpers."""

from discogate.app.db.crud.profile import (
    clear_discogs_credentials,
    get_profile_by_id,
    lookup_profile_by_hash,
)

__all__ = [
    "clear_discogs_credentials",
    "get_profile_by_id",
    "lookup_profile_by_hash",
]
