"""API endpoints package for the gateway."""

from discogate.app.api.discogs import auth_router as discogs_auth_router
from discogate.app.api.discogs import router as discogs_router
from discogate.app.api.upload_cover import router as upload_cover_router

__all__ = [
    "discogs_router",
    "discogs_auth_router",
    "upload_cover_router",
]
