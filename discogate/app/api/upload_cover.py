"""Cover image upload endpoint.

Copies an image from an allowlisted public host into object storage and
returns its public URL. The fetch goes through ``SecureFetcher`` so a caller
cannot use this endpoint to reach internal addresses.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from discogate.app.api.dependencies import get_object_storage, get_secure_fetcher
from discogate.app.core.logging import get_log_context, get_logger
from discogate.app.db.models import Profile
from discogate.app.middleware.auth import require_user
from discogate.app.middleware.request_id import get_request_id
from discogate.app.services.secure_fetcher import SecureFetcher
from discogate.app.services.storage import ObjectStorage, build_cover_file_name

router = APIRouter(prefix="/api", tags=["covers"])
logger = get_logger(__name__)

MAX_IMAGE_URL_LENGTH = 2048
MAX_ALBUM_ID_LENGTH = 500


class UploadCoverRequest(BaseModel):
    imageUrl: Optional[str] = None
    albumId: Optional[str] = None


class UploadCoverResponse(BaseModel):
    publicUrl: str


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


@router.post("/upload-cover", response_model=UploadCoverResponse)
async def upload_cover(
    data: UploadCoverRequest,
    request: Request,
    user: Profile = Depends(require_user),
    fetcher: SecureFetcher = Depends(get_secure_fetcher),
    storage: ObjectStorage = Depends(get_object_storage),
):
    """Fetch ``imageUrl`` and store it as the cover for ``albumId``.

    Rejected URLs answer 400, a failing image host 502 and a storage
    failure 500; those are raised as GatewayException subclasses and
    rendered by the app's exception handler.
    """
    if not data.imageUrl or not data.albumId:
        return _bad_request("Missing imageUrl or albumId")
    if len(data.imageUrl) > MAX_IMAGE_URL_LENGTH:
        return _bad_request("imageUrl exceeds maximum length")
    if len(data.albumId) > MAX_ALBUM_ID_LENGTH:
        return _bad_request("albumId exceeds maximum length")

    image = await fetcher.fetch(data.imageUrl)

    file_name = build_cover_file_name(data.albumId, image.content_type)
    public_url = await storage.upload(file_name, image.content, image.content_type)

    logger.info(
        f"Stored cover {file_name} ({len(image.content)} bytes)",
        extra=get_log_context(
            request_id=get_request_id(request),
            user_id=user.id,
            endpoint="/api/upload-cover",
        ),
    )
    return UploadCoverResponse(publicUrl=public_url)
