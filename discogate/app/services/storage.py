"""Object storage for uploaded covers and cached Discogs release images."""

import re
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from discogate.app.core.config import Settings, settings as default_settings
from discogate.app.core.logging import get_logger
from discogate.app.exceptions import ConfigurationError, StorageError

logger = get_logger(__name__)


def build_cover_file_name(album_id: str, content_type: str, now_ms: Optional[int] = None) -> str:
    """Return ``covers/<album_id>-<epoch ms>.<png|jpg>``.

    Characters outside ``[A-Za-z0-9_-]`` in the album id are replaced so the
    name cannot escape the ``covers/`` prefix.
    """
    safe_id = re.sub(r"[^A-Za-z0-9_-]", "_", album_id)
    ext = "png" if "png" in content_type.lower() else "jpg"
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"covers/{safe_id}-{stamp}.{ext}"


class ObjectStorage(ABC):
    """Object storage that hands back a URL the browser can load."""

    @abstractmethod
    async def upload(
        self, file_name: str, content: bytes, content_type: str, upsert: bool = False
    ) -> str:
        """Store ``content`` under ``file_name`` and return a URL for it.

        Raises:
            StorageError: If the storage service rejects the upload
        """

    @abstractmethod
    async def lookup(self, file_name: str) -> Optional[str]:
        """Return a URL for ``file_name`` if it is already stored, else None."""


class SupabaseStorage(ObjectStorage):
    """Supabase Storage REST API client.

    Calls are authorized with the service key. Buckets are public by default;
    with ``signed_url_ttl`` set, objects are served through signed URLs that
    expire after that many seconds.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
        bucket: Optional[str] = None,
        signed_url_ttl: Optional[int] = None,
    ):
        self._http_client = http_client
        self.config = config or default_settings
        self.bucket = bucket or self.config.storage_bucket
        self.signed_url_ttl = signed_url_ttl

    def _require_config(self) -> tuple[str, str]:
        if not self.config.storage_url or not self.config.storage_service_key:
            raise ConfigurationError("Object storage is not configured")
        return self.config.storage_url.rstrip("/"), self.config.storage_service_key

    async def _post(self, url: str, headers: Dict[str, str], **kwargs: Any) -> httpx.Response:
        client = self._http_client or httpx.AsyncClient(timeout=self.config.httpx_read_timeout)
        try:
            return await client.post(url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.error(f"Storage request to {self.bucket} failed: {exc}")
            raise StorageError() from exc
        finally:
            if self._http_client is None:
                await client.aclose()

    def public_url(self, file_name: str) -> str:
        base_url, _ = self._require_config()
        return f"{base_url}/storage/v1/object/public/{self.bucket}/{quote(file_name)}"

    async def url_for(self, file_name: str) -> str:
        """Public URL, or a fresh signed URL for private buckets."""
        if self.signed_url_ttl is None:
            return self.public_url(file_name)

        base_url, key = self._require_config()
        resp = await self._post(
            f"{base_url}/storage/v1/object/sign/{self.bucket}/{quote(file_name)}",
            headers={"Authorization": f"Bearer {key}", "apikey": key},
            json={"expiresIn": self.signed_url_ttl},
        )
        signed = resp.json().get("signedURL") if resp.is_success else None
        if not signed:
            logger.error(f"Signing {file_name} failed: {resp.status_code} {resp.text[:200]}")
            raise StorageError("Failed to sign storage URL")
        return f"{base_url}/storage/v1{signed}"

    async def upload(
        self, file_name: str, content: bytes, content_type: str, upsert: bool = False
    ) -> str:
        base_url, key = self._require_config()
        url = f"{base_url}/storage/v1/object/{self.bucket}/{quote(file_name)}"
        headers = {
            "Authorization": f"Bearer {key}",
            "apikey": key,
            "Content-Type": content_type,
            "x-upsert": "true" if upsert else "false",
        }

        resp = await self._post(url, headers, content=content)
        if not resp.is_success:
            logger.error(f"Storage upload error: {resp.status_code} {resp.text[:200]}")
            raise StorageError()

        return await self.url_for(file_name)

    async def lookup(self, file_name: str) -> Optional[str]:
        base_url, key = self._require_config()
        folder, _, name = file_name.rpartition("/")
        resp = await self._post(
            f"{base_url}/storage/v1/object/list/{self.bucket}",
            headers={"Authorization": f"Bearer {key}", "apikey": key},
            json={"prefix": folder, "search": name, "limit": 100, "offset": 0},
        )
        if not resp.is_success:
            logger.error(f"Storage list error: {resp.status_code} {resp.text[:200]}")
            raise StorageError("Failed to read from storage")

        if not any(entry.get("name") == name for entry in resp.json()):
            return None
        return await self.url_for(file_name)
