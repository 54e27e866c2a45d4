import json
import logging
import re
from typing import Annotated, Any, Iterable

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger("discogate.config")

DEFAULT_IMAGE_HOSTS = [
    "img.discogs.com",
    "i.discogs.com",
    "coverartarchive.org",
    "images.unsplash.com",
    "is1-ssl.mzstatic.com",
    "is2-ssl.mzstatic.com",
    "is3-ssl.mzstatic.com",
    "is4-ssl.mzstatic.com",
    "is5-ssl.mzstatic.com",
]


def _dedupe(values: Iterable[Any]) -> list[str]:
    cleaned = (str(v).strip() for v in values)
    return list(dict.fromkeys(v for v in cleaned if v))


def _parse_list(raw: Any) -> list[str]:
    """Read a list setting from a list, a JSON array, or comma/space separated text.

    Malformed JSON falls back to splitting, so a hand-edited ``.env`` still
    boots.
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return _dedupe(raw)

    text = str(raw).strip()
    if text[:1] in ("[", '"'):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            decoded = text.strip("[]\"'")
        if isinstance(decoded, list):
            return _dedupe(decoded)
        text = str(decoded)

    return _dedupe(re.split(r"[,\s]+", text))


class Settings(BaseSettings):
    """Runtime settings, read from the environment and an optional ``.env`` file."""

    # Adds exception details to 500 responses
    debug: bool = False

    # Database (profile store)
    database_url: str = "sqlite+aiosqlite:///./discogate.db"
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 300

    # Discogs upstream
    discogs_base_url: str = "https://api.discogs.com"
    discogs_personal_token: str = ""
    discogs_user_agent: str = ""
    discogs_consumer_key: str = ""
    discogs_consumer_secret: str = ""

    # Upstream admission budget. Discogs allows 60 authenticated
    # requests/min per token; 55 leaves headroom.
    discogs_rate_limit_max_requests: int = 55
    discogs_rate_limit_window_seconds: int = 60
    discogs_default_retry_after: int = 60
    discogs_ratelimit_warn_threshold: int = 5

    # Remote image fetching
    image_allowed_hosts: Annotated[list[str], NoDecode] = DEFAULT_IMAGE_HOSTS
    image_fetch_user_agent: str = "discogate/1.0"
    image_max_bytes: int = 10 * 1024 * 1024
    image_allow_public_ipv6: bool = False

    # Object storage (Supabase-compatible REST API)
    storage_url: str = ""
    storage_service_key: str = ""
    storage_bucket: str = "album-photos"
    # Private bucket for cached Discogs release images
    storage_images_bucket: str = "discogs-images"
    storage_signed_url_ttl: int = 3600

    # HTTP client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_read_timeout: float = 30.0
    httpx_write_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", "image_allowed_hosts", mode="before")
    @classmethod
    def decode_list(cls, v: Any) -> list[str]:
        return _parse_list(v)

    @field_validator("image_allowed_hosts")
    @classmethod
    def normalize_hosts(cls, v: list[str]) -> list[str]:
        return [host.lower().rstrip(".") for host in v]

    @field_validator(
        "discogs_rate_limit_max_requests",
        "discogs_rate_limit_window_seconds",
        "discogs_default_retry_after",
        "image_max_bytes",
        "storage_signed_url_ttl",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate budget and size values are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("discogs_ratelimit_warn_threshold")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("discogs_ratelimit_warn_threshold must not be negative")
        return v

    @field_validator("httpx_connect_timeout", "httpx_read_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def missing_discogs_settings(config: "Settings") -> list[str]:
    """Return the env var names required for Discogs calls that are unset."""
    missing: list[str] = []
    if not config.discogs_personal_token:
        missing.append("DISCOGS_PERSONAL_TOKEN")
    if not config.discogs_user_agent:
        missing.append("DISCOGS_USER_AGENT")
    return missing


def validate_discogs_config(config: "Settings | None" = None) -> bool:
    """Log a warning at boot when Discogs features will be unavailable."""
    missing = missing_discogs_settings(config or settings)
    if missing:
        logger.warning(
            f"Missing env vars: {', '.join(missing)} - Discogs features will be unavailable"
        )
        return False
    return True


settings = Settings()
