import os

# Keep tests off the on-disk default database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import logging

import pytest

from discogate.app.core.config import Settings


@pytest.fixture(autouse=True)
def _propagate_discogate_logs():
    # setup_logging() detaches "discogate" from the root logger, which hides
    # records from caplog once any test has imported the app.
    logger = logging.getLogger("discogate")
    previous = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = previous


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        discogs_base_url="https://api.discogs.test",
        discogs_personal_token="personal-token",
        discogs_user_agent="discogate-tests/1.0",
        discogs_consumer_key="consumer-key",
        discogs_consumer_secret="consumer-secret",
        storage_url="https://storage.example.test",
        storage_service_key="service-key",
    )
