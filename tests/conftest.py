"""
Shared pytest fixtures for all test modules.

IMPORTANT: environment overrides must be set before the app is imported so
Settings() picks them up and the lifespan never reaches real services.
"""

import io
import os

os.environ["TESTING"] = "true"
os.environ.setdefault("UPSTASH_REDIS_HOST", "")
os.environ.setdefault("PINNING_JWT", "stub-jwt-for-tests")
os.environ.setdefault("REGISTRATION_GRANULARITY", "per_batch")

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from tests.fakes import FakeDetector, FakeLedger, FakePinning
from tests.mocks.firebase_mock import MockFirestore
from tests.mocks.redis_mock import MockRedis

# App import happens AFTER the environment is prepared above.
from mediatag.main import app  # noqa: E402


# ---------------------------------------------------------------------------
# Core infrastructure fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_firebase(monkeypatch):
    """Replace firebase.db with an in-memory MockFirestore."""
    from mediatag.integrations import firebase as fb

    mock_db = MockFirestore()
    monkeypatch.setattr(fb, "db", mock_db)
    return mock_db


@pytest.fixture
def mock_redis(monkeypatch):
    """Replace redis_client.client with an in-memory MockRedis."""
    from mediatag.integrations import redis_client as rc

    mock_rc = MockRedis()
    monkeypatch.setattr(rc, "client", mock_rc)
    return mock_rc


@pytest.fixture
def fakes(monkeypatch, mock_firebase, mock_redis):
    """Ledger, pinning service and detector replaced by in-memory fakes."""
    return SimpleNamespace(
        ledger=FakeLedger().install(monkeypatch),
        pinning=FakePinning().install(monkeypatch),
        detector=FakeDetector().install(monkeypatch),
        db=mock_firebase,
        redis=mock_redis,
    )


@pytest.fixture
def client(fakes):
    """
    FastAPI TestClient with every integration mocked.

    initialize() calls are patched to no-ops so they can't overwrite our mocks
    or attempt real network connections during the lifespan startup.
    """
    with (
        patch("mediatag.integrations.firebase.initialize"),
        patch("mediatag.integrations.redis_client.initialize"),
        patch("mediatag.integrations.http_client.initialize", new_callable=AsyncMock),
        patch("mediatag.integrations.http_client.close", new_callable=AsyncMock),
    ):
        with TestClient(app, raise_server_exceptions=False) as c:
            yield c


# ---------------------------------------------------------------------------
# Shared test-data helpers
# ---------------------------------------------------------------------------


def make_tiny_jpeg(color=(128, 128, 128)) -> bytes:
    """Create a minimal 10×10 JPEG in memory, fast and valid."""
    buf = io.BytesIO()
    Image.new("RGB", (10, 10), color=color).save(buf, format="JPEG")
    return buf.getvalue()


def make_item(name: str = "photo.jpg", data: bytes | None = None, kind: str = "image", description: str = ""):
    from mediatag.schemas.media import MediaItem

    return MediaItem(
        raw_bytes=data if data is not None else name.encode() * 8,
        display_name=name,
        media_kind=kind,
        description=description,
        content_type="image/jpeg" if kind == "image" else None,
    )


@pytest.fixture
def tiny_jpeg() -> bytes:
    return make_tiny_jpeg()
