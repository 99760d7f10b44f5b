"""
Unit tests for mediatag/integrations/detector.py and mediatag/integrations/pinning.py
response handling. The aiohttp session is replaced by a stand-in yielded from
http_client.request_session.
"""

import json
from contextlib import asynccontextmanager
from unittest.mock import patch

import pytest

from mediatag.errors import DetectionError, StorageUploadError
from mediatag.integrations import detector as detector_module
from mediatag.integrations import pinning as pinning_module
from tests.conftest import make_item


class _Response:
    def __init__(self, status: int, raw: bytes):
        self.status = status
        self._raw = raw

    async def json(self, content_type=None):
        return json.loads(self._raw.decode())

    async def text(self):
        return self._raw.decode()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _Session:
    def __init__(self, status: int, raw: bytes):
        self.status = status
        self.raw = raw
        self.urls = []

    def post(self, url, **kwargs):
        self.urls.append(url)
        return _Response(self.status, self.raw)


def _patch_session(session: _Session):
    @asynccontextmanager
    async def _request_session():
        yield session

    return patch("mediatag.integrations.http_client.request_session", _request_session)


HTML_PAGE = b"<html><body>Gateway timeout</body></html>"


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


async def test_detect_parses_result():
    body = {
        "mediaKind": "image",
        "syntheticProbability": 8,
        "naturalProbability": 92,
        "reasoning": {"overall": "camera noise"},
        "storageRef": "https://media.test/image/a.jpg",
        "storageRefId": "a",
    }
    session = _Session(200, json.dumps(body).encode())
    with _patch_session(session):
        result = await detector_module.detect(make_item("a.jpg"))

    assert result.natural_probability == 92
    assert result.storage_ref == "https://media.test/image/a.jpg"
    assert session.urls[0].endswith("/detect")


async def test_detect_non_json_body_is_detection_error():
    with _patch_session(_Session(200, HTML_PAGE)):
        with pytest.raises(DetectionError):
            await detector_module.detect(make_item("a.jpg"))


async def test_detect_error_status_is_detection_error():
    with _patch_session(_Session(500, b"model crashed")):
        with pytest.raises(DetectionError) as exc:
            await detector_module.detect(make_item("a.jpg"))
    assert "model crashed" in exc.value.message


# ---------------------------------------------------------------------------
# Pinning
# ---------------------------------------------------------------------------


async def test_pin_file_returns_cid():
    with _patch_session(_Session(200, b'{"IpfsHash": "bafyPinned"}')):
        assert await pinning_module.pin_file("a.jpg", b"data") == "bafyPinned"


async def test_pin_file_non_json_body_is_storage_error():
    with _patch_session(_Session(200, HTML_PAGE)):
        with pytest.raises(StorageUploadError):
            await pinning_module.pin_file("a.jpg", b"data")


async def test_pin_file_without_cid_is_storage_error():
    with _patch_session(_Session(200, b'{"status": "ok"}')):
        with pytest.raises(StorageUploadError):
            await pinning_module.pin_file("a.jpg", b"data")
