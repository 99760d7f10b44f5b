"""Unit tests for mediatag/services/storage_service.py."""

import json

import pytest

from mediatag.errors import StorageUploadError
from mediatag.services.storage_service import (
    build_metadata_document,
    media_entry,
    storage_uploader,
)
from tests.fakes import OWNER


def _entry(name: str, cid: str) -> dict:
    return media_entry(
        name=name,
        description="",
        media_kind="image",
        fingerprint="0x" + "a" * 64,
        detection={"syntheticProbability": 5, "naturalProbability": 95, "reasoning": {"overall": "ok"}},
        verdict="AUTHENTIC",
        flagged=False,
        media_cid=cid,
    )


def test_single_document_is_flat():
    doc = build_metadata_document([_entry("a.jpg", "bafyA")], OWNER)
    assert doc["isBulkUpload"] is False
    assert doc["fileName"] == "a.jpg"
    assert doc["mediaCids"] == ["bafyA"]
    assert doc["signerAddress"] == OWNER
    assert doc["probabilities"] == {"synthetic": 5, "natural": 95}


def test_collection_document_lists_every_file():
    files = [_entry("a.jpg", "bafyA"), _entry("b.jpg", "bafyB")]
    doc = build_metadata_document(files, OWNER, collection_name="Trip", collection_description="Summer")
    assert doc["isBulkUpload"] is True
    assert doc["collectionName"] == "Trip"
    assert doc["collectionDescription"] == "Summer"
    assert doc["totalFiles"] == 2
    assert doc["mediaCids"] == ["bafyA", "bafyB"]
    assert doc["uploader"] == OWNER


def test_collection_without_name_uses_default():
    from mediatag.config import settings

    files = [_entry("a.jpg", "bafyA"), _entry("b.jpg", "bafyB")]
    doc = build_metadata_document(files, OWNER)
    assert doc["collectionName"] == settings.default_collection_name


async def test_pin_metadata_serializes_json(fakes):
    doc = build_metadata_document([_entry("a.jpg", "bafyA")], OWNER)
    cid = await storage_uploader.pin_metadata(doc)
    assert json.loads(fakes.pinning.pins[cid])["mediaCids"] == ["bafyA"]
    assert fakes.pinning.names[-1] == "metadata.json"


async def test_pin_media_refuses_empty_payload(fakes):
    with pytest.raises(StorageUploadError):
        await storage_uploader.pin_media("empty.jpg", b"")
    assert fakes.pinning.pins == {}


async def test_unpin_all_splits_comma_joined_cids(fakes):
    a = await storage_uploader.pin_media("a.jpg", b"aaa")
    b = await storage_uploader.pin_media("b.jpg", b"bbb")
    m = await storage_uploader.pin_metadata({"x": 1})

    await storage_uploader.unpin_all([f"{a},{b}", m])
    assert sorted(fakes.pinning.unpinned) == sorted([a, b, m])
    assert fakes.pinning.pins == {}


async def test_fetch_source_returns_hosted_copy(fakes):
    fakes.detector.hosted["https://media.test/image/x.jpg"] = b"hosted-bytes"
    assert await storage_uploader.fetch_source("https://media.test/image/x.jpg") == b"hosted-bytes"
