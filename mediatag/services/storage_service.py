"""
StorageUploader: pins media objects and the derived metadata document.

Media objects are always pinned first: the metadata document embeds the
media CID list, so it can only be built once every media CID is known.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import aiohttp

from mediatag.config import settings
from mediatag.errors import NetworkError, StorageUploadError
from mediatag.integrations import http_client as http_module
from mediatag.integrations import pinning as pinning_module

logger = logging.getLogger(__name__)


def media_entry(
    name: str,
    description: str,
    media_kind: str,
    fingerprint: str,
    detection: dict,
    verdict: str,
    flagged: bool,
    media_cid: str,
    source_url: Optional[str] = None,
) -> dict:
    """One file's section of a metadata document."""
    return {
        "name": name,
        "description": description,
        "mediaType": media_kind,
        "fingerprint": fingerprint,
        "mediaCid": media_cid,
        "sourceUrl": source_url,
        "verdict": verdict,
        "flaggedInconclusive": flagged,
        "probabilities": {
            "synthetic": detection.get("syntheticProbability"),
            "natural": detection.get("naturalProbability"),
        },
        "reasoning": detection.get("reasoning", {}),
    }


def build_metadata_document(
    files: List[dict],
    owner_address: str,
    collection_name: Optional[str] = None,
    collection_description: str = "",
) -> dict:
    """
    Metadata for a submission. A single file keeps the flat per-file layout;
    several files are wrapped as a collection with `isBulkUpload`.
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    media_cids = [f["mediaCid"] for f in files]

    if len(files) == 1 and collection_name is None:
        return {
            **files[0],
            "fileName": files[0]["name"],
            "signerAddress": owner_address,
            "mediaCids": media_cids,
            "timestamp": timestamp,
            "isBulkUpload": False,
        }

    return {
        "collectionName": collection_name or settings.default_collection_name,
        "collectionDescription": collection_description,
        "totalFiles": len(files),
        "files": files,
        "mediaCids": media_cids,
        "uploader": owner_address,
        "timestamp": timestamp,
        "isBulkUpload": True,
    }


class StorageUploader:
    async def pin_media(self, filename: str, data: bytes, content_type: Optional[str] = None) -> str:
        if not data:
            raise StorageUploadError(f"Refusing to pin empty object for {filename}")
        return await pinning_module.pin_file(filename, data, content_type or "application/octet-stream")

    async def pin_metadata(self, document: dict, filename: str = "metadata.json") -> str:
        data = json.dumps(document, default=str).encode("utf-8")
        return await pinning_module.pin_file(filename, data, "application/json")

    async def fetch_source(self, url: str) -> bytes:
        """Re-fetch a hosted media copy (the detector's storage ref) for pinning."""
        try:
            async with http_module.request_session() as session:
                async with session.get(
                    url, timeout=http_module.timeout(settings.source_fetch_timeout_sec)
                ) as response:
                    if response.status != 200:
                        raise StorageUploadError(
                            f"Failed to fetch media from {url}: Status {response.status}"
                        )
                    content = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Error fetching media source: {e}", stage="Storage Upload") from e

        if not content:
            raise StorageUploadError(f"Media source {url} returned no content")
        return content

    async def unpin(self, cid: str) -> None:
        await pinning_module.unpin(cid)

    async def unpin_all(self, cids: Iterable[str]) -> None:
        """Unpin every CID; a comma-joined bulk media_cid is split first."""
        targets = [c.strip() for cid in cids for c in (cid or "").split(",") if c.strip()]
        for cid in targets:
            await self.unpin(cid)
        logger.info(f"[PIN] Released {len(targets)} pinned object(s)")


storage_uploader = StorageUploader()
