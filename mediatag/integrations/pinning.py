"""
Content-addressed storage (Pinata-compatible pinning API).

    POST   /pinning/pinFileToIPFS   multipart `file`  → {"IpfsHash": cid}
    DELETE /pinning/unpin/{cid}
"""

import asyncio
import logging

import aiohttp

from mediatag.config import settings
from mediatag.errors import NetworkError, StorageUploadError
from mediatag.integrations import http_client as http_module

logger = logging.getLogger(__name__)


def _headers() -> dict:
    return {"Authorization": f"Bearer {settings.pinning_jwt}"}


def gateway_url(cid: str) -> str:
    return f"{settings.pinning_gateway_url.rstrip('/')}/{cid}"


async def pin_file(filename: str, data: bytes, content_type: str = "application/octet-stream") -> str:
    """Pin one object and return its CID."""
    form = aiohttp.FormData()
    form.add_field("file", data, filename=filename, content_type=content_type)

    url = f"{settings.pinning_api_url.rstrip('/')}/pinning/pinFileToIPFS"
    try:
        async with http_module.request_session() as session:
            async with session.post(
                url,
                data=form,
                headers=_headers(),
                timeout=http_module.timeout(settings.pinning_timeout_sec),
            ) as response:
                if response.status != 200:
                    error_body = await response.text()
                    raise StorageUploadError(
                        f"Failed to pin {filename}: {response.status} - {error_body}"
                    )
                try:
                    result = await response.json(content_type=None)
                except ValueError as e:
                    raise StorageUploadError(f"Invalid response from pinning service for {filename}: {e}") from e
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise NetworkError(f"Could not reach pinning service: {e}", stage="Storage Upload") from e

    cid = result.get("IpfsHash") if isinstance(result, dict) else None
    if not cid:
        raise StorageUploadError("Invalid response from pinning service: CID not found.")

    logger.info(f"[PIN] {filename} ({len(data)} bytes) → {cid}")
    return cid


async def unpin(cid: str) -> None:
    url = f"{settings.pinning_api_url.rstrip('/')}/pinning/unpin/{cid}"
    try:
        async with http_module.request_session() as session:
            async with session.delete(
                url, headers=_headers(), timeout=http_module.timeout(settings.pinning_timeout_sec)
            ) as response:
                if response.status != 200:
                    error_body = await response.text()
                    raise StorageUploadError(f"Failed to unpin {cid}: {response.status} - {error_body}")
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise NetworkError(f"Could not reach pinning service: {e}", stage="Storage Cleanup") from e

    logger.info(f"[PIN] Unpinned {cid}")
