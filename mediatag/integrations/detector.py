"""
Authenticity detector service client.

POST {detector_url}/detect with a single multipart `file` field. The detector
also hosts a copy of the media and returns its URL as `storageRef`; that copy
can be removed again with DELETE {detector_url}/media.
"""

import asyncio
import logging

import aiohttp
from pydantic import ValidationError

from mediatag.config import settings
from mediatag.errors import DetectionError, NetworkError
from mediatag.integrations import http_client as http_module
from mediatag.schemas.media import DetectionResult, MediaItem

logger = logging.getLogger(__name__)

_FALLBACK_CONTENT_TYPES = {
    "image": "image/jpeg",
    "video": "video/mp4",
    "audio": "audio/mpeg",
}


async def detect(item: MediaItem) -> DetectionResult:
    """Submit raw media once. No retry: the caller re-runs the pipeline."""
    form = aiohttp.FormData()
    form.add_field(
        "file",
        item.raw_bytes,
        filename=item.display_name,
        content_type=item.content_type or _FALLBACK_CONTENT_TYPES[item.media_kind.value],
    )

    url = f"{settings.detector_url.rstrip('/')}/detect"
    try:
        async with http_module.request_session() as session:
            async with session.post(
                url, data=form, timeout=http_module.timeout(settings.detector_timeout_sec)
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"[DETECTOR] {response.status} for {item.display_name}: {error_text[:200]}")
                    raise DetectionError(f"Detection service failed: {error_text or response.status}")
                try:
                    payload = await response.json(content_type=None)
                except ValueError as e:
                    logger.error(f"[DETECTOR] Non-JSON response for {item.display_name}: {e}")
                    raise DetectionError("Detection service returned a malformed result.") from e
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise NetworkError(f"Could not reach detection service: {e}", stage="AI Verification") from e

    try:
        return DetectionResult.model_validate(payload)
    except ValidationError as e:
        logger.error(f"[DETECTOR] Malformed response for {item.display_name}: {e}")
        raise DetectionError("Detection service returned a malformed result.") from e


async def delete_hosted_media(url: str) -> None:
    """Remove a detector-hosted copy. Used for orphaned-URL cleanup on Tag edits and deletes."""
    endpoint = f"{settings.detector_url.rstrip('/')}/media"
    try:
        async with http_module.request_session() as session:
            async with session.delete(
                endpoint, json={"url": url}, timeout=http_module.timeout(settings.detector_timeout_sec)
            ) as response:
                if response.status not in (200, 204, 404):
                    error_text = await response.text()
                    raise DetectionError(f"Failed to delete hosted media {url}: {error_text}")
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise NetworkError(f"Could not reach media host: {e}", stage="Media Cleanup") from e
