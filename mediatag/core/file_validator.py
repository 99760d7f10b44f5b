"""
Upload validation and log sanitization utilities.

Sets PIL.Image.MAX_IMAGE_PIXELS to prevent decompression-bomb attacks.
"""

import io
import logging
import os
import re
from typing import Optional

from fastapi import HTTPException
from PIL import Image

from mediatag.config import settings
from mediatag.schemas.media import MediaKind

Image.MAX_IMAGE_PIXELS = settings.pil_max_image_pixels

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.webp', '.gif', '.heic', '.heif', '.tiff', '.tif', '.bmp')
VIDEO_EXTENSIONS = ('.mp4', '.mov', '.avi', '.mkv', '.webm')
AUDIO_EXTENSIONS = ('.mp3', '.wav', '.m4a', '.aac', '.ogg', '.flac')

_PIL_FORMATS = {'jpg', 'jpeg', 'png', 'webp', 'gif', 'heic', 'heif', 'tiff', 'tif', 'bmp', 'mpo'}


def infer_media_kind(filename: str, content_type: Optional[str] = None) -> MediaKind:
    """Media kind from the extension, falling back to the declared MIME type."""
    ext = os.path.splitext(filename or "")[1].lower()
    if ext in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    if ext in AUDIO_EXTENSIONS:
        return MediaKind.AUDIO

    major = (content_type or "").split("/")[0]
    if major in ("image", "video", "audio"):
        return MediaKind(major)

    raise HTTPException(status_code=415, detail="Unsupported file format.")


def _max_bytes(kind: MediaKind) -> int:
    return {
        MediaKind.IMAGE: settings.max_image_upload_bytes,
        MediaKind.VIDEO: settings.max_video_upload_bytes,
        MediaKind.AUDIO: settings.max_audio_upload_bytes,
    }[kind]


def validate_file(filename: str, data: bytes, kind: MediaKind) -> bool:
    """Check size against the per-kind limit and, for images, content integrity."""
    if not data:
        raise HTTPException(status_code=400, detail=f"Empty file: {filename}")

    limit = _max_bytes(kind)
    if len(data) > limit:
        raise HTTPException(
            status_code=413,
            detail=f"{kind.value.capitalize()} too large. Max {limit // 1024 // 1024}MB allowed."
        )

    if kind == MediaKind.IMAGE:
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.verify()
            with Image.open(io.BytesIO(data)) as img2:
                actual_format = (img2.format or "").lower()
            if actual_format not in _PIL_FORMATS:
                raise ValueError(f"Format mismatch: {actual_format}")
        except Exception as e:
            logger.error(f"Malicious or corrupted file detected ({sanitize_log_message(filename)}): {e}")
            raise HTTPException(status_code=400, detail="Invalid file content or format mismatch.")

    return True


def sanitize_log_message(message: str) -> str:
    """Strip sensitive file paths from log messages."""
    msg = re.sub(r'\/[^\s]+\/tmp[a-zA-Z0-9_]+', '[TEMP_FILE]', message)
    msg = re.sub(r'\/[^\s]+\/([^\/\s]+)', r'.../\1', msg)
    return msg
