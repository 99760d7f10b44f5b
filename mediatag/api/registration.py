"""
Registration routes: /register, /register/batch, /audit/{subject_id}

Both registration routes accept multipart/form-data. With `?stream=true`
the response is NDJSON: one `progress` line per ProgressEvent, then a final
`result` or `error` line.
"""

import asyncio
import json
import logging
import re
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse

from mediatag.config import settings
from mediatag.core.file_validator import infer_media_kind, sanitize_log_message, validate_file
from mediatag.errors import PipelineError
from mediatag.pipeline.batch import BatchOrchestrator
from mediatag.pipeline.orchestrator import PipelineOrchestrator
from mediatag.pipeline.progress import ProgressChannel
from mediatag.schemas.audit import AuditTrail
from mediatag.schemas.media import MediaItem, MediaKind
from mediatag.schemas.pipeline import BatchResult, RegistrationGranularity, RegistrationResult
from mediatag.services.audit_service import audit_log

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Registration"])

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _check_owner(owner_address: str) -> str:
    owner = owner_address.strip()
    if not _ADDRESS_RE.match(owner):
        raise HTTPException(status_code=400, detail="owner_address must be a 0x-prefixed 20-byte hex address")
    return owner


async def _read_item(
    upload: UploadFile,
    display_name: Optional[str] = None,
    description: str = "",
    media_kind: Optional[MediaKind] = None,
) -> MediaItem:
    filename = upload.filename or "uploaded_file"
    data = await upload.read()
    kind = media_kind or infer_media_kind(filename, upload.content_type)
    validate_file(filename, data, kind)

    if len(description) > settings.max_description_length:
        raise HTTPException(
            status_code=400,
            detail=f"description exceeds {settings.max_description_length} characters",
        )

    return MediaItem(
        raw_bytes=data,
        display_name=(display_name or filename)[: settings.max_file_name_length],
        media_kind=kind,
        description=description,
        content_type=upload.content_type,
    )


def _line(payload: dict) -> str:
    return json.dumps(payload, default=str) + "\n"


async def _ndjson(channel: ProgressChannel, task: asyncio.Task, subject_id: Optional[str]) -> AsyncIterator[str]:
    async for event in channel:
        yield _line({"type": "progress", **event.model_dump(mode="json")})

    try:
        result = await task
    except PipelineError as e:
        yield _line({"type": "error", "subject_id": subject_id, **e.to_dict()})
        return
    except Exception as e:
        logger.exception(f"[REGISTER] Streamed run {subject_id} crashed")
        yield _line({
            "type": "error",
            "subject_id": subject_id,
            "error": "InternalError",
            "message": f"Unexpected error: {e}",
            "stage": "Pipeline",
        })
        return
    yield _line({"type": "result", "result": result.model_dump(mode="json")})


@router.post("/register", response_model=RegistrationResult)
async def register(
    file: UploadFile = File(...),
    owner_address: str = Form(...),
    display_name: Optional[str] = Form(None),
    description: str = Form(""),
    media_kind: Optional[MediaKind] = Form(None),
    stream: bool = Query(False),
):
    """Register one media file: fingerprint, uniqueness, AI verification, pinning, record, ledger."""
    owner = _check_owner(owner_address)
    item = await _read_item(file, display_name, description, media_kind)

    channel = ProgressChannel() if stream else None
    orchestrator = PipelineOrchestrator(owner, progress=channel)
    logger.info(
        f"[REGISTER] {orchestrator.subject_id[:8]} {sanitize_log_message(item.display_name)} "
        f"({item.media_kind.value}, {item.size} bytes) for {owner}"
    )

    if stream:
        async def _run():
            try:
                return await orchestrator.run(item)
            finally:
                channel.close()

        task = asyncio.create_task(_run())
        return StreamingResponse(
            _ndjson(channel, task, orchestrator.subject_id), media_type="application/x-ndjson"
        )

    try:
        return await orchestrator.run(item)
    except PipelineError as e:
        raise HTTPException(
            status_code=e.http_status, detail={**e.to_dict(), "subject_id": orchestrator.subject_id}
        )


@router.post("/register/batch", response_model=BatchResult)
async def register_batch(
    files: List[UploadFile] = File(...),
    owner_address: str = Form(...),
    collection_name: Optional[str] = Form(None),
    description: str = Form(""),
    granularity: Optional[RegistrationGranularity] = Form(None),
    stream: bool = Query(False),
):
    """
    Register up to `batch_max_items` files. Excluded or failed items never
    abort the batch; their outcome is reported per item.
    """
    owner = _check_owner(owner_address)
    if len(files) > settings.batch_max_items:
        raise HTTPException(status_code=400, detail=f"At most {settings.batch_max_items} files per batch")
    if collection_name and len(collection_name) > settings.max_file_name_length:
        raise HTTPException(
            status_code=400, detail=f"collection_name exceeds {settings.max_file_name_length} characters"
        )

    items = [await _read_item(f) for f in files]

    channel = ProgressChannel() if stream else None
    batch = BatchOrchestrator(owner, granularity=granularity, progress=channel)

    if stream:
        task = asyncio.create_task(batch.run(items, collection_name, description))
        return StreamingResponse(_ndjson(channel, task, None), media_type="application/x-ndjson")

    return await batch.run(items, collection_name, description)


@router.get("/audit/{subject_id}", response_model=AuditTrail)
async def get_audit_trail(subject_id: str):
    """Locally retained trail of an unfinished or failed submission."""
    trail = audit_log.load(subject_id)
    if trail is None:
        raise HTTPException(status_code=404, detail="Audit trail not found or expired.")
    return trail


@router.delete("/audit/{subject_id}")
async def abandon_audit_trail(subject_id: str):
    """Drop a retained trail once the user has dismissed the failed submission."""
    if audit_log.load(subject_id) is None:
        raise HTTPException(status_code=404, detail="Audit trail not found or expired.")
    audit_log.abandon(subject_id)
    return {"abandoned": subject_id}
