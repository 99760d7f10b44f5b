"""
Tag record routes.

POST /tags accepts either a JSON TagCreate body (plus optional "audit_trail")
or multipart/form-data with the same fields as strings, an optional
`audit_trail` JSON blob and `image_urls` / `video_urls` / `audio_urls`
(repeated fields or a JSON array).
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request
from pydantic import ValidationError

from mediatag.errors import PipelineError
from mediatag.schemas.audit import AuditTrail
from mediatag.schemas.tags import Tag, TagCreate, TagResponse, TagUpdate
from mediatag.services.deregistration_service import deregister_tag
from mediatag.services.hashing import format_fingerprint
from mediatag.services.tag_service import metadata_recorder

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tags"])

URL_KINDS = ("image", "video", "audio")


def _parse_json_field(raw, field: str):
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail=f"Invalid JSON in '{field}'")


def _form_urls(form, kind: str) -> list:
    urls = []
    for value in form.getlist(f"{kind}_urls"):
        if not isinstance(value, str):
            raise HTTPException(status_code=400, detail=f"Invalid {kind}_urls field")
        value = value.strip()
        if value.startswith("["):
            urls.extend(_parse_json_field(value, f"{kind}_urls"))
        elif value:
            urls.append(value)
    return urls


async def _read_create_payload(request: Request) -> tuple[dict, Optional[dict]]:
    content_type = request.headers.get("content-type", "")

    if "application/json" in content_type:
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="JSON body must be an object")
        return payload, payload.pop("audit_trail", None)

    if "multipart/form-data" in content_type or "application/x-www-form-urlencoded" in content_type:
        form = await request.form()
        payload = {
            key: value for key, value in form.items()
            if isinstance(value, str) and key != "audit_trail" and not key.endswith("_urls")
        }
        payload["media_urls"] = {kind: _form_urls(form, kind) for kind in URL_KINDS}

        audit_trail = None
        raw_trail = form.get("audit_trail")
        if isinstance(raw_trail, str) and raw_trail.strip():
            audit_trail = _parse_json_field(raw_trail, "audit_trail")
        return payload, audit_trail

    raise HTTPException(
        status_code=415,
        detail="Unsupported Media Type. Use multipart/form-data or application/json"
    )


@router.post("/tags", response_model=TagResponse, status_code=201)
async def create_tag(request: Request):
    payload, raw_trail = await _read_create_payload(request)
    try:
        data = TagCreate.model_validate(payload)
        audit_trail = AuditTrail.model_validate(raw_trail) if raw_trail else None
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=json.loads(e.json()))

    try:
        tag = metadata_recorder.create_tag(data, audit_trail=audit_trail)
    except PipelineError as e:
        raise e.to_http()
    return TagResponse(tag=tag, audit_trail=audit_trail)


@router.get("/tags/hash/{fingerprint}", response_model=TagResponse)
async def get_tag_by_fingerprint(fingerprint: str):
    try:
        tag = metadata_recorder.get_tag_by_fingerprint(format_fingerprint(fingerprint))
        return TagResponse(tag=tag, audit_trail=metadata_recorder.get_audit_trail(tag.audit_trail_ref))
    except PipelineError as e:
        raise e.to_http()


@router.get("/tags/{tag_id}", response_model=TagResponse)
async def get_tag(tag_id: str):
    try:
        tag = metadata_recorder.get_tag(tag_id)
        return TagResponse(tag=tag, audit_trail=metadata_recorder.get_audit_trail(tag.audit_trail_ref))
    except PipelineError as e:
        raise e.to_http()


@router.put("/tags/{tag_id}", response_model=Tag)
async def update_tag(tag_id: str, changes: TagUpdate):
    """Only file_name, description, media_kind, media_urls, file_size and status are writable."""
    try:
        return await metadata_recorder.update_tag(tag_id, changes)
    except PipelineError as e:
        raise e.to_http()


@router.post("/tags/{tag_id}/like", response_model=Tag)
async def like_tag(tag_id: str):
    try:
        return metadata_recorder.like_tag(tag_id)
    except PipelineError as e:
        raise e.to_http()


@router.delete("/tags/{tag_id}")
async def delete_tag(tag_id: str):
    try:
        await metadata_recorder.delete_tag(tag_id)
    except PipelineError as e:
        raise e.to_http()
    return {"deleted": tag_id}


@router.delete("/tags/{tag_id}/registration")
async def deregister(tag_id: str, owner_address: str = Header(..., alias="X-Owner-Address")):
    """Remove the ledger registration, unpin both CIDs and delete the record. Owner only."""
    try:
        receipt = await deregister_tag(tag_id, owner_address.strip())
    except PipelineError as e:
        raise e.to_http()
    return {"deregistered": tag_id, "tx_hash": receipt.tx_hash, "block_number": receipt.block_number}
