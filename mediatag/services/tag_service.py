"""
MetadataRecorder: the Tag record store (Firestore).

Firebase is accessed at call-time via the integration module so it picks up
the client initialized during the FastAPI lifespan.

Uniqueness of fingerprint, media_cid and metadata_cid is enforced with
claim documents in `tag_keys`, created through Firestore's atomic
create-if-absent. A submission that loses any claim releases the ones it
already holds before the conflict is raised.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from google.api_core.exceptions import AlreadyExists

from mediatag.config import settings
from mediatag.errors import (
    PipelineError,
    RecordConflictError,
    RecordStoreUnavailableError,
    RecordValidationError,
    TagNotFoundError,
)
from mediatag.integrations import detector as detector_module
from mediatag.integrations import firebase as firebase_module
from mediatag.schemas.audit import AuditTrail
from mediatag.schemas.tags import MediaUrls, Tag, TagCreate, TagStatus, TagUpdate
from mediatag.services.hashing import format_fingerprint

logger = logging.getLogger(__name__)

UNIQUE_FIELDS = ("fingerprint", "media_cid", "metadata_cid")


def _get_db():
    db = firebase_module.db
    if not db:
        raise RecordStoreUnavailableError("Database service unavailable.")
    return db


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _key_id(field: str, value: str) -> str:
    return f"{field}:{value}"


def _validate_fields(file_name: Optional[str], description: Optional[str]) -> None:
    if file_name is not None:
        if not file_name.strip():
            raise RecordValidationError("file_name must not be empty")
        if len(file_name) > settings.max_file_name_length:
            raise RecordValidationError(
                f"file_name exceeds {settings.max_file_name_length} characters"
            )
    if description is not None and len(description) > settings.max_description_length:
        raise RecordValidationError(
            f"description exceeds {settings.max_description_length} characters"
        )


def _validate_urls(media_kind, media_urls: MediaUrls) -> None:
    if not media_urls.for_kind(media_kind):
        raise RecordValidationError(
            f"At least one {media_kind.value} URL is required for a {media_kind.value} tag"
        )


class MetadataRecorder:
    # ------------------------------------------------------------------ #
    # Create                                                              #
    # ------------------------------------------------------------------ #

    def create_tag(self, data: TagCreate, audit_trail: Optional[AuditTrail] = None) -> Tag:
        """
        Persist a new Tag. `file_count` and `is_bulk` are derived here from the
        URL lists and are never recomputed afterwards.
        """
        data = data.model_copy(update={"fingerprint": format_fingerprint(data.fingerprint)})
        _validate_fields(data.file_name, data.description)
        _validate_urls(data.media_kind, data.media_urls)

        db = _get_db()
        tag_ref = db.collection(firebase_module.TAGS).document()
        tag_id = tag_ref.id

        claimed = self._claim_keys(db, tag_id, data)

        audit_trail_ref = audit_trail.subject_id if audit_trail is not None else None
        file_count = max(data.media_urls.total, 1)
        now = _now()
        tag = Tag(
            id=tag_id,
            **data.model_dump(),
            file_count=file_count,
            is_bulk=file_count > 1,
            audit_trail_ref=audit_trail_ref,
            created_at=now,
            updated_at=now,
        )

        try:
            if audit_trail is not None:
                db.collection(firebase_module.AUDIT_TRAILS).document(audit_trail_ref).set(
                    {**audit_trail.model_dump(mode="json"), "tag_id": tag_id}
                )
            tag_ref.set(tag.model_dump(mode="json", exclude={"id"}))
        except Exception as e:
            logger.error(f"[TAGS] Write of {tag_id} failed, releasing claims: {e}")
            self._release_keys(db, claimed)
            if audit_trail_ref:
                db.collection(firebase_module.AUDIT_TRAILS).document(audit_trail_ref).delete()
            raise

        logger.info(
            f"[TAGS] Created {tag_id} for {data.fingerprint[:14]}… "
            f"({file_count} file(s), status={tag.status.value})"
        )
        return tag

    def _claim_keys(self, db, tag_id: str, data: TagCreate) -> List[str]:
        keys = db.collection(firebase_module.TAG_KEYS)
        claimed: List[str] = []
        for field in UNIQUE_FIELDS:
            value = getattr(data, field)
            key = _key_id(field, value)
            try:
                keys.document(key).create({"tag_id": tag_id, "field": field})
            except AlreadyExists:
                self._release_keys(db, claimed)
                logger.warning(f"[TAGS] Conflict on {field}={value}")
                raise RecordConflictError(field, value)
            claimed.append(key)
        return claimed

    def _release_keys(self, db, claimed: List[str]) -> None:
        keys = db.collection(firebase_module.TAG_KEYS)
        for held in claimed:
            keys.document(held).delete()

    # ------------------------------------------------------------------ #
    # Read                                                                #
    # ------------------------------------------------------------------ #

    def _load(self, db, tag_id: str) -> Tag:
        doc = db.collection(firebase_module.TAGS).document(tag_id).get()
        if not doc.exists:
            raise TagNotFoundError(tag_id)
        return Tag.model_validate({**doc.to_dict(), "id": tag_id})

    def get_tag(self, tag_id: str, count_view: bool = True) -> Tag:
        db = _get_db()
        tag = self._load(db, tag_id)
        if count_view:
            tag.view_count += 1
            db.collection(firebase_module.TAGS).document(tag_id).update({"view_count": tag.view_count})
        return tag

    def get_tag_by_fingerprint(self, fingerprint: str) -> Tag:
        db = _get_db()
        key = db.collection(firebase_module.TAG_KEYS).document(_key_id("fingerprint", fingerprint)).get()
        if not key.exists:
            raise TagNotFoundError(fingerprint)
        return self.get_tag(key.get("tag_id"))

    def get_audit_trail(self, ref: Optional[str]) -> Optional[AuditTrail]:
        if not ref:
            return None
        doc = _get_db().collection(firebase_module.AUDIT_TRAILS).document(ref).get()
        if not doc.exists:
            return None
        data = doc.to_dict()
        data.pop("tag_id", None)
        return AuditTrail.model_validate(data)

    # ------------------------------------------------------------------ #
    # Update                                                              #
    # ------------------------------------------------------------------ #

    def like_tag(self, tag_id: str) -> Tag:
        db = _get_db()
        tag = self._load(db, tag_id)
        tag.like_count += 1
        db.collection(firebase_module.TAGS).document(tag_id).update({"like_count": tag.like_count})
        return tag

    async def update_tag(self, tag_id: str, changes: TagUpdate) -> Tag:
        """
        Apply the writable subset of fields. URLs dropped by the edit are removed
        from the detector's media hosting. `file_count` stays as created.
        """
        db = _get_db()
        current = self._load(db, tag_id)

        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        if not fields:
            return current

        _validate_fields(fields.get("file_name"), fields.get("description"))
        updated = current.model_copy(update={
            **fields,
            "media_urls": changes.media_urls if changes.media_urls is not None else current.media_urls,
            "updated_at": _now(),
        })
        _validate_urls(updated.media_kind, updated.media_urls)

        payload = updated.model_dump(mode="json", include=set(fields) | {"updated_at"})
        db.collection(firebase_module.TAGS).document(tag_id).update(payload)

        if changes.media_urls is not None:
            remaining = set(updated.media_urls.all())
            orphaned = [url for url in current.media_urls.all() if url not in remaining]
            await self._cleanup_hosted(orphaned)

        logger.info(f"[TAGS] Updated {tag_id}: {sorted(fields)}")
        return updated

    def set_status(self, tag_id: str, status: TagStatus) -> Tag:
        db = _get_db()
        tag = self._load(db, tag_id)
        if tag.status == status:
            return tag
        tag.status = status
        tag.updated_at = _now()
        db.collection(firebase_module.TAGS).document(tag_id).update({
            "status": status.value,
            "updated_at": tag.updated_at.isoformat(),
        })
        logger.info(f"[TAGS] {tag_id} status → {status.value}")
        return tag

    def sync_audit_trail(self, ref: str, trail: AuditTrail) -> None:
        """
        Extend the persisted trail with events appended after recording.
        The stored events must be a prefix of `trail.events`; history is never rewritten.
        """
        doc_ref = _get_db().collection(firebase_module.AUDIT_TRAILS).document(ref)
        doc = doc_ref.get()
        if not doc.exists:
            doc_ref.set(trail.model_dump(mode="json"))
            return

        stored_ids = [e.get("id") for e in doc.to_dict().get("events", [])]
        current_ids = [e.id for e in trail.events[: len(stored_ids)]]
        if stored_ids != current_ids:
            raise RecordValidationError(f"Audit trail {ref} diverges from the persisted copy")
        doc_ref.update({
            "events": [e.model_dump(mode="json") for e in trail.events],
            "last_updated": trail.last_updated,
            "linked_fingerprint": trail.linked_fingerprint,
        })

    # ------------------------------------------------------------------ #
    # Delete                                                              #
    # ------------------------------------------------------------------ #

    async def delete_tag(self, tag_id: str) -> Tag:
        db = _get_db()
        tag = self._load(db, tag_id)

        db.collection(firebase_module.TAGS).document(tag_id).delete()
        keys = db.collection(firebase_module.TAG_KEYS)
        for field in UNIQUE_FIELDS:
            keys.document(_key_id(field, getattr(tag, field))).delete()
        if tag.audit_trail_ref:
            db.collection(firebase_module.AUDIT_TRAILS).document(tag.audit_trail_ref).delete()

        await self._cleanup_hosted(tag.media_urls.all())
        logger.info(f"[TAGS] Deleted {tag_id}")
        return tag

    async def _cleanup_hosted(self, urls: List[str]) -> None:
        for url in urls:
            try:
                await detector_module.delete_hosted_media(url)
            except PipelineError as e:
                # Record is already consistent; a leftover hosted copy is only storage waste.
                logger.warning(f"[TAGS] Could not remove hosted media {url}: {e.message}")


metadata_recorder = MetadataRecorder()
