"""
AuditTrailLog — append-only, per-submission event log.

The trail itself is an explicit `AuditTrail` value owned by whoever started
the submission; this module only appends to it and mirrors every append to a
recoverable local store so an interrupted submission's history survives a
restart:

    Redis (preferred)  → key audit:{subject_id}, TTL audit_trail_ttl_sec
    Local Memory       → bounded LRU when Redis is absent

The mirror is cleared on successful finalization or explicit abandonment.
Events are never reordered or rewritten; timestamps are clamped so they are
non-decreasing even if the wall clock steps backwards.
"""

import json
import logging
import time
import uuid
from collections import OrderedDict
from typing import Optional

from mediatag.config import settings
from mediatag.integrations import redis_client as redis_module
from mediatag.schemas.audit import AuditEvent, AuditEventType, AuditStatus, AuditTrail

logger = logging.getLogger(__name__)

_KEY_PREFIX = "audit:"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class AuditTrailLog:
    def __init__(self, max_local_entries: int = settings.local_audit_max_size):
        self._local: OrderedDict[str, str] = OrderedDict()
        self._max_local_entries = max_local_entries

    # ------------------------------------------------------------------ #
    # Trail lifecycle                                                     #
    # ------------------------------------------------------------------ #

    def start(self, subject_id: Optional[str] = None) -> AuditTrail:
        trail = AuditTrail(subject_id=subject_id or uuid.uuid4().hex, last_updated=_now_ms())
        self._save(trail)
        logger.info(f"[AUDIT] Trail started: {trail.subject_id}")
        return trail

    def append(
        self,
        trail: AuditTrail,
        event_type: AuditEventType,
        label: str,
        status: AuditStatus,
        details: Optional[str] = None,
    ) -> AuditEvent:
        last = trail.last_event
        timestamp = _now_ms()
        if last and timestamp < last.timestamp_ms:
            timestamp = last.timestamp_ms

        event = AuditEvent(
            id=str(uuid.uuid4()),
            type=event_type,
            label=label,
            timestamp_ms=timestamp,
            status=status,
            details=details,
        )
        trail.events.append(event)
        trail.last_updated = timestamp
        self._save(trail)

        log = logger.warning if status == AuditStatus.ERROR else logger.info
        log(f"[AUDIT] {trail.subject_id[:8]} {event_type.value} {status.value}: {label}"
            + (f" ({details})" if details else ""))
        return event

    def link(self, trail: AuditTrail, fingerprint: str) -> None:
        trail.linked_fingerprint = fingerprint
        self._save(trail)

    def load(self, subject_id: str) -> Optional[AuditTrail]:
        raw = self._read(subject_id)
        if raw is None:
            return None
        data = json.loads(raw) if isinstance(raw, str) else raw
        return AuditTrail.model_validate(data)

    def finalize(self, trail: AuditTrail) -> None:
        """Submission completed; the persisted copy lives with the Tag from now on."""
        self._delete(trail.subject_id)
        logger.info(f"[AUDIT] Trail finalized and cleared locally: {trail.subject_id}")

    def abandon(self, subject_id: str) -> None:
        self._delete(subject_id)
        logger.info(f"[AUDIT] Trail abandoned: {subject_id}")

    # ------------------------------------------------------------------ #
    # Store: Redis → local memory                                         #
    # ------------------------------------------------------------------ #

    def _save(self, trail: AuditTrail) -> None:
        payload = trail.model_dump_json()
        rc = redis_module.client
        if rc:
            try:
                rc.set(f"{_KEY_PREFIX}{trail.subject_id}", payload, ex=settings.audit_trail_ttl_sec)
                return
            except Exception as e:
                logger.warning(f"Redis set failed, keeping trail in memory: {e}")

        key = trail.subject_id
        if key in self._local:
            self._local.move_to_end(key)
        self._local[key] = payload
        if len(self._local) > self._max_local_entries:
            self._local.popitem(last=False)

    def _read(self, subject_id: str):
        rc = redis_module.client
        if rc:
            try:
                data = rc.get(f"{_KEY_PREFIX}{subject_id}")
                if data:
                    return data
            except Exception as e:
                logger.warning(f"Redis get failed: {e}")
        return self._local.get(subject_id)

    def _delete(self, subject_id: str) -> None:
        rc = redis_module.client
        if rc:
            try:
                rc.delete(f"{_KEY_PREFIX}{subject_id}")
            except Exception as e:
                logger.warning(f"Redis delete failed: {e}")
        self._local.pop(subject_id, None)


audit_log = AuditTrailLog()
