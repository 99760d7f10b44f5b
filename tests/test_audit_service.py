"""Unit tests for mediatag/services/audit_service.py."""

import json
from unittest.mock import patch

from mediatag.schemas.audit import AuditEventType, AuditStatus
from mediatag.services.audit_service import AuditTrailLog


def test_append_preserves_order(mock_redis):
    log = AuditTrailLog()
    trail = log.start()
    log.append(trail, AuditEventType.FILE_INGEST, "Fingerprinting", AuditStatus.PENDING)
    log.append(trail, AuditEventType.FILE_INGEST, "Fingerprinting", AuditStatus.SUCCESS, "0xabc")
    log.append(trail, AuditEventType.LEDGER_CHECK, "Ledger uniqueness check", AuditStatus.PENDING)

    assert [e.type for e in trail.events] == [
        AuditEventType.FILE_INGEST, AuditEventType.FILE_INGEST, AuditEventType.LEDGER_CHECK,
    ]
    assert trail.events[1].details == "0xabc"
    assert len({e.id for e in trail.events}) == 3


def test_timestamps_never_decrease_when_clock_steps_back(mock_redis):
    log = AuditTrailLog()
    trail = log.start()
    with patch("mediatag.services.audit_service._now_ms", return_value=2_000):
        log.append(trail, AuditEventType.FILE_INGEST, "a", AuditStatus.PENDING)
    with patch("mediatag.services.audit_service._now_ms", return_value=1_000):
        event = log.append(trail, AuditEventType.FILE_INGEST, "a", AuditStatus.SUCCESS)

    assert event.timestamp_ms == 2_000
    assert trail.last_updated == 2_000


def test_every_append_is_mirrored_to_redis(mock_redis):
    from mediatag.config import settings

    log = AuditTrailLog()
    trail = log.start("sub-1")
    log.append(trail, AuditEventType.AI_VERIFICATION, "AI verification", AuditStatus.PENDING)

    stored = json.loads(mock_redis.get("audit:sub-1"))
    assert stored["subject_id"] == "sub-1"
    assert len(stored["events"]) == 1
    assert 0 < mock_redis.ttl("audit:sub-1") <= settings.audit_trail_ttl_sec


def test_load_round_trips_from_redis(mock_redis):
    log = AuditTrailLog()
    trail = log.start("sub-2")
    log.append(trail, AuditEventType.STORAGE_UPLOAD, "Pinning media", AuditStatus.ERROR, "boom")
    log.link(trail, "0x" + "1" * 64)

    loaded = AuditTrailLog().load("sub-2")
    assert loaded.events[0].status == AuditStatus.ERROR
    assert loaded.linked_fingerprint == "0x" + "1" * 64


def test_memory_fallback_without_redis(monkeypatch):
    from mediatag.integrations import redis_client as rc

    monkeypatch.setattr(rc, "client", None)
    log = AuditTrailLog(max_local_entries=2)
    log.start("a")
    log.start("b")
    log.start("c")

    assert log.load("a") is None  # evicted
    assert log.load("b") is not None
    assert log.load("c") is not None


def test_finalize_clears_local_copy(mock_redis):
    log = AuditTrailLog()
    trail = log.start("done")
    log.append(trail, AuditEventType.REGISTRATION_COMPLETE, "Registration complete", AuditStatus.SUCCESS)
    log.finalize(trail)

    assert mock_redis.get("audit:done") is None
    assert log.load("done") is None
    # The value itself is untouched.
    assert len(trail.events) == 1


def test_abandon_discards_trail(mock_redis):
    log = AuditTrailLog()
    log.start("gone")
    log.abandon("gone")
    assert log.load("gone") is None


def test_redis_failure_falls_back_to_memory(mock_redis, monkeypatch):
    def broken_set(*args, **kwargs):
        raise ConnectionError("redis down")

    monkeypatch.setattr(mock_redis, "set", broken_set)
    log = AuditTrailLog()
    trail = log.start("fallback")

    assert log.load("fallback").subject_id == trail.subject_id
