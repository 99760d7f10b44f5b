"""
Tests for mediatag/pipeline/orchestrator.py: the single-item registration state machine.

Ledger, pinning service and detector are in-memory fakes; Firestore and Redis are mocks.
"""

from unittest.mock import AsyncMock

import pytest

from mediatag.errors import (
    DetectionError,
    DuplicateMediaError,
    LookupIndeterminateError,
    NetworkError,
    SyntheticContentError,
)
from mediatag.integrations import firebase as firebase_module
from mediatag.integrations import ledger as ledger_module
from mediatag.pipeline.orchestrator import STAGE_EVENTS, PipelineOrchestrator
from mediatag.pipeline.progress import ProgressChannel
from mediatag.schemas.audit import AuditEventType, AuditStatus
from mediatag.schemas.media import Verdict
from mediatag.schemas.pipeline import PipelineState
from mediatag.schemas.tags import TagStatus
from mediatag.services.audit_service import audit_log
from mediatag.services.hashing import compute_fingerprint
from tests.conftest import make_item
from tests.fakes import OTHER_OWNER, OWNER, revert


def assert_well_formed(trail, final_success: bool):
    """Each stage opens with PENDING and closes with one SUCCESS/ERROR; the last event is terminal."""
    events = trail.events
    timestamps = [e.timestamp_ms for e in events]
    assert timestamps == sorted(timestamps)

    open_type = None
    for event in events:
        if event.type == AuditEventType.REGISTRATION_COMPLETE:
            assert open_type is None
            continue
        if event.status == AuditStatus.PENDING:
            assert open_type is None, f"{event.type} opened while {open_type} still pending"
            open_type = event.type
        else:
            assert open_type == event.type
            open_type = None
    assert open_type is None

    last = events[-1]
    if final_success:
        assert last.type == AuditEventType.REGISTRATION_COMPLETE
        assert last.status == AuditStatus.SUCCESS
    else:
        assert last.status == AuditStatus.ERROR


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


async def test_run_registers_item_end_to_end(fakes):
    item = make_item("sunset.jpg", description="Golden hour")
    orchestrator = PipelineOrchestrator(OWNER)

    result = await orchestrator.run(item)

    assert orchestrator.state == PipelineState.FINALIZED
    assert result.fingerprint == compute_fingerprint(item.raw_bytes)
    assert result.verdict == Verdict.AUTHENTIC
    assert result.flagged is False
    assert result.tx_hash

    tag = result.tag
    assert tag.status == TagStatus.ACTIVE
    assert tag.file_count == 1 and tag.is_bulk is False
    assert tag.file_name == "sunset.jpg"
    assert tag.description == "Golden hour"
    assert tag.media_urls.image == ["https://media.test/image/sunset.jpg"]

    record = fakes.ledger.records[result.fingerprint]
    assert record.media_cid == tag.media_cid
    assert record.metadata_cid == tag.metadata_cid
    assert record.owner == OWNER


async def test_media_is_pinned_before_metadata(fakes):
    await PipelineOrchestrator(OWNER).run(make_item("order.jpg"))
    assert fakes.pinning.names == ["order.jpg", "metadata.json"]


async def test_audit_trail_covers_every_stage_in_order(fakes):
    orchestrator = PipelineOrchestrator(OWNER)
    result = await orchestrator.run(make_item("ordered.jpg"))

    trail = result.audit_trail
    assert_well_formed(trail, final_success=True)
    opened = [e.type for e in trail.events if e.status == AuditStatus.PENDING]
    assert opened == [
        AuditEventType.FILE_INGEST,
        AuditEventType.LEDGER_CHECK,
        AuditEventType.AI_VERIFICATION,
        AuditEventType.STORAGE_UPLOAD,
        AuditEventType.STORAGE_UPLOAD,
        AuditEventType.WALLET_SIGN,
    ]
    assert trail.linked_fingerprint == result.fingerprint


async def test_success_clears_local_trail_and_persists_it_with_tag(fakes):
    orchestrator = PipelineOrchestrator(OWNER)
    result = await orchestrator.run(make_item("persisted.jpg"))

    assert audit_log.load(orchestrator.subject_id) is None
    stored = fakes.db.docs(firebase_module.AUDIT_TRAILS)[result.tag.audit_trail_ref]
    assert [e["id"] for e in stored["events"]] == [e.id for e in result.audit_trail.events]


async def test_inconclusive_item_proceeds_flagged(fakes):
    fakes.detector.natural["grey.jpg"] = 55
    result = await PipelineOrchestrator(OWNER).run(make_item("grey.jpg"))

    assert result.flagged is True
    assert result.verdict == Verdict.SYNTHETIC
    ai_success = [
        e for e in result.audit_trail.events
        if e.type == AuditEventType.AI_VERIFICATION and e.status == AuditStatus.SUCCESS
    ]
    assert "flagged INCONCLUSIVE" in ai_success[0].details


# ---------------------------------------------------------------------------
# Halting paths
# ---------------------------------------------------------------------------


async def test_second_run_of_same_bytes_is_duplicate(fakes):
    item = make_item("twice.jpg")
    await PipelineOrchestrator(OWNER).run(item)
    pins_after_first = len(fakes.pinning.names)

    second = PipelineOrchestrator(OTHER_OWNER)
    with pytest.raises(DuplicateMediaError) as exc:
        await second.run(item)

    assert exc.value.owner == OWNER
    assert exc.value.fingerprint == compute_fingerprint(item.raw_bytes)
    assert second.state == PipelineState.BLOCKED
    assert len(fakes.pinning.names) == pins_after_first
    assert fakes.detector.calls == ["twice.jpg"]
    assert_well_formed(second.trail, final_success=False)
    assert second.trail.events[-1].type == AuditEventType.LEDGER_CHECK


async def test_synthetic_item_halts_before_upload(fakes):
    fakes.detector.natural["fake.jpg"] = 50
    orchestrator = PipelineOrchestrator(OWNER)

    with pytest.raises(SyntheticContentError) as exc:
        await orchestrator.run(make_item("fake.jpg"))

    assert exc.value.natural_probability == 50
    assert orchestrator.state == PipelineState.BLOCKED
    assert fakes.pinning.names == []
    assert fakes.db.docs(firebase_module.TAGS) == {}
    assert fakes.ledger.sent == []
    last = orchestrator.trail.events[-1]
    assert last.type == AuditEventType.AI_VERIFICATION
    assert last.status == AuditStatus.ERROR


async def test_failed_trail_is_kept_locally(fakes):
    fakes.detector.natural["kept.jpg"] = 10
    orchestrator = PipelineOrchestrator(OWNER)
    with pytest.raises(SyntheticContentError):
        await orchestrator.run(make_item("kept.jpg"))

    retained = audit_log.load(orchestrator.subject_id)
    assert retained is not None
    assert retained.events[-1].status == AuditStatus.ERROR


async def test_indeterminate_lookup_halts_as_failure(fakes):
    fakes.ledger.lookup_error = NetworkError("timeout", stage="Uniqueness Check")
    orchestrator = PipelineOrchestrator(OWNER)

    with pytest.raises(LookupIndeterminateError):
        await orchestrator.run(make_item("unknown.jpg"))

    assert orchestrator.state == PipelineState.FAILED
    assert fakes.detector.calls == []


async def test_detector_failure_is_not_retried(fakes):
    fakes.detector.fail_names["flaky.jpg"] = DetectionError("Detection service failed: 500")
    orchestrator = PipelineOrchestrator(OWNER)

    with pytest.raises(DetectionError):
        await orchestrator.run(make_item("flaky.jpg"))

    assert fakes.detector.calls == ["flaky.jpg"]
    assert orchestrator.state == PipelineState.FAILED


async def test_ledger_failure_leaves_pending_tag_with_synced_trail(fakes):
    fakes.ledger.receipt_status = 0
    orchestrator = PipelineOrchestrator(OWNER)

    with pytest.raises(Exception):
        await orchestrator.run(make_item("reverted.jpg"))

    assert orchestrator.state == PipelineState.FAILED
    (tag_id, stored), = fakes.db.docs(firebase_module.TAGS).items()
    assert stored["status"] == "pending"
    trail_doc = fakes.db.docs(firebase_module.AUDIT_TRAILS)[stored["audit_trail_ref"]]
    assert trail_doc["events"][-1]["type"] == "WALLET_SIGN"
    assert trail_doc["events"][-1]["status"] == "ERROR"


async def test_already_registered_on_ledger_is_soft_success(fakes, monkeypatch):
    item = make_item("race.jpg")
    fp = compute_fingerprint(item.raw_bytes)
    # The lookup misses, but another submission lands before ours.
    monkeypatch.setattr(ledger_module, "get_media", AsyncMock(side_effect=revert("MediaNotFound(bytes32)", fp)))
    await fakes.ledger.wait_for_transaction(await fakes.ledger.register_media("bafyX", "bafyY", fp, OTHER_OWNER))

    result = await PipelineOrchestrator(OWNER).run(item)

    assert result.already_registered is True
    assert result.tx_hash is None
    assert result.tag.status == TagStatus.ACTIVE


# ---------------------------------------------------------------------------
# State machine and progress
# ---------------------------------------------------------------------------


async def test_backward_transition_raises(fakes):
    orchestrator = PipelineOrchestrator(OWNER)
    await orchestrator.screen(make_item("back.jpg"))
    assert orchestrator.state == PipelineState.CLASSIFYING

    with pytest.raises(RuntimeError):
        orchestrator._transition(PipelineState.HASHING)


async def test_no_transition_after_terminal_state(fakes):
    orchestrator = PipelineOrchestrator(OWNER)
    await orchestrator.run(make_item("terminal.jpg"))

    with pytest.raises(RuntimeError):
        orchestrator._transition(PipelineState.FAILED)


def test_every_forward_state_has_an_event_type():
    for state in PipelineState:
        if state not in (PipelineState.BLOCKED, PipelineState.FAILED):
            assert state in STAGE_EVENTS


async def test_progress_events_are_monotonic_and_complete(fakes):
    channel = ProgressChannel()
    orchestrator = PipelineOrchestrator(OWNER, progress=channel)
    await orchestrator.run(make_item("progress.jpg"))
    channel.close()

    events = [e async for e in channel]
    percents = [e.percent for e in events]
    assert percents == sorted(percents)
    assert events[-1].state == PipelineState.FINALIZED
    assert events[-1].percent == 100
    assert {e.subject_id for e in events} == {orchestrator.subject_id}


async def test_progress_reports_error_on_halt(fakes):
    fakes.detector.natural["bad.jpg"] = 5
    channel = ProgressChannel()
    orchestrator = PipelineOrchestrator(OWNER, progress=channel)
    with pytest.raises(SyntheticContentError):
        await orchestrator.run(make_item("bad.jpg"))

    events = channel.drain()
    assert events[-1].state == PipelineState.BLOCKED
    assert events[-1].status == AuditStatus.ERROR
