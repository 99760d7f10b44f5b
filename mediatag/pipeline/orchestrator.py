"""
PipelineOrchestrator — forward-only registration state machine for one submission.

    HASHING → CHECKING_UNIQUENESS → CLASSIFYING → UPLOADING → RECORDING → REGISTERING → FINALIZED
                    │                    │
                    └──── BLOCKED ───────┘        (any stage may end in FAILED)

Every stage appends one PENDING audit event on entry and exactly one SUCCESS
or ERROR event on exit. The orchestrator owns its `AuditTrail` and threads it
through every stage; a batch may hand several orchestrators the same trail.

The single-item path is `run()`. The batch path drives the same stages
piecewise: `screen()` per item, `upload()` per survivor, then one
`record_and_register()` over every pinned survivor.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional, Tuple

from mediatag.errors import (
    DuplicateMediaError,
    LookupIndeterminateError,
    PipelineError,
    SyntheticContentError,
)
from mediatag.integrations import pinning as pinning_module
from mediatag.pipeline.progress import ProgressChannel
from mediatag.schemas.audit import AuditEventType, AuditStatus, AuditTrail
from mediatag.schemas.ledger import UniquenessStatus
from mediatag.schemas.media import MediaItem
from mediatag.schemas.pipeline import (
    STATE_ORDER,
    TERMINAL_STATES,
    PipelineState,
    ProgressEvent,
    RegistrationResult,
)
from mediatag.schemas.tags import MediaUrls, TagCreate, TagStatus
from mediatag.services.audit_service import AuditTrailLog, audit_log
from mediatag.services.classifier_service import (
    AuthenticityClassifier,
    Classification,
    authenticity_classifier,
)
from mediatag.services.hashing import compute_fingerprint
from mediatag.services.ledger_service import LedgerRegistrar, ledger_registrar
from mediatag.services.storage_service import (
    StorageUploader,
    build_metadata_document,
    media_entry,
    storage_uploader,
)
from mediatag.services.tag_service import MetadataRecorder, metadata_recorder
from mediatag.services.uniqueness_service import UniquenessVerifier, uniqueness_verifier

logger = logging.getLogger(__name__)

STAGE_EVENTS = {
    PipelineState.HASHING: AuditEventType.FILE_INGEST,
    PipelineState.CHECKING_UNIQUENESS: AuditEventType.LEDGER_CHECK,
    PipelineState.CLASSIFYING: AuditEventType.AI_VERIFICATION,
    PipelineState.UPLOADING: AuditEventType.STORAGE_UPLOAD,
    PipelineState.RECORDING: AuditEventType.STORAGE_UPLOAD,
    PipelineState.REGISTERING: AuditEventType.WALLET_SIGN,
    PipelineState.FINALIZED: AuditEventType.REGISTRATION_COMPLETE,
}

STAGE_LABELS = {
    PipelineState.HASHING: "Fingerprinting",
    PipelineState.CHECKING_UNIQUENESS: "Ledger uniqueness check",
    PipelineState.CLASSIFYING: "AI verification",
    PipelineState.UPLOADING: "Pinning media",
    PipelineState.RECORDING: "Recording metadata",
    PipelineState.REGISTERING: "Ledger registration",
    PipelineState.FINALIZED: "Registration complete",
}

# Halting outcomes that are a verdict on the content, not a malfunction.
BLOCKING_ERRORS = (DuplicateMediaError, SyntheticContentError)


@dataclass
class ScreenedItem:
    """An item that passed hashing, uniqueness and classification."""

    item: MediaItem
    fingerprint: str
    classification: Classification
    index: Optional[int] = None


@dataclass
class PinnedItem:
    screened: ScreenedItem
    media_cid: str
    media_url: str


class PipelineOrchestrator:
    def __init__(
        self,
        owner_address: str,
        progress: Optional[ProgressChannel] = None,
        trail: Optional[AuditTrail] = None,
        subject_id: Optional[str] = None,
        item_index: Optional[int] = None,
        percent_span: Tuple[float, float] = (0.0, 100.0),
        audit: AuditTrailLog = audit_log,
        uniqueness: UniquenessVerifier = uniqueness_verifier,
        classifier: AuthenticityClassifier = authenticity_classifier,
        storage: StorageUploader = storage_uploader,
        recorder: MetadataRecorder = metadata_recorder,
        registrar: LedgerRegistrar = ledger_registrar,
    ):
        self.owner_address = owner_address
        self.progress = progress
        self.audit = audit
        self.trail = trail if trail is not None else audit.start(subject_id)
        self.item_index = item_index
        self.percent_span = percent_span
        self.state: Optional[PipelineState] = None
        self.fingerprint: Optional[str] = None

        self.uniqueness = uniqueness
        self.classifier = classifier
        self.storage = storage
        self.recorder = recorder
        self.registrar = registrar

        self._tag_id: Optional[str] = None
        self._audit_trail_ref: Optional[str] = None

    @property
    def subject_id(self) -> str:
        return self.trail.subject_id

    # ------------------------------------------------------------------ #
    # State machine                                                       #
    # ------------------------------------------------------------------ #

    def _transition(self, new_state: PipelineState) -> None:
        current = self.state
        if current in TERMINAL_STATES:
            raise RuntimeError(f"Pipeline already {current.value}; cannot move to {new_state.value}")
        if new_state not in (PipelineState.BLOCKED, PipelineState.FAILED) and current is not None:
            if STATE_ORDER.index(new_state) <= STATE_ORDER.index(current):
                raise RuntimeError(f"Illegal backward transition {current.value} → {new_state.value}")
        self.state = new_state

    def _percent(self, state: PipelineState, done: bool) -> float:
        lo, hi = self.percent_span
        if state not in STATE_ORDER:
            return lo
        position = STATE_ORDER.index(state) + (1 if done else 0)
        return round(lo + (hi - lo) * position / len(STATE_ORDER), 2)

    def _emit(self, state: PipelineState, status: AuditStatus, message: str, percent: float) -> None:
        if self.progress is None:
            return
        self.progress.emit(ProgressEvent(
            subject_id=self.subject_id,
            state=state,
            status=status,
            percent=percent,
            item_index=self.item_index,
            message=message,
        ))

    @asynccontextmanager
    async def _stage(self, state: PipelineState):
        """
        Enter `state`, yield a dict whose "details" becomes the SUCCESS event
        details, and close the stage with exactly one SUCCESS or ERROR event.
        """
        self._transition(state)
        event_type = STAGE_EVENTS[state]
        label = STAGE_LABELS[state]
        self.audit.append(self.trail, event_type, label, AuditStatus.PENDING)
        self._emit(state, AuditStatus.PENDING, label, self._percent(state, done=False))

        outcome = {"details": None}
        try:
            yield outcome
        except PipelineError as e:
            self._halt(state, e.message, blocked=isinstance(e, BLOCKING_ERRORS), stage_label=e.stage)
            raise
        except Exception as e:
            self._halt(state, f"Unexpected error: {e}", blocked=False)
            raise

        self.audit.append(self.trail, event_type, label, AuditStatus.SUCCESS, outcome["details"])
        self._emit(state, AuditStatus.SUCCESS, outcome["details"] or label, self._percent(state, done=True))

    def _halt(self, state: PipelineState, message: str, blocked: bool, stage_label: Optional[str] = None) -> None:
        details = f"[{stage_label}] {message}" if stage_label else message
        self.audit.append(self.trail, STAGE_EVENTS[state], STAGE_LABELS[state], AuditStatus.ERROR, details)
        self._transition(PipelineState.BLOCKED if blocked else PipelineState.FAILED)
        self._emit(self.state, AuditStatus.ERROR, message, self._percent(state, done=False))
        logger.warning(f"[PIPELINE] {self.subject_id[:8]} {state.value} → {self.state.value}: {message}")

        if self._audit_trail_ref:
            # The Tag already references a persisted trail; keep it in step with the failure.
            try:
                self.recorder.sync_audit_trail(self._audit_trail_ref, self.trail)
            except PipelineError as e:
                logger.warning(f"[PIPELINE] Could not persist failed trail {self.subject_id}: {e.message}")

    # ------------------------------------------------------------------ #
    # Stages                                                              #
    # ------------------------------------------------------------------ #

    async def screen(self, item: MediaItem) -> ScreenedItem:
        """Hash, check uniqueness and classify. Raises on duplicate, synthetic or lookup failure."""
        async with self._stage(PipelineState.HASHING) as outcome:
            fingerprint = compute_fingerprint(item.raw_bytes)
            self.fingerprint = fingerprint
            if self.trail.linked_fingerprint is None:
                self.audit.link(self.trail, fingerprint)
            outcome["details"] = f"{item.display_name}: {fingerprint}"

        async with self._stage(PipelineState.CHECKING_UNIQUENESS) as outcome:
            result = await self.uniqueness.check(fingerprint)
            if result.status == UniquenessStatus.DUPLICATE:
                record = result.record
                raise DuplicateMediaError(fingerprint, record.owner, record.media_cid, record.timestamp)
            if result.status == UniquenessStatus.LOOKUP_FAILED:
                raise LookupIndeterminateError(
                    f"Could not verify uniqueness on the ledger: {result.error}"
                )
            outcome["details"] = "Fingerprint not yet registered"

        async with self._stage(PipelineState.CLASSIFYING) as outcome:
            classification = await self.classifier.classify(item)
            if classification.blocked:
                raise SyntheticContentError(classification.result.natural_probability)
            details = classification.summary
            if classification.flagged:
                details += " (flagged INCONCLUSIVE)"
            outcome["details"] = details

        return ScreenedItem(
            item=item,
            fingerprint=fingerprint,
            classification=classification,
            index=self.item_index,
        )

    async def upload(self, screened: ScreenedItem, from_source: bool = False) -> PinnedItem:
        """
        Pin the media object. With `from_source`, the detector-hosted copy is
        re-fetched and pinned instead of the bytes held in memory.
        """
        async with self._stage(PipelineState.UPLOADING) as outcome:
            item = screened.item
            storage_ref = screened.classification.result.storage_ref
            if from_source and storage_ref:
                data = await self.storage.fetch_source(storage_ref)
            else:
                data = item.raw_bytes
            media_cid = await self.storage.pin_media(item.display_name, data, item.content_type)
            outcome["details"] = f"{item.display_name} → {media_cid}"

        return PinnedItem(
            screened=screened,
            media_cid=media_cid,
            media_url=storage_ref or pinning_module.gateway_url(media_cid),
        )

    async def record_and_register(
        self,
        pinned: List[PinnedItem],
        collection_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> RegistrationResult:
        """
        Pin the metadata document, record one Tag covering every pinned item,
        then register it on the ledger. A `collection_name` marks a batch
        submission and produces the collection metadata layout.
        """
        if not pinned:
            raise ValueError("record_and_register needs at least one pinned item")

        primary = pinned[0].screened
        fingerprint = primary.fingerprint
        self.audit.link(self.trail, fingerprint)

        async with self._stage(PipelineState.RECORDING) as outcome:
            files = [
                media_entry(
                    name=p.screened.item.display_name,
                    description=p.screened.item.description,
                    media_kind=p.screened.item.media_kind.value,
                    fingerprint=p.screened.fingerprint,
                    detection=p.screened.classification.result.model_dump(mode="json", by_alias=True),
                    verdict=p.screened.classification.verdict.value,
                    flagged=p.screened.classification.flagged,
                    media_cid=p.media_cid,
                    source_url=p.media_url,
                )
                for p in pinned
            ]
            document = build_metadata_document(
                files,
                self.owner_address,
                collection_name=collection_name,
                collection_description=description or "",
            )
            metadata_cid = await self.storage.pin_metadata(
                document, "bulk-metadata.json" if document["isBulkUpload"] else "metadata.json"
            )

            media_urls = MediaUrls()
            for p in pinned:
                media_urls.for_kind(p.screened.item.media_kind).append(p.media_url)

            media_cid = ",".join(p.media_cid for p in pinned)
            tag = self.recorder.create_tag(
                TagCreate(
                    file_name=collection_name or primary.item.display_name,
                    description=description if description is not None else primary.item.description,
                    fingerprint=fingerprint,
                    media_cid=media_cid,
                    metadata_cid=metadata_cid,
                    owner_address=self.owner_address,
                    media_kind=primary.item.media_kind,
                    media_urls=media_urls,
                    file_size=sum(p.screened.item.size for p in pinned),
                    status=TagStatus.PENDING,
                ),
                audit_trail=self.trail,
            )
            self._tag_id = tag.id
            self._audit_trail_ref = tag.audit_trail_ref
            outcome["details"] = f"Tag {tag.id}, metadata {metadata_cid}"

        async with self._stage(PipelineState.REGISTERING) as outcome:
            receipt = await self.registrar.register(media_cid, metadata_cid, fingerprint, self.owner_address)
            tag = self.recorder.set_status(tag.id, TagStatus.ACTIVE)
            outcome["details"] = (
                "Already registered on the ledger" if receipt.already_registered
                else f"Transaction {receipt.tx_hash}"
            )

        self._transition(PipelineState.FINALIZED)
        self.audit.append(
            self.trail,
            STAGE_EVENTS[PipelineState.FINALIZED],
            STAGE_LABELS[PipelineState.FINALIZED],
            AuditStatus.SUCCESS,
            f"{len(pinned)} file(s) registered as {fingerprint}",
        )
        self._emit(PipelineState.FINALIZED, AuditStatus.SUCCESS, "Registration complete", self.percent_span[1])
        if self._audit_trail_ref:
            self.recorder.sync_audit_trail(self._audit_trail_ref, self.trail)
        self.audit.finalize(self.trail)

        logger.info(f"[PIPELINE] {self.subject_id[:8]} finalized: tag {tag.id} ({len(pinned)} file(s))")
        return RegistrationResult(
            tag=tag,
            fingerprint=fingerprint,
            verdict=primary.classification.verdict,
            flagged=primary.classification.flagged,
            tx_hash=receipt.tx_hash,
            already_registered=receipt.already_registered,
            audit_trail=self.trail,
        )

    async def run(self, item: MediaItem) -> RegistrationResult:
        """
        Full single-item registration. Domain errors propagate to the caller;
        the trail (with its terminal ERROR event) stays on `self.trail`.
        """
        logger.info(f"[PIPELINE] {self.subject_id[:8]} start: {item.display_name} ({item.size} bytes)")
        screened = await self.screen(item)
        pinned = await self.upload(screened)
        return await self.record_and_register([pinned])
