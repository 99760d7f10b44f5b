"""
BatchOrchestrator — sequential multi-file registration with per-item isolation.

Items are processed strictly one at a time. A failure, duplicate or
synthetic verdict on one item is recorded in its BatchItemResult and the
loop moves on; it never aborts the batch.

Granularity:
    per_batch → every item is screened first; survivors are pinned one by one
                from the detector-hosted copy, then one metadata document,
                one Tag and one ledger transaction cover all of them.
    per_item  → each item runs the full pipeline and gets its own Tag.
"""

import logging
import os
from typing import Callable, Dict, List, Optional

import psutil

from mediatag.config import settings
from mediatag.errors import DuplicateMediaError, PipelineError, SyntheticContentError
from mediatag.pipeline.orchestrator import PinnedItem, PipelineOrchestrator, ScreenedItem
from mediatag.pipeline.progress import ProgressChannel
from mediatag.schemas.audit import AuditEventType, AuditStatus
from mediatag.schemas.media import MediaItem
from mediatag.schemas.pipeline import (
    BatchItemResult,
    BatchResult,
    ItemOutcome,
    PipelineState,
    ProgressEvent,
    RegistrationGranularity,
)
from mediatag.services.audit_service import AuditTrailLog, audit_log

logger = logging.getLogger(__name__)


def log_memory(stage: str) -> None:
    """Log current process and system memory usage. Only runs when DEBUG logging is active."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    process = psutil.Process(os.getpid())
    mem_info = process.memory_info()
    sys_mem = psutil.virtual_memory()
    logger.debug(
        f"[MEMORY] {stage} | "
        f"Process RSS: {mem_info.rss / 1024 / 1024:.2f} MB | "
        f"System Available: {sys_mem.available / 1024 / 1024:.2f} MB"
    )


def outcome_for(error: Exception) -> ItemOutcome:
    if isinstance(error, SyntheticContentError):
        return ItemOutcome.EXCLUDED_SYNTHETIC
    if isinstance(error, DuplicateMediaError):
        return ItemOutcome.EXCLUDED_DUPLICATE
    return ItemOutcome.FAILED


def reason_for(error: Exception) -> str:
    if isinstance(error, PipelineError):
        return error.message
    return f"Unexpected error: {error}"


class BatchOrchestrator:
    def __init__(
        self,
        owner_address: str,
        granularity: Optional[RegistrationGranularity] = None,
        progress: Optional[ProgressChannel] = None,
        audit: AuditTrailLog = audit_log,
        orchestrator_factory: Callable[..., PipelineOrchestrator] = PipelineOrchestrator,
    ):
        self.owner_address = owner_address
        self.granularity = granularity or RegistrationGranularity(settings.registration_granularity)
        self.progress = progress
        self.audit = audit
        self._new_orchestrator = orchestrator_factory

    async def run(
        self,
        items: List[MediaItem],
        collection_name: Optional[str] = None,
        description: str = "",
    ) -> BatchResult:
        if not items:
            raise ValueError("A batch needs at least one item")
        if len(items) > settings.batch_max_items:
            raise ValueError(f"A batch accepts at most {settings.batch_max_items} items")

        logger.info(
            f"[BATCH] {len(items)} item(s), granularity={self.granularity.value}, owner={self.owner_address}"
        )
        try:
            if self.granularity == RegistrationGranularity.PER_ITEM:
                result = await self._run_per_item(items)
            else:
                result = await self._run_per_batch(items, collection_name, description)
        finally:
            if self.progress is not None:
                self.progress.close()

        result.succeeded_count = sum(1 for r in result.per_item if r.outcome == ItemOutcome.REGISTERED)
        result.excluded_count = sum(
            1 for r in result.per_item
            if r.outcome in (ItemOutcome.EXCLUDED_SYNTHETIC, ItemOutcome.EXCLUDED_DUPLICATE)
        )
        result.failed_count = sum(1 for r in result.per_item if r.outcome == ItemOutcome.FAILED)

        logger.info(
            f"[BATCH] Done: {result.succeeded_count} registered, {result.excluded_count} excluded, "
            f"{result.failed_count} failed"
        )
        return result

    def _span(self, index: int, total: int) -> tuple:
        return (index / total * 100, (index + 1) / total * 100)

    def _item_done(self, orchestrator: PipelineOrchestrator, entry: BatchItemResult, total: int) -> None:
        if self.progress is None:
            return
        failed = orchestrator.state in (PipelineState.BLOCKED, PipelineState.FAILED)
        self.progress.emit(ProgressEvent(
            subject_id=orchestrator.subject_id,
            state=orchestrator.state or PipelineState.HASHING,
            status=AuditStatus.ERROR if failed else AuditStatus.SUCCESS,
            percent=round((entry.index + 1) / total * 100, 2),
            item_index=entry.index,
            message=f"Item {entry.index + 1}/{total} {entry.display_name}: {entry.reason or entry.verdict.value}",
        ))

    # ------------------------------------------------------------------ #
    # per_item                                                            #
    # ------------------------------------------------------------------ #

    async def _run_per_item(self, items: List[MediaItem]) -> BatchResult:
        result = BatchResult()
        total = len(items)

        for index, item in enumerate(items):
            orchestrator = self._new_orchestrator(
                self.owner_address,
                progress=self.progress,
                item_index=index,
                percent_span=self._span(index, total),
            )
            entry = BatchItemResult(
                index=index,
                display_name=item.display_name,
                outcome=ItemOutcome.REGISTERED,
                subject_id=orchestrator.subject_id,
            )
            try:
                registration = await orchestrator.run(item)
            except Exception as e:
                if not isinstance(e, PipelineError):
                    logger.exception(f"[BATCH] Item {index + 1}/{total} {item.display_name} crashed")
                entry.outcome = outcome_for(e)
                entry.reason = reason_for(e)
                entry.fingerprint = orchestrator.fingerprint
                entry.natural_probability = getattr(e, "natural_probability", None)
            else:
                entry.fingerprint = registration.fingerprint
                entry.verdict = registration.verdict
                result.tags.append(registration.tag)

            result.per_item.append(entry)
            self._item_done(orchestrator, entry, total)
            log_memory(f"after item {index + 1}/{total}")

        return result

    # ------------------------------------------------------------------ #
    # per_batch                                                           #
    # ------------------------------------------------------------------ #

    async def _run_per_batch(
        self, items: List[MediaItem], collection_name: Optional[str], description: str
    ) -> BatchResult:
        trail = self.audit.start()
        result = BatchResult(audit_trail=trail)
        total = len(items)

        entries: Dict[int, BatchItemResult] = {}
        survivors: List[tuple] = []

        for index, item in enumerate(items):
            orchestrator = self._new_orchestrator(
                self.owner_address,
                progress=self.progress,
                trail=trail,
                item_index=index,
                percent_span=self._span(index, total),
            )
            entry = BatchItemResult(
                index=index,
                display_name=item.display_name,
                outcome=ItemOutcome.REGISTERED,
                subject_id=trail.subject_id,
            )
            entries[index] = entry
            try:
                screened: ScreenedItem = await orchestrator.screen(item)
            except Exception as e:
                if not isinstance(e, PipelineError):
                    logger.exception(f"[BATCH] Screening item {index + 1}/{total} {item.display_name} crashed")
                entry.outcome = outcome_for(e)
                entry.reason = reason_for(e)
                entry.natural_probability = getattr(e, "natural_probability", None)
                entry.fingerprint = orchestrator.fingerprint
            else:
                entry.fingerprint = screened.fingerprint
                entry.verdict = screened.classification.verdict
                entry.natural_probability = screened.classification.result.natural_probability
                survivors.append((orchestrator, screened))
            self._item_done(orchestrator, entry, total)
            log_memory(f"after screening item {index + 1}/{total}")

        pinned: List[PinnedItem] = []
        for orchestrator, screened in survivors:
            try:
                pinned.append(await orchestrator.upload(screened, from_source=True))
            except Exception as e:
                if not isinstance(e, PipelineError):
                    logger.exception(f"[BATCH] Pinning {screened.item.display_name} crashed")
                entry = entries[screened.index]
                entry.outcome = ItemOutcome.FAILED
                entry.reason = reason_for(e)

        result.per_item = [entries[i] for i in range(total)]

        if not pinned:
            self.audit.append(
                trail,
                AuditEventType.REGISTRATION_COMPLETE,
                "Registration complete",
                AuditStatus.ERROR,
                "No files eligible for registration",
            )
            logger.warning(f"[BATCH] {trail.subject_id[:8]} no survivors; nothing registered")
            return result

        collection = self._new_orchestrator(self.owner_address, progress=self.progress, trail=trail)
        try:
            registration = await collection.record_and_register(
                pinned,
                collection_name=collection_name or settings.default_collection_name,
                description=description,
            )
        except Exception as e:
            if not isinstance(e, PipelineError):
                logger.exception(f"[BATCH] {trail.subject_id[:8]} collection registration crashed")
            for p in pinned:
                entry = entries[p.screened.index]
                entry.outcome = ItemOutcome.FAILED
                entry.reason = reason_for(e)
            return result

        result.tags.append(registration.tag)
        result.audit_trail = registration.audit_trail
        return result
