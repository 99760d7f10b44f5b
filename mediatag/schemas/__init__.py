from mediatag.schemas.audit import AuditEvent, AuditEventType, AuditStatus, AuditTrail
from mediatag.schemas.ledger import (
    LedgerErrorKind,
    LedgerReceipt,
    LedgerRecord,
    UniquenessResult,
    UniquenessStatus,
)
from mediatag.schemas.media import DetectionResult, GateDecision, MediaItem, MediaKind, Reasoning, Verdict
from mediatag.schemas.pipeline import (
    BatchItemResult,
    BatchResult,
    ItemOutcome,
    PipelineState,
    ProgressEvent,
    RegistrationGranularity,
    RegistrationResult,
)
from mediatag.schemas.tags import MediaUrls, Tag, TagCreate, TagResponse, TagStatus, TagUpdate

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditStatus",
    "AuditTrail",
    "LedgerErrorKind",
    "LedgerReceipt",
    "LedgerRecord",
    "UniquenessResult",
    "UniquenessStatus",
    "DetectionResult",
    "GateDecision",
    "MediaItem",
    "MediaKind",
    "Reasoning",
    "Verdict",
    "BatchItemResult",
    "BatchResult",
    "ItemOutcome",
    "PipelineState",
    "ProgressEvent",
    "RegistrationGranularity",
    "RegistrationResult",
    "MediaUrls",
    "Tag",
    "TagCreate",
    "TagResponse",
    "TagStatus",
    "TagUpdate",
]
