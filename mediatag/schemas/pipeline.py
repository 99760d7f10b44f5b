from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from mediatag.schemas.audit import AuditStatus, AuditTrail
from mediatag.schemas.media import Verdict
from mediatag.schemas.tags import Tag


class PipelineState(str, Enum):
    HASHING = "hashing"
    CHECKING_UNIQUENESS = "checking_uniqueness"
    CLASSIFYING = "classifying"
    UPLOADING = "uploading"
    RECORDING = "recording"
    REGISTERING = "registering"
    FINALIZED = "finalized"
    BLOCKED = "blocked"
    FAILED = "failed"


# Forward order of the non-terminal states; BLOCKED / FAILED may follow any of them.
STATE_ORDER = [
    PipelineState.HASHING,
    PipelineState.CHECKING_UNIQUENESS,
    PipelineState.CLASSIFYING,
    PipelineState.UPLOADING,
    PipelineState.RECORDING,
    PipelineState.REGISTERING,
    PipelineState.FINALIZED,
]

TERMINAL_STATES = {PipelineState.FINALIZED, PipelineState.BLOCKED, PipelineState.FAILED}


class RegistrationGranularity(str, Enum):
    PER_ITEM = "per_item"
    PER_BATCH = "per_batch"


class ItemOutcome(str, Enum):
    REGISTERED = "Registered"
    EXCLUDED_SYNTHETIC = "ExcludedSynthetic"
    EXCLUDED_DUPLICATE = "ExcludedDuplicate"
    FAILED = "Failed"


class ProgressEvent(BaseModel):
    subject_id: str
    state: PipelineState
    status: AuditStatus
    percent: float = Field(ge=0, le=100)
    item_index: Optional[int] = None
    message: str = ""


class RegistrationResult(BaseModel):
    tag: Tag
    fingerprint: str
    verdict: Verdict
    flagged: bool = False
    tx_hash: Optional[str] = None
    already_registered: bool = False
    audit_trail: AuditTrail


class BatchItemResult(BaseModel):
    index: int
    display_name: str
    outcome: ItemOutcome
    reason: Optional[str] = None
    fingerprint: Optional[str] = None
    verdict: Optional[Verdict] = None
    natural_probability: Optional[int] = None
    subject_id: Optional[str] = None


class BatchResult(BaseModel):
    per_item: List[BatchItemResult] = Field(default_factory=list)
    succeeded_count: int = 0
    excluded_count: int = 0
    failed_count: int = 0
    tags: List[Tag] = Field(default_factory=list)
    audit_trail: Optional[AuditTrail] = None
