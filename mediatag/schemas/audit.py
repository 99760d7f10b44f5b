from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    FILE_INGEST = "FILE_INGEST"
    AI_VERIFICATION = "AI_VERIFICATION"
    LEDGER_CHECK = "LEDGER_CHECK"
    WALLET_SIGN = "WALLET_SIGN"
    STORAGE_UPLOAD = "STORAGE_UPLOAD"
    REGISTRATION_COMPLETE = "REGISTRATION_COMPLETE"


class AuditStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class AuditEvent(BaseModel):
    id: str
    type: AuditEventType
    label: str
    timestamp_ms: int
    status: AuditStatus
    details: Optional[str] = None


class AuditTrail(BaseModel):
    """Ordered event log for one submission. Only AuditTrailLog appends to `events`."""

    subject_id: str
    events: List[AuditEvent] = Field(default_factory=list)
    last_updated: int
    linked_fingerprint: Optional[str] = None

    @property
    def last_event(self) -> Optional[AuditEvent]:
        return self.events[-1] if self.events else None
