from enum import Enum
from typing import Optional

from pydantic import BaseModel


class LedgerErrorKind(str, Enum):
    MEDIA_NOT_FOUND = "MediaNotFound"
    MEDIA_NOT_REGISTERED = "MediaNotRegistered"
    MEDIA_ALREADY_REGISTERED = "MediaAlreadyRegistered"
    UNAUTHORIZED = "Unauthorized"
    NOT_OWNER = "NotOwner"
    ALREADY_DEREGISTERED = "AlreadyDeregistered"
    UNKNOWN = "UnknownLedgerError"


class LedgerRecord(BaseModel):
    """Result of getMedia(contentHash)."""

    media_cid: str
    metadata_cid: str
    owner: str
    timestamp: int = 0


class LedgerReceipt(BaseModel):
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    status: int = 1
    already_registered: bool = False


class UniquenessStatus(str, Enum):
    UNIQUE = "unique"
    DUPLICATE = "duplicate"
    LOOKUP_FAILED = "lookup_failed"


class UniquenessResult(BaseModel):
    status: UniquenessStatus
    fingerprint: str
    record: Optional[LedgerRecord] = None
    error: Optional[str] = None

    @property
    def is_unique(self) -> bool:
        return self.status == UniquenessStatus.UNIQUE
