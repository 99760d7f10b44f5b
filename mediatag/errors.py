"""
Registration error taxonomy.

Every failure a pipeline stage can raise is a `PipelineError` carrying the
stage label it was raised from and a user-facing message. Routes translate
these into `HTTPException` via `http_status`.
"""

from typing import Optional

from fastapi import HTTPException


class PipelineError(Exception):
    """Base class: one human-readable message, one raising stage."""

    http_status = 500
    default_stage = "Pipeline"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, "stage": self.stage}

    def to_http(self) -> HTTPException:
        return HTTPException(status_code=self.http_status, detail=self.to_dict())


class DuplicateMediaError(PipelineError):
    """The ledger already holds this fingerprint."""

    http_status = 409
    default_stage = "Uniqueness Check"

    def __init__(self, fingerprint: str, owner: str, media_cid: str = "", timestamp: int = 0):
        super().__init__(
            f"This media has already been registered on the ledger by {owner}.",
        )
        self.fingerprint = fingerprint
        self.owner = owner
        self.media_cid = media_cid
        self.timestamp = timestamp


class SyntheticContentError(PipelineError):
    http_status = 422
    default_stage = "AI Verification"

    def __init__(self, natural_probability: int):
        super().__init__(
            f"SYNTHETIC content detected ({natural_probability}% natural). "
            "Please try another media file."
        )
        self.natural_probability = natural_probability


class LookupIndeterminateError(PipelineError):
    """Uniqueness lookup failed in a way that is not a recognised 'not found'."""

    http_status = 503
    default_stage = "Uniqueness Check"


class DetectionError(PipelineError):
    http_status = 502
    default_stage = "AI Verification"


class StorageUploadError(PipelineError):
    http_status = 502
    default_stage = "Storage Upload"


class RecordConflictError(PipelineError):
    """Fingerprint or CID already present in the record store."""

    http_status = 409
    default_stage = "Record Store"

    def __init__(self, field: str, value: str):
        super().__init__(f"{field} already exists")
        self.field = field
        self.value = value


DuplicateRecordError = RecordConflictError


class RecordValidationError(PipelineError):
    http_status = 400
    default_stage = "Record Store"


class RecordStoreUnavailableError(PipelineError):
    http_status = 503
    default_stage = "Record Store"


class TagNotFoundError(PipelineError):
    http_status = 404
    default_stage = "Record Store"

    def __init__(self, tag_id: str):
        super().__init__("Tag not found")
        self.tag_id = tag_id


class InvalidFingerprintError(PipelineError):
    http_status = 400
    default_stage = "Hashing"


class LedgerTransactionError(PipelineError):
    """Ledger call reverted or the transaction could not be confirmed."""

    http_status = 502
    default_stage = "Ledger Registration"

    def __init__(self, message: str, kind=None, tx_hash: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(message, stage)
        self.kind = kind
        self.tx_hash = tx_hash


class NotRegisteredError(LedgerTransactionError):
    http_status = 409


class UnauthorizedError(LedgerTransactionError):
    http_status = 403


class AlreadyDeregisteredError(LedgerTransactionError):
    http_status = 409


class UnknownLedgerError(LedgerTransactionError):
    pass


class NetworkError(PipelineError):
    """Generic transport failure talking to any collaborator."""

    http_status = 502
    default_stage = "Network"
