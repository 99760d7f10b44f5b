"""
UniquenessVerifier — classifies a fingerprint against the ledger.

    record found                                  → DUPLICATE
    revert decoded as MediaNotFound/NotRegistered → UNIQUE
    record with the zero address as uploader      → UNIQUE (empty struct)
    anything else                                 → LOOKUP_FAILED

Only the fixed "not found" kinds count as uniqueness. Network failures,
malformed payloads and undecodable reverts are indeterminate and must never
be read as "unique".
"""

import logging

from mediatag.errors import NetworkError
from mediatag.integrations import ledger as ledger_module
from mediatag.schemas.ledger import LedgerErrorKind, UniquenessResult, UniquenessStatus

logger = logging.getLogger(__name__)

NOT_FOUND_KINDS = frozenset({
    LedgerErrorKind.MEDIA_NOT_FOUND,
    LedgerErrorKind.MEDIA_NOT_REGISTERED,
})


class UniquenessVerifier:
    async def check(self, fingerprint: str) -> UniquenessResult:
        try:
            record = await ledger_module.get_media(fingerprint)
        except ledger_module.LedgerRpcError as e:
            if e.kind in NOT_FOUND_KINDS:
                logger.info(f"[LEDGER] {fingerprint[:14]}… not registered ({e.kind.value})")
                return UniquenessResult(status=UniquenessStatus.UNIQUE, fingerprint=fingerprint)
            logger.warning(f"[LEDGER] Indeterminate lookup for {fingerprint[:14]}…: {e.message} ({e.kind.value})")
            return UniquenessResult(
                status=UniquenessStatus.LOOKUP_FAILED,
                fingerprint=fingerprint,
                error=f"{e.kind.value}: {e.message}",
            )
        except NetworkError as e:
            logger.warning(f"[LEDGER] Lookup transport failure for {fingerprint[:14]}…: {e.message}")
            return UniquenessResult(
                status=UniquenessStatus.LOOKUP_FAILED, fingerprint=fingerprint, error=e.message
            )

        if record.owner.lower() == ledger_module.ZERO_ADDRESS:
            return UniquenessResult(status=UniquenessStatus.UNIQUE, fingerprint=fingerprint)

        logger.info(f"[LEDGER] Duplicate {fingerprint[:14]}… owned by {record.owner}")
        return UniquenessResult(
            status=UniquenessStatus.DUPLICATE, fingerprint=fingerprint, record=record
        )


uniqueness_verifier = UniquenessVerifier()
