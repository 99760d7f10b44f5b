"""
LedgerRegistrar — registration and deregistration transactions.

Reverts are decoded through the selector table in integrations.ledger into a
closed `LedgerErrorKind`; nothing here looks at revert message text.
"""

import logging

from mediatag.errors import (
    AlreadyDeregisteredError,
    LedgerTransactionError,
    NotRegisteredError,
    UnauthorizedError,
    UnknownLedgerError,
)
from mediatag.integrations import ledger as ledger_module
from mediatag.schemas.ledger import LedgerErrorKind, LedgerReceipt
from mediatag.services.hashing import format_fingerprint

logger = logging.getLogger(__name__)

REGISTER_STAGE = "Ledger Registration"
DEREGISTER_STAGE = "Ledger Deregistration"

_DEREGISTER_ERRORS = {
    LedgerErrorKind.MEDIA_NOT_FOUND: NotRegisteredError,
    LedgerErrorKind.MEDIA_NOT_REGISTERED: NotRegisteredError,
    LedgerErrorKind.UNAUTHORIZED: UnauthorizedError,
    LedgerErrorKind.NOT_OWNER: UnauthorizedError,
    LedgerErrorKind.ALREADY_DEREGISTERED: AlreadyDeregisteredError,
}

_MESSAGES = {
    LedgerErrorKind.MEDIA_NOT_FOUND: "This media is not registered on the ledger.",
    LedgerErrorKind.MEDIA_NOT_REGISTERED: "This media is not registered on the ledger.",
    LedgerErrorKind.MEDIA_ALREADY_REGISTERED: "This media is already registered on the ledger.",
    LedgerErrorKind.UNAUTHORIZED: "You are not authorized to modify this registration.",
    LedgerErrorKind.NOT_OWNER: "Only the original uploader can modify this registration.",
    LedgerErrorKind.ALREADY_DEREGISTERED: "This media has already been deregistered.",
}


def _translate(error: ledger_module.LedgerRpcError, stage: str, table: dict) -> LedgerTransactionError:
    if error.kind == LedgerErrorKind.UNKNOWN:
        return UnknownLedgerError(
            f"Ledger call failed: {error.message}", kind=error.kind, stage=stage
        )
    error_cls = table.get(error.kind, LedgerTransactionError)
    return error_cls(_MESSAGES.get(error.kind, error.message), kind=error.kind, stage=stage)


class LedgerRegistrar:
    async def register(
        self, media_cid: str, metadata_cid: str, fingerprint: str, owner_address: str
    ) -> LedgerReceipt:
        """Send registerMedia and block until the receipt is returned."""
        fp = format_fingerprint(fingerprint)

        try:
            tx_hash = await ledger_module.register_media(media_cid, metadata_cid, fp, owner_address)
        except ledger_module.LedgerRpcError as e:
            if e.kind == LedgerErrorKind.MEDIA_ALREADY_REGISTERED:
                logger.info(f"[LEDGER] {fp[:14]}… already registered; treating as success")
                return LedgerReceipt(already_registered=True)
            raise _translate(e, REGISTER_STAGE, {}) from e

        return await self._confirm(tx_hash, REGISTER_STAGE)

    async def deregister(self, fingerprint: str, owner_address: str) -> LedgerReceipt:
        """
        Remove a registration. The current uploader is looked up first so an
        obvious ownership mismatch never costs a transaction.
        """
        fp = format_fingerprint(fingerprint)

        try:
            record = await ledger_module.get_media(fp)
        except ledger_module.LedgerRpcError as e:
            raise _translate(e, DEREGISTER_STAGE, _DEREGISTER_ERRORS) from e

        if record.owner.lower() == ledger_module.ZERO_ADDRESS:
            raise NotRegisteredError(
                _MESSAGES[LedgerErrorKind.MEDIA_NOT_REGISTERED],
                kind=LedgerErrorKind.MEDIA_NOT_REGISTERED,
                stage=DEREGISTER_STAGE,
            )
        if record.owner.lower() != owner_address.lower():
            logger.warning(f"[LEDGER] Deregister of {fp[:14]}… refused: {owner_address} is not {record.owner}")
            raise UnauthorizedError(
                _MESSAGES[LedgerErrorKind.NOT_OWNER], kind=LedgerErrorKind.NOT_OWNER, stage=DEREGISTER_STAGE
            )

        try:
            tx_hash = await ledger_module.deregister_media(fp, owner_address)
        except ledger_module.LedgerRpcError as e:
            raise _translate(e, DEREGISTER_STAGE, _DEREGISTER_ERRORS) from e

        return await self._confirm(tx_hash, DEREGISTER_STAGE)

    async def _confirm(self, tx_hash: str, stage: str) -> LedgerReceipt:
        try:
            receipt = await ledger_module.wait_for_transaction(tx_hash)
        except ledger_module.LedgerRpcError as e:
            raise LedgerTransactionError(
                f"Could not confirm transaction {tx_hash}: {e.message}",
                kind=e.kind,
                tx_hash=tx_hash,
                stage=stage,
            ) from e

        if receipt.status != 1:
            raise LedgerTransactionError(
                "Transaction reverted on the ledger.", tx_hash=tx_hash, stage=stage
            )

        logger.info(f"[LEDGER] Confirmed {tx_hash} in block {receipt.block_number}")
        return receipt


ledger_registrar = LedgerRegistrar()
