"""
Withdraws a registered Tag: ledger deregistration, unpinning, record delete.

The ledger is authoritative, so it goes first; storage and the record store
are only cleaned up once the deregistration transaction is confirmed.
"""

import logging

from mediatag.errors import PipelineError, UnauthorizedError
from mediatag.schemas.ledger import LedgerErrorKind, LedgerReceipt
from mediatag.services.ledger_service import DEREGISTER_STAGE, ledger_registrar
from mediatag.services.storage_service import storage_uploader
from mediatag.services.tag_service import metadata_recorder

logger = logging.getLogger(__name__)


async def deregister_tag(tag_id: str, owner_address: str) -> LedgerReceipt:
    tag = metadata_recorder.get_tag(tag_id, count_view=False)
    if tag.owner_address.lower() != owner_address.lower():
        raise UnauthorizedError(
            "Only the original uploader can deregister this media.",
            kind=LedgerErrorKind.NOT_OWNER,
            stage=DEREGISTER_STAGE,
        )

    receipt = await ledger_registrar.deregister(tag.fingerprint, owner_address)

    try:
        await storage_uploader.unpin_all([tag.media_cid, tag.metadata_cid])
    except PipelineError as e:
        # Already off the ledger; leftover pins must not keep the record alive.
        logger.warning(f"[PIN] Unpin after deregistration of {tag_id} failed: {e.message}")

    await metadata_recorder.delete_tag(tag_id)
    logger.info(f"[LEDGER] Tag {tag_id} deregistered (tx {receipt.tx_hash})")
    return receipt
