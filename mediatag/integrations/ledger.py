"""
Registry contract access over a JSON-RPC 2.0 gateway.

Methods relayed to the contract:
    getMedia(contentHash)                                → {mediaCid, metadataCid, uploader, timestamp}
    registerMedia(mediaCid, metadataCid, contentHash, from) → txHash
    deregisterMedia(contentHash, from)                   → txHash
    waitForTransaction(txHash)                           → receipt (blocks until mined)

Reverts come back as a JSON-RPC error whose `data` is the ABI-encoded custom
error; its first 4 bytes select the error kind. The selector table below is
derived from the contract's error signatures, never from message text.
"""

import asyncio
import itertools
import logging
from typing import Any, Optional

import aiohttp

from mediatag.config import settings
from mediatag.errors import NetworkError
from mediatag.integrations import http_client as http_module
from mediatag.schemas.ledger import LedgerErrorKind, LedgerReceipt, LedgerRecord
from mediatag.services.hashing import keccak256

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40

ERROR_SIGNATURES = {
    "MediaNotFound(bytes32)": LedgerErrorKind.MEDIA_NOT_FOUND,
    "MediaNotRegistered(bytes32)": LedgerErrorKind.MEDIA_NOT_REGISTERED,
    "MediaAlreadyRegistered(bytes32)": LedgerErrorKind.MEDIA_ALREADY_REGISTERED,
    "Unauthorized()": LedgerErrorKind.UNAUTHORIZED,
    "NotOwner()": LedgerErrorKind.NOT_OWNER,
    "AlreadyDeregistered(bytes32)": LedgerErrorKind.ALREADY_DEREGISTERED,
}


def error_selector(signature: str) -> str:
    return "0x" + keccak256(signature.encode()).hex()[:8]


ERROR_SELECTORS = {error_selector(sig): kind for sig, kind in ERROR_SIGNATURES.items()}


def decode_error(data: Optional[str]) -> LedgerErrorKind:
    """Map revert data to a closed error kind; anything unrecognised is UNKNOWN."""
    if not isinstance(data, str) or len(data) < 10:
        return LedgerErrorKind.UNKNOWN
    return ERROR_SELECTORS.get(data[:10].lower(), LedgerErrorKind.UNKNOWN)


class LedgerRpcError(Exception):
    """A JSON-RPC level failure reported by the gateway (revert or malformed payload)."""

    def __init__(self, message: str, code: Optional[int] = None, data: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data
        self.kind = decode_error(data)


_request_ids = itertools.count(1)


async def _call(method: str, params: list, stage: str) -> Any:
    payload = {
        "jsonrpc": "2.0",
        "id": next(_request_ids),
        "method": method,
        "params": params,
    }
    if settings.ledger_contract_address:
        payload["contract"] = settings.ledger_contract_address

    try:
        async with http_module.request_session() as session:
            async with session.post(
                settings.ledger_rpc_url,
                json=payload,
                timeout=http_module.timeout(settings.ledger_timeout_sec),
            ) as response:
                if response.status >= 500:
                    error_text = await response.text()
                    raise NetworkError(
                        f"Ledger gateway error {response.status}: {error_text[:200]}", stage=stage
                    )
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    raise LedgerRpcError(f"Malformed ledger response to {method}: {e}") from e
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise NetworkError(f"Could not reach ledger: {e}", stage=stage) from e

    if not isinstance(body, dict):
        raise LedgerRpcError(f"Malformed ledger response to {method}")

    error = body.get("error")
    if error:
        if not isinstance(error, dict):
            raise LedgerRpcError(str(error))
        raise LedgerRpcError(
            error.get("message", "execution reverted"),
            code=error.get("code"),
            data=error.get("data"),
        )

    if "result" not in body:
        raise LedgerRpcError(f"Ledger response to {method} has no result")
    return body["result"]


def _parse_record(result: Any) -> LedgerRecord:
    if isinstance(result, dict):
        fields = (
            result.get("mediaCid"),
            result.get("metadataCid"),
            result.get("uploader"),
            result.get("timestamp", 0),
        )
    elif isinstance(result, (list, tuple)) and len(result) == 4:
        fields = tuple(result)
    else:
        raise LedgerRpcError("Malformed getMedia result")

    media_cid, metadata_cid, uploader, timestamp = fields
    if not isinstance(uploader, str):
        raise LedgerRpcError("Malformed getMedia result: uploader missing")
    try:
        ts = int(timestamp, 16) if isinstance(timestamp, str) and timestamp.startswith("0x") else int(timestamp or 0)
    except (TypeError, ValueError) as e:
        raise LedgerRpcError(f"Malformed getMedia timestamp: {timestamp!r}") from e

    return LedgerRecord(
        media_cid=media_cid or "",
        metadata_cid=metadata_cid or "",
        owner=uploader,
        timestamp=ts,
    )


def _parse_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


async def get_media(fingerprint: str) -> LedgerRecord:
    result = await _call("getMedia", [fingerprint], stage="Uniqueness Check")
    return _parse_record(result)


async def register_media(media_cid: str, metadata_cid: str, fingerprint: str, sender: str) -> str:
    tx_hash = await _call(
        "registerMedia", [media_cid, metadata_cid, fingerprint, sender], stage="Ledger Registration"
    )
    logger.info(f"[LEDGER] registerMedia sent: {tx_hash}")
    return tx_hash


async def deregister_media(fingerprint: str, sender: str) -> str:
    tx_hash = await _call("deregisterMedia", [fingerprint, sender], stage="Ledger Deregistration")
    logger.info(f"[LEDGER] deregisterMedia sent: {tx_hash}")
    return tx_hash


async def wait_for_transaction(tx_hash: str) -> LedgerReceipt:
    """Blocks (server-side) until the transaction is mined; bounded by the transport timeout."""
    result = await _call("waitForTransaction", [tx_hash], stage="Ledger Registration")
    if not isinstance(result, dict):
        raise LedgerRpcError(f"Malformed receipt for {tx_hash}")
    try:
        status = _parse_int(result.get("status"))
        block_number = _parse_int(result.get("blockNumber"))
    except ValueError as e:
        raise LedgerRpcError(f"Malformed receipt for {tx_hash}: {e}") from e

    return LedgerReceipt(
        tx_hash=result.get("transactionHash", tx_hash),
        block_number=block_number,
        status=1 if status is None else status,
    )
