"""Unit tests for mediatag/services/ledger_service.py against FakeLedger."""

from unittest.mock import AsyncMock

import pytest

from mediatag.errors import (
    AlreadyDeregisteredError,
    InvalidFingerprintError,
    LedgerTransactionError,
    NotRegisteredError,
    UnauthorizedError,
    UnknownLedgerError,
)
from mediatag.integrations import ledger as ledger_module
from mediatag.schemas.ledger import LedgerErrorKind, LedgerRecord
from mediatag.services.hashing import compute_fingerprint
from mediatag.services.ledger_service import ledger_registrar
from mediatag.services.uniqueness_service import uniqueness_verifier
from tests.fakes import OTHER_OWNER, OWNER, revert

FP = compute_fingerprint(b"ledger-service")


async def test_register_then_lookup_round_trip(fakes):
    receipt = await ledger_registrar.register("bafyA", "bafyM", FP, OWNER)

    assert receipt.status == 1
    assert receipt.tx_hash
    assert not receipt.already_registered

    result = await uniqueness_verifier.check(FP)
    assert result.record.owner == OWNER
    assert result.record.media_cid == "bafyA"
    assert result.record.metadata_cid == "bafyM"


async def test_register_formats_fingerprint(fakes):
    await ledger_registrar.register("bafyA", "bafyM", FP[2:].upper(), OWNER)
    assert FP in fakes.ledger.records


async def test_register_rejects_malformed_fingerprint_before_any_call(fakes):
    with pytest.raises(InvalidFingerprintError):
        await ledger_registrar.register("bafyA", "bafyM", "0x1234", OWNER)
    assert fakes.ledger.sent == []


async def test_already_registered_is_soft_success(fakes):
    fakes.ledger.records[FP] = LedgerRecord(media_cid="bafyA", metadata_cid="bafyM", owner=OWNER)
    receipt = await ledger_registrar.register("bafyA", "bafyM", FP, OWNER)
    assert receipt.already_registered is True
    assert receipt.tx_hash is None


async def test_reverted_receipt_raises(fakes):
    fakes.ledger.receipt_status = 0
    with pytest.raises(LedgerTransactionError) as exc:
        await ledger_registrar.register("bafyA", "bafyM", FP, OWNER)
    assert exc.value.tx_hash


async def test_undecodable_revert_is_unknown(fakes, monkeypatch):
    monkeypatch.setattr(
        ledger_module, "register_media",
        AsyncMock(side_effect=ledger_module.LedgerRpcError("execution reverted", data="0xfeedface")),
    )
    with pytest.raises(UnknownLedgerError) as exc:
        await ledger_registrar.register("bafyA", "bafyM", FP, OWNER)
    assert exc.value.kind == LedgerErrorKind.UNKNOWN


async def test_decoded_revert_keeps_its_kind(fakes, monkeypatch):
    monkeypatch.setattr(ledger_module, "register_media", AsyncMock(side_effect=revert("Unauthorized()")))
    with pytest.raises(LedgerTransactionError) as exc:
        await ledger_registrar.register("bafyA", "bafyM", FP, OWNER)
    assert exc.value.kind == LedgerErrorKind.UNAUTHORIZED


# ---------------------------------------------------------------------------
# deregister
# ---------------------------------------------------------------------------


async def test_deregister_by_owner(fakes):
    await ledger_registrar.register("bafyA", "bafyM", FP, OWNER)
    receipt = await ledger_registrar.deregister(FP, OWNER.upper().replace("0X", "0x"))

    assert receipt.status == 1
    assert FP not in fakes.ledger.records


async def test_deregister_by_other_address_is_refused_without_transaction(fakes):
    await ledger_registrar.register("bafyA", "bafyM", FP, OWNER)
    sent_before = len(fakes.ledger.sent)

    with pytest.raises(UnauthorizedError) as exc:
        await ledger_registrar.deregister(FP, OTHER_OWNER)

    assert exc.value.http_status == 403
    assert len(fakes.ledger.sent) == sent_before


async def test_deregister_unknown_fingerprint(fakes):
    with pytest.raises(NotRegisteredError):
        await ledger_registrar.deregister(FP, OWNER)


async def test_deregister_zero_address_record(fakes):
    fakes.ledger.records[FP] = LedgerRecord(media_cid="", metadata_cid="", owner=ledger_module.ZERO_ADDRESS)
    with pytest.raises(NotRegisteredError):
        await ledger_registrar.deregister(FP, OWNER)


async def test_deregister_twice_reports_already_deregistered(fakes):
    fakes.ledger.records[FP] = LedgerRecord(media_cid="bafyA", metadata_cid="bafyM", owner=OWNER)
    fakes.ledger.deregistered.add(FP)

    with pytest.raises(AlreadyDeregisteredError):
        await ledger_registrar.deregister(FP, OWNER)
