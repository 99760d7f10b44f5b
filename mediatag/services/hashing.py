"""
Content fingerprinting.

fingerprint = keccak256(sha256(bytes)), rendered as 0x + 64 lowercase hex,
the bytes32 form the registry contract keys media by. Keccak-256 is the
pre-standard SHA-3 variant used by the ledger; hashlib.sha3_256 pads
differently and yields other digests, so pycryptodome provides it here.
"""

import hashlib
import logging
import re

from Crypto.Hash import keccak

from mediatag.errors import InvalidFingerprintError

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 66
_FINGERPRINT_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def keccak256(data: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def get_safe_hash(data: bytes) -> str:
    """Securely hash raw bytes using SHA-256."""
    return hashlib.sha256(data).hexdigest()


def compute_fingerprint(data: bytes) -> str:
    """Deterministic ledger fingerprint of a byte buffer."""
    sha_hex = get_safe_hash(data)
    fingerprint = "0x" + keccak256(bytes.fromhex(sha_hex)).hex()
    logger.debug(f"[HASH] {len(data)} bytes → sha256 {sha_hex[:12]}… → {fingerprint[:14]}…")
    return fingerprint


def format_fingerprint(value: str) -> str:
    """
    Normalise a fingerprint for submission to the ledger.

    Adds a missing 0x prefix, then requires exactly 0x + 64 hex characters.
    Malformed input is rejected here, before any ledger call is made.
    """
    clean = (value or "").strip()
    if not clean.startswith("0x"):
        clean = "0x" + clean

    if len(clean) != FINGERPRINT_LENGTH:
        raise InvalidFingerprintError(
            f"Invalid hash format. Expected {FINGERPRINT_LENGTH} characters (0x + 64 hex), "
            f"got {len(clean)}: {clean}"
        )
    if not _FINGERPRINT_RE.match(clean):
        raise InvalidFingerprintError(f"Invalid hex format: {clean}")

    return clean.lower()
