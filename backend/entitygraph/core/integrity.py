"""
Hash chaining for the Action Log.

Every record stores ``SHA256(JCS(record_data) || prev_hash)`` where JCS is
the RFC 8785 canonical JSON form. Editing or deleting any record breaks the
hash of every record after it in the same chain (one chain per tenant plus
one platform chain).
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import rfc8785

GENESIS_HASH: str = "0" * 64

# Fields describing the chain itself; never part of the hashed payload.
CHAIN_FIELDS = frozenset({"record_hash", "prev_record_hash", "chain_sequence"})


def canonical_bytes(data: Any) -> bytes:
    """RFC 8785 canonical JSON bytes."""
    canonical = rfc8785.dumps(data)
    if isinstance(canonical, bytes):
        return canonical
    return str(canonical).encode("utf-8")


def compute_record_hash(record_data: dict[str, Any], prev_hash: str) -> str:
    hasher = hashlib.sha256()
    hasher.update(canonical_bytes(record_data))
    hasher.update(prev_hash.encode("utf-8"))
    return hasher.hexdigest()


def hashable_payload(record: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in record.items() if key not in CHAIN_FIELDS}


@dataclass
class ChainVerificationResult:
    """Outcome of walking a chain from its first record."""

    is_valid: bool = True
    verified_count: int = 0
    first_break_at: int | None = None
    errors: list[str] = field(default_factory=list)

    def _break(self, index: int, message: str) -> ChainVerificationResult:
        self.is_valid = False
        self.first_break_at = index
        self.errors.append(message)
        return self


def verify_chain(records: Sequence[dict[str, Any]]) -> ChainVerificationResult:
    """
    Verify records ordered by ``chain_sequence`` ascending.

    Checks sequence continuity, the ``prev_record_hash`` linkage and the
    recomputed hash of each record; stops at the first break.
    """
    result = ChainVerificationResult()
    expected_prev = GENESIS_HASH
    for index, record in enumerate(records):
        if record.get("chain_sequence") != index:
            return result._break(
                index,
                f"Record {index}: expected sequence {index}, found {record.get('chain_sequence')}",
            )
        if record.get("prev_record_hash") != expected_prev:
            return result._break(index, f"Record {index}: previous-hash linkage broken")
        recomputed = compute_record_hash(hashable_payload(record), expected_prev)
        if record.get("record_hash") != recomputed:
            return result._break(index, f"Record {index}: content hash mismatch")
        expected_prev = recomputed
        result.verified_count += 1
    return result
