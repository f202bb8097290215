"""Tests for Action Log hash chaining."""

from __future__ import annotations

from typing import Any

from entitygraph.core.integrity import (
    GENESIS_HASH,
    canonical_bytes,
    compute_record_hash,
    hashable_payload,
    verify_chain,
)


def _build_chain(payloads: list[dict[str, Any]]) -> list[dict[str, Any]]:
    chain: list[dict[str, Any]] = []
    prev = GENESIS_HASH
    for sequence, payload in enumerate(payloads):
        record_hash = compute_record_hash(payload, prev)
        chain.append(
            {
                **payload,
                "record_hash": record_hash,
                "prev_record_hash": prev,
                "chain_sequence": sequence,
            }
        )
        prev = record_hash
    return chain


class TestCanonicalBytes:
    """Tests for RFC 8785 canonicalization."""

    def test_keys_are_sorted_without_whitespace(self) -> None:
        assert canonical_bytes({"b": 1, "a": {"d": 2, "c": 3}}) == b'{"a":{"c":3,"d":2},"b":1}'

    def test_insertion_order_does_not_matter(self) -> None:
        assert canonical_bytes({"x": 1, "y": 2}) == canonical_bytes({"y": 2, "x": 1})


class TestComputeRecordHash:
    """Tests for SHA-256 record hashes."""

    def test_hex_digest(self) -> None:
        result = compute_record_hash({"action": "entity.create"}, GENESIS_HASH)
        assert len(result) == 64
        int(result, 16)

    def test_depends_on_previous_hash(self) -> None:
        data = {"action": "entity.create"}
        assert compute_record_hash(data, GENESIS_HASH) != compute_record_hash(data, "a" * 64)

    def test_chain_fields_are_excluded_from_payload(self) -> None:
        record = {"action": "x", "record_hash": "h", "prev_record_hash": "p", "chain_sequence": 3}
        assert hashable_payload(record) == {"action": "x"}


class TestVerifyChain:
    """Tests for chain verification."""

    def test_empty_chain_is_valid(self) -> None:
        result = verify_chain([])
        assert result.is_valid
        assert result.verified_count == 0

    def test_intact_chain(self) -> None:
        chain = _build_chain([{"action": f"a{i}", "outcome": "success"} for i in range(4)])
        result = verify_chain(chain)
        assert result.is_valid
        assert result.verified_count == 4
        assert result.first_break_at is None

    def test_edited_record_breaks_the_chain(self) -> None:
        chain = _build_chain([{"action": f"a{i}"} for i in range(4)])
        chain[2]["action"] = "tampered"
        result = verify_chain(chain)
        assert not result.is_valid
        assert result.first_break_at == 2
        assert result.verified_count == 2
        assert "hash mismatch" in result.errors[0]

    def test_deleted_record_breaks_the_chain(self) -> None:
        chain = _build_chain([{"action": f"a{i}"} for i in range(4)])
        del chain[1]
        result = verify_chain(chain)
        assert not result.is_valid
        assert result.first_break_at == 1
        assert "sequence" in result.errors[0]

    def test_relinked_record_is_detected(self) -> None:
        chain = _build_chain([{"action": f"a{i}"} for i in range(3)])
        chain[1]["prev_record_hash"] = GENESIS_HASH
        result = verify_chain(chain)
        assert not result.is_valid
        assert result.first_break_at == 1
        assert "linkage" in result.errors[0]
