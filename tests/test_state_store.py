"""Tests for the state store — records survive a restart bit-for-bit."""

import json
from pathlib import Path

import pytest

from raiseledger.distribution.coordinator import LedgerState
from raiseledger.distribution.custody import Asset, InMemoryTransferService
from raiseledger.distribution.ledger import CommitmentLedger
from raiseledger.models.ledger import (
    BackendAuthorityRecord,
    DistributionLedger,
    UserCommitmentRecord,
)
from raiseledger.persistence.state_store import StateStore

AUTHORITY = b"\xaa" * 32
ALICE = b"\x01" * 32


def _state() -> LedgerState:
    commitments = CommitmentLedger()
    commitments.insert(UserCommitmentRecord(user=ALICE, points=2000, sol_amount=5, score=5))
    return LedgerState(
        distribution=DistributionLedger(
            authority=AUTHORITY, token_pool=1_000, total_score=5,
            commit_end_time=1_700_003_600, rate=500_000, target_raise=10_000,
            total_raised=5,
        ),
        backend=BackendAuthorityRecord(AUTHORITY, b"\xbb" * 32, nonce_counter=4),
        commitments=commitments,
    )


class TestStateStore:
    def test_missing_file_is_empty_state(self, tmp_path: Path) -> None:
        store = StateStore(storage_path=tmp_path / "state.json")
        state = store.load_state()
        assert state.distribution is None
        assert state.backend is None
        assert len(state.commitments) == 0
        assert store.load_custody() == []

    def test_round_trip(self, tmp_path: Path) -> None:
        store = StateStore(storage_path=tmp_path / "state.json")
        transfers = InMemoryTransferService()
        transfers.credit(Asset.NATIVE, ALICE, 95)
        original = _state()
        store.save(original, transfers.snapshot())

        loaded = store.load_state()
        assert loaded.distribution == original.distribution
        assert loaded.backend == original.backend
        assert loaded.commitments.get(ALICE) == original.commitments.get(ALICE)
        restored = InMemoryTransferService.restore(store.load_custody())
        assert restored.balance(Asset.NATIVE, ALICE) == 95

    def test_records_stored_as_encodings(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        original = _state()
        StateStore(storage_path=path).save(original, [])
        document = json.loads(path.read_text(encoding="utf-8"))
        assert document["distribution"] == original.distribution.to_bytes().hex()
        assert document["commitments"] == [original.commitments.get(ALICE).to_bytes().hex()]

    def test_no_temp_file_left(self, tmp_path: Path) -> None:
        StateStore(storage_path=tmp_path / "state.json").save(_state(), [])
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_version_mismatch(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 99}), encoding="utf-8")
        with pytest.raises(ValueError, match="Unsupported state version"):
            StateStore(storage_path=path).load_state()
