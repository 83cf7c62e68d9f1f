"""State store — durable snapshot of ledger records and custody balances.

Records are stored as hex of their bit-exact encodings, so the file and the
persisted record layout cannot drift apart. Writes go to a temporary file
that is renamed over the old one.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

from raiseledger.distribution.coordinator import LedgerState
from raiseledger.distribution.ledger import CommitmentLedger
from raiseledger.models.ledger import (
    BackendAuthorityRecord,
    DistributionLedger,
    UserCommitmentRecord,
)

STATE_VERSION = 1


class StateStore:
    """JSON file holding the ledger state and custody accounts.

    Usage:
        store = StateStore(storage_path=data_dir / "state.json")
        state = store.load_state()
        store.save(state, transfers.snapshot())
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = Path(storage_path)

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def save(self, state: LedgerState, custody: list[dict[str, Any]]) -> None:
        document = {
            "version": STATE_VERSION,
            "distribution": _hex_or_none(state.distribution),
            "backend": _hex_or_none(state.backend),
            "commitments": [r.to_bytes().hex() for r in state.commitments],
            "custody": custody,
        }
        tmp = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            json.dump(document, handle, indent=2, sort_keys=True)
            handle.write("\n")
        os.replace(tmp, self._storage_path)

    def load_state(self) -> LedgerState:
        document = self._read()
        if document is None:
            return LedgerState()
        commitments = CommitmentLedger()
        for encoded in document.get("commitments", []):
            commitments.insert(UserCommitmentRecord.from_bytes(bytes.fromhex(encoded)))
        return LedgerState(
            distribution=(
                DistributionLedger.from_bytes(bytes.fromhex(document["distribution"]))
                if document.get("distribution") else None
            ),
            backend=(
                BackendAuthorityRecord.from_bytes(bytes.fromhex(document["backend"]))
                if document.get("backend") else None
            ),
            commitments=commitments,
        )

    def load_custody(self) -> list[dict[str, Any]]:
        document = self._read()
        if document is None:
            return []
        return list(document.get("custody", []))

    def _read(self) -> Optional[dict[str, Any]]:
        if not self._storage_path.exists():
            return None
        with self._storage_path.open("r", encoding="utf-8") as handle:
            document = json.load(handle)
        version = document.get("version")
        if version != STATE_VERSION:
            raise ValueError(f"Unsupported state version: {version}")
        return document


def _hex_or_none(record: Any) -> Optional[str]:
    return record.to_bytes().hex() if record is not None else None
