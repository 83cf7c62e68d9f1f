"""Backend authority guard — signing key and replay ratchet.

The nonce counter is a single global high-water mark. A proof is accepted
only with a nonce strictly greater than the counter. The guard validates
but does not ratchet during checks: the caller advances the counter as the
very last mutation of a commit, so a rejected commit never consumes a nonce.
"""

from __future__ import annotations

from raiseledger.errors import ErrorCode, LedgerError
from raiseledger.models.ledger import (
    BackendAuthorityRecord,
    require_pubkey,
    require_u64,
)


class BackendAuthorityGuard:
    """Checks and updates a BackendAuthorityRecord.

    Usage:
        guard = BackendAuthorityGuard(record)
        guard.check_active()
        guard.check_nonce(nonce)
        ...  # every other check and effect
        guard.advance(nonce)
    """

    def __init__(self, record: BackendAuthorityRecord) -> None:
        self._record = record

    @property
    def record(self) -> BackendAuthorityRecord:
        return self._record

    def check_active(self) -> None:
        if not self._record.active:
            raise LedgerError(ErrorCode.BACKEND_INACTIVE)

    def check_nonce(self, nonce: int) -> None:
        require_u64(nonce, "nonce")
        if nonce <= self._record.nonce_counter:
            raise LedgerError(
                ErrorCode.INVALID_NONCE,
                f"nonce {nonce} must exceed {self._record.nonce_counter}",
            )

    def advance(self, nonce: int) -> None:
        """Ratchet the counter. Callers must have passed check_nonce."""
        if nonce <= self._record.nonce_counter:
            raise LedgerError(ErrorCode.INVALID_NONCE)
        self._record.nonce_counter = nonce

    def check_authority(self, caller: bytes) -> None:
        if caller != self._record.authority:
            raise LedgerError(ErrorCode.UNAUTHORIZED)

    def set_active(self, caller: bytes, active: bool) -> None:
        self.check_authority(caller)
        self._record.active = bool(active)

    def rotate_key(self, caller: bytes, new_key: bytes) -> bytes:
        """Replace the backend key. Returns the previous key."""
        self.check_authority(caller)
        new_key = require_pubkey(new_key, "backend_pubkey")
        old_key = self._record.backend_pubkey
        self._record.backend_pubkey = new_key
        return old_key
