"""Tests for the backend authority guard."""

import pytest

from raiseledger.distribution.authority import BackendAuthorityGuard
from raiseledger.errors import ErrorCode, LedgerError
from raiseledger.models.ledger import BackendAuthorityRecord

AUTHORITY = b"\xaa" * 32
BACKEND = b"\xbb" * 32
STRANGER = b"\xcc" * 32


def _guard(active: bool = True, nonce_counter: int = 0) -> BackendAuthorityGuard:
    return BackendAuthorityGuard(
        BackendAuthorityRecord(AUTHORITY, BACKEND, active=active, nonce_counter=nonce_counter)
    )


def _code(excinfo: pytest.ExceptionInfo) -> ErrorCode:
    return excinfo.value.code


class TestActive:
    def test_active_passes(self) -> None:
        _guard().check_active()

    def test_inactive_rejected(self) -> None:
        with pytest.raises(LedgerError) as excinfo:
            _guard(active=False).check_active()
        assert _code(excinfo) == ErrorCode.BACKEND_INACTIVE


class TestNonce:
    def test_greater_nonce_passes(self) -> None:
        guard = _guard(nonce_counter=5)
        guard.check_nonce(6)
        guard.check_nonce(1000)
        assert guard.record.nonce_counter == 5

    def test_equal_nonce_rejected(self) -> None:
        with pytest.raises(LedgerError) as excinfo:
            _guard(nonce_counter=5).check_nonce(5)
        assert _code(excinfo) == ErrorCode.INVALID_NONCE

    def test_lower_nonce_rejected(self) -> None:
        with pytest.raises(LedgerError) as excinfo:
            _guard(nonce_counter=5).check_nonce(4)
        assert _code(excinfo) == ErrorCode.INVALID_NONCE

    def test_advance_ratchets(self) -> None:
        guard = _guard()
        guard.advance(3)
        guard.advance(10)
        assert guard.record.nonce_counter == 10
        with pytest.raises(LedgerError):
            guard.advance(10)
        assert guard.record.nonce_counter == 10

    def test_nonce_must_be_u64(self) -> None:
        with pytest.raises(ValueError):
            _guard().check_nonce(2**64)


class TestAdministration:
    def test_set_active_by_authority(self) -> None:
        guard = _guard()
        guard.set_active(AUTHORITY, False)
        assert guard.record.active is False
        guard.set_active(AUTHORITY, True)
        assert guard.record.active is True

    def test_set_active_by_stranger(self) -> None:
        guard = _guard()
        with pytest.raises(LedgerError) as excinfo:
            guard.set_active(STRANGER, False)
        assert _code(excinfo) == ErrorCode.UNAUTHORIZED
        assert guard.record.active is True

    def test_rotate_key_returns_previous(self) -> None:
        guard = _guard()
        new_key = b"\xdd" * 32
        assert guard.rotate_key(AUTHORITY, new_key) == BACKEND
        assert guard.record.backend_pubkey == new_key

    def test_rotate_key_by_stranger(self) -> None:
        guard = _guard()
        with pytest.raises(LedgerError) as excinfo:
            guard.rotate_key(STRANGER, b"\xdd" * 32)
        assert _code(excinfo) == ErrorCode.UNAUTHORIZED
        assert guard.record.backend_pubkey == BACKEND

    def test_rotate_key_rejects_bad_length(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            _guard().rotate_key(AUTHORITY, b"\xdd" * 31)
