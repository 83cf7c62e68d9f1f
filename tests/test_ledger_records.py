"""Tests for ledger records — bit-exact layout and phases."""

import hashlib

import pytest

from raiseledger.models.ledger import (
    BackendAuthorityRecord,
    DistributionLedger,
    DistributionPhase,
    UserCommitmentRecord,
    account_discriminator,
    derive_address,
    ledger_address,
    phase_of,
    vault_address,
)

AUTHORITY = b"\xaa" * 32
BACKEND = b"\xbb" * 32
USER = b"\x01" * 32


class TestLayouts:
    def test_body_lengths(self) -> None:
        assert DistributionLedger.LEN == 82
        assert UserCommitmentRecord.LEN == 57
        assert BackendAuthorityRecord.LEN == 73

    def test_encoded_lengths_include_discriminator(self) -> None:
        assert len(DistributionLedger(authority=AUTHORITY).to_bytes()) == 90
        assert len(UserCommitmentRecord(user=USER).to_bytes()) == 65
        assert len(BackendAuthorityRecord(AUTHORITY, BACKEND).to_bytes()) == 81

    def test_discriminator(self) -> None:
        expected = hashlib.sha256(b"account:DistributionState").digest()[:8]
        assert account_discriminator("DistributionState") == expected
        assert DistributionLedger(authority=AUTHORITY).to_bytes()[:8] == expected

    def test_distribution_field_offsets(self) -> None:
        ledger = DistributionLedger(
            authority=AUTHORITY,
            token_pool=1,
            total_score=2,
            active=False,
            commit_end_time=-5,
            rate=500_000,
            target_raise=3,
            total_raised=4,
            bump=254,
        )
        body = ledger.to_bytes()[8:]
        assert body[0:32] == AUTHORITY
        assert body[32:40] == (1).to_bytes(8, "little")
        assert body[40:48] == (2).to_bytes(8, "little")
        assert body[48] == 0
        assert body[49:57] == (-5).to_bytes(8, "little", signed=True)
        assert body[57:65] == (500_000).to_bytes(8, "little")
        assert body[65:73] == (3).to_bytes(8, "little")
        assert body[73:81] == (4).to_bytes(8, "little")
        assert body[81] == 254

    def test_commitment_field_offsets(self) -> None:
        record = UserCommitmentRecord(user=USER, points=10, sol_amount=20, score=20, claimed=True)
        body = record.to_bytes()[8:]
        assert body[0:32] == USER
        assert body[32:40] == (10).to_bytes(8, "little")
        assert body[40:56] == (20).to_bytes(8, "little") * 2
        assert body[56] == 1


class TestCodec:
    def test_distribution_round_trip(self) -> None:
        ledger = DistributionLedger(
            authority=AUTHORITY, token_pool=10**9, total_score=300, active=False,
            commit_end_time=1_700_000_000, rate=500_000, target_raise=10**11,
            total_raised=300,
        )
        assert DistributionLedger.from_bytes(ledger.to_bytes()) == ledger

    def test_backend_round_trip(self) -> None:
        record = BackendAuthorityRecord(AUTHORITY, BACKEND, active=False, nonce_counter=99)
        assert BackendAuthorityRecord.from_bytes(record.to_bytes()) == record

    def test_commitment_round_trip(self) -> None:
        record = UserCommitmentRecord(user=USER, points=2000, sol_amount=1, score=1)
        assert UserCommitmentRecord.from_bytes(record.to_bytes()) == record

    def test_rejects_wrong_discriminator(self) -> None:
        data = UserCommitmentRecord(user=USER).to_bytes()
        with pytest.raises(ValueError, match="Discriminator mismatch"):
            BackendAuthorityRecord.from_bytes(data + bytes(16))

    def test_rejects_wrong_length(self) -> None:
        data = UserCommitmentRecord(user=USER).to_bytes()
        with pytest.raises(ValueError, match="must be 65 bytes"):
            UserCommitmentRecord.from_bytes(data[:-1])

    def test_rejects_invalid_bool(self) -> None:
        data = bytearray(UserCommitmentRecord(user=USER).to_bytes())
        data[-1] = 2
        with pytest.raises(ValueError, match="Invalid bool"):
            UserCommitmentRecord.from_bytes(bytes(data))

    def test_rejects_unencodable_value(self) -> None:
        with pytest.raises(ValueError, match="Cannot encode"):
            UserCommitmentRecord(user=USER, points=2**64).to_bytes()


class TestPhase:
    def test_phases(self) -> None:
        assert phase_of(None) == DistributionPhase.UNINITIALIZED
        ledger = DistributionLedger(authority=AUTHORITY)
        assert phase_of(ledger) == DistributionPhase.ACTIVE
        ledger.active = False
        assert phase_of(ledger) == DistributionPhase.CLOSED


class TestAddresses:
    def test_deterministic(self) -> None:
        assert ledger_address() == derive_address(b"global_distribution_state")
        assert ledger_address() == ledger_address()

    def test_vault_is_bound_to_ledger(self) -> None:
        assert vault_address(ledger_address()) != vault_address(b"\x00" * 32)
        assert vault_address(ledger_address()) != ledger_address()
