"""Tests for the in-memory transfer service."""

import pytest

from raiseledger.distribution.custody import Asset, InMemoryTransferService, TransferService
from raiseledger.errors import ErrorCode, LedgerError
from raiseledger.models.ledger import U64_MAX

ALICE = b"\x01" * 32
BOB = b"\x02" * 32
VAULT = b"\x0f" * 32


@pytest.fixture
def transfers() -> InMemoryTransferService:
    service = InMemoryTransferService()
    service.credit(Asset.NATIVE, ALICE, 1_000)
    return service


class TestAccounts:
    def test_satisfies_protocol(self, transfers: InMemoryTransferService) -> None:
        assert isinstance(transfers, TransferService)

    def test_credit_opens_self_owned_account(self, transfers: InMemoryTransferService) -> None:
        assert transfers.balance(Asset.NATIVE, ALICE) == 1_000
        assert transfers.account_owner(Asset.NATIVE, ALICE) == ALICE

    def test_assets_are_separate(self, transfers: InMemoryTransferService) -> None:
        assert transfers.balance(Asset.TOKEN, ALICE) == 0
        assert transfers.account_owner(Asset.TOKEN, ALICE) is None

    def test_open_account_with_owner(self, transfers: InMemoryTransferService) -> None:
        transfers.open_account(Asset.TOKEN, VAULT, BOB)
        assert transfers.account_owner(Asset.TOKEN, VAULT) == BOB
        with pytest.raises(ValueError, match="already open"):
            transfers.open_account(Asset.TOKEN, VAULT, BOB)

    def test_credit_overflow(self, transfers: InMemoryTransferService) -> None:
        transfers.credit(Asset.TOKEN, BOB, U64_MAX)
        with pytest.raises(LedgerError) as excinfo:
            transfers.credit(Asset.TOKEN, BOB, 1)
        assert excinfo.value.code == ErrorCode.CALCULATION_OVERFLOW
        assert transfers.balance(Asset.TOKEN, BOB) == U64_MAX


class TestTransfer:
    def test_moves_balance(self, transfers: InMemoryTransferService) -> None:
        transfers.transfer(Asset.NATIVE, ALICE, BOB, 400, authority=ALICE)
        assert transfers.balance(Asset.NATIVE, ALICE) == 600
        assert transfers.balance(Asset.NATIVE, BOB) == 400
        assert transfers.account_owner(Asset.NATIVE, BOB) == BOB

    def test_insufficient_balance(self, transfers: InMemoryTransferService) -> None:
        with pytest.raises(LedgerError) as excinfo:
            transfers.transfer(Asset.NATIVE, ALICE, BOB, 1_001, authority=ALICE)
        assert excinfo.value.code == ErrorCode.INSUFFICIENT_BALANCE
        assert transfers.balance(Asset.NATIVE, ALICE) == 1_000
        assert transfers.account_owner(Asset.NATIVE, BOB) is None

    def test_missing_source(self, transfers: InMemoryTransferService) -> None:
        with pytest.raises(LedgerError) as excinfo:
            transfers.transfer(Asset.TOKEN, BOB, ALICE, 1, authority=BOB)
        assert excinfo.value.code == ErrorCode.INSUFFICIENT_BALANCE

    def test_signer_must_own_source(self, transfers: InMemoryTransferService) -> None:
        with pytest.raises(LedgerError) as excinfo:
            transfers.transfer(Asset.NATIVE, ALICE, BOB, 1, authority=BOB)
        assert excinfo.value.code == ErrorCode.UNAUTHORIZED
        assert transfers.balance(Asset.NATIVE, ALICE) == 1_000

    def test_self_transfer_is_noop(self, transfers: InMemoryTransferService) -> None:
        transfers.transfer(Asset.NATIVE, ALICE, ALICE, 500, authority=ALICE)
        assert transfers.balance(Asset.NATIVE, ALICE) == 1_000

    def test_owned_account_pays_out_with_owner_signature(self) -> None:
        transfers = InMemoryTransferService()
        transfers.open_account(Asset.TOKEN, VAULT, BOB)
        transfers.credit(Asset.TOKEN, VAULT, 50)
        transfers.transfer(Asset.TOKEN, VAULT, ALICE, 20, authority=BOB)
        assert transfers.balance(Asset.TOKEN, VAULT) == 30
        assert transfers.balance(Asset.TOKEN, ALICE) == 20


class TestSnapshot:
    def test_restore_preserves_accounts(self, transfers: InMemoryTransferService) -> None:
        transfers.open_account(Asset.TOKEN, VAULT, BOB)
        transfers.credit(Asset.TOKEN, VAULT, 77)
        restored = InMemoryTransferService.restore(transfers.snapshot())
        assert restored.snapshot() == transfers.snapshot()
        assert restored.account_owner(Asset.TOKEN, VAULT) == BOB
        assert restored.balance(Asset.TOKEN, VAULT) == 77

    def test_snapshot_rows(self, transfers: InMemoryTransferService) -> None:
        assert transfers.snapshot() == [{
            "asset": "native",
            "account": ALICE.hex(),
            "owner": ALICE.hex(),
            "balance": 1_000,
        }]
