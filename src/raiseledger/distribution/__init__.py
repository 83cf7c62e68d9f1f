"""Distribution subsystem — authority guard, pro-rata engine, ledgers, custody, coordinator."""

from raiseledger.distribution.authority import BackendAuthorityGuard
from raiseledger.distribution.coordinator import LedgerState, LifecycleCoordinator
from raiseledger.distribution.custody import Asset, InMemoryTransferService, TransferService
from raiseledger.distribution.ledger import CommitmentLedger

__all__ = [
    "Asset",
    "BackendAuthorityGuard",
    "CommitmentLedger",
    "InMemoryTransferService",
    "LedgerState",
    "LifecycleCoordinator",
    "TransferService",
]
