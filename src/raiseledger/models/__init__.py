"""Ledger data models and their persisted layouts."""

from raiseledger.models.ledger import (
    BackendAuthorityRecord,
    DistributionLedger,
    DistributionPhase,
    UserCommitmentRecord,
)

__all__ = [
    "BackendAuthorityRecord",
    "DistributionLedger",
    "DistributionPhase",
    "UserCommitmentRecord",
]
