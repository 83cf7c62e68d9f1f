"""Commitment and distribution ledgers — cumulative accounting.

A commit is applied in two steps. `plan_commit` computes every new counter
with checked addition and mutates nothing, so an overflow aborts before any
funds move. `apply_commit` then writes the planned values; it cannot fail.

Totals are never recomputed by summation for accounting. `audit_totals`
recomputes them only to detect drift.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from raiseledger.distribution.prorata import checked_add
from raiseledger.models.ledger import (
    DistributionLedger,
    UserCommitmentRecord,
    require_pubkey,
)


class CommitmentLedger:
    """Per-user commitment records keyed by user identity.

    Records are created lazily: a user has no record until their first
    accepted commit.
    """

    def __init__(self, records: Optional[Dict[bytes, UserCommitmentRecord]] = None) -> None:
        self._records: Dict[bytes, UserCommitmentRecord] = dict(records or {})

    def get(self, user: bytes) -> Optional[UserCommitmentRecord]:
        return self._records.get(bytes(user))

    def insert(self, record: UserCommitmentRecord) -> None:
        user = require_pubkey(record.user, "user")
        if user in self._records:
            raise ValueError(f"Commitment already exists for {user.hex()}")
        self._records[user] = record

    def __contains__(self, user: object) -> bool:
        return isinstance(user, (bytes, bytearray)) and bytes(user) in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[UserCommitmentRecord]:
        return iter(list(self._records.values()))

    @property
    def claimed_count(self) -> int:
        return sum(1 for r in self._records.values() if r.claimed)


@dataclass(frozen=True)
class CommitPlan:
    """New counter values for one accepted commit, computed up front."""
    user: bytes
    points: int
    sol_amount: int
    user_points: int
    user_sol_amount: int
    user_score: int
    total_score: int
    total_raised: int
    is_new_record: bool

    @property
    def score(self) -> int:
        # Score is contributed value, not points.
        return self.sol_amount


def plan_commit(
    distribution: DistributionLedger,
    existing: Optional[UserCommitmentRecord],
    user: bytes,
    points: int,
    sol_amount: int,
) -> CommitPlan:
    """Compute post-commit counters. Raises CalculationOverflow, mutates nothing."""
    base = existing if existing is not None else UserCommitmentRecord(user=user)
    return CommitPlan(
        user=bytes(user),
        points=points,
        sol_amount=sol_amount,
        user_points=checked_add(base.points, points),
        user_sol_amount=checked_add(base.sol_amount, sol_amount),
        user_score=checked_add(base.score, sol_amount),
        total_score=checked_add(distribution.total_score, sol_amount),
        total_raised=checked_add(distribution.total_raised, sol_amount),
        is_new_record=existing is None,
    )


def apply_commit(
    plan: CommitPlan,
    distribution: DistributionLedger,
    commitments: CommitmentLedger,
) -> bool:
    """Write a planned commit. Returns True if the target was reached.

    Reaching the target latches the distribution inactive, irreversibly.
    """
    record = commitments.get(plan.user)
    if record is None:
        record = UserCommitmentRecord(user=plan.user)
        commitments.insert(record)
    record.points = plan.user_points
    record.sol_amount = plan.user_sol_amount
    record.score = plan.user_score

    distribution.total_score = plan.total_score
    distribution.total_raised = plan.total_raised

    if distribution.total_raised >= distribution.target_raise and distribution.active:
        distribution.active = False
        return True
    return False


def audit_totals(
    distribution: DistributionLedger,
    commitments: CommitmentLedger,
) -> List[str]:
    """Recompute totals and report any drift from the running counters.

    Returns an empty list when the ledger is consistent.
    """
    violations: List[str] = []
    raised = sum(r.sol_amount for r in commitments)
    score = sum(r.score for r in commitments)
    if raised != distribution.total_raised:
        violations.append(
            f"total_raised {distribution.total_raised} != sum of commitments {raised}"
        )
    if score != distribution.total_score:
        violations.append(
            f"total_score {distribution.total_score} != sum of scores {score}"
        )
    for record in commitments:
        if record.score != record.sol_amount:
            violations.append(
                f"user {record.user.hex()} score {record.score} "
                f"!= sol_amount {record.sol_amount}"
            )
    return violations
