"""Lifecycle coordinator — commit, claim, and custody state transitions.

Every operation is fail-closed and atomic: all preconditions are checked
before the first effect, and an operation that raises has mutated nothing.
The coordinator holds no ledger state of its own; the singleton records and
the commitment ledger are passed in through a LedgerState handle on every
call. Callers serialize operations that touch the same records.

Commit preconditions, in order:
    backend active → nonce > counter → expiry > now → companion
    verification → distribution active → now < commit_end_time →
    total_raised < target_raise → contribution ≥ required

Commit effects, in order:
    custody transfer → user counters → distribution totals →
    nonce ratchet (always last) → target latch

State machine of the distribution:
    UNINITIALIZED → ACTIVE           (initialize)
    ACTIVE → CLOSED                  (a commit reaches target_raise)

Withdrawal eligibility is evaluated separately at withdrawal time:
now ≥ commit_end_time OR total_raised ≥ target_raise, regardless of the
active flag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from raiseledger.crypto.companion import (
    ExpectedSignature,
    InstructionBatch,
    SignatureLocator,
)
from raiseledger.crypto.proof import create_proof_message
from raiseledger.distribution.authority import BackendAuthorityGuard
from raiseledger.distribution.custody import Asset, TransferService
from raiseledger.distribution.ledger import (
    CommitmentLedger,
    apply_commit,
    plan_commit,
)
from raiseledger.distribution.prorata import (
    checked_add,
    claim_amount,
    required_contribution,
)
from raiseledger.errors import ErrorCode, LedgerError
from raiseledger.models.ledger import (
    SIGNATURE_LEN,
    BackendAuthorityRecord,
    DistributionLedger,
    UserCommitmentRecord,
    ledger_address,
    require_i64,
    require_pubkey,
    require_u64,
    vault_address,
)


def unix_now() -> int:
    return int(datetime.now(timezone.utc).timestamp())


@dataclass
class LedgerState:
    """Handles to the long-lived ledger records of one deployment."""
    distribution: Optional[DistributionLedger] = None
    backend: Optional[BackendAuthorityRecord] = None
    commitments: CommitmentLedger = field(default_factory=CommitmentLedger)


@dataclass(frozen=True)
class CommitOutcome:
    user: bytes
    points: int
    sol_amount: int
    score: int
    nonce: int
    expiry: int
    backend_signature: bytes
    total_raised: int
    total_score: int
    target_reached: bool


@dataclass(frozen=True)
class ClaimOutcome:
    user: bytes
    amount: int


@dataclass(frozen=True)
class WithdrawOutcome:
    amount: int
    remaining_balance: int


class LifecycleCoordinator:
    """Orchestrates ledger transitions across guard, engine, and custody.

    Usage:
        coordinator = LifecycleCoordinator(transfers, BatchSignatureLocator())
        state = LedgerState()
        coordinator.initialize(state, authority, end_time, rate, target)
        coordinator.initialize_backend_authority(state, authority, backend_key)
        outcome = coordinator.commit_resources(
            state, user, points, amount, signature, nonce, expiry, batch,
        )
    """

    def __init__(
        self,
        transfers: TransferService,
        locator: SignatureLocator,
        reserve_minimum: int = 0,
        claims_require_closed_raise: bool = False,
        ledger_id: Optional[bytes] = None,
    ) -> None:
        self._transfers = transfers
        self._locator = locator
        self._reserve_minimum = require_u64(reserve_minimum, "reserve_minimum")
        self._claims_require_closed_raise = claims_require_closed_raise
        self._ledger_id = ledger_id if ledger_id is not None else ledger_address()
        self._vault_id = vault_address(self._ledger_id)

    @property
    def ledger_id(self) -> bytes:
        return self._ledger_id

    @property
    def vault_id(self) -> bytes:
        return self._vault_id

    @property
    def reserve_minimum(self) -> int:
        return self._reserve_minimum

    # ------------------------------------------------------------------
    # Initialization and administration
    # ------------------------------------------------------------------

    def initialize(
        self,
        state: LedgerState,
        authority: bytes,
        commit_end_time: int,
        rate: int,
        target_raise: int,
    ) -> DistributionLedger:
        """Create the distribution ledger. Allowed exactly once.

        The authority pays the custody reserve into the ledger account, so
        the reserve is never drawn from raised funds.
        """
        if state.distribution is not None:
            raise LedgerError(ErrorCode.ALREADY_INITIALIZED, "distribution ledger")
        ledger = DistributionLedger(
            authority=require_pubkey(authority, "authority"),
            commit_end_time=require_i64(commit_end_time, "commit_end_time"),
            rate=require_u64(rate, "rate"),
            target_raise=require_u64(target_raise, "target_raise"),
        )
        funded = self._transfers.balance(Asset.NATIVE, ledger.authority)
        if funded < self._reserve_minimum:
            raise LedgerError(
                ErrorCode.INSUFFICIENT_BALANCE,
                f"authority holds {funded}, custody reserve is {self._reserve_minimum}",
            )
        if self._transfers.account_owner(Asset.NATIVE, self._ledger_id) is None:
            self._transfers.open_account(Asset.NATIVE, self._ledger_id, self._ledger_id)
        if self._reserve_minimum:
            self._transfers.transfer(
                Asset.NATIVE, ledger.authority, self._ledger_id, self._reserve_minimum,
                authority=ledger.authority,
            )
        state.distribution = ledger
        return ledger

    def set_commit_end_time(
        self, state: LedgerState, caller: bytes, new_end_time: int,
    ) -> DistributionLedger:
        distribution = self._require_distribution(state)
        self._check_distribution_authority(distribution, caller)
        distribution.commit_end_time = require_i64(new_end_time, "commit_end_time")
        return distribution

    def initialize_backend_authority(
        self, state: LedgerState, caller: bytes, backend_pubkey: bytes,
    ) -> BackendAuthorityRecord:
        """Register the backend signing key. Allowed exactly once.

        Once the distribution ledger exists, only its authority may do this.
        """
        if state.backend is not None:
            raise LedgerError(ErrorCode.ALREADY_INITIALIZED, "backend authority")
        caller = require_pubkey(caller, "caller")
        if state.distribution is not None:
            self._check_distribution_authority(state.distribution, caller)
        record = BackendAuthorityRecord(
            authority=caller,
            backend_pubkey=require_pubkey(backend_pubkey, "backend_pubkey"),
            active=True,
            nonce_counter=0,
        )
        state.backend = record
        return record

    def update_backend_authority(
        self, state: LedgerState, caller: bytes, active: bool,
    ) -> BackendAuthorityRecord:
        guard = BackendAuthorityGuard(self._require_backend(state))
        guard.set_active(caller, active)
        return guard.record

    def update_backend_pubkey(
        self, state: LedgerState, caller: bytes, new_backend_pubkey: bytes,
    ) -> bytes:
        """Rotate the backend key. Returns the previous key."""
        guard = BackendAuthorityGuard(self._require_backend(state))
        return guard.rotate_key(caller, new_backend_pubkey)

    def create_token_vault(self, state: LedgerState, caller: bytes) -> bytes:
        """Open the ledger-owned token vault. Returns its identity."""
        distribution = self._require_distribution(state)
        self._check_distribution_authority(distribution, caller)
        if self._transfers.account_owner(Asset.TOKEN, self._vault_id) is not None:
            raise LedgerError(ErrorCode.ALREADY_INITIALIZED, "token vault")
        self._transfers.open_account(Asset.TOKEN, self._vault_id, self._ledger_id)
        return self._vault_id

    def fund_vault(self, state: LedgerState, caller: bytes, amount: int) -> int:
        """Move tokens from the authority into the vault. Returns the new pool."""
        distribution = self._require_distribution(state)
        self._check_distribution_authority(distribution, caller)
        require_u64(amount, "amount")
        self._check_vault()

        new_pool = checked_add(distribution.token_pool, amount)
        self._transfers.transfer(
            Asset.TOKEN, caller, self._vault_id, amount, authority=caller,
        )
        distribution.token_pool = new_pool
        return new_pool

    def withdraw(
        self,
        state: LedgerState,
        caller: bytes,
        amount: int,
        now: Optional[int] = None,
    ) -> WithdrawOutcome:
        """Release raised funds from ledger custody to the authority.

        Eligible once the commit period has ended or the target has been
        reached. The active flag is not consulted. Custody keeps the reserve
        paid at initialization; everything above it is withdrawable.
        """
        distribution = self._require_distribution(state)
        self._check_distribution_authority(distribution, caller)
        require_u64(amount, "amount")
        if now is None:
            now = unix_now()

        period_ended = now >= distribution.commit_end_time
        target_reached = distribution.total_raised >= distribution.target_raise
        if not (period_ended or target_reached):
            raise LedgerError(ErrorCode.WITHDRAW_CONDITIONS_NOT_MET)

        balance = self._transfers.balance(Asset.NATIVE, self._ledger_id)
        if balance < checked_add(amount, self._reserve_minimum):
            raise LedgerError(
                ErrorCode.INSUFFICIENT_BALANCE,
                f"custody holds {balance}, needs {amount} plus reserve "
                f"{self._reserve_minimum}",
            )

        self._transfers.transfer(
            Asset.NATIVE, self._ledger_id, caller, amount, authority=self._ledger_id,
        )
        return WithdrawOutcome(
            amount=amount,
            remaining_balance=self._transfers.balance(Asset.NATIVE, self._ledger_id),
        )

    # ------------------------------------------------------------------
    # Participant operations
    # ------------------------------------------------------------------

    def commit_resources(
        self,
        state: LedgerState,
        user: bytes,
        points: int,
        contributed_amount: int,
        backend_signature: bytes,
        nonce: int,
        expiry: int,
        batch: InstructionBatch,
        now: Optional[int] = None,
    ) -> CommitOutcome:
        """Accept a backend-authorized commitment of raise currency."""
        distribution = self._require_distribution(state)
        backend = self._require_backend(state)
        user = require_pubkey(user, "user")
        require_u64(points, "points")
        require_u64(contributed_amount, "contributed_amount")
        require_i64(expiry, "expiry")
        if len(backend_signature) != SIGNATURE_LEN:
            raise ValueError(f"backend_signature must be {SIGNATURE_LEN} bytes")
        if now is None:
            now = unix_now()

        guard = self._check_proof_window(backend, nonce, expiry, now)

        message = create_proof_message(user, points, nonce, expiry)
        self._locator.locate_verified_signature(
            batch,
            ExpectedSignature(
                signature=bytes(backend_signature),
                message=message,
                public_key=backend.backend_pubkey,
            ),
        )

        if not distribution.active:
            raise LedgerError(ErrorCode.DISTRIBUTION_NOT_ACTIVE)
        if now >= distribution.commit_end_time:
            raise LedgerError(ErrorCode.COMMIT_PERIOD_ENDED)
        if distribution.total_raised >= distribution.target_raise:
            raise LedgerError(ErrorCode.TARGET_SOL_REACHED)

        required = required_contribution(points, distribution.rate)
        if contributed_amount < required:
            raise LedgerError(
                ErrorCode.INSUFFICIENT_SOL_COMMITMENT,
                f"{points} points require {required}, got {contributed_amount}",
            )

        existing = state.commitments.get(user)
        if existing is not None and existing.claimed:
            raise LedgerError(ErrorCode.ALREADY_CLAIMED, "cannot commit after claiming")

        plan = plan_commit(distribution, existing, user, points, contributed_amount)

        self._transfers.transfer(
            Asset.NATIVE, user, self._ledger_id, contributed_amount, authority=user,
        )
        target_reached = apply_commit(plan, distribution, state.commitments)
        guard.advance(nonce)

        return CommitOutcome(
            user=user,
            points=points,
            sol_amount=contributed_amount,
            score=plan.score,
            nonce=nonce,
            expiry=expiry,
            backend_signature=bytes(backend_signature),
            total_raised=distribution.total_raised,
            total_score=distribution.total_score,
            target_reached=target_reached,
        )

    def check_proof_window(
        self,
        state: LedgerState,
        nonce: int,
        expiry: int,
        now: Optional[int] = None,
    ) -> None:
        """Backend active, nonce unused and proof unexpired.

        These are the first commit checks and involve no signature, so a
        caller may run them before verifying the batch.
        """
        if now is None:
            now = unix_now()
        self._require_distribution(state)
        self._check_proof_window(self._require_backend(state), nonce, expiry, now)

    def claim_tokens(
        self,
        state: LedgerState,
        user: bytes,
        now: Optional[int] = None,
    ) -> ClaimOutcome:
        """Pay a user their pro-rata share of the token pool, once."""
        distribution = self._require_distribution(state)
        user = require_pubkey(user, "user")
        if now is None:
            now = unix_now()

        record = state.commitments.get(user)
        if record is not None and record.claimed:
            raise LedgerError(ErrorCode.ALREADY_CLAIMED)
        if record is None or distribution.total_score == 0:
            raise LedgerError(ErrorCode.NO_COMMITMENTS)
        if (
            self._claims_require_closed_raise
            and distribution.active
            and now < distribution.commit_end_time
        ):
            raise LedgerError(ErrorCode.COMMIT_PERIOD_NOT_ENDED)

        self._check_vault()
        owner = self._transfers.account_owner(Asset.TOKEN, user)
        if owner is not None and owner != user:
            raise LedgerError(ErrorCode.INVALID_TOKEN_ACCOUNT, "user token account")

        amount = claim_amount(distribution.token_pool, record.score, distribution.total_score)
        self._transfers.transfer(
            Asset.TOKEN, self._vault_id, user, amount, authority=self._ledger_id,
        )
        record.claimed = True
        return ClaimOutcome(user=user, amount=amount)

    def preview_claim(self, state: LedgerState, user: bytes) -> int:
        """Amount a claim would pay now, without checks on claim status."""
        distribution = self._require_distribution(state)
        record: Optional[UserCommitmentRecord] = state.commitments.get(user)
        if record is None:
            raise LedgerError(ErrorCode.NO_COMMITMENTS)
        return claim_amount(distribution.token_pool, record.score, distribution.total_score)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_proof_window(
        backend: BackendAuthorityRecord, nonce: int, expiry: int, now: int,
    ) -> BackendAuthorityGuard:
        guard = BackendAuthorityGuard(backend)
        guard.check_active()
        guard.check_nonce(nonce)
        if expiry <= now:
            raise LedgerError(ErrorCode.PROOF_EXPIRED, f"expiry {expiry} <= now {now}")
        return guard

    def _check_vault(self) -> None:
        if self._transfers.account_owner(Asset.TOKEN, self._vault_id) != self._ledger_id:
            raise LedgerError(ErrorCode.INVALID_TOKEN_ACCOUNT, "token vault")

    @staticmethod
    def _check_distribution_authority(distribution: DistributionLedger, caller: bytes) -> None:
        if bytes(caller) != distribution.authority:
            raise LedgerError(ErrorCode.UNAUTHORIZED)

    @staticmethod
    def _require_distribution(state: LedgerState) -> DistributionLedger:
        if state.distribution is None:
            raise LedgerError(ErrorCode.NOT_INITIALIZED, "distribution ledger")
        return state.distribution

    @staticmethod
    def _require_backend(state: LedgerState) -> BackendAuthorityRecord:
        if state.backend is None:
            raise LedgerError(ErrorCode.NOT_INITIALIZED, "backend authority")
        return state.backend
