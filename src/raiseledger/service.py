"""Ledger service — unified facade over the distribution ledger.

This is the primary interface for programmatic access. It orchestrates:
- Distribution lifecycle (initialize, commit, claim, withdraw)
- Backend authority administration (register, toggle, rotate key)
- Token vault custody (create, fund)
- Notifications (append-only event log)
- Persistence (state store)

All operations produce typed results. Engine errors are converted into a
failed ServiceResult carrying the error code; a failed operation has
mutated nothing. Accepted operations are recorded in the event log and then
persisted. Once the coordinator has applied a change, custody has already
moved, so a later event-log or state-store failure never rolls the ledger
back: it marks persistence as degraded and returns a warning.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from raiseledger.crypto.companion import (
    BatchSignatureLocator,
    InstructionBatch,
    SignatureLocator,
    build_verification_instruction,
)
from raiseledger.crypto.proof import BackendProof
from raiseledger.distribution.coordinator import LedgerState, LifecycleCoordinator, unix_now
from raiseledger.distribution.custody import Asset, InMemoryTransferService, TransferService
from raiseledger.distribution.ledger import audit_totals
from raiseledger.distribution.prorata import claim_amount, distribution_dust
from raiseledger.errors import LedgerError, SignatureVerificationFailed
from raiseledger.models.ledger import UserCommitmentRecord, phase_of
from raiseledger.persistence.event_log import EventKind, EventLog, EventRecord
from raiseledger.persistence.state_store import StateStore
from raiseledger.policy.resolver import PolicyResolver


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def error_code(self) -> Optional[str]:
        return self.data.get("error_code")


class LedgerService:
    """Distribution ledger facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = LedgerService(resolver)

        service.initialize(authority, commit_end_time, rate, target_raise)
        service.initialize_backend_authority(authority, backend_pubkey)
        service.create_token_vault(authority)
        service.fund_vault(authority, amount)

        result = service.commit_with_proof(user, proof, contributed_amount)
        result = service.claim_tokens(user)

    Persistence (optional):
        service = LedgerService(resolver, event_log=log, state_store=store)
        # State is loaded on construction and saved after each mutation.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        transfers: Optional[TransferService] = None,
        locator: Optional[SignatureLocator] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        preflight_batches: bool = True,
    ) -> None:
        self._resolver = resolver
        self._state_store = state_store

        if state_store is not None:
            self._state = state_store.load_state()
            if transfers is None:
                transfers = InMemoryTransferService.restore(state_store.load_custody())
        else:
            self._state = LedgerState()
        if transfers is None:
            transfers = InMemoryTransferService()
        self._transfers = transfers

        self._verifier_program_id = resolver.signature_verifier_program_id()
        self._coordinator = LifecycleCoordinator(
            transfers,
            locator or BatchSignatureLocator(self._verifier_program_id),
            reserve_minimum=resolver.reserve_minimum(),
            claims_require_closed_raise=resolver.claims_require_closed_raise(),
        )
        self._preflight_batches = preflight_batches

        self._event_log = event_log if event_log is not None else EventLog()
        # Continue numbering from a persisted log to avoid ID collisions
        self._event_counter = self._event_log.count
        self._persistence_degraded: bool = False

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def transfers(self) -> TransferService:
        return self._transfers

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def ledger_id(self) -> bytes:
        return self._coordinator.ledger_id

    @property
    def vault_id(self) -> bytes:
        return self._coordinator.vault_id

    def get_commitment(self, user: bytes) -> Optional[UserCommitmentRecord]:
        return self._state.commitments.get(user)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def initialize(
        self,
        authority: bytes,
        commit_end_time: int,
        rate: int,
        target_raise: int,
    ) -> ServiceResult:
        """Create the distribution ledger (once)."""
        def _op() -> dict[str, Any]:
            ledger = self._coordinator.initialize(
                self._state, authority, commit_end_time, rate, target_raise,
            )
            return ledger.as_dict()

        return self._run(
            _op,
            lambda data: [(EventKind.LEDGER_INITIALIZED, authority, data)],
        )

    def initialize_from_policy(
        self, authority: bytes, now: Optional[int] = None,
    ) -> ServiceResult:
        """Initialize with the deployment defaults from policy."""
        defaults = self._resolver.deployment_defaults()
        start = now if now is not None else unix_now()
        return self.initialize(
            authority,
            start + defaults.commit_window_seconds,
            defaults.rate,
            defaults.target_raise,
        )

    def set_commit_end_time(self, caller: bytes, new_end_time: int) -> ServiceResult:
        def _op() -> dict[str, Any]:
            ledger = self._coordinator.set_commit_end_time(self._state, caller, new_end_time)
            return {"commit_end_time": ledger.commit_end_time}

        return self._run(
            _op,
            lambda data: [(EventKind.COMMIT_END_TIME_UPDATED, caller, data)],
        )

    def initialize_backend_authority(
        self, caller: bytes, backend_pubkey: bytes,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            record = self._coordinator.initialize_backend_authority(
                self._state, caller, backend_pubkey,
            )
            return record.as_dict()

        return self._run(
            _op,
            lambda data: [(EventKind.BACKEND_AUTHORITY_INITIALIZED, caller, data)],
        )

    def update_backend_authority(self, caller: bytes, active: bool) -> ServiceResult:
        def _op() -> dict[str, Any]:
            record = self._coordinator.update_backend_authority(self._state, caller, active)
            return {"active": record.active}

        return self._run(
            _op,
            lambda data: [(EventKind.BACKEND_AUTHORITY_UPDATED, caller, data)],
        )

    def update_backend_pubkey(self, caller: bytes, new_backend_pubkey: bytes) -> ServiceResult:
        def _op() -> dict[str, Any]:
            old = self._coordinator.update_backend_pubkey(
                self._state, caller, new_backend_pubkey,
            )
            return {"old_pubkey": old.hex(), "new_pubkey": bytes(new_backend_pubkey).hex()}

        return self._run(
            _op,
            lambda data: [(EventKind.BACKEND_PUBKEY_UPDATED, caller, data)],
        )

    def create_token_vault(self, caller: bytes) -> ServiceResult:
        def _op() -> dict[str, Any]:
            vault = self._coordinator.create_token_vault(self._state, caller)
            return {"token_vault": vault.hex()}

        return self._run(
            _op,
            lambda data: [(EventKind.TOKEN_VAULT_CREATED, caller, data)],
        )

    def fund_vault(self, caller: bytes, amount: int) -> ServiceResult:
        def _op() -> dict[str, Any]:
            pool = self._coordinator.fund_vault(self._state, caller, amount)
            return {"amount": amount, "total_pool": pool}

        return self._run(
            _op,
            lambda data: [(EventKind.VAULT_FUNDED, caller, data)],
        )

    def withdraw(
        self, caller: bytes, amount: int, now: Optional[int] = None,
    ) -> ServiceResult:
        def _op() -> dict[str, Any]:
            outcome = self._coordinator.withdraw(self._state, caller, amount, now=now)
            return {
                "amount": outcome.amount,
                "remaining_balance": outcome.remaining_balance,
            }

        return self._run(
            _op,
            lambda data: [(EventKind.FUNDS_WITHDRAWN, caller, data)],
            now=now,
        )

    # ------------------------------------------------------------------
    # Participant operations
    # ------------------------------------------------------------------

    def commit_resources(
        self,
        user: bytes,
        points: int,
        contributed_amount: int,
        backend_signature: bytes,
        nonce: int,
        expiry: int,
        batch: InstructionBatch,
        now: Optional[int] = None,
    ) -> ServiceResult:
        """Commit raise currency under a backend-signed points proof.

        The batch is preflighted as the platform would: an invalid signature
        in any verification instruction aborts the whole batch. The backend,
        nonce and expiry checks still come first, so a replayed nonce is
        reported as such whatever its signature.
        """
        def _op() -> dict[str, Any]:
            if self._preflight_batches:
                self._coordinator.check_proof_window(self._state, nonce, expiry, now=now)
                batch.preflight(self._verifier_program_id)
            outcome = self._coordinator.commit_resources(
                self._state,
                user,
                points,
                contributed_amount,
                backend_signature,
                nonce,
                expiry,
                batch,
                now=now,
            )
            return {
                "user": outcome.user.hex(),
                "points": outcome.points,
                "sol_amount": outcome.sol_amount,
                "score": outcome.score,
                "proof_nonce": outcome.nonce,
                "expiry": outcome.expiry,
                "backend_signature": outcome.backend_signature.hex(),
                "total_raised": outcome.total_raised,
                "total_score": outcome.total_score,
                "target_reached": outcome.target_reached,
            }

        def _events(data: dict[str, Any]) -> list[tuple[EventKind, bytes, dict[str, Any]]]:
            events = [(EventKind.RESOURCES_COMMITTED, user, data)]
            if data["target_reached"]:
                distribution = self._state.distribution
                events.append((EventKind.TARGET_REACHED, user, {
                    "total_sol_raised": distribution.total_raised,
                    "target_raise_sol": distribution.target_raise,
                }))
            return events

        return self._run(_op, _events, now=now)

    def commit_with_proof(
        self,
        user: bytes,
        proof: BackendProof,
        contributed_amount: int,
        now: Optional[int] = None,
    ) -> ServiceResult:
        """Build the client batch for a signed proof and commit it."""
        try:
            verification = build_verification_instruction(
                proof.backend_pubkey, proof.signature, proof.message,
                program_id=self._verifier_program_id,
            )
        except ValueError as e:
            return _failure(e)
        batch = InstructionBatch.for_commit(verification)
        return self.commit_resources(
            user,
            proof.points,
            contributed_amount,
            proof.signature,
            proof.nonce,
            proof.expiry,
            batch,
            now=now,
        )

    def claim_tokens(self, user: bytes, now: Optional[int] = None) -> ServiceResult:
        def _op() -> dict[str, Any]:
            outcome = self._coordinator.claim_tokens(self._state, user, now=now)
            return {"user": outcome.user.hex(), "amount": outcome.amount}

        return self._run(
            _op,
            lambda data: [(EventKind.TOKENS_CLAIMED, user, data)],
            now=now,
        )

    def claimable(self, user: bytes) -> ServiceResult:
        """Amount a claim by `user` would pay right now."""
        try:
            amount = self._coordinator.preview_claim(self._state, user)
        except ValueError as e:
            return _failure(e)
        record = self._state.commitments.get(user)
        return ServiceResult(
            success=True,
            data={"amount": amount, "claimed": record.claimed},
        )

    def credit_account(self, asset: Asset, account: bytes, amount: int) -> ServiceResult:
        """Deposit externally sourced value into a custody account.

        Only the in-memory transfer service accepts credits. Deposits are
        not ledger transitions, so no event is recorded.
        """
        if not isinstance(self._transfers, InMemoryTransferService):
            return ServiceResult(
                success=False,
                errors=["Transfer service does not accept direct credits"],
            )
        try:
            balance = self._transfers.credit(asset, account, amount)
        except ValueError as e:
            return _failure(e)
        data: dict[str, Any] = {
            "asset": Asset(asset).value,
            "account": bytes(account).hex(),
            "balance": balance,
        }
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Status and audit
    # ------------------------------------------------------------------

    def check_invariants(self) -> list[str]:
        """Audit the ledger. Returns violation descriptions (empty if sound)."""
        distribution = self._state.distribution
        if distribution is None:
            return []
        violations = audit_totals(distribution, self._state.commitments)

        if distribution.total_score > 0:
            owed = 0
            for record in self._state.commitments:
                if not record.claimed:
                    owed += claim_amount(
                        distribution.token_pool, record.score, distribution.total_score,
                    )
            vault_balance = self._transfers.balance(Asset.TOKEN, self.vault_id)
            if vault_balance < owed:
                violations.append(
                    f"vault holds {vault_balance} tokens but unclaimed shares total {owed}"
                )
        return violations

    def status(self) -> dict[str, Any]:
        """Return a system-wide status summary."""
        distribution = self._state.distribution
        backend = self._state.backend
        commitments = self._state.commitments

        projected_dust: Optional[int] = None
        if distribution is not None and distribution.total_score > 0:
            projected_dust = distribution_dust(
                distribution.token_pool, [r.score for r in commitments],
            )

        custody_balance = self._transfers.balance(Asset.NATIVE, self.ledger_id)
        reserve = self._coordinator.reserve_minimum if distribution is not None else 0

        return {
            "version": "0.1.0",
            "phase": phase_of(distribution).value,
            "distribution": distribution.as_dict() if distribution else None,
            "backend": backend.as_dict() if backend else None,
            "commitments": {
                "total": len(commitments),
                "claimed": commitments.claimed_count,
            },
            "custody": {
                "ledger": self.ledger_id.hex(),
                "reserve": reserve,
                "raised_balance": max(custody_balance - reserve, 0),
                "vault": self.vault_id.hex(),
                "vault_balance": self._transfers.balance(Asset.TOKEN, self.vault_id),
            },
            "projected_dust": projected_dust,
            "events": self._event_log.count,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: Callable[[], dict[str, Any]],
        events: Callable[[dict[str, Any]], list[tuple[EventKind, bytes, dict[str, Any]]]],
        now: Optional[int] = None,
    ) -> ServiceResult:
        """Execute an atomic ledger operation, then record and persist it."""
        try:
            data = operation()
        except ValueError as e:
            return _failure(e)

        warnings = []
        for kind, actor, payload in events(data):
            warning = self._record_event(kind, actor, payload, now)
            if warning:
                warnings.append(warning)
                break
        warning = self._safe_persist_post_audit()
        if warning:
            warnings.append(warning)
        if warnings:
            data = dict(data, warning="; ".join(warnings))
        return ServiceResult(success=True, data=data)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self,
        kind: EventKind,
        actor: bytes,
        payload: dict[str, Any],
        now: Optional[int],
    ) -> Optional[str]:
        """Append an event. Returns a warning string on failure."""
        timestamp = datetime.fromtimestamp(now, timezone.utc) if now is not None else None
        event = EventRecord.create(
            event_id=self._next_event_id(),
            event_kind=kind,
            actor_id=bytes(actor).hex(),
            payload=payload,
            timestamp_utc=timestamp,
        )
        try:
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            self._persistence_degraded = True
            return f"Event log failure: {e}; ledger state committed without event"
        return None

    def _persist_state(self) -> None:
        """Persist current state to the state store (if wired).

        Can raise OSError; callers use _safe_persist_post_audit().
        """
        if self._state_store is None:
            return
        custody = (
            self._transfers.snapshot()
            if isinstance(self._transfers, InMemoryTransferService)
            else []
        )
        self._state_store.save(self._state, custody)

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist after a committed mutation.

        MUST NOT roll back in-memory state: custody has already moved. On
        failure the in-memory ledger stays authoritative, the StateStore is
        stale, and _persistence_degraded is raised for operator attention.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            return f"Persistence degraded: {e}; StateStore is stale"


def _failure(error: ValueError) -> ServiceResult:
    data: dict[str, Any] = {}
    if isinstance(error, LedgerError):
        data["error_code"] = error.code.value
    if isinstance(error, SignatureVerificationFailed):
        data["reason"] = error.reason.value
    return ServiceResult(success=False, errors=[str(error)], data=data)
