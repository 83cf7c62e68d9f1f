"""Error taxonomy for the commitment and distribution ledger.

Every failure is a local, non-retriable validation failure. The operation
that raises performs zero state mutation; nothing is retried by the core.

Engines raise LedgerError (a ValueError, so the service facade handles it
alongside ordinary input validation). The service converts it into a failed
ServiceResult carrying the error code.
"""

from __future__ import annotations

import enum
from typing import Optional


class ErrorCategory(str, enum.Enum):
    AUTHORIZATION = "authorization"
    LIFECYCLE = "lifecycle"
    VALIDATION = "validation"
    PROOF = "proof"
    ARITHMETIC = "arithmetic"


class ErrorCode(str, enum.Enum):
    """Caller-visible error kinds."""
    # Authorization
    UNAUTHORIZED = "Unauthorized"
    # Lifecycle
    DISTRIBUTION_NOT_ACTIVE = "DistributionNotActive"
    COMMIT_PERIOD_ENDED = "CommitPeriodEnded"
    COMMIT_PERIOD_NOT_ENDED = "CommitPeriodNotEnded"
    TARGET_SOL_REACHED = "TargetSolReached"
    BACKEND_INACTIVE = "BackendInactive"
    ALREADY_CLAIMED = "AlreadyClaimed"
    NO_COMMITMENTS = "NoCommitments"
    ALREADY_INITIALIZED = "AlreadyInitialized"
    NOT_INITIALIZED = "NotInitialized"
    # Validation
    INVALID_NONCE = "InvalidNonce"
    PROOF_EXPIRED = "ProofExpired"
    INSUFFICIENT_SOL_COMMITMENT = "InsufficientSolCommitment"
    WITHDRAW_CONDITIONS_NOT_MET = "WithdrawConditionsNotMet"
    INVALID_TOKEN_ACCOUNT = "InvalidTokenAccount"
    # Proof
    SIGNATURE_VERIFICATION_FAILED = "SignatureVerificationFailed"
    # Arithmetic
    CALCULATION_OVERFLOW = "CalculationOverflow"
    INSUFFICIENT_BALANCE = "InsufficientBalance"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_CATEGORIES: dict[ErrorCode, ErrorCategory] = {
    ErrorCode.UNAUTHORIZED: ErrorCategory.AUTHORIZATION,
    ErrorCode.DISTRIBUTION_NOT_ACTIVE: ErrorCategory.LIFECYCLE,
    ErrorCode.COMMIT_PERIOD_ENDED: ErrorCategory.LIFECYCLE,
    ErrorCode.COMMIT_PERIOD_NOT_ENDED: ErrorCategory.LIFECYCLE,
    ErrorCode.TARGET_SOL_REACHED: ErrorCategory.LIFECYCLE,
    ErrorCode.BACKEND_INACTIVE: ErrorCategory.LIFECYCLE,
    ErrorCode.ALREADY_CLAIMED: ErrorCategory.LIFECYCLE,
    ErrorCode.NO_COMMITMENTS: ErrorCategory.LIFECYCLE,
    ErrorCode.ALREADY_INITIALIZED: ErrorCategory.LIFECYCLE,
    ErrorCode.NOT_INITIALIZED: ErrorCategory.LIFECYCLE,
    ErrorCode.INVALID_NONCE: ErrorCategory.VALIDATION,
    ErrorCode.PROOF_EXPIRED: ErrorCategory.VALIDATION,
    ErrorCode.INSUFFICIENT_SOL_COMMITMENT: ErrorCategory.VALIDATION,
    ErrorCode.WITHDRAW_CONDITIONS_NOT_MET: ErrorCategory.VALIDATION,
    ErrorCode.INVALID_TOKEN_ACCOUNT: ErrorCategory.VALIDATION,
    ErrorCode.SIGNATURE_VERIFICATION_FAILED: ErrorCategory.PROOF,
    ErrorCode.CALCULATION_OVERFLOW: ErrorCategory.ARITHMETIC,
    ErrorCode.INSUFFICIENT_BALANCE: ErrorCategory.ARITHMETIC,
}

_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.UNAUTHORIZED: "Unauthorized",
    ErrorCode.DISTRIBUTION_NOT_ACTIVE: "Distribution is not active",
    ErrorCode.COMMIT_PERIOD_ENDED: "Commit period has ended",
    ErrorCode.COMMIT_PERIOD_NOT_ENDED: "Commit period has not ended yet",
    ErrorCode.TARGET_SOL_REACHED: "Target raise has been reached",
    ErrorCode.BACKEND_INACTIVE: "Backend is inactive",
    ErrorCode.ALREADY_CLAIMED: "Tokens already claimed",
    ErrorCode.NO_COMMITMENTS: "No commitments found",
    ErrorCode.ALREADY_INITIALIZED: "Record already initialized",
    ErrorCode.NOT_INITIALIZED: "Record not initialized",
    ErrorCode.INVALID_NONCE: "Invalid nonce",
    ErrorCode.PROOF_EXPIRED: "Proof has expired",
    ErrorCode.INSUFFICIENT_SOL_COMMITMENT: "Insufficient commitment for the proven points",
    ErrorCode.WITHDRAW_CONDITIONS_NOT_MET: (
        "Withdraw conditions not met - commit period must end "
        "or target raise must be reached"
    ),
    ErrorCode.INVALID_TOKEN_ACCOUNT: "Invalid token account",
    ErrorCode.SIGNATURE_VERIFICATION_FAILED: "Ed25519 signature verification failed",
    ErrorCode.CALCULATION_OVERFLOW: "Calculation overflow",
    ErrorCode.INSUFFICIENT_BALANCE: "Insufficient balance",
}


class VerificationFailure(str, enum.Enum):
    """Diagnostic reason behind a SignatureVerificationFailed error."""
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    SIGNATURE_MISMATCH = "signature_mismatch"
    PUBKEY_MISMATCH = "pubkey_mismatch"
    MESSAGE_MISMATCH = "message_mismatch"
    INVALID_SIGNATURE = "invalid_signature"


class LedgerError(ValueError):
    """A ledger operation was rejected. No state was mutated."""

    def __init__(self, code: ErrorCode, detail: Optional[str] = None) -> None:
        self.code = code
        self.detail = detail
        text = code.message if detail is None else f"{code.message}: {detail}"
        super().__init__(text)


class SignatureVerificationFailed(LedgerError):
    """The companion verification record is missing or does not match.

    All reasons collapse to ErrorCode.SIGNATURE_VERIFICATION_FAILED for
    callers; `reason` keeps them apart for diagnostics.
    """

    def __init__(self, reason: VerificationFailure, detail: Optional[str] = None) -> None:
        self.reason = reason
        super().__init__(
            ErrorCode.SIGNATURE_VERIFICATION_FAILED,
            detail or reason.value.replace("_", " "),
        )
