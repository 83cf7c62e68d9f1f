"""Pro-rata engine — fixed-point contribution and claim arithmetic.

All values are unsigned 64-bit integers. Products are formed at double
width (128 bits) before dividing, so points × rate or pool × score may
exceed the single-width range without loss. Results that do not fit back
into 64 bits abort with CalculationOverflow; nothing wraps or truncates.

Rounding is always floor. The sum of all claims is therefore at most the
token pool, with at most one unit of dust per claimant. Dust is never
redistributed.

    required_contribution = floor(points × rate / RATE_SCALE)
    claim_amount          = floor(token_pool × user_score / total_score)
"""

from __future__ import annotations

from decimal import Decimal

from raiseledger.errors import ErrorCode, LedgerError
from raiseledger.models.ledger import U64_MAX, require_u64

# Implicit scale of DistributionLedger.rate
RATE_SCALE = 10**9

U128_MAX = 2**128 - 1


def checked_add(a: int, b: int) -> int:
    """u64 addition that raises CalculationOverflow instead of wrapping."""
    result = a + b
    if result > U64_MAX:
        raise LedgerError(ErrorCode.CALCULATION_OVERFLOW, f"{a} + {b} exceeds u64")
    return result


def checked_sub(a: int, b: int) -> int:
    result = a - b
    if result < 0:
        raise LedgerError(ErrorCode.CALCULATION_OVERFLOW, f"{a} - {b} underflows u64")
    return result


def _wide_mul(a: int, b: int) -> int:
    product = a * b
    if product > U128_MAX:
        raise LedgerError(ErrorCode.CALCULATION_OVERFLOW, f"{a} * {b} exceeds u128")
    return product


def _narrow(value: int) -> int:
    if value > U64_MAX:
        raise LedgerError(ErrorCode.CALCULATION_OVERFLOW, f"{value} exceeds u64")
    return value


def required_contribution(points: int, rate: int) -> int:
    """Minimum raise-currency units a proof for `points` must carry."""
    require_u64(points, "points")
    require_u64(rate, "rate")
    return _narrow(_wide_mul(points, rate) // RATE_SCALE)


def claim_amount(token_pool: int, user_score: int, total_score: int) -> int:
    """Tokens owed to a user holding `user_score` of `total_score`."""
    require_u64(token_pool, "token_pool")
    require_u64(user_score, "user_score")
    require_u64(total_score, "total_score")
    if total_score == 0:
        raise LedgerError(ErrorCode.NO_COMMITMENTS)
    return _narrow(_wide_mul(token_pool, user_score) // total_score)


def rate_from_decimal(rate: Decimal) -> int:
    """Convert a human rate (units per point) to the scaled integer form.

    Rejects rates that are negative, too large, or not exactly
    representable at nine decimal places.
    """
    scaled = Decimal(rate) * RATE_SCALE
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Rate {rate} is not representable at scale {RATE_SCALE}")
    return require_u64(int(scaled), "rate")


def rate_to_decimal(rate: int) -> Decimal:
    return Decimal(require_u64(rate, "rate")) / Decimal(RATE_SCALE)


def distribution_dust(token_pool: int, scores: list[int]) -> int:
    """Undistributed remainder if every listed score claims once.

    Raises NoCommitments if the scores sum to zero.
    """
    total = 0
    for score in scores:
        total = checked_add(total, score)
    paid = 0
    for score in scores:
        paid = checked_add(paid, claim_amount(token_pool, score, total))
    return checked_sub(token_pool, paid)
