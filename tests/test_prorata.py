"""Tests for the pro-rata engine — floor rounding and overflow traps."""

from decimal import Decimal

import pytest

from raiseledger.distribution.prorata import (
    RATE_SCALE,
    checked_add,
    checked_sub,
    claim_amount,
    distribution_dust,
    rate_from_decimal,
    rate_to_decimal,
    required_contribution,
)
from raiseledger.errors import ErrorCode, LedgerError
from raiseledger.models.ledger import U64_MAX


class TestRequiredContribution:
    def test_known_value(self) -> None:
        assert required_contribution(2000, 500_000) == 1

    def test_floors(self) -> None:
        assert required_contribution(1999, 500_000) == 0
        assert required_contribution(3999, 500_000) == 1

    def test_unit_rate(self) -> None:
        assert required_contribution(7, RATE_SCALE) == 7

    def test_zero_points(self) -> None:
        assert required_contribution(0, 500_000) == 0

    def test_wide_intermediate(self) -> None:
        # points * rate exceeds u64 but the scaled result fits.
        assert required_contribution(U64_MAX, RATE_SCALE) == U64_MAX

    def test_result_overflow(self) -> None:
        with pytest.raises(LedgerError) as excinfo:
            required_contribution(U64_MAX, U64_MAX)
        assert excinfo.value.code == ErrorCode.CALCULATION_OVERFLOW

    def test_rejects_bool(self) -> None:
        with pytest.raises(ValueError, match="integer"):
            required_contribution(True, 500_000)


class TestClaimAmount:
    def test_known_value(self) -> None:
        assert claim_amount(1_000_000_000, 100, 300) == 333_333_333

    def test_sole_claimant_gets_pool(self) -> None:
        assert claim_amount(5_000, 42, 42) == 5_000

    def test_wide_intermediate(self) -> None:
        assert claim_amount(U64_MAX, U64_MAX, U64_MAX) == U64_MAX

    def test_zero_total_score(self) -> None:
        with pytest.raises(LedgerError) as excinfo:
            claim_amount(1_000, 0, 0)
        assert excinfo.value.code == ErrorCode.NO_COMMITMENTS

    def test_share_above_total_overflows(self) -> None:
        with pytest.raises(LedgerError) as excinfo:
            claim_amount(U64_MAX, 2, 1)
        assert excinfo.value.code == ErrorCode.CALCULATION_OVERFLOW


class TestDust:
    def test_three_equal_claimants(self) -> None:
        assert distribution_dust(1_000_000_000, [100, 100, 100]) == 1

    def test_dust_bounded_by_claimant_count(self) -> None:
        cases = [
            (1_000_000_007, [1, 2, 3, 4, 5]),
            (999, [333, 333, 334]),
            (10**18, [7, 11, 13, 17]),
            (1, [1, 1]),
        ]
        for pool, scores in cases:
            dust = distribution_dust(pool, scores)
            assert 0 <= dust <= len(scores)

    def test_exact_split_has_no_dust(self) -> None:
        assert distribution_dust(900, [1, 2]) == 0

    def test_no_scores(self) -> None:
        with pytest.raises(LedgerError) as excinfo:
            distribution_dust(1_000, [])
        assert excinfo.value.code == ErrorCode.NO_COMMITMENTS


class TestCheckedArithmetic:
    def test_add_at_boundary(self) -> None:
        assert checked_add(U64_MAX - 1, 1) == U64_MAX

    def test_add_overflow(self) -> None:
        with pytest.raises(LedgerError) as excinfo:
            checked_add(U64_MAX, 1)
        assert excinfo.value.code == ErrorCode.CALCULATION_OVERFLOW

    def test_sub_underflow(self) -> None:
        with pytest.raises(LedgerError, match="underflows"):
            checked_sub(0, 1)


class TestRateConversion:
    def test_from_decimal(self) -> None:
        assert rate_from_decimal(Decimal("0.0005")) == 500_000
        assert rate_from_decimal(Decimal("1")) == RATE_SCALE

    def test_to_decimal(self) -> None:
        assert rate_to_decimal(500_000) == Decimal("0.0005")

    def test_rejects_sub_scale_precision(self) -> None:
        with pytest.raises(ValueError, match="not representable"):
            rate_from_decimal(Decimal("0.0000000001"))

    def test_rejects_negative(self) -> None:
        with pytest.raises(ValueError):
            rate_from_decimal(Decimal("-1"))
