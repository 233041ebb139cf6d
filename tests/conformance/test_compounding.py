"""
Compounding Conformance Tests

INVARIANT: Interest accrual is lazy, monotone and idempotent per timestamp.

    ∀ reserve R, time t:
        compound_interest(compound_interest(R, t), t) == compound_interest(R, t)
        cumulative_borrow_rate never decreases
        time never moves backwards
"""

import pytest
from dataclasses import replace
from hypothesis import given, settings
from hypothesis import strategies as st

from lending import Decimal, SECONDS_PER_YEAR, compound_interest, create_reserve, create_reserve_config


T0 = 1_000


def borrowed_reserve(borrowed: int, available: int, apr_bps=(200, 3000, 30000)):
    config = create_reserve_config(
        open_ltv_pct=50, close_ltv_pct=60,
        interest_rate_utils=(0, 80, 100), interest_rate_aprs=apr_bps,
    )
    reserve, _ = create_reserve(0, "SUI", config, 0, Decimal.one(), T0)
    return replace(
        reserve,
        available_amount=available,
        borrowed_amount=Decimal.from_int(borrowed),
        ctoken_supply=available + borrowed,
    )


class TestCompoundingProperties:
    """Property-based compounding tests."""

    @given(
        st.integers(min_value=0, max_value=10 ** 12),
        st.integers(min_value=0, max_value=10 ** 12),
        st.integers(min_value=0, max_value=10 * SECONDS_PER_YEAR),
    )
    @settings(max_examples=50)
    def test_same_timestamp_is_noop(self, borrowed, available, elapsed):
        """
        PROPERTY: Compounding twice at the same timestamp equals compounding once.
        """
        reserve = compound_interest(borrowed_reserve(borrowed, available), T0 + elapsed)
        assert compound_interest(reserve, T0 + elapsed) == reserve

    @given(
        st.integers(min_value=1, max_value=10 ** 12),
        st.integers(min_value=0, max_value=10 ** 12),
        st.lists(st.integers(min_value=0, max_value=SECONDS_PER_YEAR), min_size=1, max_size=20),
    )
    @settings(max_examples=50)
    def test_rate_and_debt_never_decrease(self, borrowed, available, steps):
        reserve = borrowed_reserve(borrowed, available)
        now = T0
        for step in steps:
            now += step
            later = compound_interest(reserve, now)
            assert later.cumulative_borrow_rate >= reserve.cumulative_borrow_rate
            assert later.borrowed_amount >= reserve.borrowed_amount
            assert later.available_amount == reserve.available_amount
            reserve = later

    @given(st.integers(min_value=1, max_value=10 ** 6))
    @settings(max_examples=50)
    def test_backwards_time_rejected(self, back):
        reserve = compound_interest(borrowed_reserve(100, 100), T0 + 10 ** 6)
        with pytest.raises(ValueError):
            compound_interest(reserve, T0 + 10 ** 6 - back)


class TestCompoundingExamples:
    """Explicit compounding examples."""

    def test_first_order_factor(self):
        # 50% utilization on the (0,80) segment: 2% + 28% * 50/80 = 19.5%
        reserve = compound_interest(borrowed_reserve(1_000, 1_000), T0 + SECONDS_PER_YEAR)
        assert reserve.cumulative_borrow_rate == Decimal.from_str("1.195")
        assert reserve.borrowed_amount == Decimal.from_int(1_195)

    def test_zero_utilization_still_accrues_base_rate(self):
        reserve = borrowed_reserve(0, 1_000)
        later = compound_interest(reserve, T0 + SECONDS_PER_YEAR)
        assert later.cumulative_borrow_rate == Decimal.from_str("1.02")
        assert later.borrowed_amount.is_zero()
