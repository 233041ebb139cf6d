"""
Staleness Conformance Tests

INVARIANT: Valuation never uses a price older than 60 seconds.

    ∀ operation op ∈ {borrow, withdraw, liquidate}, age > 60:
        op fails with StalePrice and the market state is unchanged

Repayment consults no price and stays available when the oracle lags.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from lending import Tokens, Decimal, StalePrice, PRICE_STALENESS_THRESHOLD_S
from tests.market_helpers import T0, make_config, make_market, fund_obligation, market_state


def borrowed_market():
    """Market with a 250,000 borrow that becomes liquidatable once LTVs drop to 0."""
    market, owner_cap = make_market("SUI")
    cap = fund_obligation(market, "SUI", 1_000_000)
    market.borrow(cap, "SUI", 250_000, T0)
    market.update_reserve_config(owner_cap, "SUI", make_config(open_ltv_pct=0, close_ltv_pct=0), T0)
    return market, cap


class TestStalenessProperties:
    """Property-based staleness tests."""

    @given(
        st.integers(min_value=PRICE_STALENESS_THRESHOLD_S + 1, max_value=10 ** 7),
        st.sampled_from(["borrow", "withdraw", "liquidate"]),
    )
    @settings(max_examples=50, deadline=None)
    def test_stale_price_blocks_and_mutates_nothing(self, age, kind):
        """
        PROPERTY: With a price older than the threshold, valuation-dependent ops fail cleanly.
        """
        market, cap = borrowed_market()
        now = T0 + age
        before = market_state(market)

        with pytest.raises(StalePrice):
            if kind == "borrow":
                market.borrow(cap, "SUI", 1, now)
            elif kind == "withdraw":
                market.withdraw_ctokens(cap, "SUI", 1, now)
            else:
                market.liquidate(cap.obligation_id, Tokens("SUI", 1_000), "SUI", now)

        assert market_state(market) == before

    @given(st.integers(min_value=0, max_value=PRICE_STALENESS_THRESHOLD_S))
    @settings(max_examples=50, deadline=None)
    def test_price_within_threshold_is_usable(self, age):
        market, cap = borrowed_market()
        refund, ctokens = market.liquidate(cap.obligation_id, Tokens("SUI", 1_000), "SUI", T0 + age)
        assert ctokens.amount == 1_050


class TestStalenessExamples:
    """Explicit staleness examples."""

    def test_repay_ignores_stale_price(self):
        market, cap = borrowed_market()
        refund = market.repay(cap, Tokens("SUI", 1_000), T0 + 10_000)
        assert refund.amount == 0

    def test_fresh_price_unblocks(self):
        market, cap = borrowed_market()
        with pytest.raises(StalePrice):
            market.liquidate(cap.obligation_id, Tokens("SUI", 1_000), "SUI", T0 + 120)
        market.update_reserve_price("SUI", Decimal.one(), T0 + 120)
        market.liquidate(cap.obligation_id, Tokens("SUI", 1_000), "SUI", T0 + 120)

    def test_stale_collateral_reserve_blocks_other_borrow(self):
        market, _ = make_market("SUI", "USDC")
        cap = fund_obligation(market, "SUI", 1_000_000)
        market.deposit_liquidity_and_mint_ctokens(Tokens("USDC", 1_000_000), T0)
        market.update_reserve_price("USDC", Decimal.one(), T0 + 100)
        with pytest.raises(StalePrice):
            market.borrow(cap, "USDC", 1_000, T0 + 100)
