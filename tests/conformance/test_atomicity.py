"""
Atomicity Conformance Tests

INVARIANT: Market operations are all-or-nothing.

    ∀ operation op on market M:
        op succeeds ⟹ all staged records are committed and one record is logged
        op fails    ⟹ every reserve, treasury and obligation of M is unchanged
                      and nothing is logged

Partial application is impossible by construction.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from lending import (
    Tokens, Decimal, LendingError, ExceedsAllowedBorrow, BelowRequiredCollateral,
    NotLiquidatable, InsufficientLiquidity,
)
from tests.market_helpers import T0, make_config, make_market, fund_obligation, market_state


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

OPERATIONS = ["deposit", "borrow", "withdraw", "repay", "redeem", "liquidate", "advance"]


@st.composite
def operation(draw):
    """Generate one (kind, amount) market operation, often invalid on purpose."""
    kind = draw(st.sampled_from(OPERATIONS))
    amount = draw(st.integers(min_value=0, max_value=3_000_000))
    return kind, amount


def apply(market, cap, wallet, kind, amount, now):
    """Run one operation; returns the new ctoken wallet balance."""
    if kind == "deposit":
        ctokens = market.deposit_liquidity_and_mint_ctokens(Tokens("SUI", amount), now)
        return wallet + ctokens.amount
    if kind == "borrow":
        market.borrow(cap, "SUI", amount, now)
    elif kind == "withdraw":
        ctokens = market.withdraw_ctokens(cap, "SUI", amount, now)
        return wallet + ctokens.amount
    elif kind == "repay":
        market.repay(cap, Tokens("SUI", amount), now)
    elif kind == "redeem":
        # only ctokens held outside the obligation can be redeemed
        amount = min(amount, wallet)
        market.redeem_ctokens_and_withdraw_liquidity(Tokens("CToken<SUI>", amount), now)
        return wallet - amount
    elif kind == "liquidate":
        _, ctokens = market.liquidate(cap.obligation_id, Tokens("SUI", amount), "SUI", now)
        return wallet + ctokens.amount
    return wallet


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(st.lists(operation(), min_size=1, max_size=25))
    @settings(max_examples=50, deadline=None)
    def test_failed_operations_change_nothing(self, ops):
        """
        PROPERTY: After any failed operation the market state equals the state before it.
        """
        config = make_config(interest_rate_utils=(0, 80, 100), interest_rate_aprs=(100, 2000, 20000))
        market, _ = make_market("SUI", config=config)
        cap = fund_obligation(market, "SUI", 1_000_000)
        wallet = 0
        now = T0

        for kind, amount in ops:
            if kind == "advance":
                now += amount % 600
                market.update_reserve_price("SUI", Decimal.one(), now)
                continue

            before = market_state(market)
            try:
                wallet = apply(market, cap, wallet, kind, amount, now)
            except (LendingError, ValueError):
                assert market_state(market) == before
            else:
                assert len(market.operation_log) == before['log'] + 1

            assert market.verify_reserves()['valid']


class TestAtomicityExamples:
    """Explicit atomicity examples."""

    def test_rejected_borrow_leaves_state(self, market, borrower):
        market.borrow(borrower, "SUI", 250_000, T0)
        before = market_state(market)
        with pytest.raises(ExceedsAllowedBorrow):
            market.borrow(borrower, "SUI", 600_000, T0)
        assert market_state(market) == before

    def test_rejected_withdraw_leaves_state(self, market, borrower):
        market.borrow(borrower, "SUI", 250_000, T0)
        before = market_state(market)
        with pytest.raises(BelowRequiredCollateral):
            market.withdraw_ctokens(borrower, "SUI", 600_000, T0)
        assert market_state(market) == before

    def test_rejected_liquidation_leaves_state(self, market, borrower):
        market.borrow(borrower, "SUI", 250_000, T0)
        before = market_state(market)
        with pytest.raises(NotLiquidatable):
            market.liquidate(borrower.obligation_id, Tokens("SUI", 10_000), "SUI", T0)
        assert market_state(market) == before

    def test_rejected_redeem_leaves_state(self, two_reserve_market):
        market, _ = two_reserve_market
        ctokens = market.deposit_liquidity_and_mint_ctokens(Tokens("SUI", 1_000), T0)
        borrower = fund_obligation(market, "USDC", 10_000, owner="bob")
        market.borrow(borrower, "SUI", 800, T0)
        before = market_state(market)
        with pytest.raises(InsufficientLiquidity):
            market.redeem_ctokens_and_withdraw_liquidity(ctokens, T0)
        assert market_state(market) == before

