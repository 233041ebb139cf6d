"""
Rounding Conformance Tests

INVARIANT: Fixed-point rounding never manufactures value.

    ∀ Decimal a, positive Decimal b:
        floor(div(mul(a, b), b)) ≤ floor(a)

and every token-facing conversion rounds against the caller: mints and
redemptions floor, repayments and fees ceil.
"""

from dataclasses import replace

from hypothesis import given, settings
from hypothesis import strategies as st

from lending import Decimal, Tokens, WAD
from lending.reserve import (
    borrow_fee, create_reserve, create_reserve_config, deposit_liquidity_and_mint_ctokens,
)
from lending.obligation import create_obligation, deposit, refresh, borrow, repay
from tests.market_helpers import T0, make_market


MAX_RAW = 10 ** 40


@st.composite
def decimals(draw, min_value=0, max_value=MAX_RAW):
    """Generate a Decimal from its raw scaled value."""
    return Decimal.from_scaled_val(draw(st.integers(min_value=min_value, max_value=max_value)))


class TestRoundingProperties:
    """Property-based rounding tests."""

    @given(decimals(), decimals(min_value=1))
    @settings(max_examples=50)
    def test_mul_then_div_never_gains(self, a, b):
        """
        PROPERTY: floor(div(mul(a, b), b)) ≤ a
        """
        assert a.mul(b).div(b).floor() <= a.floor()
        assert a.mul(b).div(b).value <= a.value

    @given(decimals(), decimals(min_value=1))
    @settings(max_examples=50)
    def test_div_then_mul_never_gains(self, a, b):
        assert a.div(b).mul(b).value <= a.value

    @given(decimals())
    @settings(max_examples=50)
    def test_floor_ceil_bracket(self, a):
        assert a.floor() * WAD <= a.value <= a.ceil() * WAD
        assert a.ceil() - a.floor() in (0, 1)

    @given(st.integers(min_value=1, max_value=10 ** 12), st.integers(min_value=0, max_value=10_000))
    @settings(max_examples=50)
    def test_borrow_fee_rounds_up(self, amount, fee_bps):
        config = create_reserve_config(open_ltv_pct=50, close_ltv_pct=60, borrow_fee_bps=fee_bps)
        reserve, _ = create_reserve(0, "SUI", config, 0, Decimal.one(), T0)
        fee = borrow_fee(reserve, amount)
        assert fee * 10_000 >= amount * fee_bps
        assert (fee - 1) * 10_000 < amount * fee_bps or fee == 0

    @given(st.integers(min_value=1, max_value=10 ** 9), st.integers(min_value=1, max_value=10 ** 9))
    @settings(max_examples=50)
    def test_redeem_never_exceeds_deposit(self, first, second):
        """
        PROPERTY: Depositing then redeeming all minted ctokens returns at most the deposit.
        """
        market, _ = make_market("SUI")
        market.deposit_liquidity_and_mint_ctokens(Tokens("SUI", first), T0)
        ctokens = market.deposit_liquidity_and_mint_ctokens(Tokens("SUI", second), T0)
        out = market.redeem_ctokens_and_withdraw_liquidity(ctokens, T0)
        assert out.amount <= second

    @given(st.integers(min_value=1, max_value=10 ** 6), st.integers(min_value=1, max_value=WAD - 1))
    @settings(max_examples=50)
    def test_repay_tokens_cover_settled_debt(self, whole, frac):
        """
        PROPERTY: Tokens taken by repay are never less than the debt they settle.
        """
        config = create_reserve_config(open_ltv_pct=90, close_ltv_pct=95)
        reserve, _ = create_reserve(0, "SUI", config, 0, Decimal.one(), T0)
        reserve, _ = deposit_liquidity_and_mint_ctokens(reserve, 10 ** 7, T0)
        ob = deposit(create_obligation("ob", "alice"), 0, 10 ** 7)
        ob, touched, ticket = refresh(ob, {0: reserve}, T0)
        ob = borrow(ticket, ob, touched[0], 0, whole, T0)

        # give the entry a fractional tail, as accrued interest would
        entry = ob.borrow_for(0)
        debt = Decimal.from_scaled_val(whole * WAD + frac)
        ob = replace(ob, borrows=(replace(entry, borrowed_amount=debt),))

        _, settle, used = repay(ob, touched[0], 0, whole + 1)
        assert settle == debt
        assert used == whole + 1
        assert Decimal.from_int(used) >= settle
