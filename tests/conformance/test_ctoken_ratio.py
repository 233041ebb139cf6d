"""
CToken Ratio Conformance Tests

INVARIANT: For any reserve R, over any sequence of operations:
    ctoken_ratio(R) = (available + borrowed) / ctoken_supply ≥ 1
    ctoken_ratio(R) never decreases

Rounding on mint and redeem always favors the pool, and interest only
ever adds to borrowed_amount.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from lending import Tokens, Decimal, LendingError, ctoken_ratio
from tests.market_helpers import T0, make_config, make_market, fund_obligation


@st.composite
def ratio_operation(draw):
    kind = draw(st.sampled_from(["deposit", "borrow", "repay", "redeem", "advance"]))
    amount = draw(st.integers(min_value=1, max_value=500_000))
    return kind, amount


class TestCTokenRatioProperties:
    """Property-based ctoken ratio tests."""

    @given(st.lists(ratio_operation(), min_size=1, max_size=30))
    @settings(max_examples=50, deadline=None)
    def test_ratio_non_decreasing(self, ops):
        """
        PROPERTY: No deposit, borrow, repay, redeem or interest accrual lowers the ratio.
        """
        config = make_config(interest_rate_utils=(0, 100), interest_rate_aprs=(500, 50000))
        market, _ = make_market("SUI", config=config)
        cap = fund_obligation(market, "SUI", 1_000_000)
        wallet = 0
        now = T0
        ratio = ctoken_ratio(market.reserve("SUI"))

        for kind, amount in ops:
            try:
                if kind == "advance":
                    now += amount % 3_600
                    market.update_reserve_price("SUI", Decimal.one(), now)
                    # touch the reserve so interest is compounded
                    wallet += market.deposit_liquidity_and_mint_ctokens(Tokens("SUI", 1), now).amount
                elif kind == "deposit":
                    wallet += market.deposit_liquidity_and_mint_ctokens(Tokens("SUI", amount), now).amount
                elif kind == "borrow":
                    market.borrow(cap, "SUI", amount, now)
                elif kind == "repay":
                    market.repay(cap, Tokens("SUI", amount), now)
                elif kind == "redeem" and wallet:
                    amount = min(amount, wallet)
                    market.redeem_ctokens_and_withdraw_liquidity(Tokens("CToken<SUI>", amount), now)
                    wallet -= amount
            except (LendingError, ValueError):
                pass

            current = ctoken_ratio(market.reserve("SUI"))
            assert current >= ratio
            assert current >= Decimal.one()
            ratio = current

    @given(st.integers(min_value=1, max_value=10 ** 15))
    @settings(max_examples=50)
    def test_deposit_at_par_mints_exactly(self, amount):
        """
        PROPERTY: Depositing X into a reserve with ratio 1.0 mints exactly X ctokens.
        """
        market, _ = make_market("SUI")
        ctokens = market.deposit_liquidity_and_mint_ctokens(Tokens("SUI", amount), T0)
        assert ctokens.amount == amount


class TestCTokenRatioExamples:
    """Explicit ctoken ratio examples."""

    def test_interest_raises_ratio(self):
        config = make_config(interest_rate_utils=(0,), interest_rate_aprs=(1000,))
        market, _ = make_market("SUI", config=config)
        cap = fund_obligation(market, "SUI", 1_000_000)
        market.borrow(cap, "SUI", 100_000, T0)

        later = T0 + 86_400
        market.update_reserve_price("SUI", Decimal.one(), later)
        ctokens = market.deposit_liquidity_and_mint_ctokens(Tokens("SUI", 1_000), later)

        assert ctoken_ratio(market.reserve("SUI")) > Decimal.one()
        assert ctokens.amount < 1_000
