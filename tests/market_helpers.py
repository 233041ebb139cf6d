"""
market_helpers.py - Test helpers for building lending markets

Small builders shared by the unit, conformance and functional suites, so
each test states only the numbers it cares about.
"""

from __future__ import annotations
from itertools import count
from typing import Any, Dict, Optional, Tuple

from lending import (
    LendingMarket, LendingMarketOwnerCap, ObligationOwnerCap, MarketCreationProof,
    Tokens, Decimal, ReserveConfig,
    create_market, create_reserve_config,
)


T0 = 1_700_000_000

# A market type can only be created once per process
_market_numbers = count()


def fresh_market_type(prefix: str = "TEST") -> str:
    """Market type tag not yet used in this test session."""
    return f"{prefix}-{next(_market_numbers)}"


def make_config(open_ltv_pct: int = 50, close_ltv_pct: int = 60, **kwargs) -> ReserveConfig:
    """Zero-interest config with a 5% liquidation bonus unless overridden."""
    kwargs.setdefault("liquidation_bonus_pct", 5)
    return create_reserve_config(open_ltv_pct=open_ltv_pct, close_ltv_pct=close_ltv_pct, **kwargs)


def make_market(*token_types: str, config: ReserveConfig = None, now: int = T0,
                market_type: Optional[str] = None) -> Tuple[LendingMarket, LendingMarketOwnerCap]:
    """Market with one price-1, zero-decimal reserve per token type."""
    market, owner_cap = create_market(MarketCreationProof(market_type or fresh_market_type()))
    for token_type in token_types:
        market.add_reserve(owner_cap, token_type, Decimal.from_int(1),
                           config or make_config(), 0, now)
    return market, owner_cap


def fund_obligation(market: LendingMarket, token_type: str, amount: int,
                    owner: str = "alice", now: int = T0) -> ObligationOwnerCap:
    """Create an obligation holding `amount` of liquidity as collateral."""
    cap = market.create_obligation(owner)
    ctokens = market.deposit_liquidity_and_mint_ctokens(Tokens(token_type, amount), now)
    market.deposit_ctokens_into_obligation(cap, ctokens)
    return cap


def market_state(market: LendingMarket) -> Dict[str, Any]:
    """Everything a failed operation must leave untouched."""
    return {
        'reserves': market.reserves,
        'treasuries': {r.token_type: market.treasury(r.token_type) for r in market.reserves},
        'obligations': {ob.id: ob for ob in market.obligations},
        'log': len(market.operation_log),
    }
