"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, conformance and functional tests:
- Markets (single-reserve, two-reserve) with their owner caps
- A funded obligation ready to borrow

Builders live in tests/market_helpers.py.
"""

import pytest

from tests.market_helpers import make_market, fund_obligation


@pytest.fixture
def owned_market():
    """Market with a single SUI reserve, returned with its owner cap."""
    return make_market("SUI")


@pytest.fixture
def market(owned_market):
    return owned_market[0]


@pytest.fixture
def two_reserve_market():
    """Market with SUI and USDC reserves, both priced at 1."""
    return make_market("SUI", "USDC")


@pytest.fixture
def borrower(market):
    """Obligation with 1,000,000 SUI of collateral (open 50%, close 60%)."""
    return fund_obligation(market, "SUI", 1_000_000)
