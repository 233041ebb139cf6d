"""
lending - Collateralized Lending Accounting Core

Pooled token reserves, borrower obligations, lazily compounded interest and
liquidation of undercollateralized positions, all in integer fixed point.

Usage:
    from lending import (
        create_market, create_reserve_config, MarketCreationProof, Tokens, Decimal,
    )

    market, owner_cap = create_market(MarketCreationProof("MAIN"))
    config = create_reserve_config(open_ltv_pct=50, close_ltv_pct=60)
    market.add_reserve(owner_cap, "SUI", Decimal.from_int(1), config, mint_decimals=0, now=0)

    # Supply liquidity and post the receipt as collateral
    cap = market.create_obligation("alice")
    ctokens = market.deposit_liquidity_and_mint_ctokens(Tokens("SUI", 1_000_000), now=0)
    market.deposit_ctokens_into_obligation(cap, ctokens)

    # Borrow against it, then repay
    borrowed = market.borrow(cap, "SUI", 250_000, now=10)
    refund = market.repay(cap, Tokens("SUI", 250_000), now=20)
"""

# Core types
from .core import (
    WAD,
    SECONDS_PER_YEAR,
    PRICE_STALENESS_THRESHOLD_S,
    CLOSE_FACTOR_PCT,
    MAX_BPS,
    MAX_TOKEN_AMOUNT,
    OperationKind,
    OperationRecord,
    Tokens,
    ctoken_type,
    LendingMarketOwnerCap,
    ObligationOwnerCap,
    MarketCreationProof,
    LendingError,
    StalePrice,
    InsufficientLiquidity,
    InsufficientDeposit,
    ExceedsAllowedBorrow,
    BelowRequiredCollateral,
    NotLiquidatable,
    ProofAlreadyConsumed,
    ArithmeticUnderflow,
    DivisionByZero,
    TicketNotFresh,
    DepositLimitExceeded,
    BorrowLimitExceeded,
    Unauthorized,
    ReserveNotFound,
    ObligationNotFound,
)

# Arithmetic and rates
from .fixed_point import Decimal
from .interest_rate import InterestRateCurve

# Reserves
from .reserve import (
    ReserveConfig,
    Reserve,
    ReserveTreasury,
    create_reserve_config,
    create_reserve,
    get_price,
    market_value,
    usd_to_token_amount,
    utilization,
    ctoken_ratio,
    compound_interest,
)

# Obligations
from .obligation import (
    Deposit,
    Borrow,
    Obligation,
    RefreshTicket,
    LiquidationResult,
    refresh,
    is_healthy,
    is_liquidatable,
    is_underwater,
    classify_health,
    HEALTH_HEALTHY,
    HEALTH_AT_LIMIT,
    HEALTH_LIQUIDATABLE,
    HEALTH_UNDERWATER,
)

# Market
from .lending_market import LendingMarket, create_market

# Price feeds
from .price_feed import PriceUpdate, PriceFeed, StaticPriceFeed, TimeSeriesPriceFeed

__version__ = "0.1.0"

__all__ = [
    # Constants
    "WAD", "SECONDS_PER_YEAR", "PRICE_STALENESS_THRESHOLD_S", "CLOSE_FACTOR_PCT",
    "MAX_BPS", "MAX_TOKEN_AMOUNT",
    # Core types
    "OperationKind", "OperationRecord", "Tokens", "ctoken_type",
    "LendingMarketOwnerCap", "ObligationOwnerCap", "MarketCreationProof",
    # Exceptions
    "LendingError", "StalePrice", "InsufficientLiquidity", "InsufficientDeposit",
    "ExceedsAllowedBorrow", "BelowRequiredCollateral", "NotLiquidatable",
    "ProofAlreadyConsumed", "ArithmeticUnderflow", "DivisionByZero", "TicketNotFresh",
    "DepositLimitExceeded", "BorrowLimitExceeded", "Unauthorized",
    "ReserveNotFound", "ObligationNotFound",
    # Arithmetic and rates
    "Decimal", "InterestRateCurve",
    # Reserves
    "ReserveConfig", "Reserve", "ReserveTreasury", "create_reserve_config", "create_reserve",
    "get_price", "market_value", "usd_to_token_amount", "utilization", "ctoken_ratio",
    "compound_interest",
    # Obligations
    "Deposit", "Borrow", "Obligation", "RefreshTicket", "LiquidationResult", "refresh",
    "is_healthy", "is_liquidatable", "is_underwater", "classify_health",
    "HEALTH_HEALTHY", "HEALTH_AT_LIMIT", "HEALTH_LIQUIDATABLE", "HEALTH_UNDERWATER",
    # Market
    "LendingMarket", "create_market",
    # Price feeds
    "PriceUpdate", "PriceFeed", "StaticPriceFeed", "TimeSeriesPriceFeed",
]
