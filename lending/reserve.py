"""
reserve.py - Reserve Pools and Treasuries

One Reserve exists per token type per market. It tracks undeployed
liquidity, outstanding debt (with interest), the ctoken supply, a cached
oracle price and protocol fees. Its custody half, the ReserveTreasury,
holds the actual token balance and is kept in a separate map keyed by
token type.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES:
   - ReserveConfig: risk parameters, replaced wholesale by admins
   - Reserve: pool accounting snapshot
   - ReserveTreasury: custody snapshot

2. READ-ONLY CALCULATIONS (no state change):
   - get_price, market_value, usd_to_token_amount, utilization, ctoken_ratio

3. TRANSITIONS (return a NEW Reserve, never mutate):
   - compound_interest, deposit_liquidity_and_mint_ctokens, redeem_ctokens,
     borrow_liquidity, repay_liquidity, update_reserve_config,
     update_reserve_price, claim_fees

Key Formulas:
    utilization  = borrowed / (available + borrowed)
    ctoken_ratio = (available + borrowed) / ctoken_supply
    factor       = 1 + apr(utilization) * elapsed / SECONDS_PER_YEAR
    market_value = price * amount / 10^mint_decimals
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from .core import (
    MAX_BPS, PRICE_STALENESS_THRESHOLD_S, SECONDS_PER_YEAR,
    BorrowLimitExceeded, DepositLimitExceeded, InsufficientLiquidity, StalePrice,
    validate_amount,
)
from .fixed_point import Decimal
from .interest_rate import InterestRateCurve


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class ReserveConfig:
    """
    Risk parameters of a reserve.

    Attributes:
        open_ltv_pct: Share of deposit value that may be borrowed against (0-100)
        close_ltv_pct: Share of deposit value above which debt is liquidatable (>= open)
        borrow_weight_bps: Risk multiplier on debt value (>= 10000, i.e. >= 1x)
        deposit_limit: Maximum total supply (available + borrowed)
        borrow_limit: Maximum total debt
        liquidation_bonus_pct: Extra collateral value paid to liquidators
        borrow_fee_bps: Origination fee withheld from borrowed tokens
        spread_fee_bps: Protocol share of interest (recorded only)
        liquidation_fee_bps: Protocol share of seized collateral
        interest_rate: Utilization -> APR curve
    """
    open_ltv_pct: int
    close_ltv_pct: int
    borrow_weight_bps: int
    deposit_limit: int
    borrow_limit: int
    liquidation_bonus_pct: int
    borrow_fee_bps: int
    spread_fee_bps: int
    liquidation_fee_bps: int
    interest_rate: InterestRateCurve

    def __post_init__(self):
        if not 0 <= self.open_ltv_pct <= 100:
            raise ValueError(f"open_ltv_pct must be in [0, 100], got {self.open_ltv_pct}")
        if not 0 <= self.close_ltv_pct <= 100:
            raise ValueError(f"close_ltv_pct must be in [0, 100], got {self.close_ltv_pct}")
        if self.close_ltv_pct < self.open_ltv_pct:
            raise ValueError(
                f"close_ltv_pct ({self.close_ltv_pct}) cannot be below "
                f"open_ltv_pct ({self.open_ltv_pct})"
            )
        if self.borrow_weight_bps < MAX_BPS:
            raise ValueError(f"borrow_weight_bps must be >= {MAX_BPS}, got {self.borrow_weight_bps}")
        validate_amount(self.deposit_limit, "deposit_limit")
        validate_amount(self.borrow_limit, "borrow_limit")
        if not 0 <= self.liquidation_bonus_pct <= 100:
            raise ValueError(
                f"liquidation_bonus_pct must be in [0, 100], got {self.liquidation_bonus_pct}"
            )
        for name in ("borrow_fee_bps", "spread_fee_bps", "liquidation_fee_bps"):
            bps = getattr(self, name)
            if not 0 <= bps <= MAX_BPS:
                raise ValueError(f"{name} must be in [0, {MAX_BPS}], got {bps}")
        if not isinstance(self.interest_rate, InterestRateCurve):
            raise ValueError("interest_rate must be an InterestRateCurve")

    @property
    def open_ltv(self) -> Decimal:
        return Decimal.from_percent(self.open_ltv_pct)

    @property
    def close_ltv(self) -> Decimal:
        return Decimal.from_percent(self.close_ltv_pct)

    @property
    def borrow_weight(self) -> Decimal:
        return Decimal.from_bps(self.borrow_weight_bps)

    @property
    def liquidation_bonus(self) -> Decimal:
        return Decimal.from_percent(self.liquidation_bonus_pct)


def create_reserve_config(
    open_ltv_pct: int,
    close_ltv_pct: int,
    borrow_weight_bps: int = MAX_BPS,
    deposit_limit: int = 10 ** 18,
    borrow_limit: int = 10 ** 18,
    liquidation_bonus_pct: int = 5,
    borrow_fee_bps: int = 0,
    spread_fee_bps: int = 0,
    liquidation_fee_bps: int = 0,
    interest_rate_utils: Tuple[int, ...] = (0, 100),
    interest_rate_aprs: Tuple[int, ...] = (0, 0),
) -> ReserveConfig:
    """
    Build a validated ReserveConfig from plain parameters.

    The interest curve is given as the two parallel control-point arrays.

    Raises:
        ValueError: If any parameter is out of range or inconsistent.

    Example:
        config = create_reserve_config(
            open_ltv_pct=50,
            close_ltv_pct=60,
            interest_rate_utils=(0, 80, 100),
            interest_rate_aprs=(100, 1000, 10000),
        )
    """
    return ReserveConfig(
        open_ltv_pct=open_ltv_pct,
        close_ltv_pct=close_ltv_pct,
        borrow_weight_bps=borrow_weight_bps,
        deposit_limit=deposit_limit,
        borrow_limit=borrow_limit,
        liquidation_bonus_pct=liquidation_bonus_pct,
        borrow_fee_bps=borrow_fee_bps,
        spread_fee_bps=spread_fee_bps,
        liquidation_fee_bps=liquidation_fee_bps,
        interest_rate=InterestRateCurve(interest_rate_utils, interest_rate_aprs),
    )


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Reserve:
    """
    Immutable snapshot of one token pool.

    Each state change creates a NEW instance (value semantics), so a failed
    operation can simply drop its staged copies.
    """
    index: int
    token_type: str
    config: ReserveConfig
    mint_decimals: int
    price_identifier: str
    price: Decimal
    price_last_update_timestamp_s: int
    available_amount: int
    ctoken_supply: int
    borrowed_amount: Decimal
    cumulative_borrow_rate: Decimal
    interest_last_update_timestamp_s: int
    fees_accumulated: Decimal


@dataclass(frozen=True, slots=True)
class ReserveTreasury:
    """
    Custody half of a reserve.

    Attributes:
        reserve_index: Index of the owning reserve
        token_type: Underlying token type tag
        balance: Underlying tokens backing the reserve's available amount
        ctoken_supply: Outstanding ctokens minted by this treasury
        fees: Collected, unclaimed protocol fee tokens
        fee_ctokens: Unclaimed protocol share of liquidated collateral, kept as ctokens
    """
    reserve_index: int
    token_type: str
    balance: int = 0
    ctoken_supply: int = 0
    fees: int = 0
    fee_ctokens: int = 0


def create_reserve(
    index: int,
    token_type: str,
    config: ReserveConfig,
    mint_decimals: int,
    price: Decimal,
    now: int,
    price_identifier: Optional[str] = None,
) -> Tuple[Reserve, ReserveTreasury]:
    """
    Create an empty reserve and its treasury.

    Raises:
        ValueError: If the token type is empty, decimals are out of range
                    or the initial price is zero.
    """
    if not token_type or not token_type.strip():
        raise ValueError("token_type cannot be empty")
    if not 0 <= mint_decimals <= 36:
        raise ValueError(f"mint_decimals must be in [0, 36], got {mint_decimals}")
    if price.is_zero():
        raise ValueError("initial price must be positive")
    validate_amount(now, "now")

    reserve = Reserve(
        index=index,
        token_type=token_type,
        config=config,
        mint_decimals=mint_decimals,
        price_identifier=price_identifier or token_type,
        price=price,
        price_last_update_timestamp_s=now,
        available_amount=0,
        ctoken_supply=0,
        borrowed_amount=Decimal.zero(),
        cumulative_borrow_rate=Decimal.one(),
        interest_last_update_timestamp_s=now,
        fees_accumulated=Decimal.zero(),
    )
    return reserve, ReserveTreasury(reserve_index=index, token_type=token_type)


def adjust_treasury(
    treasury: ReserveTreasury,
    balance: int = 0,
    ctoken_supply: int = 0,
    fees: int = 0,
    fee_ctokens: int = 0,
) -> ReserveTreasury:
    """Apply signed deltas to a treasury, refusing to overdraw any balance."""
    new_balance = treasury.balance + balance
    new_supply = treasury.ctoken_supply + ctoken_supply
    new_fees = treasury.fees + fees
    new_fee_ctokens = treasury.fee_ctokens + fee_ctokens
    if min(new_balance, new_supply, new_fees, new_fee_ctokens) < 0:
        raise InsufficientLiquidity(
            f"Treasury {treasury.token_type} cannot cover balance {balance}, "
            f"ctokens {ctoken_supply}, fees {fees}, fee ctokens {fee_ctokens}"
        )
    return replace(treasury, balance=new_balance, ctoken_supply=new_supply, fees=new_fees,
                   fee_ctokens=new_fee_ctokens)


# ============================================================================
# READ-ONLY CALCULATIONS
# ============================================================================

def get_price(reserve: Reserve, now: int) -> Decimal:
    """
    Return the cached price, refusing prices older than the staleness threshold.

    Raises:
        StalePrice: If now - price_last_update_timestamp_s > 60
    """
    age = now - reserve.price_last_update_timestamp_s
    if age > PRICE_STALENESS_THRESHOLD_S:
        raise StalePrice(
            f"Price of {reserve.token_type} is {age}s old "
            f"(limit {PRICE_STALENESS_THRESHOLD_S}s)"
        )
    return reserve.price


def market_value(reserve: Reserve, amount: Decimal, now: int) -> Decimal:
    """USD value of an amount of the reserve's token (in smallest units)."""
    return get_price(reserve, now).mul(amount).div(Decimal.from_int(10 ** reserve.mint_decimals))


def usd_to_token_amount(reserve: Reserve, usd: Decimal, now: int) -> Decimal:
    """Amount of the reserve's token (in smallest units) worth a USD value."""
    return usd.mul(Decimal.from_int(10 ** reserve.mint_decimals)).div(get_price(reserve, now))


def total_supply(reserve: Reserve) -> Decimal:
    return Decimal.from_int(reserve.available_amount).add(reserve.borrowed_amount)


def utilization(reserve: Reserve) -> Decimal:
    """Borrowed share of total supply; 0 for an empty reserve."""
    supply = total_supply(reserve)
    if supply.is_zero():
        return Decimal.zero()
    return reserve.borrowed_amount.div(supply)


def ctoken_ratio(reserve: Reserve) -> Decimal:
    """Underlying tokens per ctoken; 1.0 before any ctokens exist."""
    if reserve.ctoken_supply == 0:
        return Decimal.one()
    return total_supply(reserve).div(Decimal.from_int(reserve.ctoken_supply))


# ============================================================================
# TRANSITIONS
# ============================================================================

def compound_interest(reserve: Reserve, now: int) -> Reserve:
    """
    Accrue interest from the last update up to now.

    Uses a single first-order step per call:
        factor = 1 + apr(utilization) * elapsed / SECONDS_PER_YEAR
    which scales both the cumulative borrow rate and the outstanding debt.

    Returns the same instance when no time has elapsed.

    Raises:
        ValueError: If now is earlier than the last update.
    """
    last = reserve.interest_last_update_timestamp_s
    if now == last:
        return reserve
    if now < last:
        raise ValueError(f"Cannot move time backwards: {now} < {last}")

    elapsed = now - last
    apr = reserve.config.interest_rate.apr(utilization(reserve))
    factor = Decimal.one().add(apr.mul(elapsed).div(SECONDS_PER_YEAR))

    return replace(
        reserve,
        cumulative_borrow_rate=reserve.cumulative_borrow_rate.mul(factor),
        borrowed_amount=reserve.borrowed_amount.mul(factor),
        interest_last_update_timestamp_s=now,
    )


def deposit_liquidity_and_mint_ctokens(reserve: Reserve, amount: int, now: int) -> Tuple[Reserve, int]:
    """
    Add liquidity to the pool and mint ctokens at the current ratio.

    Returns:
        Tuple of (new reserve, ctokens minted)

    Raises:
        ValueError: If amount is not positive or too small to mint a ctoken.
        DepositLimitExceeded: If total supply would exceed the deposit limit.
    """
    validate_amount(amount)
    if amount == 0:
        raise ValueError("deposit amount must be positive")

    reserve = compound_interest(reserve, now)
    minted = Decimal.from_int(amount).div(ctoken_ratio(reserve)).floor()
    if minted == 0:
        raise ValueError(f"deposit of {amount} is too small to mint any ctokens")

    new_supply = total_supply(reserve).add(amount)
    if new_supply > Decimal.from_int(reserve.config.deposit_limit):
        raise DepositLimitExceeded(
            f"Deposit would bring {reserve.token_type} supply to {new_supply}, "
            f"limit {reserve.config.deposit_limit}"
        )

    return replace(
        reserve,
        available_amount=reserve.available_amount + amount,
        ctoken_supply=reserve.ctoken_supply + minted,
    ), minted


def redeem_ctokens(reserve: Reserve, ctoken_amount: int, now: int) -> Tuple[Reserve, int]:
    """
    Burn ctokens and release the underlying liquidity they represent.

    Returns:
        Tuple of (new reserve, liquidity released)

    Raises:
        InsufficientLiquidity: If the pool's available amount cannot cover it.
    """
    validate_amount(ctoken_amount, "ctoken_amount")
    if ctoken_amount == 0:
        raise ValueError("ctoken_amount must be positive")
    if ctoken_amount > reserve.ctoken_supply:
        raise ValueError(
            f"Cannot redeem {ctoken_amount} ctokens, supply is {reserve.ctoken_supply}"
        )

    reserve = compound_interest(reserve, now)
    liquidity = ctoken_ratio(reserve).mul(ctoken_amount).floor()
    if liquidity > reserve.available_amount:
        raise InsufficientLiquidity(
            f"Redeeming {ctoken_amount} ctokens needs {liquidity} {reserve.token_type}, "
            f"only {reserve.available_amount} available"
        )

    return replace(
        reserve,
        available_amount=reserve.available_amount - liquidity,
        ctoken_supply=reserve.ctoken_supply - ctoken_amount,
    ), liquidity


def borrow_fee(reserve: Reserve, amount: int) -> int:
    """Origination fee on a borrow, rounded up."""
    return -(-amount * reserve.config.borrow_fee_bps // MAX_BPS)


def borrow_liquidity(reserve: Reserve, amount: int, now: int) -> Tuple[Reserve, int]:
    """
    Lend liquidity out of the pool.

    The full amount becomes debt; the origination fee is withheld from the
    tokens paid out and credited to fees_accumulated.

    Returns:
        Tuple of (new reserve, fee withheld)

    Raises:
        InsufficientLiquidity: If amount exceeds the available amount.
        BorrowLimitExceeded: If total debt would exceed the borrow limit.
    """
    validate_amount(amount)
    if amount == 0:
        raise ValueError("borrow amount must be positive")

    reserve = compound_interest(reserve, now)
    if amount > reserve.available_amount:
        raise InsufficientLiquidity(
            f"Cannot borrow {amount} {reserve.token_type}, "
            f"only {reserve.available_amount} available"
        )

    new_borrowed = reserve.borrowed_amount.add(amount)
    if new_borrowed > Decimal.from_int(reserve.config.borrow_limit):
        raise BorrowLimitExceeded(
            f"Borrow would bring {reserve.token_type} debt to {new_borrowed}, "
            f"limit {reserve.config.borrow_limit}"
        )

    fee = borrow_fee(reserve, amount)
    return replace(
        reserve,
        available_amount=reserve.available_amount - amount,
        borrowed_amount=new_borrowed,
        fees_accumulated=reserve.fees_accumulated.add(fee),
    ), fee


def repay_liquidity(
    reserve: Reserve,
    amount: int,
    now: int,
    settle_amount: Optional[Decimal] = None,
) -> Reserve:
    """
    Return liquidity to the pool and retire debt.

    Args:
        reserve: Reserve being repaid
        amount: Tokens received
        now: Current time (seconds)
        settle_amount: Debt retired; defaults to amount. Debt is clamped at
                       zero rather than underflowing.
    """
    validate_amount(amount)
    if settle_amount is None:
        settle_amount = Decimal.from_int(amount)

    reserve = compound_interest(reserve, now)
    return replace(
        reserve,
        available_amount=reserve.available_amount + amount,
        borrowed_amount=reserve.borrowed_amount.saturating_sub(settle_amount),
    )


def claim_fees(
    reserve: Reserve,
    treasury: ReserveTreasury,
) -> Tuple[Reserve, ReserveTreasury, int, int]:
    """
    Pay out every collected fee token and fee ctoken held by the treasury.

    Fee ctokens stay part of the reserve's ctoken supply; the claimant
    redeems them like any other depositor once liquidity is available.

    Returns:
        Tuple of (new reserve, new treasury, tokens paid out, ctokens paid out)
    """
    amount = treasury.fees
    ctokens = treasury.fee_ctokens
    reserve = replace(
        reserve,
        fees_accumulated=reserve.fees_accumulated.saturating_sub(amount),
    )
    treasury = adjust_treasury(treasury, fees=-amount, fee_ctokens=-ctokens)
    return reserve, treasury, amount, ctokens


def update_reserve_config(reserve: Reserve, config: ReserveConfig) -> Reserve:
    """Replace the reserve's risk parameters; the old config is discarded."""
    if not isinstance(config, ReserveConfig):
        raise ValueError("config must be a ReserveConfig")
    return replace(reserve, config=config)


def update_reserve_price(reserve: Reserve, price: Decimal, timestamp: int) -> Reserve:
    """
    Cache an oracle price.

    Raises:
        ValueError: If the price is zero or older than the cached one.
    """
    if price.is_zero():
        raise ValueError(f"Price of {reserve.token_type} must be positive")
    if timestamp < reserve.price_last_update_timestamp_s:
        raise ValueError(
            f"Price update for {reserve.token_type} at {timestamp} is older than "
            f"cached price at {reserve.price_last_update_timestamp_s}"
        )
    return replace(reserve, price=price, price_last_update_timestamp_s=timestamp)
