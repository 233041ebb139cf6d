"""
Core types and constants for the lending accounting core.

This module provides the foundational pieces shared by every other module:
1. Constants: fixed-point scale, time constants, risk parameters
2. Exceptions: LendingError and the domain-specific error kinds
3. Token quantities: Tokens, the abstract (type tag, amount) handed across the boundary
4. Capabilities: opaque handles gating privileged market/obligation operations
5. Operation records: the append-only audit trail of committed operations

Nothing in this module mutates market state.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Set


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale for all protocol math (18 decimal places).
WAD = 10 ** 18

SECONDS_PER_YEAR = 365 * 24 * 60 * 60

# Cached prices older than this (relative to the caller's clock) are rejected.
PRICE_STALENESS_THRESHOLD_S = 60

# Maximum share of an obligation's unweighted debt value repayable per liquidation.
CLOSE_FACTOR_PCT = 20

# Basis points in 100%.
MAX_BPS = 10_000

# Largest amount representable by the host ledger's token balances (u64).
MAX_TOKEN_AMOUNT = 2 ** 64 - 1

CTOKEN_PREFIX = "CToken"


# ============================================================================
# ENUMS
# ============================================================================

class OperationKind(Enum):
    """Classification of committed market operations for the audit trail."""
    CREATE_MARKET = "create_market"
    ADD_RESERVE = "add_reserve"
    UPDATE_CONFIG = "update_config"
    UPDATE_PRICE = "update_price"
    CREATE_OBLIGATION = "create_obligation"
    DEPOSIT_LIQUIDITY = "deposit_liquidity"
    REDEEM_CTOKENS = "redeem_ctokens"
    DEPOSIT_CTOKENS = "deposit_ctokens"
    BORROW = "borrow"
    WITHDRAW = "withdraw"
    REPAY = "repay"
    LIQUIDATE = "liquidate"
    CLAIM_FEES = "claim_fees"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-core errors."""
    pass


class StalePrice(LendingError):
    """Raised when a reserve's cached price is older than the staleness threshold."""
    pass


class InsufficientLiquidity(LendingError):
    """Raised when a reserve has too little available liquidity for a withdrawal or borrow."""
    pass


class InsufficientDeposit(LendingError):
    """Raised when withdrawing more ctokens than an obligation has deposited."""
    pass


class ExceedsAllowedBorrow(LendingError):
    """Raised when a borrow would push weighted debt above the obligation's allowed value."""
    pass


class BelowRequiredCollateral(LendingError):
    """Raised when a withdrawal would leave weighted debt above the allowed borrow value."""
    pass


class NotLiquidatable(LendingError):
    """Raised when liquidating an obligation that is not unhealthy."""
    pass


class ProofAlreadyConsumed(LendingError):
    """Raised when a market creation proof is used a second time."""
    pass


class ArithmeticUnderflow(LendingError):
    """Raised when a fixed-point subtraction would go below zero."""
    pass


class DivisionByZero(LendingError):
    """Raised when a fixed-point division has a zero divisor."""
    pass


class TicketNotFresh(LendingError):
    """Raised when a refresh ticket is spent, foreign to the obligation, or from another timestamp."""
    pass


class DepositLimitExceeded(LendingError):
    """Raised when a deposit would push total reserve supply above its deposit limit."""
    pass


class BorrowLimitExceeded(LendingError):
    """Raised when a borrow would push total reserve debt above its borrow limit."""
    pass


class Unauthorized(LendingError):
    """Raised when a capability does not match the market or obligation it is presented to."""
    pass


class ReserveNotFound(LendingError):
    """Raised when no reserve exists for a token type or index."""
    pass


class ObligationNotFound(LendingError):
    """Raised when no obligation exists for an id."""
    pass


# ============================================================================
# TOKEN QUANTITIES
# ============================================================================

def ctoken_type(token_type: str) -> str:
    """Return the deposit-receipt type tag for an underlying token type."""
    return f"{CTOKEN_PREFIX}<{token_type}>"


def validate_amount(amount: int, what: str = "amount") -> int:
    """Check that an amount is a non-negative integer within token range."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"{what} must be an int, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"{what} cannot be negative, got {amount}")
    if amount > MAX_TOKEN_AMOUNT:
        raise ValueError(f"{what} exceeds token range, got {amount}")
    return amount


@dataclass(frozen=True, slots=True)
class Tokens:
    """
    An abstract quantity of a fungible token passed into or out of the core.

    Real transfer and minting happens in the host token ledger; the core
    only sees the type tag and the integer amount.

    Attributes:
        token_type: Type tag of the token (e.g. "SUI", or "CToken<SUI>")
        amount: Quantity in the token's smallest unit
    """
    token_type: str
    amount: int

    def __post_init__(self):
        if not self.token_type or not self.token_type.strip():
            raise ValueError("Tokens token_type cannot be empty")
        validate_amount(self.amount)

    @property
    def is_ctoken(self) -> bool:
        return self.token_type.startswith(f"{CTOKEN_PREFIX}<")

    def __repr__(self) -> str:
        return f"Tokens({self.amount} {self.token_type})"


# ============================================================================
# CAPABILITIES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LendingMarketOwnerCap:
    """Grants add-reserve, config and fee operations on one market."""
    market_id: str


@dataclass(frozen=True, slots=True)
class ObligationOwnerCap:
    """Grants mutation of exactly one obligation."""
    market_id: str
    obligation_id: str


# Market types whose creation proof has been spent in this process.
_consumed_market_types: Set[str] = set()


class MarketCreationProof:
    """
    One-time witness allowing a single market of a given type to be created.

    The proof is cleared on first successful use. Any later attempt, with this
    proof or with another proof for the same market type, raises
    ProofAlreadyConsumed.
    """

    def __init__(self, market_type: str):
        if not market_type or not market_type.strip():
            raise ValueError("market_type cannot be empty")
        self.market_type = market_type
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def consume(self) -> str:
        if self._consumed:
            raise ProofAlreadyConsumed(
                f"Creation proof for market type {self.market_type} already used"
            )
        if self.market_type in _consumed_market_types:
            raise ProofAlreadyConsumed(
                f"A market of type {self.market_type} was already created"
            )
        _consumed_market_types.add(self.market_type)
        self._consumed = True
        return self.market_type

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else "unused"
        return f"MarketCreationProof({self.market_type}, {state})"


# ============================================================================
# OPERATION RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class OperationRecord:
    """
    Immutable audit record of one committed market operation.

    Attributes:
        sequence_number: Monotonic position within the market's log
        timestamp: Caller-supplied clock (seconds) of the operation
        kind: What happened
        obligation_id: Obligation touched, if any
        reserve_index: Primary reserve touched, if any
        amount_in: Tokens received by the market (0 if none)
        amount_out: Tokens released by the market (0 if none)
        detail: Short free-form note (e.g. second reserve of a liquidation)
    """
    sequence_number: int
    timestamp: int
    kind: OperationKind
    obligation_id: Optional[str] = None
    reserve_index: Optional[int] = None
    amount_in: int = 0
    amount_out: int = 0
    detail: str = ""

    def __repr__(self) -> str:
        parts = [f"#{self.sequence_number}", self.kind.value, f"t={self.timestamp}"]
        if self.obligation_id:
            parts.append(f"obligation={self.obligation_id}")
        if self.reserve_index is not None:
            parts.append(f"reserve={self.reserve_index}")
        if self.amount_in:
            parts.append(f"in={self.amount_in}")
        if self.amount_out:
            parts.append(f"out={self.amount_out}")
        if self.detail:
            parts.append(self.detail)
        return f"Op({', '.join(parts)})"
