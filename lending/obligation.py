"""
obligation.py - Borrower Positions and the Refresh Protocol

An Obligation is one user's combined collateral and debt position within a
market. It holds Deposit entries (ctokens of some reserve), Borrow entries
(normalized debt in some reserve) and five aggregate USD figures that
decide what the position may do next.

Every valuation-dependent mutation goes through the refresh protocol:

    obligation, reserves, ticket = refresh(obligation, reserves, now)
    obligation = borrow(ticket, obligation, reserves[i], i, amount, now)

refresh() compounds interest on each referenced reserve, re-values every
entry and recomputes the aggregates. It is the only producer of a
RefreshTicket, which borrow/withdraw/liquidate consume exactly once.

Key Formulas:
    deposit.market_value   = market_value(ctokens * ctoken_ratio)
    normalized debt        = borrowed * reserve_cbr / snapshot_cbr
    weighted_borrowed      = sum(borrow.market_value * borrow_weight)
    allowed_borrow         = sum(deposit.market_value * open_ltv)
    unhealthy_borrow       = sum(deposit.market_value * close_ltv)

Entries whose balance reaches zero are removed from the obligation.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional, Tuple

from .core import (
    CLOSE_FACTOR_PCT,
    InsufficientDeposit, ExceedsAllowedBorrow, BelowRequiredCollateral,
    NotLiquidatable, ReserveNotFound, TicketNotFresh, validate_amount,
)
from .fixed_point import Decimal
from .reserve import Reserve, compound_interest, ctoken_ratio, market_value


# Health classifications, least to most severe
HEALTH_HEALTHY = "HEALTHY"
HEALTH_AT_LIMIT = "AT_LIMIT"
HEALTH_LIQUIDATABLE = "LIQUIDATABLE"
HEALTH_UNDERWATER = "UNDERWATER"


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Deposit:
    """
    Collateral held in one reserve.

    Attributes:
        reserve_index: Reserve the ctokens belong to
        deposited_ctoken_amount: ctokens held as collateral
        market_value: USD value as of the last refresh or mutation
    """
    reserve_index: int
    deposited_ctoken_amount: int
    market_value: Decimal


@dataclass(frozen=True, slots=True)
class Borrow:
    """
    Debt owed to one reserve.

    Attributes:
        reserve_index: Reserve the debt is owed to
        borrowed_amount: Debt in token units, valid at cumulative_borrow_rate
        cumulative_borrow_rate: Reserve accumulator when the debt was last normalized
        market_value: USD value as of the last refresh or mutation
    """
    reserve_index: int
    borrowed_amount: Decimal
    cumulative_borrow_rate: Decimal
    market_value: Decimal


@dataclass(frozen=True, slots=True)
class Obligation:
    """
    Immutable snapshot of a borrower's position.

    custody holds the ctoken balances backing each Deposit entry as sorted
    (reserve_index, ctokens) pairs; the balances property thaws it into a dict.
    """
    id: str
    owner: str
    deposits: Tuple[Deposit, ...] = ()
    borrows: Tuple[Borrow, ...] = ()
    custody: Tuple[Tuple[int, int], ...] = ()
    deposited_value_usd: Decimal = Decimal(0)
    unweighted_borrowed_value_usd: Decimal = Decimal(0)
    weighted_borrowed_value_usd: Decimal = Decimal(0)
    allowed_borrow_value_usd: Decimal = Decimal(0)
    unhealthy_borrow_value_usd: Decimal = Decimal(0)

    @property
    def balances(self) -> Dict[int, int]:
        return dict(self.custody)

    def deposit_for(self, reserve_index: int) -> Optional[Deposit]:
        return _find(self.deposits, reserve_index)[1]

    def borrow_for(self, reserve_index: int) -> Optional[Borrow]:
        return _find(self.borrows, reserve_index)[1]

    def reserve_indices(self) -> Tuple[int, ...]:
        """Distinct reserves referenced by any entry, in first-seen order."""
        seen = []
        for entry in self.deposits + self.borrows:
            if entry.reserve_index not in seen:
                seen.append(entry.reserve_index)
        return tuple(seen)


def create_obligation(obligation_id: str, owner: str) -> Obligation:
    if not obligation_id or not obligation_id.strip():
        raise ValueError("obligation id cannot be empty")
    if not owner or not owner.strip():
        raise ValueError("obligation owner cannot be empty")
    return Obligation(id=obligation_id, owner=owner)


@dataclass(frozen=True, slots=True)
class LiquidationResult:
    """
    Outcome of liquidation accounting on an obligation.

    Attributes:
        obligation: Obligation after repayment and seizure
        settle_amount: Debt retired in the repay reserve
        repay_tokens_used: Repay tokens consumed (ceil of settle_amount)
        withdraw_ctokens: ctokens seized from the withdraw reserve
        repay_usd: USD value of the debt repaid
        withdraw_usd: USD value of the collateral seized
    """
    obligation: Obligation
    settle_amount: Decimal
    repay_tokens_used: int
    withdraw_ctokens: int
    repay_usd: Decimal
    withdraw_usd: Decimal


# ============================================================================
# REFRESH TICKET
# ============================================================================

_TICKET_KEY = object()


class RefreshTicket:
    """
    Single-use proof that an obligation was refreshed at a given time.

    Only refresh() can construct one. It is bound to one obligation id and
    one timestamp, and is spent by the first mutation that consumes it.
    """

    __slots__ = ("obligation_id", "timestamp", "_spent")

    def __init__(self, key: object, obligation_id: str, timestamp: int):
        if key is not _TICKET_KEY:
            raise TypeError("RefreshTicket can only be issued by refresh()")
        self.obligation_id = obligation_id
        self.timestamp = timestamp
        self._spent = False

    @property
    def spent(self) -> bool:
        return self._spent

    def consume(self, obligation_id: str, now: int):
        if self._spent:
            raise TicketNotFresh(f"Refresh ticket for {self.obligation_id} already spent")
        if obligation_id != self.obligation_id:
            raise TicketNotFresh(
                f"Refresh ticket for {self.obligation_id} presented for {obligation_id}"
            )
        if now != self.timestamp:
            raise TicketNotFresh(
                f"Refresh ticket from t={self.timestamp} presented at t={now}"
            )
        self._spent = True

    def __copy__(self):
        raise TypeError("RefreshTicket cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("RefreshTicket cannot be copied")

    def __reduce__(self):
        raise TypeError("RefreshTicket cannot be serialized")

    def __repr__(self) -> str:
        state = "spent" if self._spent else "fresh"
        return f"RefreshTicket({self.obligation_id}, t={self.timestamp}, {state})"


# ============================================================================
# INTERNAL HELPERS
# ============================================================================

def _find(entries, reserve_index: int):
    """Linear scan for the entry of a reserve; returns (position, entry) or (None, None)."""
    for pos, entry in enumerate(entries):
        if entry.reserve_index == reserve_index:
            return pos, entry
    return None, None


def _put(entries, pos: Optional[int], entry):
    """Replace, append (pos is None) or remove (entry is None) an entry."""
    if pos is None:
        return entries + (entry,) if entry is not None else entries
    if entry is None:
        return entries[:pos] + entries[pos + 1:]
    return entries[:pos] + (entry,) + entries[pos + 1:]


def _set_custody(custody: Tuple[Tuple[int, int], ...], reserve_index: int, amount: int):
    balances = dict(custody)
    if amount:
        balances[reserve_index] = amount
    else:
        balances.pop(reserve_index, None)
    return tuple(sorted(balances.items()))


def _swap(total: Decimal, old: Decimal, new: Decimal) -> Decimal:
    """Replace one summand of an aggregate."""
    return total.saturating_sub(old).add(new)


def _deposit_value(reserve: Reserve, ctokens: int, now: int) -> Decimal:
    return market_value(reserve, ctoken_ratio(reserve).mul(ctokens), now)


def _normalize(borrow: Borrow, reserve: Reserve) -> Decimal:
    if borrow.cumulative_borrow_rate == reserve.cumulative_borrow_rate:
        return borrow.borrowed_amount
    return borrow.borrowed_amount.mul(reserve.cumulative_borrow_rate).div(borrow.cumulative_borrow_rate)


# ============================================================================
# REFRESH
# ============================================================================

def refresh(
    obligation: Obligation,
    reserves: Mapping[int, Reserve],
    now: int,
) -> Tuple[Obligation, Dict[int, Reserve], RefreshTicket]:
    """
    Compound, re-value and re-aggregate an obligation.

    Args:
        obligation: Position to refresh
        reserves: Reserves by index (at least every referenced one)
        now: Current time (seconds)

    Returns:
        Tuple of (refreshed obligation, compounded reserves by index, ticket)

    Raises:
        ReserveNotFound: If an entry references an unknown reserve.
        StalePrice: If any referenced reserve's price is too old.
    """
    touched: Dict[int, Reserve] = {}
    for idx in obligation.reserve_indices():
        if idx not in reserves:
            raise ReserveNotFound(f"Obligation {obligation.id} references unknown reserve {idx}")
        touched[idx] = compound_interest(reserves[idx], now)

    deposited = Decimal.zero()
    allowed = Decimal.zero()
    unhealthy = Decimal.zero()
    deposits = []
    for dep in obligation.deposits:
        reserve = touched[dep.reserve_index]
        value = _deposit_value(reserve, dep.deposited_ctoken_amount, now)
        deposits.append(replace(dep, market_value=value))
        deposited = deposited.add(value)
        allowed = allowed.add(value.mul(reserve.config.open_ltv))
        unhealthy = unhealthy.add(value.mul(reserve.config.close_ltv))

    unweighted = Decimal.zero()
    weighted = Decimal.zero()
    borrows = []
    for bor in obligation.borrows:
        reserve = touched[bor.reserve_index]
        normalized = _normalize(bor, reserve)
        value = market_value(reserve, normalized, now)
        borrows.append(Borrow(
            reserve_index=bor.reserve_index,
            borrowed_amount=normalized,
            cumulative_borrow_rate=reserve.cumulative_borrow_rate,
            market_value=value,
        ))
        unweighted = unweighted.add(value)
        weighted = weighted.add(value.mul(reserve.config.borrow_weight))

    refreshed = replace(
        obligation,
        deposits=tuple(deposits),
        borrows=tuple(borrows),
        deposited_value_usd=deposited,
        unweighted_borrowed_value_usd=unweighted,
        weighted_borrowed_value_usd=weighted,
        allowed_borrow_value_usd=allowed,
        unhealthy_borrow_value_usd=unhealthy,
    )
    return refreshed, touched, RefreshTicket(_TICKET_KEY, obligation.id, now)


# ============================================================================
# MUTATIONS
# ============================================================================

def deposit(obligation: Obligation, reserve_index: int, ctoken_amount: int) -> Obligation:
    """
    Add ctokens as collateral.

    Needs no ticket: the entry's market value is only updated on the next
    refresh, so the aggregates never overstate collateral.
    """
    validate_amount(ctoken_amount, "ctoken_amount")
    if ctoken_amount == 0:
        raise ValueError("ctoken_amount must be positive")

    pos, entry = _find(obligation.deposits, reserve_index)
    if entry is None:
        entry = Deposit(reserve_index, 0, Decimal.zero())
    entry = replace(entry, deposited_ctoken_amount=entry.deposited_ctoken_amount + ctoken_amount)

    return replace(
        obligation,
        deposits=_put(obligation.deposits, pos, entry),
        custody=_set_custody(obligation.custody, reserve_index, entry.deposited_ctoken_amount),
    )


def borrow(
    ticket: RefreshTicket,
    obligation: Obligation,
    reserve: Reserve,
    reserve_index: int,
    amount: int,
    now: int,
) -> Obligation:
    """
    Record new debt against a refreshed obligation.

    Raises:
        TicketNotFresh: If the ticket is not valid for this obligation and time,
                        or the existing entry was not normalized to the reserve.
        ExceedsAllowedBorrow: If weighted debt would exceed the allowed borrow value.
    """
    ticket.consume(obligation.id, now)
    validate_amount(amount)
    if amount == 0:
        raise ValueError("borrow amount must be positive")

    pos, entry = _find(obligation.borrows, reserve_index)
    if entry is None:
        entry = Borrow(reserve_index, Decimal.zero(), reserve.cumulative_borrow_rate, Decimal.zero())
    elif entry.cumulative_borrow_rate != reserve.cumulative_borrow_rate:
        raise TicketNotFresh(
            f"Borrow entry for reserve {reserve_index} of {obligation.id} was not refreshed"
        )

    weight = reserve.config.borrow_weight
    new_amount = entry.borrowed_amount.add(amount)
    new_value = market_value(reserve, new_amount, now)

    weighted = _swap(obligation.weighted_borrowed_value_usd,
                     entry.market_value.mul(weight), new_value.mul(weight))
    if weighted > obligation.allowed_borrow_value_usd:
        raise ExceedsAllowedBorrow(
            f"Obligation {obligation.id}: weighted borrow {weighted} would exceed "
            f"allowed {obligation.allowed_borrow_value_usd}"
        )

    return replace(
        obligation,
        borrows=_put(obligation.borrows, pos,
                     replace(entry, borrowed_amount=new_amount, market_value=new_value)),
        unweighted_borrowed_value_usd=_swap(obligation.unweighted_borrowed_value_usd,
                                            entry.market_value, new_value),
        weighted_borrowed_value_usd=weighted,
    )


def withdraw(
    ticket: RefreshTicket,
    obligation: Obligation,
    reserve: Reserve,
    reserve_index: int,
    ctoken_amount: int,
    now: int,
) -> Tuple[Obligation, int]:
    """
    Release collateral from a refreshed obligation.

    Returns:
        Tuple of (new obligation, ctokens withdrawn)

    Raises:
        InsufficientDeposit: If the entry holds fewer ctokens than requested.
        BelowRequiredCollateral: If remaining collateral cannot support the debt.
    """
    ticket.consume(obligation.id, now)
    validate_amount(ctoken_amount, "ctoken_amount")
    if ctoken_amount == 0:
        raise ValueError("ctoken_amount must be positive")

    pos, entry = _find(obligation.deposits, reserve_index)
    held = entry.deposited_ctoken_amount if entry is not None else 0
    if ctoken_amount > held:
        raise InsufficientDeposit(
            f"Obligation {obligation.id} holds {held} ctokens of reserve {reserve_index}, "
            f"cannot withdraw {ctoken_amount}"
        )

    remaining = held - ctoken_amount
    new_value = _deposit_value(reserve, remaining, now) if remaining else Decimal.zero()
    config = reserve.config

    allowed = _swap(obligation.allowed_borrow_value_usd,
                    entry.market_value.mul(config.open_ltv), new_value.mul(config.open_ltv))
    if obligation.weighted_borrowed_value_usd > allowed:
        raise BelowRequiredCollateral(
            f"Obligation {obligation.id}: weighted borrow "
            f"{obligation.weighted_borrowed_value_usd} would exceed allowed {allowed}"
        )

    new_entry = replace(entry, deposited_ctoken_amount=remaining, market_value=new_value) if remaining else None
    updated = replace(
        obligation,
        deposits=_put(obligation.deposits, pos, new_entry),
        custody=_set_custody(obligation.custody, reserve_index, remaining),
        deposited_value_usd=_swap(obligation.deposited_value_usd, entry.market_value, new_value),
        allowed_borrow_value_usd=allowed,
        unhealthy_borrow_value_usd=_swap(obligation.unhealthy_borrow_value_usd,
                                         entry.market_value.mul(config.close_ltv),
                                         new_value.mul(config.close_ltv)),
    )
    return updated, ctoken_amount


def repay(
    obligation: Obligation,
    reserve: Reserve,
    reserve_index: int,
    amount: int,
) -> Tuple[Obligation, Decimal, int]:
    """
    Retire debt without consulting a price.

    The entry is normalized against the (already compounded) reserve, the
    repayment is clamped to outstanding debt and the entry's market value is
    scaled in proportion to the debt that remains.

    Returns:
        Tuple of (new obligation, debt settled, tokens consumed)

    Raises:
        ValueError: If the obligation owes nothing to this reserve or amount is 0.
    """
    validate_amount(amount)
    if amount == 0:
        raise ValueError("repay amount must be positive")
    pos, entry = _find(obligation.borrows, reserve_index)
    if entry is None:
        raise ValueError(f"Obligation {obligation.id} has no debt in reserve {reserve_index}")

    normalized = _normalize(entry, reserve)
    settle = normalized.min(Decimal.from_int(amount))
    tokens_used = settle.ceil()
    remaining = normalized.sub(settle)

    if remaining.is_zero():
        new_value = Decimal.zero()
        new_entry = None
    else:
        new_value = entry.market_value.mul(remaining).div(normalized)
        new_entry = Borrow(reserve_index, remaining, reserve.cumulative_borrow_rate, new_value)

    weight = reserve.config.borrow_weight
    updated = replace(
        obligation,
        borrows=_put(obligation.borrows, pos, new_entry),
        unweighted_borrowed_value_usd=_swap(obligation.unweighted_borrowed_value_usd,
                                            entry.market_value, new_value),
        weighted_borrowed_value_usd=_swap(obligation.weighted_borrowed_value_usd,
                                          entry.market_value.mul(weight), new_value.mul(weight)),
    )
    return updated, settle, tokens_used


def liquidate(
    ticket: RefreshTicket,
    obligation: Obligation,
    repay_reserve: Reserve,
    repay_reserve_index: int,
    withdraw_reserve: Reserve,
    withdraw_reserve_index: int,
    repay_amount: int,
    now: int,
) -> LiquidationResult:
    """
    Repay part of an unhealthy obligation's debt in exchange for collateral.

    repay_usd    = min(value(repay_amount), CLOSE_FACTOR * unweighted, borrow.market_value)
    withdraw_usd = min(repay_usd * (1 + liquidation_bonus), deposit.market_value)

    Raises:
        NotLiquidatable: If the obligation is not liquidatable or owes nothing
                         to the repay reserve.
        InsufficientDeposit: If it holds no collateral in the withdraw reserve.
    """
    ticket.consume(obligation.id, now)
    validate_amount(repay_amount, "repay_amount")
    if repay_amount == 0:
        raise ValueError("repay_amount must be positive")
    if not is_liquidatable(obligation):
        raise NotLiquidatable(
            f"Obligation {obligation.id}: weighted borrow {obligation.weighted_borrowed_value_usd} "
            f"below unhealthy threshold {obligation.unhealthy_borrow_value_usd}"
        )

    b_pos, bor = _find(obligation.borrows, repay_reserve_index)
    if bor is None:
        raise NotLiquidatable(
            f"Obligation {obligation.id} has no debt in reserve {repay_reserve_index}"
        )
    d_pos, dep = _find(obligation.deposits, withdraw_reserve_index)
    if dep is None:
        raise InsufficientDeposit(
            f"Obligation {obligation.id} has no collateral in reserve {withdraw_reserve_index}"
        )

    # Debt side
    offered_usd = market_value(repay_reserve, Decimal.from_int(repay_amount), now)
    close_cap = obligation.unweighted_borrowed_value_usd.mul(Decimal.from_percent(CLOSE_FACTOR_PCT))
    repay_usd = offered_usd.min(close_cap).min(bor.market_value)

    if repay_usd == bor.market_value:
        settle = bor.borrowed_amount
    else:
        settle = bor.borrowed_amount.mul(repay_usd).div(bor.market_value)
    settle = settle.min(Decimal.from_int(repay_amount))
    tokens_used = settle.ceil()

    remaining_debt = bor.borrowed_amount.sub(settle)
    remaining_debt_value = bor.market_value.sub(repay_usd)
    new_bor = None
    if not remaining_debt.is_zero():
        new_bor = replace(bor, borrowed_amount=remaining_debt, market_value=remaining_debt_value)
    else:
        remaining_debt_value = Decimal.zero()

    # Collateral side
    bonus = Decimal.one().add(withdraw_reserve.config.liquidation_bonus)
    withdraw_usd = repay_usd.mul(bonus).min(dep.market_value)
    if withdraw_usd == dep.market_value:
        seized = dep.deposited_ctoken_amount
    else:
        seized = Decimal.from_int(dep.deposited_ctoken_amount).mul(withdraw_usd).div(dep.market_value).floor()

    remaining_ctokens = dep.deposited_ctoken_amount - seized
    remaining_collateral_value = dep.market_value.sub(withdraw_usd) if remaining_ctokens else Decimal.zero()
    new_dep = None
    if remaining_ctokens:
        new_dep = replace(dep, deposited_ctoken_amount=remaining_ctokens,
                          market_value=remaining_collateral_value)

    weight = repay_reserve.config.borrow_weight
    w_config = withdraw_reserve.config
    updated = replace(
        obligation,
        borrows=_put(obligation.borrows, b_pos, new_bor),
        deposits=_put(obligation.deposits, d_pos, new_dep),
        custody=_set_custody(obligation.custody, withdraw_reserve_index, remaining_ctokens),
        unweighted_borrowed_value_usd=_swap(obligation.unweighted_borrowed_value_usd,
                                            bor.market_value, remaining_debt_value),
        weighted_borrowed_value_usd=_swap(obligation.weighted_borrowed_value_usd,
                                          bor.market_value.mul(weight),
                                          remaining_debt_value.mul(weight)),
        deposited_value_usd=_swap(obligation.deposited_value_usd,
                                  dep.market_value, remaining_collateral_value),
        allowed_borrow_value_usd=_swap(obligation.allowed_borrow_value_usd,
                                       dep.market_value.mul(w_config.open_ltv),
                                       remaining_collateral_value.mul(w_config.open_ltv)),
        unhealthy_borrow_value_usd=_swap(obligation.unhealthy_borrow_value_usd,
                                         dep.market_value.mul(w_config.close_ltv),
                                         remaining_collateral_value.mul(w_config.close_ltv)),
    )

    return LiquidationResult(
        obligation=updated,
        settle_amount=settle,
        repay_tokens_used=tokens_used,
        withdraw_ctokens=seized,
        repay_usd=repay_usd,
        withdraw_usd=withdraw_usd,
    )


# ============================================================================
# HEALTH
# ============================================================================

def is_healthy(obligation: Obligation) -> bool:
    """Debt-free obligations are healthy; otherwise weighted debt must be below allowed."""
    weighted = obligation.weighted_borrowed_value_usd
    return weighted.is_zero() or weighted < obligation.allowed_borrow_value_usd


def is_liquidatable(obligation: Obligation) -> bool:
    weighted = obligation.weighted_borrowed_value_usd
    return not weighted.is_zero() and weighted >= obligation.unhealthy_borrow_value_usd


def is_underwater(obligation: Obligation) -> bool:
    return obligation.unweighted_borrowed_value_usd > obligation.deposited_value_usd


def classify_health(obligation: Obligation) -> str:
    """Return the most severe health label that applies."""
    if is_underwater(obligation):
        return HEALTH_UNDERWATER
    if is_liquidatable(obligation):
        return HEALTH_LIQUIDATABLE
    if not is_healthy(obligation):
        return HEALTH_AT_LIMIT
    return HEALTH_HEALTHY
