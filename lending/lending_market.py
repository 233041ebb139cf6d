"""
lending_market.py - Stateful Lending Market

The LendingMarket class is the registry of Reserves, ReserveTreasuries and
Obligations for one market, and the only place any of them is mutated.

Key responsibilities:
    - Resolves reserves by token type (or ctoken type) and obligations by id
    - Checks capabilities against the market and obligation they are bound to
    - Runs the refresh protocol before every valuation-dependent mutation
    - Executes operations atomically: new records are staged locally and
      committed together only after every check has passed
    - Always logs: every committed operation appends an OperationRecord
"""

from __future__ import annotations
import uuid
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple, Union

from . import obligation as obligation_ops
from . import reserve as reserve_ops
from .core import (
    MAX_BPS,
    OperationKind, OperationRecord, Tokens, ctoken_type,
    LendingMarketOwnerCap, ObligationOwnerCap, MarketCreationProof,
    LendingError, Unauthorized, ReserveNotFound, ObligationNotFound,
    validate_amount,
)
from .fixed_point import Decimal
from .obligation import Obligation, classify_health, create_obligation
from .price_feed import PriceFeed
from .reserve import Reserve, ReserveConfig, ReserveTreasury, adjust_treasury


def _operation(kind: OperationKind):
    """Print a REJECTED line for failed operations when the market is verbose."""
    def decorator(method):
        @wraps(method)
        def wrapper(self, *args, **kwargs):
            try:
                return method(self, *args, **kwargs)
            except (LendingError, ValueError) as exc:
                if self.verbose:
                    print(f"✗ REJECTED {kind.value}: {type(exc).__name__}: {exc}")
                raise
        return wrapper
    return decorator


class LendingMarket:
    """
    Registry and orchestrator for one lending market.

    Reserves are append-only and addressed by a permanent index; treasuries
    are keyed by token type; obligations are keyed by id.

    Design Principles:
        - All-or-nothing: a failing operation leaves every reserve, treasury
          and obligation exactly as it was, and logs nothing.
        - Refresh before use: borrow, withdraw and liquidate value positions
          only through a same-call refresh and its single-use ticket.

    Thread Safety:
        Not thread-safe. Callers serialize operations on a market.

    Example:
        market, owner_cap = create_market(MarketCreationProof("MAIN"))
        market.add_reserve(owner_cap, "SUI", Decimal.from_int(1), config, 9, now)
        cap = market.create_obligation("alice")
        ctokens = market.deposit_liquidity_and_mint_ctokens(Tokens("SUI", 10**12), now)
        market.deposit_ctokens_into_obligation(cap, ctokens)
        market.borrow(cap, "SUI", 10**11, now)
    """

    def __init__(self, market_type: str, verbose: bool = False):
        """
        Create an empty market. Use create_market() to also obtain the owner capability.

        Args:
            market_type: Unique market type tag
            verbose: Print one line per committed or rejected operation
        """
        self.market_type = market_type
        self.market_id = f"market:{market_type}:{uuid.uuid4().hex}"
        self.verbose = verbose
        self.operation_log: List[OperationRecord] = []
        self._reserves: List[Reserve] = []
        self._reserve_by_type: Dict[str, int] = {}
        self._reserve_by_ctoken: Dict[str, int] = {}
        self._treasuries: Dict[str, ReserveTreasury] = {}
        self._obligations: Dict[str, Obligation] = {}
        self._next_obligation: int = 0
        # Latest timestamp seen by a committed operation
        self._clock: int = 0

    # ========================================================================
    # READ API
    # ========================================================================

    @property
    def reserves(self) -> Tuple[Reserve, ...]:
        return tuple(self._reserves)

    @property
    def obligations(self) -> Tuple[Obligation, ...]:
        return tuple(self._obligations.values())

    def reserve(self, key: Union[str, int]) -> Reserve:
        """Look up a reserve by token type or index."""
        return self._reserves[self._index(key)]

    def treasury(self, token_type: str) -> ReserveTreasury:
        if token_type not in self._treasuries:
            raise ReserveNotFound(f"No treasury for {token_type} in {self.market_id}")
        return self._treasuries[token_type]

    def obligation(self, obligation_id: str) -> Obligation:
        if obligation_id not in self._obligations:
            raise ObligationNotFound(f"Obligation {obligation_id} not found in {self.market_id}")
        return self._obligations[obligation_id]

    def obligation_health(self, obligation_id: str, now: int) -> str:
        """Classify an obligation against freshly refreshed valuations (nothing is committed)."""
        ob = self.obligation(obligation_id)
        refreshed, _, _ = obligation_ops.refresh(ob, self._reserve_map(ob), now)
        return classify_health(refreshed)

    def snapshot(self) -> Dict[str, Any]:
        """Plain summary of market state for display and comparisons."""
        return {
            'market_id': self.market_id,
            'reserves': {
                r.token_type: {
                    'index': r.index,
                    'available_amount': r.available_amount,
                    'borrowed_amount': str(r.borrowed_amount),
                    'ctoken_supply': r.ctoken_supply,
                    'ctoken_ratio': str(reserve_ops.ctoken_ratio(r)),
                    'cumulative_borrow_rate': str(r.cumulative_borrow_rate),
                    'fees_accumulated': str(r.fees_accumulated),
                    'price': str(r.price),
                }
                for r in self._reserves
            },
            'obligations': {
                ob.id: {
                    'owner': ob.owner,
                    'deposits': {d.reserve_index: d.deposited_ctoken_amount for d in ob.deposits},
                    'borrows': {b.reserve_index: str(b.borrowed_amount) for b in ob.borrows},
                    'deposited_value_usd': str(ob.deposited_value_usd),
                    'weighted_borrowed_value_usd': str(ob.weighted_borrowed_value_usd),
                }
                for ob in self._obligations.values()
            },
            'operations': len(self.operation_log),
        }

    def verify_reserves(self) -> Dict[str, Any]:
        """
        Check that custody agrees with accounting.

        Holds for every reserve:
            treasury.balance == reserve.available_amount
            treasury.ctoken_supply == reserve.ctoken_supply
            treasury.fees == reserve.fees_accumulated
            ctokens held by obligations + treasury.fee_ctokens <= reserve.ctoken_supply
        and for every obligation its custody balances equal its deposit entries.

        Returns:
            Dict with keys 'valid' (bool) and 'discrepancies' (list of dicts)
        """
        discrepancies = []
        held: Dict[int, int] = {}
        for ob in self._obligations.values():
            entries = {d.reserve_index: d.deposited_ctoken_amount for d in ob.deposits}
            if ob.balances != entries:
                discrepancies.append({
                    'obligation': ob.id, 'check': 'custody',
                    'expected': entries, 'actual': ob.balances,
                })
            for idx, amount in entries.items():
                held[idx] = held.get(idx, 0) + amount

        for r in self._reserves:
            t = self._treasuries[r.token_type]
            checks = [
                ('balance', r.available_amount, t.balance),
                ('ctoken_supply', r.ctoken_supply, t.ctoken_supply),
                ('fees', r.fees_accumulated, Decimal.from_int(t.fees)),
            ]
            for check, expected, actual in checks:
                if expected != actual:
                    discrepancies.append({
                        'reserve': r.token_type, 'check': check,
                        'expected': expected, 'actual': actual,
                    })
            accounted = held.get(r.index, 0) + t.fee_ctokens
            if accounted > r.ctoken_supply:
                discrepancies.append({
                    'reserve': r.token_type, 'check': 'held_ctokens',
                    'expected': r.ctoken_supply, 'actual': accounted,
                })

        return {'valid': len(discrepancies) == 0, 'discrepancies': discrepancies}

    # ========================================================================
    # ADMIN OPERATIONS
    # ========================================================================

    @_operation(OperationKind.ADD_RESERVE)
    def add_reserve(
        self,
        owner_cap: LendingMarketOwnerCap,
        token_type: str,
        price: Decimal,
        config: ReserveConfig,
        mint_decimals: int,
        now: int,
        price_identifier: Optional[str] = None,
    ) -> int:
        """
        Append a reserve for a new token type.

        Returns:
            The reserve's permanent index
        """
        self._check_owner(owner_cap)
        if token_type in self._reserve_by_type:
            raise ValueError(f"Reserve for {token_type} already exists in {self.market_id}")

        index = len(self._reserves)
        reserve, treasury = reserve_ops.create_reserve(
            index, token_type, config, mint_decimals, price, now, price_identifier
        )
        self._reserves.append(reserve)
        self._reserve_by_type[token_type] = index
        self._reserve_by_ctoken[ctoken_type(token_type)] = index
        self._treasuries[token_type] = treasury
        self._record(OperationKind.ADD_RESERVE, now, reserve_index=index, detail=token_type)
        return index

    @_operation(OperationKind.UPDATE_CONFIG)
    def update_reserve_config(
        self,
        owner_cap: LendingMarketOwnerCap,
        token_type: str,
        config: ReserveConfig,
        now: int,
    ) -> None:
        """
        Replace a reserve's config.

        Interest up to now is first compounded under the old curve.
        """
        self._check_owner(owner_cap)
        idx = self._index(token_type)
        reserve = reserve_ops.compound_interest(self._reserves[idx], now)
        reserve = reserve_ops.update_reserve_config(reserve, config)
        self._commit(OperationKind.UPDATE_CONFIG, now, reserves=[reserve], reserve_index=idx)

    @_operation(OperationKind.UPDATE_PRICE)
    def update_reserve_price(self, token_type: str, price: Decimal, timestamp: int) -> None:
        """Cache an (already authenticated) oracle price for a reserve."""
        idx = self._index(token_type)
        reserve = reserve_ops.update_reserve_price(self._reserves[idx], price, timestamp)
        self._commit(OperationKind.UPDATE_PRICE, timestamp, reserves=[reserve],
                     reserve_index=idx, detail=f"price={price}")

    @_operation(OperationKind.UPDATE_PRICE)
    def refresh_prices(self, feed: PriceFeed, now: int) -> int:
        """
        Pull the latest observation for every reserve from a feed.

        Reserves the feed knows nothing about, or whose observation is older
        than the cached price, are left alone.

        Returns:
            Number of reserves updated
        """
        staged = []
        for reserve in self._reserves:
            update = feed.get_price(reserve.price_identifier, now)
            if update is None or update.timestamp < reserve.price_last_update_timestamp_s:
                continue
            staged.append(reserve_ops.update_reserve_price(reserve, update.price, update.timestamp))

        for reserve in staged:
            self._commit(OperationKind.UPDATE_PRICE, now, reserves=[reserve],
                         reserve_index=reserve.index, detail=f"price={reserve.price}")
        return len(staged)

    @_operation(OperationKind.CLAIM_FEES)
    def claim_fees(self, owner_cap: LendingMarketOwnerCap, token_type: str) -> Tuple[Tokens, Tokens]:
        """
        Pay out all collected protocol fees of a reserve to the market owner.

        Returns:
            Tuple of (fee tokens, fee ctokens from liquidations)
        """
        self._check_owner(owner_cap)
        idx = self._index(token_type)
        reserve, treasury, amount, ctokens = reserve_ops.claim_fees(
            self._reserves[idx], self._treasuries[token_type]
        )
        self._commit(OperationKind.CLAIM_FEES, None, reserves=[reserve], treasuries=[treasury],
                     reserve_index=idx, amount_out=amount, detail=f"ctokens={ctokens}")
        return Tokens(token_type, amount), Tokens(ctoken_type(token_type), ctokens)

    # ========================================================================
    # LIQUIDITY OPERATIONS
    # ========================================================================

    @_operation(OperationKind.DEPOSIT_LIQUIDITY)
    def deposit_liquidity_and_mint_ctokens(self, tokens: Tokens, now: int) -> Tokens:
        """Supply liquidity to a reserve in exchange for its ctokens."""
        idx = self._index(tokens.token_type)
        reserve, minted = reserve_ops.deposit_liquidity_and_mint_ctokens(
            self._reserves[idx], tokens.amount, now
        )
        treasury = adjust_treasury(self._treasuries[reserve.token_type],
                                   balance=tokens.amount, ctoken_supply=minted)
        self._commit(OperationKind.DEPOSIT_LIQUIDITY, now, reserves=[reserve], treasuries=[treasury],
                     reserve_index=idx, amount_in=tokens.amount, detail=f"minted={minted}")
        return Tokens(ctoken_type(reserve.token_type), minted)

    @_operation(OperationKind.REDEEM_CTOKENS)
    def redeem_ctokens_and_withdraw_liquidity(self, ctokens: Tokens, now: int) -> Tokens:
        """Burn ctokens for the underlying liquidity they represent."""
        idx = self._ctoken_index(ctokens)
        reserve, liquidity = reserve_ops.redeem_ctokens(self._reserves[idx], ctokens.amount, now)
        treasury = adjust_treasury(self._treasuries[reserve.token_type],
                                   balance=-liquidity, ctoken_supply=-ctokens.amount)
        self._commit(OperationKind.REDEEM_CTOKENS, now, reserves=[reserve], treasuries=[treasury],
                     reserve_index=idx, amount_out=liquidity, detail=f"burned={ctokens.amount}")
        return Tokens(reserve.token_type, liquidity)

    # ========================================================================
    # OBLIGATION OPERATIONS
    # ========================================================================

    @_operation(OperationKind.CREATE_OBLIGATION)
    def create_obligation(self, owner: str) -> ObligationOwnerCap:
        """Create an empty obligation and return the capability bound to it."""
        obligation_id = f"{self.market_id}:obligation:{self._next_obligation:06d}"
        ob = create_obligation(obligation_id, owner)
        self._next_obligation += 1
        self._commit(OperationKind.CREATE_OBLIGATION, None, obligations=[ob],
                     obligation_id=obligation_id, detail=f"owner={owner}")
        return ObligationOwnerCap(self.market_id, obligation_id)

    @_operation(OperationKind.DEPOSIT_CTOKENS)
    def deposit_ctokens_into_obligation(self, cap: ObligationOwnerCap, ctokens: Tokens) -> None:
        """Move ctokens into an obligation's custody as collateral."""
        ob = self._obligation_for(cap)
        idx = self._ctoken_index(ctokens)
        ob = obligation_ops.deposit(ob, idx, ctokens.amount)
        self._commit(OperationKind.DEPOSIT_CTOKENS, None, obligations=[ob],
                     obligation_id=ob.id, reserve_index=idx, amount_in=ctokens.amount)

    @_operation(OperationKind.BORROW)
    def borrow(self, cap: ObligationOwnerCap, token_type: str, amount: int, now: int) -> Tokens:
        """
        Borrow liquidity against an obligation's collateral.

        Returns:
            The borrowed tokens, net of the reserve's origination fee
        """
        ob = self._obligation_for(cap)
        idx = self._index(token_type)

        ob, touched, ticket = obligation_ops.refresh(ob, self._reserve_map(ob), now)
        reserve = self._compounded(touched, idx, now)
        reserve, fee = reserve_ops.borrow_liquidity(reserve, amount, now)
        ob = obligation_ops.borrow(ticket, ob, reserve, idx, amount, now)
        touched[idx] = reserve

        treasury = adjust_treasury(self._treasuries[token_type], balance=-amount, fees=fee)
        self._commit(OperationKind.BORROW, now, reserves=touched.values(), treasuries=[treasury],
                     obligations=[ob], obligation_id=ob.id, reserve_index=idx,
                     amount_out=amount - fee, detail=f"fee={fee}")
        return Tokens(token_type, amount - fee)

    @_operation(OperationKind.WITHDRAW)
    def withdraw_ctokens(
        self,
        cap: ObligationOwnerCap,
        token_type: str,
        ctoken_amount: int,
        now: int,
    ) -> Tokens:
        """Release collateral ctokens of one reserve from an obligation."""
        ob = self._obligation_for(cap)
        idx = self._index(token_type)

        ob, touched, ticket = obligation_ops.refresh(ob, self._reserve_map(ob), now)
        reserve = self._compounded(touched, idx, now)
        ob, withdrawn = obligation_ops.withdraw(ticket, ob, reserve, idx, ctoken_amount, now)
        touched[idx] = reserve

        self._commit(OperationKind.WITHDRAW, now, reserves=touched.values(), obligations=[ob],
                     obligation_id=ob.id, reserve_index=idx, amount_out=withdrawn)
        return Tokens(ctoken_type(token_type), withdrawn)

    @_operation(OperationKind.REPAY)
    def repay(
        self,
        cap_or_obligation_id: Union[ObligationOwnerCap, str],
        tokens: Tokens,
        now: int,
    ) -> Tokens:
        """
        Repay debt on an obligation.

        Anyone may repay, so a bare obligation id is accepted. No price is
        consulted. Tokens beyond the outstanding debt are refunded.

        Returns:
            Unspent repay tokens
        """
        if isinstance(cap_or_obligation_id, ObligationOwnerCap):
            ob = self._obligation_for(cap_or_obligation_id)
        else:
            ob = self.obligation(cap_or_obligation_id)
        idx = self._index(tokens.token_type)

        reserve = reserve_ops.compound_interest(self._reserves[idx], now)
        ob, settle, used = obligation_ops.repay(ob, reserve, idx, tokens.amount)
        reserve = reserve_ops.repay_liquidity(reserve, used, now, settle_amount=settle)
        treasury = adjust_treasury(self._treasuries[tokens.token_type], balance=used)

        self._commit(OperationKind.REPAY, now, reserves=[reserve], treasuries=[treasury],
                     obligations=[ob], obligation_id=ob.id, reserve_index=idx,
                     amount_in=used, detail=f"settled={settle}")
        return Tokens(tokens.token_type, tokens.amount - used)

    @_operation(OperationKind.LIQUIDATE)
    def liquidate(
        self,
        obligation_id: str,
        repay_tokens: Tokens,
        withdraw_token_type: str,
        now: int,
    ) -> Tuple[Tokens, Tokens]:
        """
        Repay an unhealthy obligation's debt and seize discounted collateral.

        The reserve's liquidation_fee_bps share of the seized ctokens stays
        with the withdraw reserve's treasury as fee ctokens, so liquidation
        never needs idle liquidity in the collateral reserve.

        Returns:
            Tuple of (unspent repay tokens, ctokens paid to the liquidator)
        """
        ob = self.obligation(obligation_id)
        repay_idx = self._index(repay_tokens.token_type)
        withdraw_idx = self._index(withdraw_token_type)

        ob, touched, ticket = obligation_ops.refresh(ob, self._reserve_map(ob), now)
        repay_reserve = self._compounded(touched, repay_idx, now)
        withdraw_reserve = self._compounded(touched, withdraw_idx, now)

        result = obligation_ops.liquidate(
            ticket, ob, repay_reserve, repay_idx, withdraw_reserve, withdraw_idx,
            repay_tokens.amount, now,
        )
        used = result.repay_tokens_used
        touched[repay_idx] = reserve_ops.repay_liquidity(
            repay_reserve, used, now, settle_amount=result.settle_amount
        )
        treasuries = {
            repay_tokens.token_type: adjust_treasury(
                self._treasuries[repay_tokens.token_type], balance=used
            )
        }

        seized = result.withdraw_ctokens
        fee_ctokens = seized * touched[withdraw_idx].config.liquidation_fee_bps // MAX_BPS
        if fee_ctokens:
            base = treasuries.get(withdraw_token_type, self._treasuries[withdraw_token_type])
            treasuries[withdraw_token_type] = adjust_treasury(base, fee_ctokens=fee_ctokens)

        self._commit(OperationKind.LIQUIDATE, now, reserves=touched.values(),
                     treasuries=treasuries.values(), obligations=[result.obligation],
                     obligation_id=ob.id, reserve_index=repay_idx, amount_in=used,
                     amount_out=seized - fee_ctokens,
                     detail=f"withdraw_reserve={withdraw_idx}, protocol_ctokens={fee_ctokens}")
        return (
            Tokens(repay_tokens.token_type, repay_tokens.amount - used),
            Tokens(ctoken_type(withdraw_token_type), seized - fee_ctokens),
        )

    # ========================================================================
    # CLONING
    # ========================================================================

    def clone(self) -> LendingMarket:
        """
        Create an independent copy of this market.

        Records are immutable, so only the containers are copied.
        """
        cloned = LendingMarket.__new__(LendingMarket)
        cloned.market_type = self.market_type
        cloned.market_id = self.market_id
        cloned.verbose = self.verbose
        cloned.operation_log = list(self.operation_log)
        cloned._reserves = list(self._reserves)
        cloned._reserve_by_type = dict(self._reserve_by_type)
        cloned._reserve_by_ctoken = dict(self._reserve_by_ctoken)
        cloned._treasuries = dict(self._treasuries)
        cloned._obligations = dict(self._obligations)
        cloned._next_obligation = self._next_obligation
        cloned._clock = self._clock
        return cloned

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def _check_owner(self, owner_cap: LendingMarketOwnerCap) -> None:
        if not isinstance(owner_cap, LendingMarketOwnerCap) or owner_cap.market_id != self.market_id:
            raise Unauthorized(f"Owner capability does not belong to {self.market_id}")

    def _obligation_for(self, cap: ObligationOwnerCap) -> Obligation:
        if not isinstance(cap, ObligationOwnerCap) or cap.market_id != self.market_id:
            raise Unauthorized(f"Obligation capability does not belong to {self.market_id}")
        return self.obligation(cap.obligation_id)

    def _index(self, key: Union[str, int]) -> int:
        if isinstance(key, int) and not isinstance(key, bool):
            if not 0 <= key < len(self._reserves):
                raise ReserveNotFound(f"No reserve at index {key} in {self.market_id}")
            return key
        if key not in self._reserve_by_type:
            raise ReserveNotFound(f"No reserve for {key} in {self.market_id}")
        return self._reserve_by_type[key]

    def _ctoken_index(self, ctokens: Tokens) -> int:
        if ctokens.token_type not in self._reserve_by_ctoken:
            raise ValueError(f"{ctokens.token_type} is not a ctoken of {self.market_id}")
        return self._reserve_by_ctoken[ctokens.token_type]

    def _reserve_map(self, ob: Obligation) -> Dict[int, Reserve]:
        return {idx: self._reserves[idx] for idx in ob.reserve_indices()}

    def _compounded(self, touched: Dict[int, Reserve], idx: int, now: int) -> Reserve:
        """Reserve idx as refreshed, or compounded now if the obligation did not reference it."""
        if idx not in touched:
            touched[idx] = reserve_ops.compound_interest(self._reserves[idx], now)
        return touched[idx]

    def _commit(
        self,
        kind: OperationKind,
        timestamp: Optional[int],
        reserves=(),
        treasuries=(),
        obligations=(),
        **fields,
    ) -> OperationRecord:
        """Install staged records and append the operation to the log."""
        validate_amount(timestamp if timestamp is not None else self._clock, "timestamp")
        for reserve in reserves:
            self._reserves[reserve.index] = reserve
        for treasury in treasuries:
            self._treasuries[treasury.token_type] = treasury
        for ob in obligations:
            self._obligations[ob.id] = ob
        return self._record(kind, timestamp, **fields)

    def _record(self, kind: OperationKind, timestamp: Optional[int], **fields) -> OperationRecord:
        if timestamp is None:
            timestamp = self._clock
        self._clock = max(self._clock, timestamp)
        record = OperationRecord(
            sequence_number=len(self.operation_log),
            timestamp=timestamp,
            kind=kind,
            **fields,
        )
        self.operation_log.append(record)
        if self.verbose:
            print(f"✓ {record!r}")
        return record

    def __repr__(self) -> str:
        return (f"LendingMarket({self.market_id}, {len(self._reserves)} reserves, "
                f"{len(self._obligations)} obligations)")


def create_market(
    proof: MarketCreationProof,
    verbose: bool = False,
) -> Tuple[LendingMarket, LendingMarketOwnerCap]:
    """
    Create an empty market, spending its one-time creation proof.

    Raises:
        ProofAlreadyConsumed: If the proof was used before.
    """
    market_type = proof.consume()
    market = LendingMarket(market_type, verbose=verbose)
    market._record(OperationKind.CREATE_MARKET, None, detail=market.market_id)
    return market, LendingMarketOwnerCap(market.market_id)
