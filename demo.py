#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Lending Market Step by Step

Walks one market through its whole life: reserves, lenders, a borrower,
interest, a price crash and the liquidation that follows. Press Enter to
advance.

WHAT YOU'LL LEARN:
  1-3: Foundation  - The market, reserves, supplying liquidity
  4-5: Borrowing   - Collateral, borrow limits, rejected operations
  6-7: Time        - Interest compounding, oracle refreshes
  8-9: Risk        - Health classification, liquidation, audit

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
import sys

from lending import (
    create_market, create_reserve_config, MarketCreationProof,
    Tokens, Decimal, TimeSeriesPriceFeed,
    LendingError, SECONDS_PER_YEAR,
    ctoken_ratio, utilization,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: int = 1_735_722_000

    sui_price: str = "2"
    sui_crash_price: str = "1.3"

    lender_usdc: int = 1_000_000
    borrower_sui: int = 100_000
    borrow_usdc: int = 90_000
    liquidation_repay_usdc: int = 50_000

    days_elapsed: int = 30


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_obligation(market, obligation_id: str):
    ob = market.obligation(obligation_id)
    print(f"Deposited value:   ${ob.deposited_value_usd}")
    print(f"Borrowed value:    ${ob.weighted_borrowed_value_usd} (weighted)")
    print(f"Allowed borrow:    ${ob.allowed_borrow_value_usd}")
    print(f"Unhealthy at:      ${ob.unhealthy_borrow_value_usd}")
    print(f"Collateral ctokens: {ob.balances}")


# ============================================================================
# PHASE 1: FOUNDATION
# ============================================================================

def step_01_create_market():
    """Create the market with its one-time proof."""
    step_header(1, "Creating a Market",
        "A market is created once per proof and hands back an owner capability.")

    print(">>> market, owner_cap = create_market(MarketCreationProof('MAIN'), verbose=True)")
    proof = MarketCreationProof("MAIN")
    market, owner_cap = create_market(proof, verbose=True)

    section_header("Initial State")
    print(f"Market id:     {market.market_id}")
    print(f"Reserves:      {len(market.reserves)}")
    print(f"Operation log: {len(market.operation_log)} entries")

    section_header("Key Insight")
    print("""
    The proof is consumed. Presenting it again raises ProofAlreadyConsumed,
    so no one can mint a second owner capability for the same market type.
    """)
    return market, owner_cap


def step_02_add_reserves(market, owner_cap):
    """Register SUI and USDC reserves."""
    step_header(2, "Adding Reserves",
        "Each token type gets one reserve with its own risk and rate config.")

    sui_config = create_reserve_config(open_ltv_pct=50, close_ltv_pct=60, liquidation_bonus_pct=5)
    usdc_config = create_reserve_config(
        open_ltv_pct=80, close_ltv_pct=85,
        interest_rate_utils=(0, 80, 100), interest_rate_aprs=(0, 1000, 10000),
        borrow_fee_bps=10,
    )

    market.add_reserve(owner_cap, "SUI", Decimal.from_str(CONFIG.sui_price), sui_config, 0,
                       CONFIG.start_time)
    market.add_reserve(owner_cap, "USDC", Decimal.one(), usdc_config, 0, CONFIG.start_time)

    section_header("Reserves")
    for reserve in market.reserves:
        print(f"[{reserve.index}] {reserve.token_type:5s} price=${reserve.price} "
              f"open_ltv={reserve.config.open_ltv} close_ltv={reserve.config.close_ltv}")
    return market


def step_03_supply(market):
    """A lender supplies USDC and receives ctokens."""
    step_header(3, "Supplying Liquidity",
        "Depositors receive ctokens, a claim on a growing share of the pool.")

    ctokens = market.deposit_liquidity_and_mint_ctokens(
        Tokens("USDC", CONFIG.lender_usdc), CONFIG.start_time
    )
    print(f"Lender received: {ctokens.amount:,} {ctokens.token_type}")
    print(f"ctoken ratio:    {ctoken_ratio(market.reserve('USDC'))}")
    return market, ctokens


# ============================================================================
# PHASE 2: BORROWING
# ============================================================================

def step_04_borrow(market):
    """Post SUI collateral and borrow USDC against it."""
    step_header(4, "Borrowing Against Collateral",
        "Borrow capacity is the open LTV of the collateral's USD value.")

    cap = market.create_obligation("bob")
    collateral = market.deposit_liquidity_and_mint_ctokens(
        Tokens("SUI", CONFIG.borrower_sui), CONFIG.start_time
    )
    market.deposit_ctokens_into_obligation(cap, collateral)

    received = market.borrow(cap, "USDC", CONFIG.borrow_usdc, CONFIG.start_time)
    print(f"\nBob received {received.amount:,} USDC "
          f"(fee withheld: {CONFIG.borrow_usdc - received.amount})")

    section_header("Obligation")
    show_obligation(market, cap.obligation_id)
    return market, cap


def step_05_rejection(market, cap):
    """Over-borrowing is rejected and changes nothing."""
    step_header(5, "Rejected Operations",
        "A failed operation leaves every reserve and obligation untouched.")

    before = market.snapshot()
    try:
        market.borrow(cap, "USDC", 20_000, CONFIG.start_time)
    except LendingError as exc:
        print(f"\nRejected: {type(exc).__name__}")

    print(f"State unchanged: {market.snapshot() == before}")
    return market


# ============================================================================
# PHASE 3: TIME
# ============================================================================

def step_06_interest(market):
    """Interest compounds lazily whenever a reserve is touched."""
    step_header(6, "Interest",
        "Debt grows with the cumulative borrow rate; ctokens appreciate with it.")

    usdc = market.reserve("USDC")
    print(f"Utilization:     {utilization(usdc)}")
    apr = usdc.config.interest_rate.apr(utilization(usdc))
    print(f"Borrow APR:      {apr}")
    print(f"Seconds / year:  {SECONDS_PER_YEAR:,}")
    return market


def step_07_oracle(market, cap):
    """Advance time and pull prices from a feed."""
    step_header(7, "Oracle Refresh",
        "Prices older than the staleness threshold block risk-increasing operations.")

    later = CONFIG.start_time + CONFIG.days_elapsed * 86_400
    feed = TimeSeriesPriceFeed({
        "SUI": [(CONFIG.start_time, Decimal.from_str(CONFIG.sui_price)),
                (later, Decimal.from_str(CONFIG.sui_crash_price))],
        "USDC": [(later, Decimal.one())],
    })
    updated = market.refresh_prices(feed, later)
    print(f"\nReserves repriced: {updated}")
    print(f"SUI price now:     ${market.reserve('SUI').price}")

    section_header("Obligation after refresh")
    print(f"Health: {market.obligation_health(cap.obligation_id, later)}")
    return market, later


# ============================================================================
# PHASE 4: RISK
# ============================================================================

def step_08_liquidate(market, cap, now: int):
    """A liquidator repays part of the debt and seizes discounted collateral."""
    step_header(8, "Liquidation",
        "At most the close factor of the debt is repaid per call, plus a bonus in collateral.")

    refund, seized = market.liquidate(
        cap.obligation_id, Tokens("USDC", CONFIG.liquidation_repay_usdc), "SUI", now
    )
    print(f"\nRepay tokens refunded: {refund.amount:,}")
    print(f"Collateral seized:     {seized.amount:,} {seized.token_type}")

    section_header("Obligation after liquidation")
    show_obligation(market, cap.obligation_id)
    print(f"Health: {market.obligation_health(cap.obligation_id, now)}")
    return market


def step_09_audit(market):
    """Reconcile reserves and review the operation log."""
    step_header(9, "Audit",
        "Reserves, treasuries and obligation custody always reconcile.")

    result = market.verify_reserves()
    print(f"Reconciled: {result['valid']}")
    for issue in result['discrepancies']:
        print(f"  {issue}")

    section_header("Operation log")
    for record in market.operation_log:
        print(f"  #{record.sequence_number:02d} {record.kind.value}")


# ============================================================================
# MAIN
# ============================================================================

def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       LENDING MARKET - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    market, owner_cap = step_01_create_market()
    wait_for_enter()

    market = step_02_add_reserves(market, owner_cap)
    wait_for_enter()

    market, _ = step_03_supply(market)
    wait_for_enter()

    market, cap = step_04_borrow(market)
    wait_for_enter()

    market = step_05_rejection(market, cap)
    wait_for_enter()

    market = step_06_interest(market)
    wait_for_enter()

    market, now = step_07_oracle(market, cap)
    wait_for_enter()

    market = step_08_liquidate(market, cap, now)
    wait_for_enter()

    step_09_audit(market)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See lending/obligation.py for the health and liquidation math
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
