#!/usr/bin/env python3
"""
demo.py - Walkthrough: a lending market from first deposit to liquidation

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL SEE:
  1-3: Setup         - Tokens, reserves, vaults, prices
  4-5: Lending       - Supplying liquidity, borrowing against collateral
  6:   Time          - The LifecycleEngine accrues interest
  7-8: Risk          - A price drop, the health factor and a liquidation
  9:   Audit         - Conservation and replay

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
    python demo.py --config protocol.yaml --log-level DEBUG
"""

import argparse
import sys

from lending_ledger import (
    Ledger, Move, build_transaction, token, create_reserve,
    compute_deposit, compute_borrow, compute_liquidation, compute_health_factor,
    load_reserve, load_position, LifecycleEngine, TimeSeriesPricingSource,
    DEFAULT_CONFIG, load_config, configure_logging,
    HEALTH_FACTOR_MAX, INDEX_ONE, BPS, SYSTEM_WALLET, ExecuteResult,
)


T0 = 1_700_000_000
DAY = 86_400
RESERVES = ("RSV_USDC", "RSV_SOL")

QUICK = False


def wait_for_enter():
    if not QUICK:
        input("\n  [Enter] ")


def step_header(number: int, title: str):
    print()
    print("=" * 72)
    print(f"  STEP {number}: {title}")
    print("=" * 72)


def show_health(ledger: Ledger, owner: str, snapshot) -> None:
    hf = compute_health_factor(ledger, owner, snapshot)
    if hf == HEALTH_FACTOR_MAX:
        print(f"  {owner} health factor: no debt")
    else:
        print(f"  {owner} health factor: {hf / BPS:.4f}")


def execute(ledger: Ledger, pending) -> None:
    result = ledger.execute(pending)
    if result != ExecuteResult.APPLIED:
        sys.exit(f"  unexpected {result} for {pending.origin}")


# ============================================================================
# STEPS
# ============================================================================

def step_01_ledger() -> Ledger:
    step_header(1, "Tokens and wallets")
    ledger = Ledger("demo", T0, verbose=False)
    for symbol in ("USDC", "SOL"):
        ledger.register_unit(token(symbol, symbol))
    for wallet in ("alice", "bob", "liquidator", "vault:USDC", "vault:SOL"):
        ledger.register_wallet(wallet)

    funding = [
        Move(200_000, "USDC", SYSTEM_WALLET, "bob", "fund_bob"),
        Move(50_000, "USDC", SYSTEM_WALLET, "liquidator", "fund_liquidator"),
        Move(100, "SOL", SYSTEM_WALLET, "alice", "fund_alice"),
    ]
    execute(ledger, build_transaction(ledger, funding))
    print("  bob: 200,000 USDC   liquidator: 50,000 USDC   alice: 100 SOL")
    print(f"  USDC supply across all wallets: {ledger.total_supply('USDC')}")
    return ledger


def step_02_reserves(ledger: Ledger) -> None:
    step_header(2, "One reserve per asset")
    ledger.register_unit(create_reserve("RSV_USDC", "USDC", "vault:USDC", created_at=T0))
    ledger.register_unit(create_reserve(
        "RSV_SOL", "SOL", "vault:SOL",
        loan_to_value=7000, liquidation_threshold=7500, created_at=T0,
    ))
    for symbol in RESERVES:
        terms, _ = load_reserve(ledger, symbol)
        print(f"  {symbol}: LTV {terms.loan_to_value} bps, threshold "
              f"{terms.liquidation_threshold} bps, bonus {terms.liquidation_bonus} bps")


def step_03_prices() -> TimeSeriesPricingSource:
    step_header(3, "Prices")
    source = TimeSeriesPricingSource({
        "RSV_USDC": [(T0, 1), (T0 + 2 * DAY, 1)],
        "RSV_SOL": [(T0, 100), (T0 + 2 * DAY, 60)],
    })
    print("  SOL trades at 100 today and 60 in two days; USDC stays at 1")
    return source


def snapshot_at(ledger: Ledger, source: TimeSeriesPricingSource, config):
    thresholds = {s: load_reserve(ledger, s)[0].liquidation_threshold for s in RESERVES}
    return source.snapshot(RESERVES, thresholds, ledger.current_time, config.max_price_age)


def step_04_supply(ledger: Ledger, snapshot) -> None:
    step_header(4, "Supplying liquidity and collateral")
    execute(ledger, compute_deposit(ledger, "bob", "RSV_USDC", 100_000, snapshot))
    execute(ledger, compute_deposit(ledger, "alice", "RSV_SOL", 100, snapshot))
    print(f"  vault:USDC holds {ledger.get_balance('vault:USDC', 'USDC')} USDC")
    print(f"  vault:SOL holds {ledger.get_balance('vault:SOL', 'SOL')} SOL")
    show_health(ledger, "alice", snapshot)


def step_05_borrow(ledger: Ledger, snapshot, config) -> None:
    step_header(5, "Borrowing against collateral")
    execute(ledger, compute_borrow(ledger, "alice", "RSV_USDC", 5_000, snapshot, config=config))
    print(f"  alice now holds {ledger.get_balance('alice', 'USDC')} USDC")
    show_health(ledger, "alice", snapshot)


def step_06_interest(ledger: Ledger) -> None:
    step_header(6, "A day passes")
    engine = LifecycleEngine(ledger)
    executed = engine.step(T0 + DAY, {})
    print(f"  lifecycle engine executed {len(executed)} transactions")
    for symbol in RESERVES:
        _, state = load_reserve(ledger, symbol)
        print(f"  {symbol}: borrow index {state.borrow_index / INDEX_ONE:.8f}, "
              f"lending index {state.lending_index / INDEX_ONE:.8f}")


def step_07_price_drop(ledger: Ledger, source, config):
    step_header(7, "SOL falls to 60")
    ledger.advance_time(T0 + 2 * DAY)
    snapshot = snapshot_at(ledger, source, config)
    show_health(ledger, "alice", snapshot)
    return snapshot


def step_08_liquidation(ledger: Ledger, snapshot, config) -> None:
    step_header(8, "Liquidation")
    debt = load_position(ledger, "alice").debts[0].amount_principal
    amount = debt * config.close_factor // BPS
    execute(ledger, compute_liquidation(
        ledger, "liquidator", "alice", "RSV_USDC", "RSV_SOL", amount, snapshot, config=config
    ))
    print(f"  liquidator repaid {amount} USDC and received "
          f"{ledger.get_balance('liquidator', 'SOL')} SOL")
    show_health(ledger, "alice", snapshot)


def step_09_audit(ledger: Ledger) -> None:
    step_header(9, "Audit")
    for symbol in ("USDC", "SOL"):
        print(f"  {symbol} supply: {ledger.total_supply(symbol)}")
    replayed = ledger.replay()
    same = all(
        replayed.get_unit_state(s) == ledger.get_unit_state(s) for s in ledger.units
    )
    print(f"  {len(ledger.transaction_log)} transactions; replay reproduces state: {same}")


def main(argv=None) -> None:
    global QUICK
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--quick", action="store_true", help="run without pausing")
    parser.add_argument("--config", help="protocol YAML configuration")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    QUICK = args.quick
    configure_logging(args.log_level)
    config = load_config(args.config) if args.config else DEFAULT_CONFIG

    ledger = step_01_ledger()
    wait_for_enter()
    step_02_reserves(ledger)
    wait_for_enter()
    source = step_03_prices()
    snapshot = snapshot_at(ledger, source, config)
    wait_for_enter()
    step_04_supply(ledger, snapshot)
    wait_for_enter()
    step_05_borrow(ledger, snapshot, config)
    wait_for_enter()
    step_06_interest(ledger)
    wait_for_enter()
    snapshot = step_07_price_drop(ledger, source, config)
    wait_for_enter()
    step_08_liquidation(ledger, snapshot, config)
    wait_for_enter()
    step_09_audit(ledger)


if __name__ == "__main__":
    main()
