"""
test_ledger.py - Unit tests for ledger.py and the core types

Tests:
- Ledger creation, wallet and unit registration
- Balance reads and test-mode balance setting
- Transaction execution (validation, idempotency, rejection)
- Stale state changes are rejected
- Units created inside a transaction
- clone(), clone_at() and replay()
- Move validation and content-addressed intent ids
"""

import pytest

from tests.conftest import T0, execute_ok, issue, ledger_state_equals, compare_ledger_states
from lending_ledger import (
    Ledger, Move, ExecuteResult, UnitStateChange, TransactionOrigin, OriginType,
    build_transaction, token, create_position, compute_deposit, compute_borrow,
    LedgerError, ClockRegression, WalletNotRegistered, UnitNotRegistered,
    SYSTEM_WALLET,
)


class TestLedgerCreation:
    """Tests for Ledger initialization."""

    def test_create_ledger(self):
        ledger = Ledger("test", verbose=False)
        assert ledger.name == "test"
        assert ledger.current_time == 0
        assert SYSTEM_WALLET in ledger.registered_wallets

    def test_create_with_initial_time(self):
        assert Ledger("test", initial_time=T0, verbose=False).current_time == T0


class TestRegistration:

    def test_register_wallet(self, empty_ledger):
        empty_ledger.register_wallet("alice")
        assert empty_ledger.is_registered("alice")

    def test_register_duplicate_wallet_raises(self, empty_ledger):
        empty_ledger.register_wallet("alice")
        with pytest.raises(ValueError):
            empty_ledger.register_wallet("alice")

    def test_register_duplicate_unit_raises(self, basic_ledger):
        with pytest.raises(ValueError):
            basic_ledger.register_unit(token("USDC", "again"))

    def test_get_unit_state_unregistered_raises(self, empty_ledger):
        with pytest.raises(UnitNotRegistered):
            empty_ledger.get_unit_state("NOPE")

    def test_get_unit_state_is_a_copy(self, lending_ledger):
        state = lending_ledger.get_unit_state("RSV_USDC")
        state["total_deposited"] = 10**9
        state["curve"]["base_rate"] = 0
        fresh = lending_ledger.get_unit_state("RSV_USDC")
        assert fresh["total_deposited"] == 0
        assert fresh["curve"]["base_rate"] == 200


class TestBalances:

    def test_default_zero(self, basic_ledger):
        assert basic_ledger.get_balance("alice", "USDC") == 0

    def test_unregistered_wallet_raises(self, basic_ledger):
        with pytest.raises(WalletNotRegistered):
            basic_ledger.get_balance("mallory", "USDC")

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("prod", verbose=False)
        ledger.register_unit(token("USDC", "USD Coin"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError):
            ledger.set_balance("alice", "USDC", 100)

    def test_positions_and_supply(self, funded_ledger):
        assert funded_ledger.get_positions("USDC") == {"alice": 10_000}
        assert funded_ledger.total_supply("USDC") == 10_000

    def test_wallet_balances(self, funded_ledger):
        assert funded_ledger.get_wallet_balances("alice") == {"USDC": 10_000}
        with pytest.raises(WalletNotRegistered):
            funded_ledger.get_wallet_balances("mallory")

    def test_list_units_sorted(self, lending_ledger):
        assert lending_ledger.list_units() == ["RSV_SOL", "RSV_USDC", "SOL", "USDC"]

    def test_issuance_conserves_supply(self, lending_ledger):
        assert lending_ledger.total_supply("USDC") == 0
        assert lending_ledger.get_balance(SYSTEM_WALLET, "USDC") == -3_000_000


class TestTime:

    def test_advance_time(self, basic_ledger):
        basic_ledger.advance_time(T0 + 10)
        assert basic_ledger.current_time == T0 + 10

    def test_advance_time_backwards_raises(self, basic_ledger):
        with pytest.raises(ClockRegression):
            basic_ledger.advance_time(T0 - 1)


class TestExecute:

    def test_simple_transfer(self, funded_ledger):
        pending = build_transaction(funded_ledger, [Move(100, "USDC", "alice", "bob", "pay")])
        assert funded_ledger.execute(pending) == ExecuteResult.APPLIED
        assert funded_ledger.get_balance("alice", "USDC") == 9_900
        assert funded_ledger.get_balance("bob", "USDC") == 100
        tx = funded_ledger.transaction_log[-1]
        assert tx.sequence_number == 0
        assert tx.contract_ids == frozenset({"pay"})

    def test_idempotency(self, funded_ledger):
        pending = build_transaction(funded_ledger, [Move(100, "USDC", "alice", "bob", "pay")])
        assert funded_ledger.execute(pending) == ExecuteResult.APPLIED
        assert funded_ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert funded_ledger.get_balance("bob", "USDC") == 100
        assert len(funded_ledger.transaction_log) == 1

    def test_reject_insufficient_funds(self, funded_ledger):
        pending = build_transaction(funded_ledger, [Move(10_001, "USDC", "alice", "bob", "pay")])
        assert funded_ledger.execute(pending) == ExecuteResult.REJECTED
        assert funded_ledger.get_balance("alice", "USDC") == 10_000

    def test_reject_unregistered_wallet(self, funded_ledger):
        pending = build_transaction(funded_ledger, [Move(1, "USDC", "alice", "mallory", "pay")])
        assert funded_ledger.execute(pending) == ExecuteResult.REJECTED

    def test_reject_future_timestamp(self, funded_ledger):
        clone = funded_ledger.clone()
        clone.advance_time(T0 + 100)
        pending = build_transaction(clone, [Move(1, "USDC", "alice", "bob", "pay")])
        assert funded_ledger.execute(pending) == ExecuteResult.REJECTED

    def test_empty_transaction(self, funded_ledger):
        pending = build_transaction(funded_ledger, [])
        assert funded_ledger.execute(pending) == ExecuteResult.APPLIED
        assert funded_ledger.transaction_log == []

    def test_stale_state_rejected(self, seeded_ledger, snapshot):
        first = compute_deposit(seeded_ledger, "alice", "RSV_SOL", 10, snapshot)
        second = compute_deposit(seeded_ledger, "alice", "RSV_SOL", 20, snapshot)
        execute_ok(seeded_ledger, first)
        assert seeded_ledger.execute(second) == ExecuteResult.REJECTED
        assert seeded_ledger.get_balance("vault:SOL", "SOL") == 110

    def test_unit_created_in_transaction(self, lending_ledger):
        pending = build_transaction(
            lending_ledger, [], units_to_create=(create_position("carol"),)
        )
        execute_ok(lending_ledger, pending)
        assert lending_ledger.has_unit("POS_carol")

    def test_duplicate_unit_creation_rejected(self, seeded_ledger):
        pending = build_transaction(
            seeded_ledger, [], units_to_create=(create_position("alice"),)
        )
        assert seeded_ledger.execute(pending) == ExecuteResult.REJECTED

    def test_duplicate_state_change_rejected(self, lending_ledger):
        state = lending_ledger.get_unit_state("RSV_USDC")
        change = UnitStateChange("RSV_USDC", state, {**state, "total_deposited": 1})
        other = UnitStateChange("RSV_USDC", state, {**state, "total_deposited": 2})
        pending = build_transaction(lending_ledger, [], [change, other])
        assert lending_ledger.execute(pending) == ExecuteResult.REJECTED

    def test_verify_double_entry(self, lending_ledger):
        result = lending_ledger.verify_double_entry({"USDC": 0, "SOL": 0})
        assert result["valid"], result["discrepancies"]
        result = lending_ledger.verify_double_entry({"USDC": 1})
        assert not result["valid"]


class TestCloneAndReplay:

    def test_clone_is_independent(self, seeded_ledger, snapshot):
        clone = seeded_ledger.clone()
        execute_ok(clone, compute_borrow(clone, "alice", "RSV_USDC", 1_000, snapshot))
        assert seeded_ledger.get_unit_state("POS_alice")["debts"] == []
        assert clone.get_unit_state("POS_alice")["debts"] != []

    def test_clone_at_reconstructs_past(self, lending_ledger, snapshot):
        before = lending_ledger.clone()
        lending_ledger.advance_time(T0 + 60)
        execute_ok(lending_ledger, compute_deposit(lending_ledger, "alice", "RSV_SOL", 100, snapshot))
        past = lending_ledger.clone_at(T0)
        assert ledger_state_equals(past, before), compare_ledger_states(past, before)
        assert not past.has_unit("POS_alice")
        assert past.current_time == T0

    def test_clone_at_can_continue(self, lending_ledger, snapshot):
        lending_ledger.advance_time(T0 + 60)
        execute_ok(lending_ledger, compute_deposit(lending_ledger, "alice", "RSV_SOL", 100, snapshot))
        past = lending_ledger.clone_at(T0)
        execute_ok(past, compute_deposit(past, "alice", "RSV_SOL", 50, snapshot))
        assert past.get_balance("vault:SOL", "SOL") == 50

    def test_clone_at_future_raises(self, lending_ledger):
        with pytest.raises(ValueError):
            lending_ledger.clone_at(T0 + 1)

    def test_replay_reproduces_state(self, seeded_ledger, snapshot):
        execute_ok(seeded_ledger, compute_borrow(seeded_ledger, "alice", "RSV_USDC", 5_000, snapshot))
        replayed = seeded_ledger.replay()
        assert ledger_state_equals(replayed, seeded_ledger), compare_ledger_states(replayed, seeded_ledger)
        assert len(replayed.transaction_log) == len(seeded_ledger.transaction_log)


class TestCoreTypes:

    def test_move_validation(self):
        with pytest.raises(ValueError):
            Move(0, "USDC", "alice", "bob", "pay")
        with pytest.raises(ValueError):
            Move(1, "USDC", "alice", "alice", "pay")
        with pytest.raises(ValueError):
            Move(True, "USDC", "alice", "bob", "pay")

    def test_intent_id_ignores_move_order(self, funded_ledger):
        a = Move(1, "USDC", "alice", "bob", "pay")
        b = Move(2, "USDC", "alice", "bob", "pay")
        assert (
            build_transaction(funded_ledger, [a, b]).intent_id
            == build_transaction(funded_ledger, [b, a]).intent_id
        )

    def test_intent_id_includes_state(self, lending_ledger):
        state = lending_ledger.get_unit_state("RSV_USDC")
        one = build_transaction(lending_ledger, [], [UnitStateChange("RSV_USDC", state, {**state, "total_deposited": 1})])
        two = build_transaction(lending_ledger, [], [UnitStateChange("RSV_USDC", state, {**state, "total_deposited": 2})])
        assert one.intent_id != two.intent_id

    def test_changed_fields(self):
        change = UnitStateChange("X", {"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4})
        assert change.changed_fields() == {"b": (2, 3), "c": (None, 4)}

    def test_origin_repr(self):
        origin = TransactionOrigin(OriginType.USER_ACTION, "alice", "RSV_USDC", "DEPOSIT")
        assert repr(origin) == "Origin(user_action:alice, unit=RSV_USDC, event=DEPOSIT)"

    def test_issue_helper_moves_from_system(self, basic_ledger):
        issue(basic_ledger, "bob", "USDC", 5)
        assert basic_ledger.get_balance(SYSTEM_WALLET, "USDC") == -5
