"""Tests for the trade executor.

Covers validation, atomic commit semantics and per-user serialization.
"""

from __future__ import annotations

import logging
import tempfile
import threading
import time
from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from basesim.errors import PersistenceError
from basesim.storage import JsonFileStorage, LocalLedgerStore
from basesim.trading import (
    STARTING_BALANCE,
    TradeExecutor,
    TradeRejectionReason,
    TradeSide,
    TradeStatus,
)


USER = "0xabc0000000000000000000000000000000000001"
TOKEN = "0x532f27101965dd16442e59d40670faf5ebb142e4"


def buy(executor, amount, price, user=USER, token=TOKEN):
    return executor.execute_trade(user, token, "BRETT", "Brett", "buy", amount, price,
                                  None, Decimal("2500"))


def sell(executor, amount, price, user=USER, token=TOKEN):
    return executor.execute_trade(user, token, "BRETT", "Brett", "sell", amount, price,
                                  None, Decimal("2500"))


class FailingWriteStore(LocalLedgerStore):
    """Local store whose writes fail while ``failing`` is set."""

    def __init__(self, storage):
        super().__init__(storage)
        self.failing = True

    def write_ledger(self, user_id, balance, holdings, trades):
        if self.failing:
            raise PersistenceError("disk full")
        super().write_ledger(user_id, balance, holdings, trades)


class SlowWriteStore(LocalLedgerStore):
    """Local store that pauses inside every write and records executor state."""

    def __init__(self, storage, delay: float = 0.05):
        super().__init__(storage)
        self.delay = delay
        self.executor = None
        self.committing_seen = []

    def write_ledger(self, user_id, balance, holdings, trades):
        if self.executor is not None:
            self.committing_seen.append(self.executor.is_committing(user_id))
        time.sleep(self.delay)
        super().write_ledger(user_id, balance, holdings, trades)


def test_buy_then_sell_scenario(executor, ledger_store):
    bought = buy(executor, "100", "2")
    assert bought.status == TradeStatus.EXECUTED
    assert bought.realized_pnl is None
    assert bought.trade.side == TradeSide.BUY
    assert bought.trade.total_base == Decimal("200")

    ledger = ledger_store.read_ledger(USER)
    assert ledger.balance == Decimal("1300")
    holding = ledger.get_holding(TOKEN)
    assert holding.amount == Decimal("100")
    assert holding.average_cost == Decimal("2")
    assert holding.total_invested == Decimal("200")

    sold = sell(executor, "40", "3")
    assert sold.ok
    assert sold.realized_pnl == Decimal("40")
    assert sold.trade.total_base == Decimal("120")

    ledger = ledger_store.read_ledger(USER)
    assert ledger.balance == Decimal("1420")
    holding = ledger.get_holding(TOKEN)
    assert holding.amount == Decimal("60")
    assert holding.average_cost == Decimal("2")
    assert holding.total_invested == Decimal("120")
    assert [t.id for t in ledger.trades] == [sold.trade.id, bought.trade.id]


def test_new_ledger_starts_with_starting_balance(executor):
    ledger = executor.get_ledger("fresh-user")

    assert ledger.balance == STARTING_BALANCE == Decimal("1500")
    assert ledger.holdings == {}
    assert ledger.trades == []


def test_full_sell_removes_holding(executor):
    buy(executor, "10", "1.5")
    result = sell(executor, "10", "1.5")

    assert result.ok
    assert result.realized_pnl == Decimal("0")
    ledger = executor.get_ledger(USER)
    assert ledger.get_holding(TOKEN) is None
    assert ledger.balance == STARTING_BALANCE
    assert len(ledger.trades) == 2


@pytest.mark.parametrize("amount", [0, -1, "0", "abc", None, float("nan"), float("inf"), "Infinity"])
def test_invalid_amount_is_rejected(executor, ledger_store, amount):
    result = buy(executor, amount, "1")

    assert result.status == TradeStatus.REJECTED
    assert result.rejection_reason == TradeRejectionReason.INVALID_AMOUNT
    assert result.trade is None
    assert result.error
    assert ledger_store.read_ledger(USER).trades == []


def test_unknown_side_is_rejected(executor):
    result = executor.execute_trade(USER, TOKEN, "BRETT", "Brett", "short", "1", "1")

    assert result.rejection_reason == TradeRejectionReason.INVALID_SIDE


@pytest.mark.parametrize("price", [None, "nan", "-1", "abc"])
def test_missing_price_is_rejected(executor, price):
    result = buy(executor, "1", price)

    assert result.rejection_reason == TradeRejectionReason.PRICE_UNAVAILABLE


def test_side_accepts_enum_and_mixed_case(executor):
    assert executor.execute_trade(USER, TOKEN, "B", "B", TradeSide.BUY, "1", "1").ok
    assert executor.execute_trade(USER, TOKEN, "B", "B", " SELL ", "1", "1").ok


def test_sell_without_holding_is_rejected(executor):
    result = sell(executor, "1", "1")

    assert result.rejection_reason == TradeRejectionReason.NO_SUCH_HOLDING


@given(
    price=st.decimals(min_value=Decimal("0.01"), max_value=Decimal("1000"), places=2),
    overshoot=st.decimals(min_value=Decimal("0.01"), max_value=Decimal("1000"), places=2),
)
@settings(max_examples=25, deadline=None)
def test_rejected_buy_leaves_stored_state_untouched(price: Decimal, overshoot: Decimal):
    """
    **Property: Insufficient balance rejection writes nothing**
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LocalLedgerStore(JsonFileStorage(tmpdir))
        executor = TradeExecutor(store)
        assert buy(executor, "1", "100").ok
        before = store.read_ledger(USER)

        amount = (before.balance + overshoot) / price
        result = buy(executor, amount, price)

        assert result.rejection_reason == TradeRejectionReason.INSUFFICIENT_BALANCE
        after = store.read_ledger(USER)
        assert after.balance == before.balance
        assert after.holdings == before.holdings
        assert [t.id for t in after.trades] == [t.id for t in before.trades]


@given(extra=st.decimals(min_value=Decimal("0.00000001"), max_value=Decimal("50"), places=8))
@settings(max_examples=25, deadline=None)
def test_rejected_sell_leaves_stored_state_untouched(extra: Decimal):
    """
    **Property: Insufficient holdings rejection writes nothing**
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        store = LocalLedgerStore(JsonFileStorage(tmpdir))
        executor = TradeExecutor(store)
        assert buy(executor, "5", "2").ok
        before = store.read_ledger(USER)

        result = sell(executor, Decimal("5") + extra, "2")

        assert result.rejection_reason == TradeRejectionReason.INSUFFICIENT_HOLDINGS
        after = store.read_ledger(USER)
        assert after.balance == before.balance
        assert after.get_holding(TOKEN) == before.get_holding(TOKEN)
        assert len(after.trades) == 1


def test_write_failure_commits_nothing_and_allows_retry(tmp_path):
    store = FailingWriteStore(JsonFileStorage(tmp_path))
    executor = TradeExecutor(store)

    result = buy(executor, "10", "2")

    assert result.rejection_reason == TradeRejectionReason.PERSISTENCE_FAILURE
    assert "disk full" in result.message
    ledger = store.read_ledger(USER)
    assert ledger.balance == STARTING_BALANCE
    assert ledger.holdings == {}
    assert ledger.trades == []

    store.failing = False
    retry = buy(executor, "10", "2")
    assert retry.ok
    assert store.read_ledger(USER).balance == Decimal("1480")


def test_read_failure_is_reported(tmp_path):
    storage = JsonFileStorage(tmp_path)
    (tmp_path / f"ledger_{USER}.json").write_text("{not json", encoding="utf-8")
    executor = TradeExecutor(LocalLedgerStore(storage))

    result = buy(executor, "1", "1")

    assert result.rejection_reason == TradeRejectionReason.PERSISTENCE_FAILURE


def test_supplied_total_base_mismatch_uses_computed_value(executor, caplog):
    with caplog.at_level(logging.WARNING, logger="basesim.trading.executor"):
        result = executor.execute_trade(USER, TOKEN, "BRETT", "Brett", "buy",
                                        "10", "2", "999", "2500")

    assert result.ok
    assert result.trade.total_base == Decimal("20")
    assert executor.get_ledger(USER).balance == Decimal("1480")
    assert any("differs" in r.getMessage() for r in caplog.records)


def test_trade_records_reference_price_and_clock(ledger_store):
    from datetime import datetime, timezone

    fixed = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    executor = TradeExecutor(ledger_store, clock=lambda: fixed)

    result = buy(executor, "1", "0.5")

    assert result.trade.reference_price == Decimal("2500")
    assert result.trade.total_usd == Decimal("1250")
    assert result.trade.timestamp == fixed
    assert ledger_store.read_ledger(USER).trades[0].timestamp == fixed


def test_ledgers_are_isolated_per_user(executor):
    buy(executor, "100", "2", user="alice")

    assert executor.get_ledger("alice").balance == Decimal("1300")
    assert executor.get_ledger("bob").balance == STARTING_BALANCE


def test_reset_restores_starting_state(executor):
    buy(executor, "100", "2")
    sell(executor, "50", "1")

    executor.reset(USER)

    ledger = executor.get_ledger(USER)
    assert ledger.balance == STARTING_BALANCE
    assert ledger.holdings == {}
    assert ledger.trades == []


def test_concurrent_buys_are_serialized(tmp_path):
    store = SlowWriteStore(JsonFileStorage(tmp_path))
    executor = TradeExecutor(store)
    store.executor = executor
    barrier = threading.Barrier(2)
    results = []

    def worker():
        barrier.wait()
        # each buy costs 1000 of the 1500 starting balance
        results.append(buy(executor, "500", "2"))

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r.status.value for r in results) == ["executed", "rejected"]
    rejected = next(r for r in results if not r.ok)
    assert rejected.rejection_reason == TradeRejectionReason.INSUFFICIENT_BALANCE

    ledger = store.read_ledger(USER)
    assert ledger.balance == Decimal("500")
    assert ledger.get_holding(TOKEN).amount == Decimal("500")
    assert len(ledger.trades) == 1
    assert store.committing_seen == [True]
    assert not executor.is_committing(USER)


def test_concurrent_trades_do_not_lose_updates(tmp_path):
    store = SlowWriteStore(JsonFileStorage(tmp_path), delay=0.01)
    executor = TradeExecutor(store)

    threads = [threading.Thread(target=buy, args=(executor, "1", "1")) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    ledger = store.read_ledger(USER)
    assert len(ledger.trades) == 8
    assert ledger.balance == Decimal("1492")
    assert ledger.get_holding(TOKEN).amount == Decimal("8")


@pytest.mark.parametrize("reference", [None, "n/a", "NaN"])
def test_missing_reference_price_is_logged(executor, caplog, reference):
    with caplog.at_level(logging.WARNING, logger="basesim.trading.executor"):
        result = executor.execute_trade(USER, TOKEN, "BRETT", "Brett", "buy",
                                        "10", "2", None, reference)

    assert result.ok
    assert result.trade.reference_price == Decimal("0")
    assert any("reference price" in r.getMessage() for r in caplog.records)


def test_valid_reference_price_logs_nothing(executor, caplog):
    with caplog.at_level(logging.WARNING, logger="basesim.trading.executor"):
        buy(executor, "10", "2")

    assert not any("reference price" in r.getMessage() for r in caplog.records)
