from __future__ import annotations

import tempfile
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from basesim.data.providers import IPriceSource, PriceQuote
from basesim.errors import PersistenceError, PriceUnavailableError
from basesim.storage import JsonFileStorage, LocalLedgerStore
from basesim.trading import (
    STARTING_BALANCE,
    TradeExecutor,
    TradeRejectionReason,
    TradeService,
    TradeSide,
)


USER = "alice"
TOKEN = "0x0b3e328455c4059eeb9e3f84b5543f74e24e7e1b"
NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


class FakePrices(IPriceSource):
    def __init__(self, prices=None, reference=Decimal("2500")):
        self.prices = dict(prices or {})
        self.reference = reference
        self.invalidated = []

    def get_unit_price(self, token_address):
        if token_address not in self.prices:
            raise PriceUnavailableError(f"No price for {token_address}")
        return PriceQuote(self.prices[token_address], NOW)

    def get_reference_price(self):
        return PriceQuote(self.reference, NOW)

    def invalidate(self, token_address):
        self.invalidated.append(token_address)


@pytest.fixture
def prices():
    return FakePrices({TOKEN: Decimal("0.5")})


@pytest.fixture
def service(executor, prices):
    return TradeService(executor, prices)


def test_buy_by_token_amount(service, prices, executor):
    result = service.submit_buy(USER, TOKEN, "DEGEN", "Degen", amount="100")

    assert result.ok
    assert result.trade.unit_price == Decimal("0.5")
    assert result.trade.total_base == Decimal("50")
    assert result.trade.reference_price == Decimal("2500")
    assert executor.get_ledger(USER).balance == Decimal("1450")
    assert prices.invalidated == [TOKEN]


def test_buy_by_base_amount(service, executor):
    result = service.submit_buy(USER, TOKEN, "DEGEN", base_amount="25")

    assert result.ok
    assert result.trade.amount == Decimal("50")
    assert executor.get_ledger(USER).balance == Decimal("1475")


@pytest.mark.parametrize("kwargs", [{}, {"amount": "1", "base_amount": "1"}])
def test_buy_needs_exactly_one_size(service, kwargs):
    result = service.submit_buy(USER, TOKEN, **kwargs)

    assert result.rejection_reason == TradeRejectionReason.INVALID_AMOUNT


@pytest.mark.parametrize("spend", ["0", "-5", "lots"])
def test_buy_rejects_bad_base_amount(service, spend):
    result = service.submit_buy(USER, TOKEN, base_amount=spend)

    assert result.rejection_reason == TradeRejectionReason.INVALID_AMOUNT


def test_buy_without_price_is_rejected(executor):
    prices = FakePrices()
    result = TradeService(executor, prices).submit_buy(USER, TOKEN, amount="1")

    assert result.rejection_reason == TradeRejectionReason.PRICE_UNAVAILABLE
    assert executor.get_ledger(USER).trades == []
    assert prices.invalidated == []


def test_zero_price_counts_as_unavailable(executor):
    service = TradeService(executor, FakePrices({TOKEN: Decimal("0")}))

    assert service.submit_buy(USER, TOKEN, amount="1").rejection_reason \
        == TradeRejectionReason.PRICE_UNAVAILABLE


def test_sell_all_liquidates_holding(service, executor, prices):
    service.submit_buy(USER, TOKEN, "DEGEN", "Degen", amount="100")
    prices.prices[TOKEN] = Decimal("1")

    result = service.submit_sell(USER, TOKEN, sell_all=True)

    assert result.ok
    assert result.trade.side == TradeSide.SELL
    assert result.trade.token_symbol == "DEGEN"
    assert result.realized_pnl == Decimal("50")
    ledger = executor.get_ledger(USER)
    assert ledger.get_holding(TOKEN) is None
    assert ledger.balance == Decimal("1550")


def test_partial_sell(service, executor):
    service.submit_buy(USER, TOKEN, amount="100")

    result = service.submit_sell(USER, TOKEN, amount="30")

    assert result.ok
    assert executor.get_ledger(USER).get_holding(TOKEN).amount == Decimal("70")


def test_sell_all_without_holding(service):
    result = service.submit_sell(USER, TOKEN, sell_all=True)

    assert result.rejection_reason == TradeRejectionReason.NO_SUCH_HOLDING


def test_sell_more_than_held(service):
    service.submit_buy(USER, TOKEN, amount="10")

    result = service.submit_sell(USER, TOKEN, amount="11")

    assert result.rejection_reason == TradeRejectionReason.INSUFFICIENT_HOLDINGS


def test_sell_reports_unreadable_ledger(prices):
    class BrokenExecutor:
        def get_ledger(self, user_id):
            raise PersistenceError("offline")

    result = TradeService(BrokenExecutor(), prices).submit_sell(USER, TOKEN, sell_all=True)

    assert result.rejection_reason == TradeRejectionReason.PERSISTENCE_FAILURE
    assert "offline" in result.message


@pytest.mark.parametrize("price", ["0.122", "0.007", "1.3", "2.917", "4.999"])
def test_spending_whole_balance_is_never_over_budget(executor, price):
    service = TradeService(executor, FakePrices({TOKEN: Decimal(price)}))

    result = service.submit_buy(USER, TOKEN, "DEGEN", base_amount="1500")

    assert result.ok, result.message
    assert result.trade.total_base <= Decimal("1500")
    assert Decimal("1500") - result.trade.total_base < Decimal("1e-20")
    assert executor.get_ledger(USER).balance >= 0


@given(price=st.decimals(min_value=Decimal("0.001"), max_value=Decimal("5"), places=3))
@settings(max_examples=200, deadline=None)
def test_base_amount_buy_fits_the_spend(price: Decimal):
    """
    **Property: A buy sized by base amount never costs more than the spend**
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        executor = TradeExecutor(LocalLedgerStore(JsonFileStorage(tmpdir)))
        service = TradeService(executor, FakePrices({TOKEN: price}))

        result = service.submit_buy(USER, TOKEN, base_amount=STARTING_BALANCE)

        assert result.ok, result.message
        assert result.trade.total_base <= STARTING_BALANCE
