"""Trade submission with price resolution.

TradeService sits between user-facing callers and the executor: it looks up
the current unit price, sizes the trade either in tokens or in base currency
to spend, executes it, and invalidates the token's cached price afterwards so
a stale pre-trade quote is not shown as current.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from basesim.errors import PersistenceError, PriceUnavailableError

from .executor import ITradeExecutor, TradeResult, rejected
from .models import TradeRejectionReason, TradeSide, to_decimal

if TYPE_CHECKING:
    from basesim.data.providers import IPriceSource

logger = logging.getLogger(__name__)


class TradeService:
    """Submits buy/sell requests at the current market price."""

    def __init__(self, executor: ITradeExecutor, prices: "IPriceSource") -> None:
        self._executor = executor
        self._prices = prices

    def _resolve_price(self, token_address: str) -> Optional[Decimal]:
        try:
            quote = self._prices.get_unit_price(token_address)
        except PriceUnavailableError as e:
            logger.warning(f"{e}")
            return None
        if quote.price is None or quote.price <= 0:
            return None
        return quote.price

    def submit_buy(
        self,
        user_id: str,
        token_address: str,
        token_symbol: str = "",
        token_name: str = "",
        amount: Any = None,
        base_amount: Any = None,
    ) -> TradeResult:
        """Buy a token, sized by token ``amount`` or by ``base_amount`` to spend.

        Exactly one of ``amount`` and ``base_amount`` must be given.
        """
        if (amount is None) == (base_amount is None):
            return rejected(
                TradeRejectionReason.INVALID_AMOUNT,
                "Specify either a token amount or a base amount to spend",
            )
        price = self._resolve_price(token_address)
        if price is None:
            return rejected(
                TradeRejectionReason.PRICE_UNAVAILABLE,
                f"No price data available for {token_symbol or token_address}",
            )

        if base_amount is not None:
            spend = to_decimal(base_amount)
            if spend is None or not spend.is_finite() or spend <= 0:
                return rejected(
                    TradeRejectionReason.INVALID_AMOUNT,
                    "Base amount must be a positive number",
                )
            amount = spend / price
            # the quotient can round up by one ulp; step down until the cost fits
            while amount * price > spend:
                amount = amount.next_minus()

        return self._execute(user_id, token_address, token_symbol, token_name,
                             TradeSide.BUY, amount, price)

    def submit_sell(
        self,
        user_id: str,
        token_address: str,
        amount: Any = None,
        sell_all: bool = False,
    ) -> TradeResult:
        """Sell ``amount`` of a token, or the whole holding with ``sell_all``."""
        try:
            ledger = self._executor.get_ledger(user_id)
        except PersistenceError as e:
            return rejected(
                TradeRejectionReason.PERSISTENCE_FAILURE,
                f"Could not load wallet: {e}",
            )
        holding = ledger.get_holding(token_address)
        if sell_all:
            if holding is None:
                return rejected(
                    TradeRejectionReason.NO_SUCH_HOLDING,
                    "No holding to sell for this token",
                )
            amount = holding.amount

        price = self._resolve_price(token_address)
        if price is None:
            return rejected(
                TradeRejectionReason.PRICE_UNAVAILABLE,
                f"No price data available for {token_address}",
            )
        symbol = holding.token_symbol if holding else ""
        name = holding.token_name if holding else ""
        return self._execute(user_id, token_address, symbol, name,
                             TradeSide.SELL, amount, price)

    def _execute(
        self,
        user_id: str,
        token_address: str,
        token_symbol: str,
        token_name: str,
        side: TradeSide,
        amount: Any,
        price: Decimal,
    ) -> TradeResult:
        qty = to_decimal(amount)
        reference = self._prices.get_reference_price().price
        result = self._executor.execute_trade(
            user_id,
            token_address,
            token_symbol,
            token_name,
            side,
            amount,
            price,
            qty * price if qty is not None and qty.is_finite() else None,
            reference,
        )
        if result.ok:
            self._prices.invalidate(token_address)
        return result
