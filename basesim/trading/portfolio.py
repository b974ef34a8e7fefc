"""Portfolio valuation and ledger serialization."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from .models import STARTING_BALANCE, Holding, LedgerState, Trade, TradeSide


class PortfolioView:
    """Read-only valuation over a ledger snapshot.

    Holdings without a price in ``prices`` are valued at their cost basis.
    """

    def __init__(self, ledger: LedgerState) -> None:
        self._ledger = ledger

    def get_balance(self) -> Decimal:
        """Get current available base-currency balance."""
        return self._ledger.balance

    def get_holdings(self) -> Dict[str, Holding]:
        """Get all current holdings keyed by token address."""
        return dict(self._ledger.holdings)

    def get_holding(self, token_address: str) -> Optional[Holding]:
        return self._ledger.get_holding(token_address)

    def get_trades(self) -> List[Trade]:
        """Get the trade log, most recent first."""
        return list(self._ledger.trades)

    def get_holdings_value(self, prices: Mapping[str, Decimal]) -> Decimal:
        total = Decimal("0")
        for address, holding in self._ledger.holdings.items():
            if address in prices:
                total += holding.amount * prices[address]
            else:
                total += holding.total_invested
        return total

    def get_portfolio_value(self, prices: Mapping[str, Decimal]) -> Decimal:
        """Calculate total portfolio value including balance and holdings.

        Args:
            prices: Mapping of token address to current unit price in base currency

        Returns:
            Balance plus the marked value of every holding
        """
        return self._ledger.balance + self.get_holdings_value(prices)

    def get_unrealized_pnl(self, token_address: str, current_price: Decimal) -> Decimal:
        """Calculate unrealized PnL for a holding.

        Args:
            token_address: Token to value
            current_price: Current unit price in base currency

        Returns:
            Current value minus invested capital (0 when nothing is held)
        """
        holding = self._ledger.get_holding(token_address)
        if holding is None:
            return Decimal("0")
        return holding.amount * current_price - holding.total_invested

    def get_unrealized_pnl_pct(self, token_address: str, current_price: Decimal) -> Decimal:
        """Unrealized PnL as a percentage of invested capital."""
        holding = self._ledger.get_holding(token_address)
        if holding is None or holding.total_invested == 0:
            return Decimal("0")
        pnl = self.get_unrealized_pnl(token_address, current_price)
        return pnl / holding.total_invested * Decimal("100")


class LedgerSerializer:
    """Serializer for ledger state to/from JSON-compatible dictionaries.

    Decimals are stored as strings so values survive JSON without loss.
    """

    @staticmethod
    def serialize_holding(holding: Holding) -> dict:
        return {
            "token_address": holding.token_address,
            "token_symbol": holding.token_symbol,
            "token_name": holding.token_name,
            "amount": str(holding.amount),
            "average_cost": str(holding.average_cost),
            "total_invested": str(holding.total_invested),
        }

    @staticmethod
    def deserialize_holding(data: dict) -> Holding:
        return Holding(
            token_address=data["token_address"],
            token_symbol=data.get("token_symbol", ""),
            token_name=data.get("token_name", ""),
            amount=Decimal(data["amount"]),
            average_cost=Decimal(data["average_cost"]),
            total_invested=Decimal(data["total_invested"]),
        )

    @staticmethod
    def serialize_trade(trade: Trade) -> dict:
        return {
            "id": trade.id,
            "token_address": trade.token_address,
            "token_symbol": trade.token_symbol,
            "token_name": trade.token_name,
            "side": trade.side.value,
            "amount": str(trade.amount),
            "unit_price": str(trade.unit_price),
            "total_base": str(trade.total_base),
            "reference_price": str(trade.reference_price),
            "timestamp": trade.timestamp.isoformat(),
        }

    @staticmethod
    def deserialize_trade(data: dict) -> Trade:
        return Trade(
            id=data["id"],
            token_address=data["token_address"],
            token_symbol=data.get("token_symbol", ""),
            token_name=data.get("token_name", ""),
            side=TradeSide(data["side"]),
            amount=Decimal(data["amount"]),
            unit_price=Decimal(data["unit_price"]),
            total_base=Decimal(data["total_base"]),
            reference_price=Decimal(data["reference_price"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )

    @classmethod
    def serialize(cls, ledger: LedgerState) -> dict:
        """Serialize ledger state to a JSON-compatible dictionary.

        Args:
            ledger: Ledger snapshot to serialize

        Returns:
            Dictionary containing serialized ledger state
        """
        return {
            "user_id": ledger.user_id,
            "balance": str(ledger.balance),
            "holdings": [cls.serialize_holding(h) for h in ledger.holdings.values()],
            "trades": [cls.serialize_trade(t) for t in ledger.trades],
        }

    @classmethod
    def deserialize(cls, data: dict) -> LedgerState:
        """Deserialize ledger state from a dictionary.

        Args:
            data: Dictionary containing serialized ledger state

        Returns:
            Restored LedgerState
        """
        holdings = {}
        for item in data.get("holdings", []):
            holding = cls.deserialize_holding(item)
            holdings[holding.token_address] = holding
        return LedgerState(
            user_id=data["user_id"],
            balance=Decimal(data.get("balance", str(STARTING_BALANCE))),
            holdings=holdings,
            trades=[cls.deserialize_trade(t) for t in data.get("trades", [])],
        )
