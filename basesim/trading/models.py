"""Data models for the paper-trading ledger."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional


STARTING_BALANCE = Decimal("1500")
NEGLIGIBLE_AMOUNT = Decimal("0.000001")


class TradeSide(str, Enum):
    """Direction of a trade."""
    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, value: Any) -> Optional["TradeSide"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class TradeRejectionReason(Enum):
    """Reason a trade request did not change the ledger."""
    INVALID_AMOUNT = "invalid_amount"
    INVALID_SIDE = "invalid_side"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    NO_SUCH_HOLDING = "no_such_holding"
    INSUFFICIENT_HOLDINGS = "insufficient_holdings"
    PERSISTENCE_FAILURE = "persistence_failure"
    PRICE_UNAVAILABLE = "price_unavailable"


def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce a number-like value to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1. Returns None for values
    that cannot be parsed (including None and booleans).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_trade_id() -> str:
    """Time-derived unique id: epoch millis plus a random suffix."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Holding:
    """A user's open position in one token.

    Attributes:
        token_address: Token contract address (identity key)
        token_symbol: Ticker symbol shown to the user
        token_name: Display name
        amount: Quantity currently held
        average_cost: Weighted-average price paid per unit, in base currency
        total_invested: Capital attributed to the position, kept incrementally
    """
    token_address: str
    token_symbol: str
    token_name: str
    amount: Decimal
    average_cost: Decimal
    total_invested: Decimal

    @property
    def cost_basis(self) -> Decimal:
        """Cost basis recomputed from amount and average cost."""
        return self.amount * self.average_cost


@dataclass(frozen=True)
class Trade:
    """An executed trade. Immutable once created.

    Attributes:
        token_address: Token contract address
        token_symbol: Ticker symbol at execution time
        token_name: Display name at execution time
        side: BUY or SELL
        amount: Quantity traded
        unit_price: Price per token in base currency
        total_base: Gross base-currency value (amount x unit_price)
        reference_price: Base currency price in USD at execution time
        timestamp: Execution time (UTC)
        id: Unique, time-derived identifier
    """
    token_address: str
    token_symbol: str
    token_name: str
    side: TradeSide
    amount: Decimal
    unit_price: Decimal
    total_base: Decimal
    reference_price: Decimal
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_trade_id)

    @property
    def total_usd(self) -> Decimal:
        """USD value of the trade at the captured reference price."""
        return self.total_base * self.reference_price


@dataclass
class LedgerState:
    """Snapshot of one user's ledger: balance, holdings and trade log.

    ``trades`` is ordered most-recent-first.
    """
    user_id: str
    balance: Decimal
    holdings: Dict[str, Holding] = field(default_factory=dict)
    trades: List[Trade] = field(default_factory=list)

    @classmethod
    def initial(cls, user_id: str, balance: Decimal = STARTING_BALANCE) -> "LedgerState":
        return cls(user_id=user_id, balance=balance)

    def get_holding(self, token_address: str) -> Optional[Holding]:
        return self.holdings.get(token_address)
