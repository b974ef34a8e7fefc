"""Trade executor for paper trading.

This module provides the single entry point that mutates a ledger:
- Trade status enum and TradeResult dataclass for trade outcomes
- ITradeExecutor interface
- TradeExecutor, which validates a request, applies the accounting engine,
  appends to the trade log and persists everything in one store write
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Set

from basesim.errors import PersistenceError

from .accounting import AccountingResult, apply_buy, apply_sell
from .models import LedgerState, Trade, TradeRejectionReason, TradeSide, to_decimal, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from basesim.storage.ledger_store import ILedgerStore

logger = logging.getLogger(__name__)

# Relative tolerance for the caller's total_base cross-check
TOTAL_BASE_TOLERANCE = Decimal("0.000001")


class TradeStatus(Enum):
    """Status of a trade request after submission."""
    EXECUTED = "executed"
    REJECTED = "rejected"


@dataclass
class TradeResult:
    """Result of a trade request.

    Attributes:
        status: EXECUTED or REJECTED
        trade: The trade record if the trade was executed
        realized_pnl: Profit/loss recognized by an executed sell, None for buys
        rejection_reason: The reason for rejection if the trade was rejected
        message: Human-readable message describing the result
    """
    status: TradeStatus
    trade: Optional[Trade] = None
    realized_pnl: Optional[Decimal] = None
    rejection_reason: Optional[TradeRejectionReason] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == TradeStatus.EXECUTED

    @property
    def error(self) -> Optional[str]:
        return None if self.ok else self.message


def rejected(reason: TradeRejectionReason, message: str) -> TradeResult:
    return TradeResult(status=TradeStatus.REJECTED, rejection_reason=reason, message=message)


class ITradeExecutor(ABC):
    """Interface for ledger-mutating trade execution."""

    @abstractmethod
    def execute_trade(
        self,
        user_id: str,
        token_address: str,
        token_symbol: str,
        token_name: str,
        side: Any,
        amount: Any,
        unit_price: Any,
        total_base: Any = None,
        reference_price: Any = None,
    ) -> TradeResult:
        """Execute a buy or sell against a user's ledger."""
        ...

    @abstractmethod
    def get_ledger(self, user_id: str) -> LedgerState:
        """Read a snapshot of a user's ledger."""
        ...

    @abstractmethod
    def reset(self, user_id: str) -> None:
        """Reset a user's ledger to the starting state."""
        ...


class TradeExecutor(ITradeExecutor):
    """Executes trades against an injected ledger store.

    The executor holds no ledger state of its own; every trade reads the
    stored ledger, computes the next state and writes it back in one call.
    The read-modify-write for a user runs under that user's lock, so a second
    request sees the first one's committed state.
    """

    def __init__(
        self,
        store: "ILedgerStore",
        clock: Callable[[], "datetime"] = utcnow,
    ) -> None:
        """Initialize trade executor.

        Args:
            store: Ledger store used for every read and write
            clock: Source of trade timestamps
        """
        self._store = store
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._committing: Set[str] = set()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock

    def is_committing(self, user_id: str) -> bool:
        """True while a trade for ``user_id`` is between read and write."""
        return user_id in self._committing

    def get_ledger(self, user_id: str) -> LedgerState:
        with self._lock_for(user_id):
            return self._store.read_ledger(user_id)

    def reset(self, user_id: str) -> None:
        with self._lock_for(user_id):
            self._store.reset_ledger(user_id)

    def execute_trade(
        self,
        user_id: str,
        token_address: str,
        token_symbol: str,
        token_name: str,
        side: Any,
        amount: Any,
        unit_price: Any,
        total_base: Any = None,
        reference_price: Any = None,
    ) -> TradeResult:
        """Execute a trade and persist the resulting ledger.

        Args:
            user_id: Owner of the ledger
            token_address: Token contract address
            token_symbol: Token ticker symbol
            token_name: Token display name
            side: "buy" or "sell" (or a TradeSide)
            amount: Quantity of tokens to trade
            unit_price: Price per token in base currency, already resolved
            total_base: Caller's computed trade value, checked against
                amount x unit_price
            reference_price: Base currency price in USD at execution time

        Returns:
            TradeResult with EXECUTED status, the trade and realized PnL,
            or REJECTED status with a reason; a rejected trade never
            changes stored state
        """
        trade_side = TradeSide.parse(side)
        if trade_side is None:
            return rejected(TradeRejectionReason.INVALID_SIDE, f"Unknown trade side: {side!r}")

        qty = to_decimal(amount)
        if qty is None or not qty.is_finite() or qty <= 0:
            return rejected(
                TradeRejectionReason.INVALID_AMOUNT,
                "Amount must be a positive number",
            )

        price = to_decimal(unit_price)
        if price is None or not price.is_finite() or price < 0:
            return rejected(
                TradeRejectionReason.PRICE_UNAVAILABLE,
                f"No valid price for {token_symbol or token_address}",
            )

        ref_price = to_decimal(reference_price)
        if ref_price is None or not ref_price.is_finite():
            logger.warning(
                f"No usable reference price ({reference_price!r}) for {token_address}; "
                f"recording 0"
            )
            ref_price = Decimal("0")

        self._check_total_base(qty, price, total_base, token_address)

        with self._lock_for(user_id):
            self._committing.add(user_id)
            try:
                return self._commit(
                    user_id, token_address, token_symbol, token_name,
                    trade_side, qty, price, ref_price,
                )
            finally:
                self._committing.discard(user_id)

    def _check_total_base(
        self, qty: Decimal, price: Decimal, total_base: Any, token_address: str
    ) -> None:
        supplied = to_decimal(total_base)
        if supplied is None:
            return
        expected = qty * price
        tolerance = max(abs(expected), Decimal("1")) * TOTAL_BASE_TOLERANCE
        if not supplied.is_finite() or abs(supplied - expected) > tolerance:
            logger.warning(
                f"total_base {supplied} for {token_address} differs from "
                f"amount x unit_price {expected}; using the latter"
            )

    def _commit(
        self,
        user_id: str,
        token_address: str,
        token_symbol: str,
        token_name: str,
        side: TradeSide,
        amount: Decimal,
        unit_price: Decimal,
        reference_price: Decimal,
    ) -> TradeResult:
        try:
            ledger = self._store.read_ledger(user_id)
        except PersistenceError as e:
            return rejected(
                TradeRejectionReason.PERSISTENCE_FAILURE,
                f"Could not load wallet: {e}",
            )

        holding = ledger.get_holding(token_address)
        outcome: AccountingResult
        if side == TradeSide.BUY:
            outcome = apply_buy(
                ledger.balance, holding, amount, unit_price,
                token_address, token_symbol, token_name,
            )
        else:
            outcome = apply_sell(ledger.balance, holding, amount, unit_price)

        if not outcome.ok:
            logger.info(
                f"Rejected {side.value} of {amount} {token_symbol or token_address} "
                f"for user '{user_id}': {outcome.message}"
            )
            return rejected(outcome.rejection_reason, outcome.message)

        trade = Trade(
            token_address=token_address,
            token_symbol=token_symbol or (holding.token_symbol if holding else ""),
            token_name=token_name or (holding.token_name if holding else ""),
            side=side,
            amount=amount,
            unit_price=unit_price,
            total_base=outcome.total_base,
            reference_price=reference_price,
            timestamp=self._clock(),
        )

        holdings = dict(ledger.holdings)
        if outcome.holding is None:
            holdings.pop(token_address, None)
        else:
            holdings[token_address] = outcome.holding

        try:
            self._store.write_ledger(
                user_id, outcome.balance, list(holdings.values()), [trade] + ledger.trades
            )
        except PersistenceError as e:
            logger.error(f"Trade {trade.id} for user '{user_id}' not committed: {e}")
            return rejected(
                TradeRejectionReason.PERSISTENCE_FAILURE,
                f"Trade could not be saved: {e}",
            )

        verb = "Bought" if side == TradeSide.BUY else "Sold"
        message = f"{verb} {amount} {trade.token_symbol or token_address} at {unit_price}"
        logger.info(f"{message} for user '{user_id}' (trade {trade.id})")
        return TradeResult(
            status=TradeStatus.EXECUTED,
            trade=trade,
            realized_pnl=outcome.realized_pnl,
            message=message,
        )
