"""Profit-and-loss reporting for paper trading.

Statistics here are derived from the trade log only, so closed positions
still show up. Realized PnL per token uses the lifetime average buy price:

    realized = sell_total - (sell_amount / max(buy_amount, eps)) * buy_total

This is coarser than the incremental figure the accounting engine reports at
sell time and the two differ once the average cost moves between sells of
the same token. Both are kept; see ``reconcile_holdings`` for the check that
does replay the engine.
"""

from __future__ import annotations

import csv
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .accounting import apply_buy, apply_sell
from .models import NEGLIGIBLE_AMOUNT, Holding, Trade, TradeSide

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
RECONCILE_TOLERANCE = Decimal("0.000001")
SUMMARY_PLACEHOLDER = "Summary unavailable right now. Your trades and PnL are still up to date."


@dataclass
class TokenPnL:
    """Lifetime trading statistics for one token.

    Attributes:
        token_address: Token contract address
        token_symbol: Symbol taken from the first trade seen
        token_name: Name taken from the first trade seen
        buy_amount: Total quantity bought
        buy_total: Total base currency spent
        sell_amount: Total quantity sold
        sell_total: Total base currency received
        avg_buy_price: buy_total / buy_amount, 0 without buys
        avg_sell_price: sell_total / sell_amount, 0 without sells
        realized_pnl: Sell proceeds minus lifetime-average cost of units sold
        trade_count: Number of trades in the log for this token
    """
    token_address: str
    token_symbol: str
    token_name: str
    buy_amount: Decimal = ZERO
    buy_total: Decimal = ZERO
    sell_amount: Decimal = ZERO
    sell_total: Decimal = ZERO
    avg_buy_price: Decimal = ZERO
    avg_sell_price: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    trade_count: int = 0


@dataclass
class PnLSummary:
    """Aggregate over all tokens' statistics."""
    total_realized_pnl: Decimal
    total_volume: Decimal
    token_count: int
    best: Optional[TokenPnL] = None
    worst: Optional[TokenPnL] = None


@dataclass
class HoldingDrift:
    """Mismatch between a stored holding and a replay of the trade log."""
    token_address: str
    stored_amount: Decimal
    replayed_amount: Decimal
    stored_invested: Decimal
    replayed_invested: Decimal
    reason: str = ""


class IPnLReporting(ABC):
    """Interface for trade-log reporting operations."""

    @abstractmethod
    def calculate_token_pnl(self, trades: Iterable[Trade]) -> List[TokenPnL]:
        """Calculate per-token lifetime statistics from the trade log."""
        ...

    @abstractmethod
    def summarize(self, stats: List[TokenPnL], trades: Iterable[Trade] = ()) -> PnLSummary:
        """Aggregate per-token statistics."""
        ...

    @abstractmethod
    def export_to_csv(self, trades: Iterable[Trade], filepath: str) -> None:
        """Export the trade log to a CSV file."""
        ...


class PnLReporter(IPnLReporting):
    """Concrete trade-log reporter."""

    def calculate_token_pnl(self, trades: Iterable[Trade]) -> List[TokenPnL]:
        """Calculate per-token lifetime statistics.

        Args:
            trades: Trade log in any order

        Returns:
            One entry per token ever traded, in order of each token's first
            trade
        """
        ordered = _chronological(trades)
        stats: Dict[str, TokenPnL] = {}

        for trade in ordered:
            entry = stats.get(trade.token_address)
            if entry is None:
                entry = TokenPnL(
                    token_address=trade.token_address,
                    token_symbol=trade.token_symbol,
                    token_name=trade.token_name or trade.token_symbol,
                )
                stats[trade.token_address] = entry
            entry.trade_count += 1
            if trade.side == TradeSide.BUY:
                entry.buy_amount += trade.amount
                entry.buy_total += trade.total_base
            else:
                entry.sell_amount += trade.amount
                entry.sell_total += trade.total_base

        for entry in stats.values():
            if entry.buy_amount > ZERO:
                entry.avg_buy_price = entry.buy_total / entry.buy_amount
            if entry.sell_amount > ZERO:
                entry.avg_sell_price = entry.sell_total / entry.sell_amount
            sold_share = entry.sell_amount / max(entry.buy_amount, NEGLIGIBLE_AMOUNT)
            entry.realized_pnl = entry.sell_total - sold_share * entry.buy_total

        return list(stats.values())

    def summarize(self, stats: List[TokenPnL], trades: Iterable[Trade] = ()) -> PnLSummary:
        """Aggregate per-token statistics.

        Args:
            stats: Output of calculate_token_pnl
            trades: Trade log, used for total volume

        Returns:
            PnLSummary with total realized PnL and best/worst tokens
        """
        total = sum((s.realized_pnl for s in stats), ZERO)
        volume = sum((t.total_base for t in trades), ZERO)
        best = max(stats, key=lambda s: s.realized_pnl) if stats else None
        worst = min(stats, key=lambda s: s.realized_pnl) if stats else None
        return PnLSummary(
            total_realized_pnl=total,
            total_volume=volume,
            token_count=len(stats),
            best=best,
            worst=worst,
        )

    def sort_by_realized_pnl(
        self, stats: List[TokenPnL], descending: bool = True
    ) -> List[TokenPnL]:
        return sorted(stats, key=lambda s: s.realized_pnl, reverse=descending)

    def sort_trades_by_timestamp(
        self, trades: Iterable[Trade], descending: bool = True
    ) -> List[Trade]:
        """Sort trades by timestamp, most recent first by default."""
        return sorted(trades, key=lambda t: t.timestamp, reverse=descending)

    def export_to_csv(self, trades: Iterable[Trade], filepath: str) -> None:
        """Export the trade log to CSV.

        Args:
            trades: Trades to export
            filepath: Path to output CSV file
        """
        fieldnames = [
            "id", "token_address", "token_symbol", "side", "amount",
            "unit_price", "total_base", "reference_price", "timestamp",
        ]

        with open(filepath, "w", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=fieldnames)
            writer.writeheader()

            for trade in trades:
                writer.writerow({
                    "id": trade.id,
                    "token_address": trade.token_address,
                    "token_symbol": trade.token_symbol,
                    "side": trade.side.value,
                    "amount": str(trade.amount),
                    "unit_price": str(trade.unit_price),
                    "total_base": str(trade.total_base),
                    "reference_price": str(trade.reference_price),
                    "timestamp": trade.timestamp.isoformat(),
                })


def _chronological(trades: Iterable[Trade]) -> List[Trade]:
    # The log is most-recent-first; reversing first keeps same-timestamp
    # trades in execution order under the stable sort.
    return sorted(reversed(list(trades)), key=lambda t: t.timestamp)


def _differs(a: Decimal, b: Decimal, tolerance: Decimal) -> bool:
    return abs(a - b) > max(abs(a), abs(b), Decimal("1")) * tolerance


def reconcile_holdings(
    holdings: Dict[str, Holding],
    trades: Iterable[Trade],
    tolerance: Decimal = RECONCILE_TOLERANCE,
) -> List[HoldingDrift]:
    """Replay the trade log through the accounting engine and compare.

    Non-blocking sanity check: mismatches are logged and returned, nothing
    is corrected.

    Args:
        holdings: Stored holdings keyed by token address
        trades: Full trade log in any order
        tolerance: Relative tolerance for amount and invested capital

    Returns:
        One HoldingDrift per token whose stored holding disagrees with the replay
    """
    unbounded = Decimal("Infinity")
    replayed: Dict[str, Optional[Holding]] = {}
    broken: Dict[str, str] = {}

    for trade in _chronological(trades):
        address = trade.token_address
        if address in broken:
            continue
        current = replayed.get(address)
        if trade.side == TradeSide.BUY:
            result = apply_buy(
                unbounded, current, trade.amount, trade.unit_price,
                address, trade.token_symbol, trade.token_name,
            )
        else:
            result = apply_sell(unbounded, current, trade.amount, trade.unit_price)
        if not result.ok:
            broken[address] = f"trade {trade.id}: {result.message}"
            continue
        replayed[address] = result.holding

    drifts: List[HoldingDrift] = []
    for address in sorted(set(holdings) | set(replayed) | set(broken)):
        stored = holdings.get(address)
        replay = replayed.get(address)
        stored_amount = stored.amount if stored else ZERO
        stored_invested = stored.total_invested if stored else ZERO
        replay_amount = replay.amount if replay else ZERO
        replay_invested = replay.total_invested if replay else ZERO

        reason = broken.get(address, "")
        if not reason:
            if _differs(stored_amount, replay_amount, tolerance):
                reason = "amount"
            elif _differs(stored_invested, replay_invested, tolerance):
                reason = "total_invested"
            elif stored and _differs(stored.total_invested, stored.cost_basis, tolerance):
                reason = "total_invested != amount x average_cost"
        if reason:
            drift = HoldingDrift(
                token_address=address,
                stored_amount=stored_amount,
                replayed_amount=replay_amount,
                stored_invested=stored_invested,
                replayed_invested=replay_invested,
                reason=reason,
            )
            logger.warning(f"Holding drift for {address}: {reason}")
            drifts.append(drift)
    return drifts


def _jsonable(stats: TokenPnL) -> Dict[str, Any]:
    return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in asdict(stats).items()}


def describe_summary(summary: PnLSummary) -> str:
    """Plain-text summary used when no remote summary is available."""
    if summary.token_count == 0:
        return "No trading data available to analyze."
    parts = [
        f"Total realized PnL across {summary.token_count} token(s): "
        f"{summary.total_realized_pnl:.4f} BASE."
    ]
    if summary.best is not None and summary.best.realized_pnl > ZERO:
        parts.append(
            f"Best performer: {summary.best.token_symbol} "
            f"({summary.best.realized_pnl:+.4f})."
        )
    if summary.worst is not None and summary.worst.realized_pnl < ZERO:
        parts.append(
            f"Weakest: {summary.worst.token_symbol} ({summary.worst.realized_pnl:+.4f})."
        )
    return " ".join(parts)


class PnLSummaryClient:
    """Requests a narrative PnL summary from a remote function.

    Generating the summary is optional; any failure yields
    ``SUMMARY_PLACEHOLDER`` instead of an exception.
    """

    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout_s: float = 15.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._url = url
        self._client = client or httpx.Client(timeout=timeout_s, headers=headers)

    def summarize(self, stats: List[TokenPnL]) -> str:
        if not stats:
            return "No trading data available to analyze."
        try:
            r = self._client.post(self._url, json={"pnlData": [_jsonable(s) for s in stats]})
            r.raise_for_status()
            summary = r.json().get("summary")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning(f"PnL summary request failed: {e}")
            return SUMMARY_PLACEHOLDER
        if not summary:
            logger.warning("PnL summary response had no summary")
            return SUMMARY_PLACEHOLDER
        return str(summary)
