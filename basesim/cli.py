"""Command-line front end for the paper-trading ledger.

Usage:
    python -m basesim --user alice balance
    python -m basesim --user alice buy 0xToken --spend 100 --symbol TKN
    python -m basesim --user alice sell 0xToken 25
    python -m basesim --user alice pnl --csv trades.csv
"""

from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal
from typing import List, Optional

from basesim.config import Settings, build_price_source, build_store
from basesim.data.providers import IPriceSource
from basesim.errors import BasesimError
from basesim.trading import (
    PnLReporter,
    PnLSummaryClient,
    PortfolioView,
    TradeExecutor,
    TradeResult,
    TradeService,
)
from basesim.trading.reporting import describe_summary
from basesim.util.env import env_str, fix_ssl_env
from basesim.util.logs import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="basesim", description="Paper trading on Base tokens")
    parser.add_argument("--user", default=env_str("BASESIM_USER", "local"), help="ledger owner id")
    parser.add_argument("--backend", choices=["local", "hosted"], help="override BASESIM_BACKEND")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("balance", help="show balance and holdings")

    buy = sub.add_parser("buy", help="buy a token at the current price")
    buy.add_argument("token", help="token contract address")
    size = buy.add_mutually_exclusive_group(required=True)
    size.add_argument("--amount", help="number of tokens to buy")
    size.add_argument("--spend", help="base currency to spend")
    buy.add_argument("--symbol", default="")
    buy.add_argument("--name", default="")

    sell = sub.add_parser("sell", help="sell a token at the current price")
    sell.add_argument("token", help="token contract address")
    sell.add_argument("amount", nargs="?", help="number of tokens to sell")
    sell.add_argument("--all", action="store_true", dest="sell_all", help="sell the whole holding")

    history = sub.add_parser("history", help="show the trade log")
    history.add_argument("--limit", type=int, default=20)

    pnl = sub.add_parser("pnl", help="per-token profit and loss")
    pnl.add_argument("--csv", help="also export the trade log to this file")
    pnl.add_argument("--summary", action="store_true", help="request a narrative summary")

    sub.add_parser("reset", help="reset the ledger to the starting balance")
    return parser


def _print_result(result: TradeResult) -> int:
    if not result.ok:
        print(f"Trade rejected: {result.message}")
        return 1
    print(result.message)
    if result.realized_pnl is not None:
        print(f"Realized PnL: {result.realized_pnl:+.6f} BASE")
    return 0


def _cmd_balance(executor: TradeExecutor, user_id: str, prices: IPriceSource) -> int:
    view = PortfolioView(executor.get_ledger(user_id))
    print(f"Balance: {view.get_balance():.6f} BASE")
    holdings = view.get_holdings()
    if not holdings:
        print("No holdings.")
        return 0
    marks = {}
    for address, holding in holdings.items():
        try:
            marks[address] = prices.get_unit_price(address).price
        except BasesimError as e:
            logger.warning(f"No price for {holding.token_symbol or address}: {e}")
    for address, holding in holdings.items():
        line = (
            f"{holding.token_symbol or address}: {holding.amount} "
            f"@ avg {holding.average_cost:.8f} (invested {holding.total_invested:.6f})"
        )
        if address in marks:
            pnl = view.get_unrealized_pnl(address, marks[address])
            pct = view.get_unrealized_pnl_pct(address, marks[address])
            line += f" unrealized {pnl:+.6f} ({pct:+.2f}%)"
        print(line)
    print(f"Portfolio value: {view.get_portfolio_value(marks):.6f} BASE")
    return 0


def _cmd_history(executor: TradeExecutor, user_id: str, limit: int) -> int:
    trades = executor.get_ledger(user_id).trades[:max(limit, 0)]
    if not trades:
        print("No trades yet.")
        return 0
    for t in trades:
        print(
            f"{t.timestamp:%Y-%m-%d %H:%M:%S} {t.side.value.upper():4} "
            f"{t.amount} {t.token_symbol or t.token_address} @ {t.unit_price:.8f} "
            f"= {t.total_base:.6f} BASE"
        )
    return 0


def _cmd_pnl(
    executor: TradeExecutor, user_id: str, settings: Settings, csv_path: Optional[str], summary: bool
) -> int:
    trades = executor.get_ledger(user_id).trades
    reporter = PnLReporter()
    stats = reporter.sort_by_realized_pnl(reporter.calculate_token_pnl(trades))
    if not stats:
        print("No trades yet.")
    for s in stats:
        avg_buy = f"{s.avg_buy_price:.6f}" if s.avg_buy_price > 0 else "--"
        avg_sell = f"{s.avg_sell_price:.6f}" if s.avg_sell_price > 0 else "--"
        print(
            f"{s.token_symbol or s.token_address}: entry {avg_buy} exit {avg_sell} "
            f"bought {s.buy_amount} sold {s.sell_amount} PnL {s.realized_pnl:+.4f}"
        )
    if csv_path:
        reporter.export_to_csv(trades, csv_path)
        print(f"Exported {len(trades)} trades to {csv_path}")
    if summary:
        if settings.summary_url:
            print(PnLSummaryClient(settings.summary_url, settings.supabase_key).summarize(stats))
        else:
            print(describe_summary(reporter.summarize(stats, trades)))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    if args.backend:
        settings.backend = args.backend
    fix_ssl_env()
    setup_logging(settings.log_level)

    user_id = args.user

    try:
        executor = TradeExecutor(build_store(settings))
        if args.command == "balance":
            return _cmd_balance(executor, user_id, build_price_source(settings))
        if args.command == "buy":
            service = TradeService(executor, build_price_source(settings))
            return _print_result(service.submit_buy(
                user_id, args.token, args.symbol, args.name,
                amount=args.amount, base_amount=args.spend,
            ))
        if args.command == "sell":
            service = TradeService(executor, build_price_source(settings))
            return _print_result(service.submit_sell(
                user_id, args.token, amount=args.amount, sell_all=args.sell_all,
            ))
        if args.command == "history":
            return _cmd_history(executor, user_id, args.limit)
        if args.command == "pnl":
            return _cmd_pnl(executor, user_id, settings, args.csv, args.summary)
        if args.command == "reset":
            executor.reset(user_id)
            print(f"Ledger reset to {settings.starting_balance} BASE")
            return 0
    except BasesimError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return 1
