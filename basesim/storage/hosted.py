"""Hosted relational ledger store.

Talks to a Supabase (PostgREST) project over HTTP. Reads select from the
``profiles``, ``user_holdings`` and ``trades`` tables; writes and resets go
through the ``write_ledger`` / ``reset_ledger`` database functions so that
balance, holdings and trades change inside one transaction. The functions are
defined in ``supabase/migrations``.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import httpx

from basesim.errors import PersistenceError
from basesim.trading.models import STARTING_BALANCE, Holding, LedgerState, Trade, TradeSide

from .ledger_store import ILedgerStore

logger = logging.getLogger(__name__)


def _num(value: Any) -> Decimal:
    # PostgREST renders numeric columns as JSON numbers
    return Decimal(str(value))


_FRACTION = re.compile(r"\.(\d+)")


def _timestamp(value: str) -> datetime:
    # Postgres trims trailing zeros from fractional seconds (".12"), which
    # fromisoformat only accepts from Python 3.11 on
    value = _FRACTION.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], value, count=1)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def holding_to_row(holding: Holding) -> Dict[str, Any]:
    return {
        "token_address": holding.token_address,
        "token_symbol": holding.token_symbol,
        "token_name": holding.token_name,
        "amount": str(holding.amount),
        "average_buy_price": str(holding.average_cost),
        "total_invested": str(holding.total_invested),
    }


def holding_from_row(row: Dict[str, Any]) -> Holding:
    return Holding(
        token_address=row["token_address"],
        token_symbol=row.get("token_symbol") or "",
        token_name=row.get("token_name") or "",
        amount=_num(row["amount"]),
        average_cost=_num(row["average_buy_price"]),
        total_invested=_num(row["total_invested"]),
    )


def trade_to_row(trade: Trade) -> Dict[str, Any]:
    return {
        "id": trade.id,
        "token_address": trade.token_address,
        "token_symbol": trade.token_symbol,
        "token_name": trade.token_name,
        "trade_type": trade.side.value,
        "amount": str(trade.amount),
        "price_per_token": str(trade.unit_price),
        "total_base": str(trade.total_base),
        "base_price_usd": str(trade.reference_price),
        "created_at": trade.timestamp.isoformat(),
    }


def trade_from_row(row: Dict[str, Any]) -> Trade:
    return Trade(
        id=str(row["id"]),
        token_address=row["token_address"],
        token_symbol=row.get("token_symbol") or "",
        token_name=row.get("token_name") or "",
        side=TradeSide(row["trade_type"]),
        amount=_num(row["amount"]),
        unit_price=_num(row["price_per_token"]),
        total_base=_num(row["total_base"]),
        reference_price=_num(row["base_price_usd"]),
        timestamp=_timestamp(row["created_at"]),
    )


class HostedLedgerStore(ILedgerStore):
    """Ledger store backed by a hosted Postgres database via PostgREST."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: float = 5.0,
        starting_balance: Decimal = STARTING_BALANCE,
        client: Optional[httpx.Client] = None,
    ) -> None:
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/") + "/rest/v1",
            timeout=timeout_s,
            headers=headers,
        )
        self._starting_balance = starting_balance

    def close(self) -> None:
        self._client.close()

    def _get(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        r = self._client.get(f"/{table}", params=params)
        r.raise_for_status()
        return r.json() or []

    def _rpc(self, function: str, payload: Dict[str, Any]) -> None:
        r = self._client.post(f"/rpc/{function}", json=payload)
        r.raise_for_status()

    def read_ledger(self, user_id: str) -> LedgerState:
        try:
            profiles = self._get("profiles", {"id": f"eq.{user_id}", "select": "base_balance"})
            holding_rows = self._get(
                "user_holdings",
                {"user_id": f"eq.{user_id}", "select": "*", "order": "created_at.desc"},
            )
            trade_rows = self._get(
                "trades",
                {"user_id": f"eq.{user_id}", "select": "*", "order": "created_at.desc,id.desc"},
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to read ledger for user '{user_id}': {e}")
            raise PersistenceError(f"Failed to read ledger for '{user_id}': {e}") from e

        try:
            if profiles and profiles[0].get("base_balance") is not None:
                balance = _num(profiles[0]["base_balance"])
            else:
                balance = self._starting_balance
            holdings = [holding_from_row(row) for row in holding_rows]
            trades = [trade_from_row(row) for row in trade_rows]
        except (KeyError, ValueError, ArithmeticError, TypeError) as e:
            logger.error(f"Malformed ledger rows for user '{user_id}': {e}")
            raise PersistenceError(f"Malformed ledger rows for '{user_id}'") from e

        return LedgerState(
            user_id=user_id,
            balance=balance,
            holdings={h.token_address: h for h in holdings},
            trades=trades,
        )

    def write_ledger(
        self,
        user_id: str,
        balance: Decimal,
        holdings: Iterable[Holding],
        trades: List[Trade],
    ) -> None:
        payload = {
            "p_user_id": user_id,
            "p_balance": str(balance),
            "p_holdings": [holding_to_row(h) for h in holdings],
            "p_trades": [trade_to_row(t) for t in trades],
        }
        try:
            self._rpc("write_ledger", payload)
        except httpx.HTTPError as e:
            logger.error(f"Failed to write ledger for user '{user_id}': {e}")
            raise PersistenceError(f"Failed to write ledger for '{user_id}': {e}") from e

    def reset_ledger(self, user_id: str) -> None:
        payload = {"p_user_id": user_id, "p_starting_balance": str(self._starting_balance)}
        try:
            self._rpc("reset_ledger", payload)
        except httpx.HTTPError as e:
            logger.error(f"Failed to reset ledger for user '{user_id}': {e}")
            raise PersistenceError(f"Failed to reset ledger for '{user_id}': {e}") from e
        logger.info(f"Ledger reset for user '{user_id}'")
