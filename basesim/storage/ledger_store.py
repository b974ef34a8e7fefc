"""Ledger store contract and the local-device implementation.

A ledger store persists one user's balance, holdings and trade log as a
unit. Every backend satisfies the same contract so the trade executor can be
built once against whichever store is injected.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, List

from basesim.errors import PersistenceError
from basesim.trading.models import STARTING_BALANCE, Holding, LedgerState, Trade
from basesim.trading.portfolio import LedgerSerializer

from .storage import IStorageService

logger = logging.getLogger(__name__)


class ILedgerStore(ABC):
    """Interface for ledger persistence backends."""

    @abstractmethod
    def read_ledger(self, user_id: str) -> LedgerState:
        """Read the ledger for a user.

        A user with no stored ledger reads as the starting state.

        Raises:
            PersistenceError: If the backing store cannot be read
        """
        ...

    @abstractmethod
    def write_ledger(
        self,
        user_id: str,
        balance: Decimal,
        holdings: Iterable[Holding],
        trades: List[Trade],
    ) -> None:
        """Replace the stored ledger for a user in one logical write.

        Args:
            user_id: Owner of the ledger
            balance: New base-currency balance
            holdings: Complete set of open holdings
            trades: Complete trade log, most recent first

        Raises:
            PersistenceError: If the write fails; stored state is unchanged
        """
        ...

    @abstractmethod
    def reset_ledger(self, user_id: str) -> None:
        """Restore the starting balance and clear holdings and trades.

        Raises:
            PersistenceError: If the reset fails
        """
        ...


class LocalLedgerStore(ILedgerStore):
    """Ledger store keeping one JSON document per user on the local device.

    The whole ledger is a single document, so a write replaces balance,
    holdings and trades together.
    """

    def __init__(
        self,
        storage: IStorageService,
        key_prefix: str = "ledger",
        starting_balance: Decimal = STARTING_BALANCE,
    ) -> None:
        self._storage = storage
        self._key_prefix = key_prefix
        self._starting_balance = starting_balance

    def _key(self, user_id: str) -> str:
        return f"{self._key_prefix}_{user_id}"

    def read_ledger(self, user_id: str) -> LedgerState:
        data = self._storage.load(self._key(user_id))
        if data is None:
            return LedgerState.initial(user_id, self._starting_balance)
        try:
            return LedgerSerializer.deserialize(data)
        except (KeyError, ValueError, ArithmeticError, TypeError) as e:
            logger.error(f"Malformed ledger document for user '{user_id}': {e}")
            raise PersistenceError(f"Malformed ledger for '{user_id}'") from e

    def write_ledger(
        self,
        user_id: str,
        balance: Decimal,
        holdings: Iterable[Holding],
        trades: List[Trade],
    ) -> None:
        ledger = LedgerState(
            user_id=user_id,
            balance=balance,
            holdings={h.token_address: h for h in holdings},
            trades=list(trades),
        )
        self._storage.save(self._key(user_id), LedgerSerializer.serialize(ledger))

    def reset_ledger(self, user_id: str) -> None:
        ledger = LedgerState.initial(user_id, self._starting_balance)
        self._storage.save(self._key(user_id), LedgerSerializer.serialize(ledger))
        logger.info(f"Ledger reset for user '{user_id}'")
