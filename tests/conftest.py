from __future__ import annotations

import pytest

from basesim.storage import JsonFileStorage, LocalLedgerStore
from basesim.trading import TradeExecutor


@pytest.fixture
def ledger_store(tmp_path):
    return LocalLedgerStore(JsonFileStorage(tmp_path / "ledgers"))


@pytest.fixture
def executor(ledger_store):
    return TradeExecutor(ledger_store)
