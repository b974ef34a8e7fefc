# Storage module
"""Persistence services for ledger state."""

from basesim.storage.storage import IStorageService, JsonFileStorage
from basesim.storage.ledger_store import ILedgerStore, LocalLedgerStore
from basesim.storage.hosted import HostedLedgerStore

__all__ = [
    "IStorageService",
    "JsonFileStorage",
    "ILedgerStore",
    "LocalLedgerStore",
    "HostedLedgerStore",
]
