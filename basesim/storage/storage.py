"""Key/value document storage on the local device.

``JsonFileStorage`` keeps one pretty-printed JSON file per key. Ledger
documents are the main tenant; anything JSON-serializable can be stored.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

from basesim.errors import PersistenceError

logger = logging.getLogger(__name__)


class IStorageService(ABC):
    """Document store addressed by string keys."""

    @abstractmethod
    def save(self, key: str, data: Any) -> None:
        """Store ``data`` under ``key``, replacing any previous document.

        Raises:
            PersistenceError: If nothing could be written
        """
        ...

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        """Return the document under ``key``, or None if there is none.

        Raises:
            PersistenceError: If a document exists but cannot be read back
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the document under ``key``; a missing key is not an error."""
        ...


class JsonFileStorage(IStorageService):
    """One JSON file per key under ``base_path``.

    A save writes a sibling temp file and renames it over the target, so a
    crash mid-write leaves the previous document in place.
    """

    def __init__(self, base_path: str | Path) -> None:
        self._base_path = Path(base_path)
        self._base_path.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _get_file_path(self, key: str) -> Path:
        # percent-encoding keeps distinct keys in distinct files
        safe_key = quote(key, safe="")
        return self._base_path / f"{safe_key}.json"

    def save(self, key: str, data: Any) -> None:
        file_path = self._get_file_path(key)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{file_path.stem}.", suffix=".tmp", dir=self._base_path
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, file_path)
        except (TypeError, ValueError, OSError) as e:
            logger.error(f"Failed to save data for key '{key}': {e}")
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise PersistenceError(f"Failed to save '{key}': {e}") from e

    def load(self, key: str) -> Optional[Any]:
        """Read the document for ``key``.

        Unlike a missing file, a file that is present but undecodable is an
        error: returning None would make a damaged ledger look brand new.
        """
        file_path = self._get_file_path(key)
        if not file_path.exists():
            return None

        try:
            with file_path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupted data for key '{key}': {e}")
            raise PersistenceError(f"Corrupted data for '{key}'") from e
        except OSError as e:
            logger.error(f"Failed to load data for key '{key}': {e}")
            raise PersistenceError(f"Failed to load '{key}': {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._get_file_path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete data for key '{key}': {e}")
            raise PersistenceError(f"Failed to delete '{key}': {e}") from e
