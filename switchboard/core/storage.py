"""
Key-value load/save boundary for state that outlives the process.

The engine only persists credentials. It treats storage as an opaque
key-value store touched at process start (load) and stop (save).
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

from switchboard.core.exceptions import StorageError

_logger = logging.getLogger(__name__)

FILE_PERMISSIONS = 0o600


class KeyValueStore(Protocol):
    def load(self, key: str) -> Any | None: ...

    def save(self, key: str, value: Any) -> None: ...


class MemoryStore:
    """In-memory store for testing and ephemeral use.

    Data persists only for the lifetime of the process.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def load(self, key: str) -> Any | None:
        return self._data.get(key)

    def save(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __repr__(self) -> str:
        return f"MemoryStore(keys={sorted(self._data)})"


class JsonFileStore:
    """File-based store holding one JSON object.

    The file is created with mode 0600 (read/write for owner only) on
    Unix systems, since it contains API keys.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            _logger.error("Corrupted store file %s: %s", self.path, e)
            raise StorageError(f"Invalid JSON in {self.path}: {e}") from e
        except OSError as e:
            _logger.error("Failed to read store file %s: %s", self.path, e)
            raise StorageError(f"Cannot read store file: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Expected a JSON object in {self.path}")
        return data

    def load(self, key: str) -> Any | None:
        return self._read_all().get(key)

    def save(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                if hasattr(os, "fchmod"):
                    os.fchmod(f.fileno(), FILE_PERMISSIONS)
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            _logger.error("Failed to write store file %s: %s", self.path, e)
            raise StorageError(f"Cannot write store file: {e}") from e

    def __repr__(self) -> str:
        return f"JsonFileStore(path={str(self.path)!r})"
