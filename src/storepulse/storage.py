# src/storepulse/storage.py
"""Key-value storage for tracker state.

Two scopes mirror browser storage:
- SESSION: lives as long as the browsing context (in-memory)
- DEVICE: survives restarts (JSON file on disk, or in-memory for tests)

Values are JSON-serialized on write, so readers always get a private copy
and unserializable values are rejected at the boundary.

Error policy:
    Storage failures (disk errors, corrupt files, unserializable values)
    never raise to callers. Storage logs a warning and behaves as a no-op:
    get() returns the default, set()/remove() return False. Callers decide
    whether to fall back to in-memory state.
"""

from __future__ import annotations

import json
import os
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)


class Scope(StrEnum):
    """Storage scope for a key."""

    SESSION = "session"
    DEVICE = "device"


class StorageBackend(Protocol):
    """Raw string store behind one scope.

    Backends may raise OSError or ValueError; Storage handles both.
    """

    def read(self, key: str) -> str | None: ...

    def write(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryBackend:
    """In-memory backend. Used for SESSION scope and for tests."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def read(self, key: str) -> str | None:
        return self._data.get(key)

    def write(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileBackend:
    """Backend persisting all keys to a single JSON object file.

    The file is read once and cached; every write rewrites it atomically
    (temp file + os.replace) so a crash mid-write leaves the old content.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._cache: dict[str, str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if self._cache is None:
            if self._path.exists():
                loaded = json.loads(self._path.read_text(encoding="utf-8"))
                if not isinstance(loaded, dict):
                    raise ValueError(f"Storage file {self._path} does not contain a JSON object")
                self._cache = {str(k): str(v) for k, v in loaded.items()}
            else:
                self._cache = {}
        return self._cache

    def _persist(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, self._path)

    def read(self, key: str) -> str | None:
        return self._load().get(key)

    def write(self, key: str, value: str) -> None:
        data = dict(self._load())
        data[key] = value
        self._persist(data)
        self._cache = data

    def delete(self, key: str) -> None:
        data = dict(self._load())
        if data.pop(key, None) is None:
            return
        self._persist(data)
        self._cache = data


class Storage:
    """Two-scope JSON key-value store with failure isolation.

    Example:
        storage = Storage(device=JsonFileBackend(Path("device.json")))
        storage.set("device_id", "0b7c...", Scope.DEVICE)
        storage.get("device_id", Scope.DEVICE)
    """

    def __init__(
        self,
        *,
        session: StorageBackend | None = None,
        device: StorageBackend | None = None,
    ) -> None:
        self._backends: dict[Scope, StorageBackend] = {
            Scope.SESSION: session if session is not None else MemoryBackend(),
            Scope.DEVICE: device if device is not None else MemoryBackend(),
        }

    def backend(self, scope: Scope) -> StorageBackend:
        return self._backends[scope]

    def get(self, key: str, scope: Scope, default: Any = None) -> Any:
        """Return the decoded value for key, or default if absent or unreadable."""
        try:
            raw = self._backends[scope].read(key)
            if raw is None:
                return default
            return json.loads(raw)
        except (OSError, ValueError) as e:
            logger.warning("Storage read failed", key=key, scope=str(scope), error=str(e))
            return default

    def set(self, key: str, value: Any, scope: Scope) -> bool:
        """Store value under key. Returns False (after logging) on failure."""
        try:
            encoded = json.dumps(value)
            self._backends[scope].write(key, encoded)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Storage write failed", key=key, scope=str(scope), error=str(e))
            return False
        return True

    def remove(self, key: str, scope: Scope) -> bool:
        """Delete key. Returns False (after logging) on failure."""
        try:
            self._backends[scope].delete(key)
        except (OSError, ValueError) as e:
            logger.warning("Storage remove failed", key=key, scope=str(scope), error=str(e))
            return False
        return True
