"""
Identity key-value store.

Durable per-wallet storage used for attempt state (AttemptLimiter) and for the
"recent captures" wall. Two implementations:

- InMemoryKeyValueStore: process-local, used in tests and when no path is set.
- JsonFileKeyValueStore: one JSON document on disk, rewritten atomically
  (temp file + os.replace) after every change.

Every read-modify-write goes through update(), which runs under the store lock
so two rounds for the same wallet can never both consume the last attempt.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import config

logger = logging.getLogger(__name__)

RECENT_CAPTURES_KEY = "photoWall"


class IdentityKeyValueStore(ABC):
    """Key-value store with an atomic update primitive."""

    def __init__(self):
        self._lock = threading.RLock()

    @abstractmethod
    def _load(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def _save(self, key: str, value: Optional[Any]) -> None:
        """Persist value; None deletes the key."""

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return copy.deepcopy(self._load(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._save(key, copy.deepcopy(value))

    def delete(self, key: str) -> None:
        with self._lock:
            self._save(key, None)

    def update(self, key: str, fn: Callable[[Optional[Any]], Any]) -> Any:
        """
        Atomically replace the value at key with fn(current). fn receives a
        copy (None when absent); returning None deletes the key. Returns the
        new value.
        """
        with self._lock:
            new_value = fn(copy.deepcopy(self._load(key)))
            self._save(key, copy.deepcopy(new_value))
            return new_value

    @abstractmethod
    def keys(self) -> List[str]:
        ...


class InMemoryKeyValueStore(IdentityKeyValueStore):

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Any] = {}

    def _load(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def _save(self, key: str, value: Optional[Any]) -> None:
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)


class JsonFileKeyValueStore(IdentityKeyValueStore):
    """
    Whole-document JSON store. The file is read once and kept in memory; this
    process is the single writer.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self._data: Dict[str, Any] = self._read_file()

    def _read_file(self) -> Dict[str, Any]:
        if not os.path.isfile(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Identity store %s unreadable (%s); starting empty", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_file(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".identity_store.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _load(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def _save(self, key: str, value: Optional[Any]) -> None:
        if value is None:
            if key not in self._data:
                return
            self._data.pop(key)
        else:
            self._data[key] = value
        self._write_file()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)


def append_recent_capture(store: IdentityKeyValueStore, entry: Dict[str, Any], max_entries: int = 50) -> List[Dict[str, Any]]:
    """Prepend a capture summary to the wall (most recent first), capped at max_entries."""
    def _prepend(current):
        entries = current if isinstance(current, list) else []
        return [entry] + entries[: max(0, max_entries - 1)]

    return store.update(RECENT_CAPTURES_KEY, _prepend)


def get_recent_captures(store: IdentityKeyValueStore, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    entries = store.get(RECENT_CAPTURES_KEY)
    if not isinstance(entries, list):
        return []
    return entries[:limit] if limit else entries


def create_identity_store(path: Optional[str] = None) -> IdentityKeyValueStore:
    """JSON file store when a path is given, in-memory store otherwise."""
    if path:
        return JsonFileKeyValueStore(path)
    return InMemoryKeyValueStore()


# Global store instance
identity_store: Optional[IdentityKeyValueStore] = None


def get_identity_store() -> IdentityKeyValueStore:
    """Get or create the global store (IDENTITY_STORE_PATH, in-memory when empty)."""
    global identity_store

    if identity_store is None:
        identity_store = create_identity_store(config.IDENTITY_STORE_PATH)
        logger.info("Identity store ready: %s", config.IDENTITY_STORE_PATH or "in-memory")

    return identity_store
