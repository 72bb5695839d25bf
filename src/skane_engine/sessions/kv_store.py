"""Device-local key/value storage used by the guest cache.

Architecture
~~~~~~~~~~~~
* **KeyValueStore** — abstract string store (browser storage, keychain, …).
* **InMemoryKeyValueStore** — reference backend for tests and servers.
* **ScopedJsonStore** — JSON encoding plus a key prefix over any backend.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class KeyValueStore(ABC):
    """Contract for a synchronous string key/value backend."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored string, or ``None`` if the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete *key*; a missing key is not an error."""


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class ScopedJsonStore:
    """JSON values under ``<scope>:<key>`` in a :class:`KeyValueStore`.

    Unreadable JSON is reported as missing, never raised.
    """

    def __init__(self, backend: KeyValueStore, scope: str = "skane") -> None:
        self._backend = backend
        self._scope = scope

    def _key(self, key: str) -> str:
        return f"{self._scope}:{key}"

    def get(self, key: str) -> Any:
        raw = self._backend.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("kv_store.corrupt_value", key=self._key(key))
            return None

    def set(self, key: str, value: Any) -> None:
        self._backend.set(self._key(key), json.dumps(value, ensure_ascii=False))

    def remove(self, key: str) -> None:
        self._backend.remove(self._key(key))
