"""Key/value persistence for state that has to survive restarts.

Only two things are ever written: the session key blob and the bearer token.
Values are plain strings, the same contract as browser local storage.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def _default_serializer(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def _default_deserializer(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding unreadable persisted value")
        return None


class KeyValueStore(ABC):
    """String key/value store."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class InMemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """Store backed by a single JSON object on disk. Every write rewrites the file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        data = _default_deserializer(self.path.read_text(encoding="utf-8"))
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class SessionStateStore:
    """
    Persists the session key identifier as one JSON blob under a fixed key.

    Balance and transient flags are never persisted. Writes replace the blob
    (last writer wins).
    """

    def __init__(self, store: KeyValueStore, storage_key: str = "ten-session-key-state"):
        self.store = store
        self.storage_key = storage_key

    def load_session_key(self) -> Optional[str]:
        blob = _default_deserializer(self.store.get(self.storage_key))
        if not isinstance(blob, dict):
            return None
        session_key = blob.get("sessionKey")
        if not session_key or session_key == "0x":
            return None
        return session_key

    def save_session_key(self, session_key: str) -> None:
        self.store.set(self.storage_key, _default_serializer({"sessionKey": session_key}))

    def clear(self) -> None:
        self.store.remove(self.storage_key)


def build_store(config: Optional[Settings] = None, path: str | Path | None = None) -> KeyValueStore:
    """File-backed store at ``path`` or the configured storage path, otherwise in-memory."""
    config = config or default_settings
    if path:
        return JsonFileStore(path)
    if config.has_storage_path:
        return JsonFileStore(config.storage_path)
    return InMemoryStore()


__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    "SessionStateStore",
    "build_store",
]
