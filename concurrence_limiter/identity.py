"""Per-viewer identity: caller-supplied, cached in stable storage, or random."""
from __future__ import annotations

import json
import logging
import random
import string
from pathlib import Path
from typing import Dict, Optional, Protocol

from .config import SessionConfig

logger = logging.getLogger(__name__)

STORAGE_KEY = "vcl-player-id"
STORED_PREFIX = "ssi-"
LOCAL_PREFIX = "rdm-"
TOKEN_ALPHABET = string.ascii_lowercase + string.digits
TOKEN_LENGTH = 30


class IdentitySource(Protocol):
    def generate(self, config: SessionConfig) -> str: ...


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Process-lifetime store; stands in for per-tab session storage."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStore:
    """Small JSON document on disk. Unreadable files read as empty; write errors raise OSError."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()

    def _load(self) -> Dict[str, str]:
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Identity store %s unreadable: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) and value else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        tmp.replace(self.path)


def random_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(random.choices(TOKEN_ALPHABET, k=length))


class StorageIdentityProvider:
    """Default IdentitySource backed by an optional KeyValueStore."""

    def __init__(self, store: Optional[KeyValueStore] = None, *, key: str = STORAGE_KEY) -> None:
        self.store = store
        self.key = key

    def generate(self, config: SessionConfig) -> str:
        if config.player_id:
            return config.player_id
        return self._from_storage() or f"{LOCAL_PREFIX}{random_token()}"

    def _from_storage(self) -> Optional[str]:
        if self.store is None:
            return None

        try:
            existing = self.store.get(self.key)
        except Exception as e:
            logger.warning("Identity store read failed: %s", e)
            return None
        if existing:
            return existing

        identity = f"{STORED_PREFIX}{random_token()}"
        try:
            self.store.set(self.key, identity)
        except Exception as e:
            logger.warning("Identity store unavailable, using session-local id: %s", e)
            return None
        logger.info("Stored new player identity under %s", self.key)
        return identity


__all__ = [
    "IdentitySource",
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "StorageIdentityProvider",
    "STORAGE_KEY",
    "STORED_PREFIX",
    "LOCAL_PREFIX",
]
