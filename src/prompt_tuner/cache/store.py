"""Key-value store backends for the prompt cache.

Every backend exposes the same small surface: get, put with TTL and metadata,
delete, and a prefix listing that returns each key's metadata without fetching
the value. Listings are not filtered by expiry; callers check `expires_at`.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import redis

from prompt_tuner.errors import CacheError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class KVKey:
    """A listed key plus the lightweight metadata stored beside it."""

    name: str
    metadata: dict[str, Any] | None = None
    expiration: float | None = None


class KVStore(Protocol):
    """A TTL-capable key-value store."""

    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str, *, ttl: int, metadata: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...

    def list(self, prefix: str) -> list[KVKey]: ...


@dataclass
class InMemoryKVStore:
    """Process-local store. Expiry is recorded but left to the cache layer."""

    clock: Callable[[], float] = time.time
    _items: dict[str, tuple[str, dict[str, Any], float]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            item = self._items.get(key)
            return item[0] if item else None

    def put(self, key: str, value: str, *, ttl: int, metadata: dict[str, Any]) -> None:
        with self._lock:
            self._items[key] = (value, dict(metadata), self.clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def list(self, prefix: str) -> list[KVKey]:
        with self._lock:
            return [
                KVKey(name=key, metadata=dict(meta), expiration=expiration)
                for key, (_, meta, expiration) in sorted(self._items.items())
                if key.startswith(prefix)
            ]


@dataclass
class JsonFileKVStore:
    """JSON-file backed store so the cache survives between CLI runs.

    This is intentionally minimal and guarded by a process-local lock only.
    Concurrent processes writing the same file race under last-writer-wins.
    """

    path: Path
    clock: Callable[[], float] = time.time

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning(
                "Cache file is not valid JSON; treating as empty", extra={"path": str(self.path)}
            )
            return {}
        except OSError as e:
            raise CacheError(f"Failed to read cache file {self.path}: {e}") from e
        if not isinstance(raw, dict):
            return {}
        return raw

    def _save_unlocked(self, items: dict[str, dict[str, Any]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(items, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
            )
        except OSError as e:
            raise CacheError(f"Failed to write cache file {self.path}: {e}") from e

    def get(self, key: str) -> str | None:
        with self._lock:
            item = self._load_unlocked().get(key)
            if not isinstance(item, dict):
                return None
            value = item.get("value")
            return value if isinstance(value, str) else None

    def put(self, key: str, value: str, *, ttl: int, metadata: dict[str, Any]) -> None:
        with self._lock:
            items = self._load_unlocked()
            items[key] = {
                "value": value,
                "metadata": dict(metadata),
                "expiration": self.clock() + ttl,
            }
            self._save_unlocked(items)

    def delete(self, key: str) -> None:
        with self._lock:
            items = self._load_unlocked()
            if items.pop(key, None) is not None:
                self._save_unlocked(items)

    def list(self, prefix: str) -> list[KVKey]:
        with self._lock:
            items = self._load_unlocked()
        keys: list[KVKey] = []
        for name in sorted(items):
            if not name.startswith(prefix):
                continue
            item = items[name]
            meta = item.get("metadata") if isinstance(item, dict) else None
            expiration = item.get("expiration") if isinstance(item, dict) else None
            keys.append(
                KVKey(
                    name=name,
                    metadata=meta if isinstance(meta, dict) else None,
                    expiration=float(expiration) if isinstance(expiration, (int, float)) else None,
                )
            )
        return keys


class RedisKVStore:
    """Redis backed store with native TTL.

    Metadata lives under a parallel ``meta:`` key written in the same transaction,
    so listings never need to fetch the full value.
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        *,
        url: str = "redis://localhost:6379/0",
        meta_prefix: str = "meta:",
    ) -> None:
        self._owns_client = client is None
        self._client = client or redis.Redis.from_url(url, decode_responses=True)
        self._meta_prefix = meta_prefix

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _meta_key(self, key: str) -> str:
        return f"{self._meta_prefix}{key}"

    def get(self, key: str) -> str | None:
        try:
            value = self._client.get(key)
        except redis.RedisError as e:
            raise CacheError(f"Redis get failed for {key}: {e}") from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def put(self, key: str, value: str, *, ttl: int, metadata: dict[str, Any]) -> None:
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.set(key, value, ex=ttl)
            pipe.set(self._meta_key(key), json.dumps(metadata), ex=ttl)
            pipe.execute()
        except redis.RedisError as e:
            raise CacheError(f"Redis put failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key, self._meta_key(key))
        except redis.RedisError as e:
            raise CacheError(f"Redis delete failed for {key}: {e}") from e

    def list(self, prefix: str) -> list[KVKey]:
        try:
            meta_names = sorted(self._client.scan_iter(match=f"{self._meta_key(prefix)}*"))
            raw_values = self._client.mget(meta_names) if meta_names else []
        except redis.RedisError as e:
            raise CacheError(f"Redis list failed for {prefix}: {e}") from e

        keys: list[KVKey] = []
        for meta_name, raw in zip(meta_names, raw_values):
            if isinstance(meta_name, bytes):
                meta_name = meta_name.decode("utf-8")
            metadata: dict[str, Any] | None = None
            if raw:
                try:
                    parsed = json.loads(raw)
                except json.JSONDecodeError:
                    parsed = None
                metadata = parsed if isinstance(parsed, dict) else None
            keys.append(KVKey(name=meta_name[len(self._meta_prefix) :], metadata=metadata))
        return keys
