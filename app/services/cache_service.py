"""Key/value cache with TTL, hash and list helpers.

``MemoryCache`` keeps everything in-process; ``RedisCache`` talks to a shared
Redis server. Neither is durable: callers treat a miss as "unknown" and carry
on, and the Redis backend fails open on connection errors.
"""

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import redis

from app.core.config import Settings
from app.core.observability import log_event

logger = logging.getLogger("productivity.cache")

NOTIFICATION_QUEUE_LIMIT = 100
SWEEP_EVERY_WRITES = 256


class BaseCache:
    backend = "base"

    def __init__(self, prefix: str = ""):
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    def get(self, key: str) -> Any | None:
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def expire(self, key: str, ttl: int) -> bool:
        raise NotImplementedError

    def ttl(self, key: str) -> int | None:
        """Seconds until expiry; ``None`` when missing or without expiry."""
        raise NotImplementedError

    def increment(self, key: str, amount: int = 1, ttl: int | None = None) -> int | None:
        """Add ``amount`` to an integer counter. ``ttl`` applies when the key is created."""
        raise NotImplementedError

    def hash_set(self, key: str, field_name: str, value: Any) -> bool:
        raise NotImplementedError

    def hash_get(self, key: str, field_name: str) -> Any | None:
        raise NotImplementedError

    def hash_get_all(self, key: str) -> dict[str, Any]:
        raise NotImplementedError

    def list_push(self, key: str, value: Any) -> int:
        """Push to the head of a list and return its new length."""
        raise NotImplementedError

    def list_range(self, key: str, start: int = 0, stop: int = -1) -> list[Any]:
        raise NotImplementedError

    def list_trim(self, key: str, start: int, stop: int) -> bool:
        raise NotImplementedError

    def list_length(self, key: str) -> int:
        raise NotImplementedError

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        return None


@dataclass
class _Entry:
    value: Any
    expires_at: float | None = None
    kind: str = "value"
    items: Any = field(default=None)


class MemoryCache(BaseCache):
    backend = "memory"

    def __init__(
        self,
        prefix: str = "",
        *,
        clock: Callable[[], float] = time.time,
        sweep_every: int = SWEEP_EVERY_WRITES,
    ):
        super().__init__(prefix)
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._sweep_every = max(sweep_every, 1)
        self._writes = 0

    def _live(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl else None

    def _store(self, key: str, entry: _Entry) -> _Entry:
        # Caller holds the lock.
        self._writes += 1
        if self._writes >= self._sweep_every:
            self._writes = 0
            self._sweep()
        self._entries[key] = entry
        return entry

    def _sweep(self) -> None:
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.expires_at is not None and entry.expires_at <= now
        ]
        for key in expired:
            del self._entries[key]

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._live(self._key(key))
            if entry is None or entry.kind != "value":
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        with self._lock:
            self._store(self._key(key), _Entry(value=value, expires_at=self._expiry(ttl)))
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(self._key(key), None) is not None

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(self._key(key)) is not None

    def expire(self, key: str, ttl: int) -> bool:
        with self._lock:
            entry = self._live(self._key(key))
            if entry is None:
                return False
            entry.expires_at = self._expiry(ttl)
            return True

    def ttl(self, key: str) -> int | None:
        with self._lock:
            entry = self._live(self._key(key))
            if entry is None or entry.expires_at is None:
                return None
            return max(int(entry.expires_at - self._clock()), 0)

    def increment(self, key: str, amount: int = 1, ttl: int | None = None) -> int | None:
        with self._lock:
            full_key = self._key(key)
            entry = self._live(full_key)
            if entry is None:
                entry = self._store(full_key, _Entry(value=0, expires_at=self._expiry(ttl)))
            entry.value = int(entry.value) + amount
            return entry.value

    def hash_set(self, key: str, field_name: str, value: Any) -> bool:
        with self._lock:
            full_key = self._key(key)
            entry = self._live(full_key)
            if entry is None or entry.kind != "hash":
                entry = self._store(full_key, _Entry(value=None, kind="hash", items={}))
            entry.items[field_name] = value
        return True

    def hash_get(self, key: str, field_name: str) -> Any | None:
        return self.hash_get_all(key).get(field_name)

    def hash_get_all(self, key: str) -> dict[str, Any]:
        with self._lock:
            entry = self._live(self._key(key))
            if entry is None or entry.kind != "hash":
                return {}
            return dict(entry.items)

    def list_push(self, key: str, value: Any) -> int:
        with self._lock:
            full_key = self._key(key)
            entry = self._live(full_key)
            if entry is None or entry.kind != "list":
                entry = self._store(full_key, _Entry(value=None, kind="list", items=[]))
            entry.items.insert(0, value)
            return len(entry.items)

    def list_range(self, key: str, start: int = 0, stop: int = -1) -> list[Any]:
        with self._lock:
            entry = self._live(self._key(key))
            if entry is None or entry.kind != "list":
                return []
            return list(_redis_slice(entry.items, start, stop))

    def list_trim(self, key: str, start: int, stop: int) -> bool:
        with self._lock:
            entry = self._live(self._key(key))
            if entry is None or entry.kind != "list":
                return False
            entry.items = list(_redis_slice(entry.items, start, stop))
            return True

    def list_length(self, key: str) -> int:
        with self._lock:
            entry = self._live(self._key(key))
            if entry is None or entry.kind != "list":
                return 0
            return len(entry.items)

    def close(self) -> None:
        with self._lock:
            self._entries.clear()


def _redis_slice(items: list[Any], start: int, stop: int) -> list[Any]:
    # Redis ranges are inclusive on both ends.
    if stop == -1:
        return items[start:]
    if stop < 0:
        return items[start : len(items) + stop + 1]
    return items[start : stop + 1]


class RedisCache(BaseCache):
    backend = "redis"

    def __init__(self, url: str, prefix: str = "", *, client: redis.Redis | None = None):
        super().__init__(prefix)
        self._client = client or redis.from_url(
            url, decode_responses=True, socket_timeout=5, socket_connect_timeout=5
        )

    def _fail(self, operation: str, exc: Exception, fallback: Any) -> Any:
        log_event(logger, logging.WARNING, "cache_error", operation=operation, error=str(exc))
        return fallback

    @staticmethod
    def _dumps(value: Any) -> str:
        return json.dumps(value, default=str)

    @staticmethod
    def _loads(raw: str | None) -> Any | None:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    def get(self, key: str) -> Any | None:
        try:
            return self._loads(self._client.get(self._key(key)))
        except redis.RedisError as exc:
            return self._fail("get", exc, None)

    def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        try:
            self._client.set(self._key(key), self._dumps(value), ex=ttl or None)
            return True
        except redis.RedisError as exc:
            return self._fail("set", exc, False)

    def delete(self, key: str) -> bool:
        try:
            return bool(self._client.delete(self._key(key)))
        except redis.RedisError as exc:
            return self._fail("delete", exc, False)

    def exists(self, key: str) -> bool:
        try:
            return bool(self._client.exists(self._key(key)))
        except redis.RedisError as exc:
            return self._fail("exists", exc, False)

    def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(self._client.expire(self._key(key), ttl))
        except redis.RedisError as exc:
            return self._fail("expire", exc, False)

    def ttl(self, key: str) -> int | None:
        try:
            remaining = self._client.ttl(self._key(key))
        except redis.RedisError as exc:
            return self._fail("ttl", exc, None)
        return int(remaining) if remaining is not None and remaining >= 0 else None

    def increment(self, key: str, amount: int = 1, ttl: int | None = None) -> int | None:
        full_key = self._key(key)
        try:
            if not ttl:
                return int(self._client.incrby(full_key, amount))
            # The counter always carries an expiry, even when a refund creates it.
            pipe = self._client.pipeline()
            pipe.set(full_key, 0, ex=ttl, nx=True)
            pipe.incrby(full_key, amount)
            _, value = pipe.execute()
            return int(value)
        except redis.RedisError as exc:
            return self._fail("increment", exc, None)

    def hash_set(self, key: str, field_name: str, value: Any) -> bool:
        try:
            self._client.hset(self._key(key), field_name, self._dumps(value))
            return True
        except redis.RedisError as exc:
            return self._fail("hash_set", exc, False)

    def hash_get(self, key: str, field_name: str) -> Any | None:
        try:
            return self._loads(self._client.hget(self._key(key), field_name))
        except redis.RedisError as exc:
            return self._fail("hash_get", exc, None)

    def hash_get_all(self, key: str) -> dict[str, Any]:
        try:
            raw = self._client.hgetall(self._key(key))
        except redis.RedisError as exc:
            return self._fail("hash_get_all", exc, {})
        return {name: self._loads(value) for name, value in raw.items()}

    def list_push(self, key: str, value: Any) -> int:
        try:
            return int(self._client.lpush(self._key(key), self._dumps(value)))
        except redis.RedisError as exc:
            return self._fail("list_push", exc, 0)

    def list_range(self, key: str, start: int = 0, stop: int = -1) -> list[Any]:
        try:
            raw = self._client.lrange(self._key(key), start, stop)
        except redis.RedisError as exc:
            return self._fail("list_range", exc, [])
        return [self._loads(item) for item in raw]

    def list_trim(self, key: str, start: int, stop: int) -> bool:
        try:
            self._client.ltrim(self._key(key), start, stop)
            return True
        except redis.RedisError as exc:
            return self._fail("list_trim", exc, False)

    def list_length(self, key: str) -> int:
        try:
            return int(self._client.llen(self._key(key)))
        except redis.RedisError as exc:
            return self._fail("list_length", exc, 0)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as exc:
            return self._fail("ping", exc, False)

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as exc:
            self._fail("close", exc, None)


def build_cache(settings: Settings) -> BaseCache:
    if settings.redis_url:
        cache = RedisCache(settings.redis_url, prefix=settings.cache_prefix)
        if cache.ping():
            log_event(logger, logging.INFO, "cache_ready", backend="redis")
            return cache
        log_event(logger, logging.WARNING, "cache_fallback", backend="memory", reason="redis_unreachable")
    return MemoryCache(prefix=settings.cache_prefix)


def notification_key(user_id: str) -> str:
    return f"notifications:{user_id}"


def push_notification(cache: BaseCache, user_id: str, notification: dict[str, Any]) -> int:
    """Queue a notification for an offline user, keeping only the newest entries."""
    key = notification_key(user_id)
    cache.list_push(key, notification)
    cache.list_trim(key, 0, NOTIFICATION_QUEUE_LIMIT - 1)
    return cache.list_length(key)


def drain_notifications(cache: BaseCache, user_id: str) -> list[dict[str, Any]]:
    key = notification_key(user_id)
    items = cache.list_range(key, 0, -1)
    if items:
        cache.delete(key)
    # Stored newest first; deliver oldest first.
    return list(reversed(items))
