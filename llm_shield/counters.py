"""Shared counter stores for budget and breaker state.

Two implementations of the CounterStore protocol:
- InMemoryCounterStore: dict with expiry, lock-protected. Single process only.
- RedisCounterStore: the production store, shared by every process.

Values come back as strings (Redis is used with decode_responses=True and
the in-memory store mirrors that), so readers convert with float()/int().

Usage:
    store = RedisCounterStore.from_url("redis://localhost:6379/0")
    store.incr("budget:global:2026-10-17", 0.25, ttl=86400)
"""

import threading
import time
from typing import Any, Callable, Optional

import redis

from llm_shield.config import KEY_NAMESPACE, REDIS_URL
from llm_shield.logging.structured import get_logger

logger = get_logger(__name__)


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


class InMemoryCounterStore:
    """Thread-safe in-process counter store with per-key expiry.

    Expired keys are dropped lazily on access. The clock is injectable so
    tests can move time forward without sleeping.
    """

    def __init__(
        self,
        namespace: str = KEY_NAMESPACE,
        clock: Callable[[], float] = time.time,
    ):
        self.namespace = namespace
        self._clock = clock
        self._data: dict[str, tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def _expires_at(self, ttl: Optional[int]) -> Optional[float]:
        return self._clock() + ttl if ttl else None

    def _live(self, full_key: str) -> Optional[tuple[str, Optional[float]]]:
        entry = self._data.get(full_key)
        if entry is None:
            return None
        if entry[1] is not None and entry[1] <= self._clock():
            del self._data[full_key]
            return None
        return entry

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(self._key(key))
            return entry[0] if entry else None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._data[self._key(key)] = (str(value), self._expires_at(ttl))

    def set_if_absent(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        full = self._key(key)
        with self._lock:
            if self._live(full) is not None:
                return False
            self._data[full] = (str(value), self._expires_at(ttl))
            return True

    def incr(self, key: str, amount: float = 1, ttl: Optional[int] = None) -> float:
        """Increment a numeric value. Expiry is only set when the key is created."""
        full = self._key(key)
        with self._lock:
            entry = self._live(full)
            if entry is None:
                value = float(amount)
                expires_at = self._expires_at(ttl)
            else:
                value = float(entry[0]) + amount
                expires_at = entry[1]
            self._data[full] = (_format_number(value), expires_at)
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(self._key(key), None)

    def delete_prefix(self, prefix: str) -> int:
        full_prefix = self._key(prefix)
        with self._lock:
            doomed = [k for k in self._data if k.startswith(full_prefix)]
            for k in doomed:
                del self._data[k]
        return len(doomed)

    def ttl(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._live(self._key(key))
            if entry is None or entry[1] is None:
                return None
            return max(int(round(entry[1] - self._clock())), 0)

    def keys(self, prefix: str = "") -> list[str]:
        """Live keys under a prefix, without the namespace."""
        full_prefix = self._key(prefix)
        strip = len(self._key(""))
        with self._lock:
            return sorted(
                k[strip:]
                for k in list(self._data)
                if k.startswith(full_prefix) and self._live(k) is not None
            )

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisCounterStore:
    """Counter store backed by Redis.

    Increments run as INCRBYFLOAT inside a MULTI/EXEC pipeline together with
    a TTL read; expiry is applied only to keys that have none yet.
    set_if_absent maps to SET NX EX.
    """

    def __init__(self, client: redis.Redis, namespace: str = KEY_NAMESPACE):
        self.client = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str = REDIS_URL, namespace: str = KEY_NAMESPACE) -> "RedisCounterStore":
        client = redis.Redis.from_url(url, decode_responses=True)
        logger.info("counter_store_connected", backend="redis", namespace=namespace)
        return cls(client, namespace=namespace)

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def get(self, key: str) -> Optional[str]:
        return self.client.get(self._key(key))

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.client.set(self._key(key), value, ex=ttl)

    def set_if_absent(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return bool(self.client.set(self._key(key), value, nx=True, ex=ttl))

    def incr(self, key: str, amount: float = 1, ttl: Optional[int] = None) -> float:
        full = self._key(key)
        pipe = self.client.pipeline()
        pipe.incrbyfloat(full, amount)
        pipe.ttl(full)
        value, remaining = pipe.execute()
        # -1 means the key exists without an expiry, i.e. we just created it
        if ttl and remaining == -1:
            self.client.expire(full, ttl)
        return float(value)

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))

    def delete_prefix(self, prefix: str) -> int:
        deleted = 0
        for full in self.client.scan_iter(match=f"{self._key(prefix)}*", count=500):
            deleted += self.client.delete(full)
        return deleted

    def ttl(self, key: str) -> Optional[int]:
        remaining = self.client.ttl(self._key(key))
        if remaining is None or remaining < 0:
            return None
        return int(remaining)
