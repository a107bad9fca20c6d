"""Response cache keyed by agent, version, model and a hash of the input.

Bumping the version string invalidates every cached response for an agent.

Usage:
    cache = InMemoryCacheStore()
    key = build_cache_key("summarizer", "gpt-4o", {"text": "..."}, version="2.0")
    cache.put(key, "summary", ttl=3600)
"""

import json
import time
from hashlib import sha256
from typing import Any, Callable, Optional

CACHE_KEY_PREFIX = "llm_shield"


def serialize_payload(payload: Any) -> str:
    """Stable JSON form of a payload; dict key order does not matter.

    Strings are quoted like every other value, so "x|y" and ["x", "y"]
    never share a key.
    """
    return json.dumps(payload, sort_keys=True, default=str)


def hash_payload(payload: Any) -> str:
    return sha256(serialize_payload(payload).encode("utf-8")).hexdigest()


def build_cache_key(
    agent_type: str,
    model: str,
    payload: Any,
    version: str = "1.0",
) -> str:
    return "/".join([CACHE_KEY_PREFIX, agent_type, version, model, hash_payload(payload)])


class InMemoryCacheStore:
    """CacheStore backed by a dict with per-entry expiry."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, tuple[Any, Optional[float]]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    def put(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._entries[key] = (value, expires_at)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
