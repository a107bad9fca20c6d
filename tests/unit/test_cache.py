"""Tests for response cache keys and the in-memory cache."""

from llm_shield.cache import InMemoryCacheStore, build_cache_key, hash_payload, serialize_payload
from llm_shield.interfaces import CacheStore


class TestCacheKey:
    def test_layout(self):
        key = build_cache_key("summarizer", "gpt-4o", "hello", version="2.0")
        prefix, agent, version, model, digest = key.split("/")
        assert (prefix, agent, version, model) == ("llm_shield", "summarizer", "2.0", "gpt-4o")
        assert len(digest) == 64

    def test_dict_order_does_not_matter(self):
        assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})

    def test_serialization(self):
        assert serialize_payload("text") == '"text"'
        assert serialize_payload(["a", "b"]) == '["a", "b"]'
        assert serialize_payload({"b": 1, "a": "x"}) == '{"a": "x", "b": 1}'

    def test_joined_string_and_list_do_not_collide(self):
        assert hash_payload("x|y") != hash_payload(["x", "y"])
        assert build_cache_key("a", "m", "x|y") != build_cache_key("a", "m", ["x", "y"])

    def test_nested_dict_order_does_not_matter(self):
        first = {"messages": [{"role": "user", "content": "hi"}], "temperature": 0.2}
        second = {"temperature": 0.2, "messages": [{"content": "hi", "role": "user"}]}
        assert hash_payload(first) == hash_payload(second)

    def test_version_changes_key(self):
        assert build_cache_key("a", "m", "x", "1.0") != build_cache_key("a", "m", "x", "1.1")

    def test_model_changes_key(self):
        assert build_cache_key("a", "m1", "x") != build_cache_key("a", "m2", "x")


class TestInMemoryCacheStore:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryCacheStore(), CacheStore)

    def test_put_get(self):
        cache = InMemoryCacheStore()
        cache.put("k", {"answer": 42})
        assert cache.get("k") == {"answer": 42}
        assert cache.get("missing") is None

    def test_expiry(self, clock):
        cache = InMemoryCacheStore(clock=clock)
        cache.put("k", "v", ttl=10)
        clock.advance(10)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_clear(self):
        cache = InMemoryCacheStore()
        cache.put("k", "v")
        cache.clear()
        assert len(cache) == 0
