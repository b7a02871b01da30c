"""
Test caching utilities.
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

import time

import pytest

from healthrecords.utils.cache import CacheManager, cached, clear_cache, get_cache_stats


class TestCacheManager:
    """Test cache manager functionality."""

    def test_cache_basic_operations(self):
        cache = CacheManager(enabled=True)

        cache.set("test_key", "test_value", ttl=60)
        assert cache.get("test_key") == "test_value"
        assert cache.get("non_existent") is None

        cache.delete("test_key")
        assert cache.get("test_key") is None

    def test_cache_ttl_expiration(self):
        cache = CacheManager(enabled=True)

        cache.set("expire_key", "expire_value", ttl=0.1)
        assert cache.get("expire_key") == "expire_value"

        time.sleep(0.2)
        assert cache.get("expire_key") is None

    def test_cache_key_generation(self):
        cache = CacheManager(enabled=True)

        key1 = cache._make_key("prefix", "arg1", kwarg1="value1")
        key2 = cache._make_key("prefix", "arg1", kwarg1="value1")
        key3 = cache._make_key("prefix", "arg1", kwarg1="value2")

        assert key1 == key2
        assert key1 != key3
        assert key1.startswith("prefix:")

    def test_disabled_cache_stores_nothing(self):
        cache = CacheManager(enabled=False)

        cache.set("key", "value")

        assert cache.get("key") is None
        assert cache.get_stats()["enabled"] is False

    def test_cache_stats(self):
        cache = CacheManager(enabled=True, ttl=60)
        cache.set("a", 1)
        cache.set("b", 2, ttl=0.01)
        time.sleep(0.05)

        stats = cache.get_stats()

        assert stats["total_entries"] == 2
        assert stats["active_entries"] == 1
        assert stats["expired_entries"] == 1
        assert stats["ttl_seconds"] == 60


class TestCachedDecorator:
    """Test the ``cached`` decorator on plain and bound functions."""

    def test_sync_function_is_called_once(self):
        calls = []

        @cached("square", ttl=60)
        def square(value):
            calls.append(value)
            return value * value

        assert square(4) == 16
        assert square(4) == 16
        assert calls == [4]

    @pytest.mark.asyncio
    async def test_async_method_ignores_self_in_key(self):
        class Service:
            def __init__(self):
                self.calls = 0

            @cached("service_lookup", ttl=60, skip_first_arg=True)
            async def lookup(self, term):
                self.calls += 1
                return {"term": term}

        first, second = Service(), Service()

        assert await first.lookup("glucose") == {"term": "glucose"}
        assert await second.lookup("glucose") == {"term": "glucose"}
        assert first.calls == 1
        assert second.calls == 0

    def test_clear_cache_resets_stats(self):
        @cached("echo", ttl=60)
        def echo(value):
            return value

        echo("x")
        assert get_cache_stats()["total_entries"] >= 1

        clear_cache()
        assert get_cache_stats()["total_entries"] == 0
