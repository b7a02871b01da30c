"""
Caching utilities for the health records service.
In-memory TTL cache used to avoid re-running identical LLM analyses.
"""

import asyncio
import hashlib
import json
import time
from functools import wraps
from threading import Lock
from typing import Any, Dict, Optional

from .config import settings


class CacheManager:
    """Thread-safe in-memory cache with TTL support."""

    def __init__(self, enabled: Optional[bool] = None, ttl: Optional[int] = None):
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()
        self._enabled = settings.enable_caching if enabled is None else enabled
        self._ttl = settings.cache_ttl if ttl is None else ttl

    def _is_expired(self, entry: Dict[str, Any]) -> bool:
        return time.time() > entry.get("expires_at", 0)

    def _make_key(self, prefix: str, *args, **kwargs) -> str:
        """Generate cache key from arguments."""
        key_data = {
            "args": args,
            "kwargs": sorted(kwargs.items()) if kwargs else {},
        }
        key_string = json.dumps(key_data, sort_keys=True, default=str)
        key_hash = hashlib.md5(key_string.encode()).hexdigest()
        return f"{prefix}:{key_hash}"

    def get(self, key: str) -> Optional[Any]:
        if not self._enabled:
            return None

        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if self._is_expired(entry):
                del self._cache[key]
                return None
            return entry["value"]

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if not self._enabled:
            return

        ttl = ttl or self._ttl
        with self._lock:
            self._cache[key] = {
                "value": value,
                "expires_at": time.time() + ttl,
                "created_at": time.time(),
            }

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total_entries = len(self._cache)
            expired_entries = sum(
                1 for entry in self._cache.values() if self._is_expired(entry)
            )
            return {
                "total_entries": total_entries,
                "active_entries": total_entries - expired_entries,
                "expired_entries": expired_entries,
                "enabled": self._enabled,
                "ttl_seconds": self._ttl,
            }


# Global cache instance
cache_manager = CacheManager()


def cached(prefix: str, ttl: Optional[int] = None, skip_first_arg: bool = False):
    """
    Decorator for caching function results.

    Args:
        prefix: Cache key prefix
        ttl: Time to live in seconds (uses default if None)
        skip_first_arg: Leave ``self`` out of the key for bound methods

    Callers pass ``refresh=True`` to skip the lookup and overwrite the entry.
    """

    def decorator(func):
        def _key(args, kwargs) -> str:
            key_args = args[1:] if skip_first_arg else args
            return cache_manager._make_key(prefix, *key_args, **kwargs)

        @wraps(func)
        async def async_wrapper(*args, refresh: bool = False, **kwargs):
            key = _key(args, kwargs)
            cached_result = None if refresh else cache_manager.get(key)
            if cached_result is not None:
                return cached_result

            result = await func(*args, **kwargs)
            cache_manager.set(key, result, ttl)
            return result

        @wraps(func)
        def sync_wrapper(*args, refresh: bool = False, **kwargs):
            key = _key(args, kwargs)
            cached_result = None if refresh else cache_manager.get(key)
            if cached_result is not None:
                return cached_result

            result = func(*args, **kwargs)
            cache_manager.set(key, result, ttl)
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def get_cache_stats() -> Dict[str, Any]:
    return cache_manager.get_stats()


def clear_cache() -> None:
    cache_manager.clear()
