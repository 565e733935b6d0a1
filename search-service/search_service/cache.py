"""
Search result cache for Search Service

Entries are keyed by a fingerprint of the whole SearchFilter, namespaced by
requester so that invalidation can be scoped to one user.
"""
import asyncio
import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis

from .config import settings
from .domain.models import ResultSet, SearchFilter
from .exceptions import CacheError

logger = logging.getLogger(__name__)

KEY_PREFIX = "search"


def fingerprint(search_filter: SearchFilter) -> str:
    """Stable SHA-256 digest of every filter field"""
    canonical = {
        "requester_id": search_filter.requester_id,
        "query_text": search_filter.query_text,
        "tags": sorted(search_filter.tags),
        "date_from": search_filter.date_from.isoformat() if search_filter.date_from else None,
        "date_to": search_filter.date_to.isoformat() if search_filter.date_to else None,
        "friend_id": search_filter.friend_id,
        "page": search_filter.page,
        "page_size": search_filter.page_size,
        "sort_mode": search_filter.sort_mode.value,
        "fuzzy": search_filter.fuzzy,
        "backend": search_filter.backend.value,
    }
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _requester_prefix(requester_id: int) -> str:
    return f"{KEY_PREFIX}:{requester_id}:"


def result_key(search_filter: SearchFilter) -> str:
    """Get cache key for a search result"""
    return f"{_requester_prefix(search_filter.requester_id)}{fingerprint(search_filter)}"


def tags_key(requester_id: int, limit: int) -> str:
    """Get cache key for a requester's popular tags"""
    return f"{_requester_prefix(requester_id)}tags:{limit}"


class CacheStore(ABC):
    """Key/value storage behind the search cache"""

    async def connect(self):
        pass

    async def disconnect(self):
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[Tuple[float, Any]]:
        """Return (written_at, payload) or None"""
        pass

    @abstractmethod
    async def set(self, key: str, payload: Any, written_at: float, ttl: int):
        pass

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        pass

    @abstractmethod
    async def clear(self) -> int:
        pass

    async def sweep(self, now: float, ttl: int) -> int:
        """Reclaim expired entries; stores with native expiry do nothing"""
        return 0


class InMemoryCacheStore(CacheStore):
    """In-process store guarded by an asyncio lock"""

    def __init__(self):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[Tuple[float, Any]]:
        async with self._lock:
            return self._entries.get(key)

    async def set(self, key: str, payload: Any, written_at: float, ttl: int):
        async with self._lock:
            self._entries[key] = (written_at, payload)

    async def delete_prefix(self, prefix: str) -> int:
        async with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            return len(keys)

    async def clear(self) -> int:
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    async def sweep(self, now: float, ttl: int) -> int:
        async with self._lock:
            expired = [
                key for key, (written_at, _) in self._entries.items()
                if now - written_at >= ttl
            ]
            for key in expired:
                del self._entries[key]
            return len(expired)


class RedisCacheStore(CacheStore):
    """Redis-backed store shared between service instances"""

    def __init__(self):
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        try:
            self.redis = await redis.from_url(
                f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}",
                password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                encoding="utf-8",
                decode_responses=True,
            )
            # Test connection
            await self.redis.ping()
            logger.info("Connected to Redis successfully")
        except Exception as e:
            logger.warning(f"Failed to connect to Redis: {e}. Continuing without cache.")
            self.redis = None

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.close()
            logger.info("Disconnected from Redis")

    async def get(self, key: str) -> Optional[Tuple[float, Any]]:
        if not self.redis:
            return None

        try:
            value = await self.redis.get(key)
            if not value:
                return None
            entry = json.loads(value)
            return entry["written_at"], entry["payload"]
        except Exception as e:
            raise CacheError(f"Error getting cache key {key}: {e}") from e

    async def set(self, key: str, payload: Any, written_at: float, ttl: int):
        if not self.redis:
            return

        try:
            await self.redis.setex(
                key, ttl, json.dumps({"written_at": written_at, "payload": payload})
            )
        except Exception as e:
            raise CacheError(f"Error setting cache key {key}: {e}") from e

    async def delete_prefix(self, prefix: str) -> int:
        if not self.redis:
            return 0

        try:
            keys = []
            async for key in self.redis.scan_iter(match=f"{prefix}*"):
                keys.append(key)

            if keys:
                await self.redis.delete(*keys)
            return len(keys)
        except Exception as e:
            raise CacheError(f"Error deleting cache pattern {prefix}*: {e}") from e

    async def clear(self) -> int:
        return await self.delete_prefix(f"{KEY_PREFIX}:")


class SearchCache:
    """TTL cache of search results and popular tags"""

    def __init__(
        self,
        store: CacheStore,
        ttl: int = settings.SEARCH_CACHE_TTL,
        sweep_interval: int = settings.SEARCH_CACHE_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self.clock = clock
        self._sweeper: Optional[asyncio.Task] = None

    async def start(self):
        """Connect the store and start the background sweep"""
        await self.store.connect()
        if self.sweep_interval > 0:
            self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info(f"Search cache started (ttl={self.ttl}s)")

    async def stop(self):
        """Stop the sweep and release the store"""
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.store.disconnect()
        logger.info("Search cache stopped")

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            await self.sweep()

    async def sweep(self) -> int:
        """Reclaim expired entries"""
        try:
            removed = await self.store.sweep(self.clock(), self.ttl)
        except CacheError as e:
            logger.error(f"Cache sweep failed: {e}")
            return 0
        if removed:
            logger.debug(f"Swept {removed} expired search cache entries")
        return removed

    async def _read(self, key: str) -> Optional[Any]:
        try:
            entry = await self.store.get(key)
        except CacheError as e:
            logger.error(f"Cache read failed, treating as miss: {e}")
            return None
        if entry is None:
            return None

        written_at, payload = entry
        if self.clock() - written_at >= self.ttl:
            return None
        return payload

    async def _write(self, key: str, payload: Any):
        try:
            await self.store.set(key, payload, self.clock(), self.ttl)
        except CacheError as e:
            logger.error(f"Cache write failed: {e}")

    async def get(self, search_filter: SearchFilter) -> Optional[ResultSet]:
        """Get cached result for the filter, None on miss or expiry"""
        payload = await self._read(result_key(search_filter))
        if payload is None:
            return None
        return ResultSet.from_dict(payload)

    async def put(self, search_filter: SearchFilter, result: ResultSet):
        """Cache a freshly computed result"""
        await self._write(result_key(search_filter), result.to_dict())

    async def get_tags(self, requester_id: int, limit: int) -> Optional[List[str]]:
        """Get cached popular tags"""
        return await self._read(tags_key(requester_id, limit))

    async def put_tags(self, requester_id: int, limit: int, tags: List[str]):
        """Cache popular tags"""
        await self._write(tags_key(requester_id, limit), list(tags))

    async def invalidate(self, requester_id: Optional[int] = None) -> int:
        """
        Drop cached entries

        Args:
            requester_id: Only drop this requester's entries; None flushes all

        Returns:
            Number of entries removed
        """
        try:
            if requester_id is None:
                removed = await self.store.clear()
            else:
                removed = await self.store.delete_prefix(_requester_prefix(requester_id))
        except CacheError as e:
            logger.error(f"Cache invalidation failed: {e}")
            return 0

        scope = "all requesters" if requester_id is None else f"requester {requester_id}"
        logger.info(f"Invalidated {removed} search cache entries for {scope}")
        return removed


def create_cache_store() -> CacheStore:
    """Build the configured cache store"""
    if settings.CACHE_BACKEND == "redis":
        return RedisCacheStore()
    return InMemoryCacheStore()
