"""
Search result caches with a fixed time-to-live
"""
import redis.asyncio as redis
from collections import OrderedDict
from dataclasses import astuple, dataclass, field, is_dataclass
from typing import Any, Callable, Hashable, List, Optional, Type
from pydantic import BaseModel
import hashlib
import json
import logging
import threading
import time

from .config import settings
from .schemas import EventRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchQueryKey:
    """Fingerprint of an event search. Caller location is not part of it."""
    subject_name: str
    subject_category: str
    timeframe: str
    location_scope: Optional[str] = None

    def __str__(self) -> str:
        # Log label only; field values may contain the separator
        return "|".join([
            self.subject_name,
            self.subject_category,
            self.timeframe,
            self.location_scope or "",
        ])


@dataclass
class CacheEntry:
    """Cached payload and the clock reading when it was stored"""
    payload: List[Any]
    stored_at: float = field(default=0.0)


class ResultCache:
    """
    In-process TTL cache.

    Entries expire lazily: an entry older than the TTL is dropped the next
    time it is read. With max_entries > 0 the least recently used entry is
    evicted once the cache is full.
    """

    def __init__(
        self,
        ttl: float = settings.SEARCH_CACHE_TTL,
        max_entries: int = settings.SEARCH_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[CacheEntry]:
        """Return the entry for key if it is still fresh"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at > self.ttl:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry

    def put(self, key: Hashable, payload: List[Any]) -> CacheEntry:
        """Store payload under key, replacing any previous entry"""
        entry = CacheEntry(payload=list(payload), stored_at=self._clock())
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            if self.max_entries and len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted}")
        return entry

    def clear(self) -> None:
        """Drop every entry"""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class AsyncResultCache:
    """Async facade over an in-process ResultCache"""

    def __init__(self, cache: Optional[ResultCache] = None):
        self.cache = cache or ResultCache()

    async def connect(self):
        pass

    async def disconnect(self):
        pass

    async def get(self, key: Hashable) -> Optional[CacheEntry]:
        return self.cache.get(key)

    async def put(self, key: Hashable, payload: List[Any]) -> None:
        self.cache.put(key, payload)

    async def clear(self) -> None:
        self.cache.clear()


class RedisResultCache:
    """Redis-backed result cache sharing entries across worker processes"""

    def __init__(
        self,
        model: Type[BaseModel],
        ttl: int = settings.SEARCH_CACHE_TTL,
        prefix: str = "events",
        client: Optional[redis.Redis] = None,
    ):
        self.model = model
        self.ttl = ttl
        self.prefix = prefix
        self.client: Optional[redis.Redis] = client

    async def connect(self):
        """Connect to Redis"""
        if self.client:
            return

        try:
            self.client = redis.from_url(
                f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}",
                password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                encoding="utf-8",
                decode_responses=True,
            )
            await self.client.ping()
            logger.info("Redis result cache connected successfully")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.client = None

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.client:
            await self.client.close()
            logger.info("Redis result cache disconnected")

    def _key(self, key: Hashable) -> str:
        """Redis key for a cache key, hashed from its JSON-encoded fields"""
        fields = astuple(key) if is_dataclass(key) else [str(key)]
        digest = hashlib.sha256(json.dumps(fields).encode("utf-8")).hexdigest()
        return f"cache:{self.prefix}:{digest}"

    async def get(self, key: Hashable) -> Optional[CacheEntry]:
        """Get a fresh entry, or None on miss or Redis failure"""
        if not self.client:
            return None

        try:
            data = await self.client.get(self._key(key))
            if not data:
                return None
            raw = json.loads(data)
            if time.time() - raw["stored_at"] > self.ttl:
                return None
            payload = [self.model.model_validate(item) for item in raw["payload"]]
            return CacheEntry(payload=payload, stored_at=raw["stored_at"])
        except Exception as e:
            logger.error(f"Failed to read result cache: {e}")
            return None

    async def put(self, key: Hashable, payload: List[Any]) -> None:
        """Store payload under key with the cache TTL"""
        if not self.client:
            return

        try:
            data = {
                "stored_at": time.time(),
                "payload": [item.model_dump(mode="json") for item in payload],
            }
            await self.client.set(self._key(key), json.dumps(data), ex=self.ttl)
        except Exception as e:
            logger.error(f"Failed to write result cache: {e}")

    async def clear(self) -> None:
        """Delete every entry under this cache's prefix"""
        if not self.client:
            return

        try:
            async for redis_key in self.client.scan_iter(match=f"cache:{self.prefix}:*"):
                await self.client.delete(redis_key)
        except Exception as e:
            logger.error(f"Failed to clear result cache: {e}")


def build_search_cache():
    """Create the process-wide event search cache for the configured backend"""
    if settings.CACHE_BACKEND == "redis":
        return RedisResultCache(model=EventRecord)
    return AsyncResultCache(ResultCache())


# Global cache instance, created once per process
search_cache = build_search_cache()


async def get_cache():
    """Dependency for getting cache instance"""
    return search_cache
