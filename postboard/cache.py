import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockNotOwnedError, RedisError

from postboard.config import settings

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]

_PAGES_KEY = "pages:revalidate"


@dataclass(frozen=True)
class CachePolicy:
    """
    Freshness policy for one cached read.

    Attributes:
        ttl: Seconds an entry is served as fresh.
        swr: Additional seconds a stale entry may still be served while a
            background refresh runs (0 disables stale-while-revalidate).
        tags: Labels the entry is indexed under for ``invalidate_tags``.
    """

    ttl: float
    swr: float = 0.0
    tags: tuple[str, ...] = ()

    @property
    def lifetime(self) -> float:
        return self.ttl + self.swr


def _tag_key(tag: str) -> str:
    return f"tag:{tag}"


def _page_tag(path: str) -> str:
    return f"page:{path}"


class CacheManager:
    """
    Read-through cache backed by Redis with stale-while-revalidate and
    tag-based invalidation.

    Entries are stored as ``{"stored_at": <epoch>, "value": <json>}`` and
    expire in Redis after ``policy.lifetime`` seconds.  Each tag owns a Redis
    set of the keys cached under it.

    All public methods are safe to call even when Redis is unavailable:
    reads fall through to the loader and writes are skipped, so the
    application degrades to uncached database access.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._redis: redis.Redis | None = None
        self._clock = clock
        self._hits: int = 0
        self._stale_hits: int = 0
        self._misses: int = 0
        self._refreshing: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", settings.REDIS_URL)
        except (RedisError, OSError) as exc:
            logger.warning("Redis ping failed, cache disabled: %s", exc)
            await self._redis.aclose()
            self._redis = None

    async def disconnect(self) -> None:
        """Wait for background refreshes, then close the connection pool."""
        await self.wait_for_refreshes()
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def wait_for_refreshes(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Read-through
    # ------------------------------------------------------------------

    async def fetch(self, key: str, policy: CachePolicy, loader: Loader) -> Any:
        """
        Return the value for *key* according to *policy*.

        - younger than ``ttl``: served from cache.
        - younger than ``ttl + swr``: served from cache, and one background
          refresh is scheduled for the key.
        - otherwise (or on any cache error): *loader* runs inline and its
          result is stored.

        Exceptions raised by *loader* on the inline path propagate.
        """
        entry = await self._read(key)
        if entry is not None:
            age = self._clock() - entry["stored_at"]
            if age < policy.ttl:
                self._hits += 1
                return entry["value"]
            if age < policy.lifetime:
                self._stale_hits += 1
                await self._schedule_refresh(key, policy, loader)
                return entry["value"]

        self._misses += 1
        value = await loader()
        await self.set(key, value, policy)
        return value

    async def set(self, key: str, value: Any, policy: CachePolicy) -> None:
        """
        Store *value* under *key* for ``policy.lifetime`` seconds and index
        it under every tag.  ``None`` values and zero lifetimes are skipped.
        """
        if not self._redis or value is None:
            return
        ttl = math.ceil(policy.lifetime)
        if ttl <= 0:
            return
        try:
            envelope = json.dumps({"stored_at": self._clock(), "value": value}, default=str)
            await self._redis.set(key, envelope, ex=ttl)
            for tag in policy.tags:
                await self._redis.sadd(_tag_key(tag), key)
        except (RedisError, OSError, TypeError, ValueError) as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def _read(self, key: str) -> dict | None:
        if not self._redis:
            return None
        try:
            data = await self._redis.get(key)
        except (RedisError, OSError) as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            return None
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError as exc:
            logger.debug("Cache entry for key=%r is not valid JSON: %s", key, exc)
            return None

    # ------------------------------------------------------------------
    # Stale-while-revalidate
    # ------------------------------------------------------------------

    async def _schedule_refresh(self, key: str, policy: CachePolicy, loader: Loader) -> None:
        if key in self._refreshing or not self._redis:
            return
        # Another process may already be refreshing this key.  The lock is
        # token-owned, so once it expires a slow refresh cannot release a
        # lock taken over by someone else.
        lock = self._redis.lock(
            f"lock:{key}",
            timeout=settings.CACHE_REFRESH_LOCK_SECONDS,
            blocking=False,
            thread_local=False,
        )
        try:
            acquired = await lock.acquire()
        except (RedisError, OSError) as exc:
            logger.debug("Cache LOCK error for key=%r: %s", key, exc)
            return
        if not acquired:
            return

        self._refreshing.add(key)
        task = asyncio.create_task(self._refresh(key, policy, loader, lock))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh(self, key: str, policy: CachePolicy, loader: Loader, lock: Lock) -> None:
        try:
            value = await loader()
            await self.set(key, value, policy)
            logger.debug("Cache refreshed key=%r in background", key)
        except Exception as exc:
            # The stale value has already been served; the next read retries.
            logger.warning("Background refresh failed for key=%r: %s", key, exc)
        finally:
            self._refreshing.discard(key)
            await self._release_lock(key, lock)

    async def _release_lock(self, key: str, lock: Lock) -> None:
        try:
            await lock.release()
        except LockNotOwnedError:
            logger.debug("Refresh lock for key=%r expired before release", key)
        except (RedisError, OSError) as exc:
            logger.debug("Cache UNLOCK error for key=%r: %s", key, exc)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    async def invalidate_tags(self, tags: Iterable[str]) -> None:
        """Evict every entry indexed under any of *tags*."""
        if not self._redis:
            return
        for tag in tags:
            tag_key = _tag_key(tag)
            try:
                keys = await self._redis.smembers(tag_key)
                await self._redis.delete(*keys, tag_key)
                logger.debug("Cache invalidated %d key(s) for tag %r", len(keys), tag)
            except (RedisError, OSError) as exc:
                logger.debug("Cache INVALIDATE error for tag=%r: %s", tag, exc)

    # ------------------------------------------------------------------
    # Page regeneration
    # ------------------------------------------------------------------

    async def revalidate_path(self, path: str) -> None:
        """
        Mark the rendered output for *path* for rebuild on its next request
        and evict anything cached under the ``page:<path>`` tag.
        """
        if not self._redis:
            return
        try:
            await self._redis.sadd(_PAGES_KEY, path)
        except (RedisError, OSError) as exc:
            logger.debug("Cache REVALIDATE error for path=%r: %s", path, exc)
            return
        await self.invalidate_tags([_page_tag(path)])

    async def consume_revalidation(self, path: str) -> bool:
        """Return True if *path* was marked for rebuild, clearing the mark."""
        if not self._redis:
            return False
        try:
            return bool(await self._redis.srem(_PAGES_KEY, path))
        except (RedisError, OSError) as exc:
            logger.debug("Cache CONSUME error for path=%r: %s", path, exc)
            return False

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def stats(self) -> dict:
        """Return a snapshot of hit/miss counters."""
        served = self._hits + self._stale_hits
        total = served + self._misses
        return {
            "hits": self._hits,
            "stale_hits": self._stale_hits,
            "misses": self._misses,
            "hit_rate": round(served / total * 100, 1) if total > 0 else 0.0,
        }

    def reset_stats(self) -> None:
        self._hits = self._stale_hits = self._misses = 0


# Module-level singleton shared across all request handlers.
cache = CacheManager()
