"""
Redis-backed cache for viewer-independent reads.

Feed pages carry per-viewer flags and are never cached; the only cached
value is the popular-tag ranking, stored under ``tags:top:<limit>`` and
dropped wholesale whenever the tag ledger moves.

Redis is optional: without a reachable server every lookup is a miss and
every write is skipped, so callers never branch on availability.
"""
import json
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from conduit.config import settings

logger = logging.getLogger(__name__)

TAGS_NAMESPACE = "tags"


class CacheManager:

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None
        self._hits = 0
        self._misses = 0
        self._invalidations = 0

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def connect(self, url: str | None = None) -> None:
        client = redis.from_url(
            url or settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await client.ping()
        except RedisError as exc:
            logger.warning("Redis unreachable, tag ranking will not be cached: %s", exc)
            await client.aclose()
            return
        self._redis = client
        logger.info("Redis connected: %s", url or settings.REDIS_URL)

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    # Raw JSON access
    # ------------------------------------------------------------------

    async def get(self, key: str) -> list | dict | None:
        """Decoded value under *key*; None on a miss or a Redis failure."""
        raw = None
        if self._redis is not None:
            try:
                raw = await self._redis.get(key)
            except RedisError as exc:
                logger.debug("Cache read failed key=%r: %s", key, exc)
        if raw is None:
            self._misses += 1
            return None
        self._hits += 1
        return json.loads(raw)

    async def set(self, key: str, value: list | dict, ttl: int | None = None) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(key, json.dumps(value), ex=ttl)
        except RedisError as exc:
            logger.debug("Cache write failed key=%r: %s", key, exc)

    async def delete_namespace(self, namespace: str) -> int:
        """Remove every key under ``<namespace>:``; returns how many went."""
        if self._redis is None:
            return 0
        try:
            keys = [k async for k in self._redis.scan_iter(match=f"{namespace}:*")]
            if keys:
                await self._redis.delete(*keys)
        except RedisError as exc:
            logger.debug("Cache purge failed namespace=%r: %s", namespace, exc)
            return 0
        return len(keys)

    # ------------------------------------------------------------------
    # Tag ranking
    # ------------------------------------------------------------------

    @staticmethod
    def top_tags_key(limit: int) -> str:
        return f"{TAGS_NAMESPACE}:top:{limit}"

    async def get_top_tags(self, limit: int) -> list[str] | None:
        return await self.get(self.top_tags_key(limit))

    async def store_top_tags(self, limit: int, tags: list[str]) -> None:
        await self.set(self.top_tags_key(limit), tags, ttl=settings.CACHE_TTL_TAGS)

    async def invalidate_tags(self) -> None:
        """Forget every cached ranking; called after any ledger increment."""
        self._invalidations += 1
        dropped = await self.delete_namespace(TAGS_NAMESPACE)
        if dropped:
            logger.debug("Dropped %d cached tag ranking(s)", dropped)

    @property
    def stats(self) -> dict:
        lookups = self._hits + self._misses
        return {
            "connected": self.connected,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups * 100, 1) if lookups else 0.0,
            "invalidations": self._invalidations,
        }


cache = CacheManager()
