"""Keyed query cache with invalidation, plus a Redis invalidation bus.

QueryCache holds backend reads for this process (role/grants per clinic
membership, role templates per clinic). Writers call `invalidate()` only
after the backend acknowledged the write; subscribers (permission
providers) are awaited before `invalidate()` returns, so the caller's next
check already sees the new data.

InvalidationBus fans invalidations out to the other worker processes over
Redis pub/sub.

Cache keys:
    access:{clinic_id}:{user_id}
    template:{clinic_id}:{role}
"""

import asyncio
import fnmatch
import json
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis

from clinic_access.config import settings

logger = logging.getLogger(__name__)

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def access_key(clinic_id: int, user_id: str) -> str:
    return f"access:{clinic_id}:{user_id}"


def template_key(clinic_id: int, role: str) -> str:
    return f"template:{clinic_id}:{role}"


Subscriber = Callable[[str], Awaitable[None]]


class QueryCache:
    """In-process cache of backend reads with pattern invalidation."""

    def __init__(self, ttl: int | None = None, bus: "InvalidationBus | None" = None):
        self.ttl = settings.query_cache_ttl if ttl is None else ttl
        self.bus = bus
        self._entries: dict[str, tuple[float, Any]] = {}
        self._subscribers: list[Subscriber] = []
        # Bumped on every invalidation; a load that started before an
        # invalidation must not repopulate the cache with what it read.
        self._generation = 0

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry[0] > time.monotonic()

    async def fetch(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for `key`, loading it on a miss."""
        entry = self._entries.get(key)
        if entry is not None and entry[0] > time.monotonic():
            logger.debug(f"Cache HIT: {key}")
            return entry[1]

        logger.debug(f"Cache MISS: {key}")
        generation = self._generation
        value = await loader()
        if generation == self._generation:
            self._entries[key] = (time.monotonic() + self.ttl, value)
        return value

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register an invalidation callback; returns the unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def invalidate(self, pattern: str, *, broadcast: bool = True) -> int:
        """Drop entries matching a glob pattern (e.g. "access:12:*").

        Awaits every subscriber, then publishes the pattern to the other
        processes unless `broadcast` is False.
        """
        keys = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
        for key in keys:
            del self._entries[key]
        self._generation += 1
        logger.info(f"Invalidated {len(keys)} cache keys matching {pattern}")

        for callback in list(self._subscribers):
            await callback(pattern)

        if broadcast and self.bus is not None:
            await self.bus.publish(pattern)
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()
        self._generation += 1


class InvalidationBus:
    """Redis pub/sub fan-out of cache invalidation patterns."""

    def __init__(
        self,
        channel: str | None = None,
        redis_client: Optional[redis.Redis] = None,
        retry_seconds: float | None = None,
    ):
        self.channel = channel or settings.invalidation_channel
        self.retry_seconds = (
            settings.invalidation_retry_seconds if retry_seconds is None else retry_seconds
        )
        self.origin = uuid.uuid4().hex
        self._redis = redis_client

    async def _client(self) -> redis.Redis:
        return self._redis if self._redis is not None else await get_redis()

    async def ping(self) -> bool:
        client = await self._client()
        return await client.ping()

    async def publish(self, pattern: str) -> bool:
        message = json.dumps({"origin": self.origin, "pattern": pattern})
        try:
            client = await self._client()
            await client.publish(self.channel, message)
            return True
        except redis.RedisError as e:
            # Other processes fall back to TTL expiry
            logger.warning(f"Failed to publish invalidation for {pattern}: {e}")
            return False

    async def handle_message(self, cache: QueryCache, message: dict) -> bool:
        """Apply one pub/sub message to the local cache."""
        if message.get("type") != "message":
            return False
        try:
            payload = json.loads(message["data"])
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed invalidation message: {message!r}")
            return False
        if not isinstance(payload, dict) or not payload.get("pattern"):
            return False
        if payload.get("origin") == self.origin:
            return False

        await cache.invalidate(payload["pattern"], broadcast=False)
        return True

    async def listen(self, cache: QueryCache) -> None:
        """Consume invalidations until cancelled, reconnecting with backoff.

        After a reconnect the whole local cache is invalidated, since
        messages published while disconnected are lost.
        """
        delay = self.retry_seconds
        connected_before = False
        while True:
            try:
                client = await self._client()
                pubsub = client.pubsub()
                try:
                    await pubsub.subscribe(self.channel)
                    logger.info(f"Listening for cache invalidations on {self.channel}")
                    if connected_before:
                        await cache.invalidate("*", broadcast=False)
                    connected_before = True
                    delay = self.retry_seconds
                    async for message in pubsub.listen():
                        await self.handle_message(cache, message)
                finally:
                    await pubsub.aclose()
                logger.warning(f"Invalidation channel {self.channel} closed")
            except redis.RedisError as e:
                logger.warning(f"Invalidation listener lost Redis: {e}")
            except Exception:
                logger.exception("Unhandled error in invalidation listener")

            logger.info(f"Reconnecting invalidation listener in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, settings.invalidation_max_retry_seconds)
