"""
Cache Store for orchestrated AI responses

MemoryCacheStore - process-local TTL store with lazy eviction on read plus a
periodic background sweep.
RedisCacheStore - shared store so several orchestrator processes reuse each
other's answers; degrades to a MemoryCacheStore whenever Redis misbehaves.

Lifetimes are given in milliseconds; expiry uses a monotonic clock.
"""

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .types import ExpectedShape
from ..exceptions import CacheUnavailableError
from ..logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


def make_cache_key(prompt: str, model: str, kind: str, expected_shape: ExpectedShape) -> str:
    """
    Deterministic key for a request.

    Fields are length-prefixed before hashing so ("ab", "c") and ("a", "bc")
    can never produce the same digest input.
    """
    h = hashlib.sha256()
    for part in (prompt, model, kind, ExpectedShape.parse(expected_shape).value):
        encoded = part.encode("utf-8")
        h.update(f"{len(encoded)}:".encode("ascii"))
        h.update(encoded)
    return f"ai:{kind}:{h.hexdigest()}"


class CacheStore(Protocol):
    """What the orchestrator needs from a cache backend"""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any, lifetime_ms: int) -> None:
        ...

    def start(self) -> None:
        ...

    async def close(self) -> None:
        ...


@dataclass
class CacheEntry:
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class MemoryCacheStore:
    """
    In-process TTL cache.

    All operations run on the event loop thread without awaiting in between,
    so no lock is needed under asyncio.

    Usage:
        cache = MemoryCacheStore()
        cache.start()              # background sweep, needs a running loop
        await cache.set("k", {"fullText": "..."}, 60_000)
        await cache.get("k")
        await cache.close()
    """

    def __init__(
        self,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            logger.debug("Cache EXPIRED", extra={"key": key})
            return None
        logger.debug("Cache HIT", extra={"key": key})
        return entry.value

    async def set(self, key: str, value: Any, lifetime_ms: int) -> None:
        self._entries[key] = CacheEntry(value, self._clock() + lifetime_ms / 1000.0)
        logger.debug("Cache SET", extra={"key": key, "lifetime_ms": lifetime_ms})

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed"""
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} entries")
        return len(expired)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep on the running loop (idempotent)"""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None


class RedisCacheStore:
    """
    Redis-backed store shared across processes.

    Values are stored as JSON with a PX expiry, so Redis does the eviction.
    Any Redis failure is logged and the call is served from the local
    fallback store instead; nothing is raised to the caller.
    """

    def __init__(
        self,
        client: Any,
        key_prefix: str = "metamind:",
        fallback: Optional[MemoryCacheStore] = None
    ):
        self._client = client
        self.key_prefix = key_prefix
        self.fallback = fallback or MemoryCacheStore()

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "metamind:", **kwargs: Any) -> "RedisCacheStore":
        client = aioredis.from_url(url, decode_responses=True)
        return cls(client, key_prefix=key_prefix, **kwargs)

    def _k(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def _redis_get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(self._k(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError("get", str(e)) from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CacheUnavailableError("get", f"undecodable entry: {e}") from e

    async def _redis_set(self, key: str, value: Any, lifetime_ms: int) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CacheUnavailableError("set", f"value is not JSON serializable: {e}") from e
        try:
            await self._client.set(self._k(key), raw, px=max(int(lifetime_ms), 1))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError("set", str(e)) from e

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self._redis_get(key)
        except CacheUnavailableError as e:
            logger.warning(f"Redis unavailable, using local cache: {e}")
            return await self.fallback.get(key)
        if value is not None:
            logger.debug("Redis cache HIT", extra={"key": key})
            return value
        # Entries written while Redis was down only exist locally
        return await self.fallback.get(key)

    async def set(self, key: str, value: Any, lifetime_ms: int) -> None:
        try:
            await self._redis_set(key, value, lifetime_ms)
        except CacheUnavailableError as e:
            logger.warning(f"Redis unavailable, caching locally: {e}")
            await self.fallback.set(key, value, lifetime_ms)

    def start(self) -> None:
        self.fallback.start()

    async def close(self) -> None:
        await self.fallback.close()
        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing Redis client: {e}")
