"""Tiered response cache.

Entries are stored as serialized JSON under a key built from the endpoint
name and the normalized region query, with a TTL chosen per tier. Storage
is delegated to a fastapi-cache backend, so a value is written in a single
backend operation and a reader sees either the old entry or the new one.
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis
from fastapi_cache.backends import Backend
from fastapi_cache.backends.inmemory import InMemoryBackend, Value
from fastapi_cache.backends.redis import RedisBackend

from gfw_gateway.config import (
    CACHE_PREFIX,
    CACHE_TTL_LONG_SECONDS,
    CACHE_TTL_MEDIUM_SECONDS,
    CACHE_TTL_SHORT_SECONDS,
    COORDINATE_PRECISION,
    RADIUS_PRECISION,
)
from gfw_gateway.forest.models import RegionQuery

logger = logging.getLogger(__name__)


class CacheTier(str, Enum):
    """TTL tier, chosen per endpoint by how volatile its data is."""
    SHORT = "short"  # alert feeds
    MEDIUM = "medium"  # composite analysis
    LONG = "long"  # historical loss statistics


DEFAULT_TIER_TTLS: Dict[CacheTier, int] = {
    CacheTier.SHORT: CACHE_TTL_SHORT_SECONDS,
    CacheTier.MEDIUM: CACHE_TTL_MEDIUM_SECONDS,
    CacheTier.LONG: CACHE_TTL_LONG_SECONDS,
}


def _fixed(value: float, precision: int) -> str:
    # Adding 0.0 folds -0.0 into 0.0 before formatting
    return f"{round(value, precision) + 0.0:.{precision}f}"


def build_cache_key(endpoint: str, query: RegionQuery, precision: int = COORDINATE_PRECISION) -> str:
    """Derive a deterministic key for a validated region query.

    Coordinates and radius are rendered with a fixed number of decimals so
    that ``0``, ``0.0`` and ``-0.0`` land on the same entry.
    """
    date_range = query.date_range
    parts = [
        endpoint,
        f"lat={_fixed(query.coordinate.lat, precision)}",
        f"lng={_fixed(query.coordinate.lng, precision)}",
        f"radius={_fixed(query.radius, RADIUS_PRECISION)}",
        f"start={date_range.start_date.isoformat() if date_range.start_date else ''}",
        f"end={date_range.end_date.isoformat() if date_range.end_date else ''}",
    ]
    return ":".join(parts)


class ExpiringMemoryBackend(InMemoryBackend):
    """In-process backend with its own store and an injectable clock.

    Every write first purges expired entries, so keys that are never read
    again do not pile up.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._store: Dict[str, Value] = {}
        self._lock = asyncio.Lock()

    @property
    def _now(self) -> float:
        return self.clock()

    def _purge_expired(self) -> None:
        now = self._now
        expired = [key for key, value in self._store.items() if value.ttl_ts < now]
        for key in expired:
            del self._store[key]

    async def set(self, key: str, value: bytes, expire: Optional[int] = None) -> None:
        async with self._lock:
            self._purge_expired()
            self._store[key] = Value(value, self._now + (expire or 0))


def redis_backend(url: str) -> RedisBackend:
    """Redis backend for deployments running several worker processes."""
    return RedisBackend(redis.from_url(url))


class ResponseCache:
    """Process-wide cache of JSON response bodies with three TTL tiers.

    Backend errors degrade to cache misses instead of failing requests.
    """

    def __init__(
        self,
        backend: Optional[Backend] = None,
        prefix: str = CACHE_PREFIX,
        tier_ttls: Optional[Dict[CacheTier, int]] = None,
    ):
        self.backend = backend if backend is not None else ExpiringMemoryBackend()
        self.prefix = prefix
        self.tier_ttls = {**DEFAULT_TIER_TTLS, **(tier_ttls or {})}

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the cached body, or ``None`` on a miss or an expired entry."""
        try:
            raw = await self.backend.get(self._key(key))
        except redis.RedisError as e:
            logger.error(f"Cache read failed for {key}: {e}")
            return None
        if raw is None:
            logger.debug(f"Cache miss: {key}")
            return None
        logger.debug(f"Cache hit: {key}")
        return json.loads(raw)

    async def put(self, key: str, value: Dict[str, Any], tier: CacheTier) -> None:
        tier = CacheTier(tier)
        ttl = self.tier_ttls[tier]
        try:
            await self.backend.set(self._key(key), json.dumps(value).encode("utf-8"), expire=ttl)
        except redis.RedisError as e:
            logger.error(f"Cache write failed for {key}: {e}")
            return
        logger.debug(f"Cached {key} in {tier.value} tier for {ttl}s")

    async def close(self) -> None:
        if isinstance(self.backend, RedisBackend):
            await self.backend.redis.close()
