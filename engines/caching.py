"""Namespaced key/value cache with a Redis backend and an in-process fallback.

Keys are built as ``<namespace>:<prefix>:<key>``. When Redis cannot be
reached at startup, or a Redis call fails later on, the service keeps
working against a process-local map with the same TTL semantics. Those
degradations are logged as warnings and never raised to callers.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from engines.monitoring import CacheMetrics

_LOGGER = logging.getLogger(__name__)

_BACKEND_ERRORS = (RedisError, OSError, asyncio.TimeoutError)

STUDENT_PREFIX = "student"
CONTENT_PREFIX = "content"

RECOMMENDATIONS_TTL = 900
PROGRESS_TTL = 3600
HIERARCHY_TTL = 86400


class CacheService:
    """Cache-aside helper shared by the recommendation and progression engines.

    Parameters
    ----------
    redis_url:
        Connection URL for the backing Redis service. ``None`` keeps the
        service on the in-process map only.
    namespace:
        First key segment, separating this application's keys from others.
    default_ttl:
        Expiry in seconds used when ``set`` is called without one.
    timeout:
        Connect and per-operation timeout in seconds for Redis calls.
    metrics:
        Collaborator notified of every hit and miss.
    clock:
        Monotonic seconds source for fallback expiry; tests inject a fake.
    client:
        Pre-built asyncio Redis client, mostly for tests.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        namespace: str = "reved",
        default_ttl: int = 3600,
        timeout: float = 0.5,
        metrics: Optional[CacheMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
        client: Any = None,
        max_fallback_entries: int = 1000,
    ) -> None:
        self.namespace = namespace
        self.default_ttl = int(default_ttl)
        self.timeout = float(timeout)
        self.metrics = metrics
        self._clock = clock
        self._max_fallback_entries = int(max_fallback_entries)
        self._fallback: Dict[str, Tuple[str, float]] = {}
        self._connected = False
        self._redis = client
        if self._redis is None and redis_url:
            self._redis = aioredis.from_url(
                redis_url,
                socket_timeout=self.timeout,
                socket_connect_timeout=self.timeout,
                decode_responses=True,
            )

    # ----- lifecycle ---------------------------------------------------
    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        """Ping Redis once; fall back to the local map when it is unreachable."""
        if self._redis is None:
            _LOGGER.info("No Redis URL configured; using in-process cache")
            self._connected = False
            return False
        try:
            await asyncio.wait_for(self._redis.ping(), timeout=self.timeout)
        except _BACKEND_ERRORS as exc:
            _LOGGER.warning("Redis not available, using fallback cache: %s", exc)
            self._connected = False
            return False
        self._connected = True
        return True

    async def disconnect(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except _BACKEND_ERRORS as exc:
                _LOGGER.warning("Error while closing Redis connection: %s", exc)
        self._connected = False
        self._fallback.clear()

    # ----- core operations ---------------------------------------------
    def build_key(self, key: str, prefix: Optional[str] = None) -> str:
        parts = [self.namespace]
        if prefix:
            parts.append(prefix)
        parts.append(key)
        return ":".join(parts)

    async def get(self, key: str, *, prefix: Optional[str] = None) -> Any:
        full_key = self.build_key(key, prefix)
        if self._connected:
            try:
                raw = await self._redis.get(full_key)
            except _BACKEND_ERRORS as exc:
                _LOGGER.warning("Cache get failed for %s, reading fallback: %s", full_key, exc)
                return self._count(self._get_fallback(full_key))
            if raw is None:
                return self._count(None)
            try:
                return self._count(json.loads(raw))
            except (TypeError, ValueError):
                _LOGGER.error("Corrupted cache entry %s; purging", full_key)
                try:
                    await self._redis.delete(full_key)
                except _BACKEND_ERRORS:
                    pass
                return self._count(None)
        return self._count(self._get_fallback(full_key))

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        *,
        prefix: Optional[str] = None,
    ) -> bool:
        full_key = self.build_key(key, prefix)
        ttl_seconds = int(ttl) if ttl else self.default_ttl
        payload = json.dumps(value, default=str)
        if self._connected:
            try:
                await self._redis.set(full_key, payload, ex=ttl_seconds)
                return True
            except _BACKEND_ERRORS as exc:
                _LOGGER.warning("Cache set failed for %s, writing fallback: %s", full_key, exc)
                self._set_fallback(full_key, payload, ttl_seconds)
                return False
        self._set_fallback(full_key, payload, ttl_seconds)
        return True

    async def delete(self, key: str, *, prefix: Optional[str] = None) -> bool:
        full_key = self.build_key(key, prefix)
        self._fallback.pop(full_key, None)
        if self._connected:
            try:
                await self._redis.delete(full_key)
            except _BACKEND_ERRORS as exc:
                _LOGGER.warning("Cache delete failed for %s: %s", full_key, exc)
                return False
        return True

    async def invalidate_pattern(self, pattern: str, *, prefix: Optional[str] = None) -> int:
        """Delete every key matching the glob ``pattern``; return how many went."""
        full_pattern = self.build_key(pattern, prefix)
        removed = 0
        if self._connected:
            try:
                keys: List[str] = [key async for key in self._redis.scan_iter(match=full_pattern)]
                if keys:
                    removed += int(await self._redis.delete(*keys))
            except _BACKEND_ERRORS as exc:
                _LOGGER.warning("Cache pattern invalidation failed for %s: %s", full_pattern, exc)

        local = [key for key in self._fallback if fnmatch.fnmatchcase(key, full_pattern)]
        for key in local:
            del self._fallback[key]
        return removed + len(local)

    # ----- domain helpers ----------------------------------------------
    async def cache_student_recommendations(
        self, student_id: int, exercises: List[Dict[str, Any]], ttl: int = RECOMMENDATIONS_TTL
    ) -> None:
        await self.set(f"recommendations:{student_id}", exercises, ttl, prefix=STUDENT_PREFIX)

    async def get_cached_student_recommendations(self, student_id: int) -> Optional[List[Dict[str, Any]]]:
        return await self.get(f"recommendations:{student_id}", prefix=STUDENT_PREFIX)

    async def cache_student_progress(
        self, student_id: int, progress: Any, ttl: int = PROGRESS_TTL
    ) -> None:
        await self.set(f"progress:{student_id}", progress, ttl, prefix=STUDENT_PREFIX)

    async def get_cached_student_progress(self, student_id: int) -> Any:
        return await self.get(f"progress:{student_id}", prefix=STUDENT_PREFIX)

    async def cache_exercise_hierarchy(self, level: str, data: Any, ttl: int = HIERARCHY_TTL) -> None:
        await self.set(f"hierarchy:{level}", data, ttl, prefix=CONTENT_PREFIX)

    async def get_cached_exercise_hierarchy(self, level: str) -> Any:
        return await self.get(f"hierarchy:{level}", prefix=CONTENT_PREFIX)

    async def invalidate_student_cache(self, student_id: int) -> int:
        return await self.invalidate_pattern(f"*:{student_id}", prefix=STUDENT_PREFIX)

    async def stats(self) -> Dict[str, Any]:
        if not self._connected:
            return {
                "connected": False,
                "fallback_size": len(self._fallback),
                "message": "Using fallback memory cache",
            }
        try:
            memory = await self._redis.info("memory")
        except _BACKEND_ERRORS as exc:
            return {"connected": False, "error": str(exc), "fallback_size": len(self._fallback)}
        return {
            "connected": True,
            "memory": {k: v for k, v in memory.items() if k.startswith("used_memory")},
            "fallback_size": len(self._fallback),
        }

    # ----- fallback map ------------------------------------------------
    def _count(self, value: Any) -> Any:
        if self.metrics is not None:
            if value is None:
                self.metrics.record_cache_miss()
            else:
                self.metrics.record_cache_hit()
        return value

    def _get_fallback(self, full_key: str) -> Any:
        entry = self._fallback.get(full_key)
        if entry is None:
            return None
        payload, expires_at = entry
        if self._clock() >= expires_at:
            del self._fallback[full_key]
            return None
        try:
            return json.loads(payload)
        except (TypeError, ValueError):
            _LOGGER.error("Corrupted fallback cache entry %s; purging", full_key)
            del self._fallback[full_key]
            return None

    def _set_fallback(self, full_key: str, payload: str, ttl_seconds: int) -> None:
        self._fallback[full_key] = (payload, self._clock() + ttl_seconds)
        if len(self._fallback) > self._max_fallback_entries:
            self._sweep_expired()

    def _sweep_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._fallback.items() if now >= expires_at]
        for key in expired:
            del self._fallback[key]
        if expired:
            _LOGGER.debug("Evicted %d expired fallback cache entries", len(expired))
        return len(expired)
