"""In-process metrics collector used by the cache and request layers."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Optional, Protocol

_LOGGER = logging.getLogger(__name__)


class CacheMetrics(Protocol):
    def record_cache_hit(self) -> None: ...

    def record_cache_miss(self) -> None: ...


@dataclass
class SlowOperation:
    name: str
    duration_ms: float
    recorded_at: float


class MetricsCollector:
    """Counters for cache traffic and a bounded log of slow operations.

    Recording never raises and never waits on I/O.
    """

    def __init__(self, slow_threshold_ms: float = 1000.0, max_slow_operations: int = 500) -> None:
        self.slow_threshold_ms = float(slow_threshold_ms)
        self._lock = threading.Lock()
        self._cache_hits = 0
        self._cache_misses = 0
        self._requests = 0
        self._errors = 0
        self._slow: Deque[SlowOperation] = deque(maxlen=max_slow_operations)

    def record_cache_hit(self) -> None:
        with self._lock:
            self._cache_hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self._cache_misses += 1

    def record_request(self, *, failed: bool = False) -> None:
        with self._lock:
            self._requests += 1
            if failed:
                self._errors += 1

    def record_slow_operation(self, name: str, duration_ms: float) -> bool:
        """Keep ``name`` if it crossed the slow threshold; return whether it did."""
        if duration_ms < self.slow_threshold_ms:
            return False
        with self._lock:
            self._slow.append(SlowOperation(name, float(duration_ms), time.time()))
        _LOGGER.warning("Slow operation %s took %.2fms", name, duration_ms)
        return True

    def cache_hit_rate(self) -> float:
        with self._lock:
            total = self._cache_hits + self._cache_misses
            return self._cache_hits / total if total else 0.0

    def error_rate(self) -> float:
        with self._lock:
            return self._errors / self._requests if self._requests else 0.0

    def snapshot(self, last_slow: Optional[int] = 10) -> Dict[str, Any]:
        with self._lock:
            slow = list(self._slow)
            hits, misses = self._cache_hits, self._cache_misses
            requests, errors = self._requests, self._errors
        total = hits + misses
        if last_slow is not None:
            slow = slow[-last_slow:]
        return {
            "cache": {
                "hits": hits,
                "misses": misses,
                "hit_rate": round(hits / total, 4) if total else 0.0,
            },
            "requests": {
                "count": requests,
                "errors": errors,
                "error_rate": round(errors / requests, 4) if requests else 0.0,
            },
            "slow_operations": [
                {"name": op.name, "duration_ms": round(op.duration_ms, 2), "recorded_at": op.recorded_at}
                for op in slow
            ],
        }

    def reset(self) -> None:
        with self._lock:
            self._cache_hits = 0
            self._cache_misses = 0
            self._requests = 0
            self._errors = 0
            self._slow.clear()
