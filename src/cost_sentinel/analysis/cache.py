"""Fingerprint-keyed result cache with expiration."""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, TypeVar

from cost_sentinel.analysis.timeseries import PreparedSeries

T = TypeVar("T")


def fingerprint(series: PreparedSeries, **params: Any) -> str:
    """
    Content hash of a prepared series plus every parameter affecting the result.

    Two calls with identical points and parameters always share a key;
    any difference in a timestamp, label, value or parameter changes it.
    """
    payload = {
        "points": [
            [p.timestamp.isoformat(), p.label, repr(p.value)] for p in series
        ],
        "params": params,
    }
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class ResultCache:
    """
    In-memory cache for computed detections and forecasts.

    Entries expire after `ttl_seconds` and the oldest entries are evicted
    beyond `max_entries`. Writes are serialized by a lock.
    """

    def __init__(
        self,
        ttl_seconds: float = 900,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Lifetime of an entry.
            max_entries: Maximum number of live entries.
            clock: Monotonic time source (injectable for tests).
        """
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def get_or_compute(self, key: str, compute: Callable[[], T]) -> T:
        """Return the cached value for key, computing and storing it on a miss."""
        cached = self.get(key)
        if cached is not None:
            return cached

        value = compute()
        self.set(key, value)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
