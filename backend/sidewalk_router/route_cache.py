from __future__ import annotations

import copy
import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any

from .settings import settings


@dataclass
class _CachedRoute:
    graph_version: str
    stored_at: float
    payload: dict[str, Any]


class RouteCacheStore:
    """TTL + LRU cache of successful route payloads, keyed per graph version."""

    def __init__(self, *, ttl_s: int, max_entries: int) -> None:
        self._ttl_s = max(1, int(ttl_s))
        self._max_entries = max(1, int(max_entries))
        self._lock = Lock()
        self._entries: OrderedDict[str, _CachedRoute] = OrderedDict()
        self._counters = {"hits": 0, "misses": 0, "evictions": 0, "stale_dropped": 0}

    def _fresh(self, entry: _CachedRoute, now: float) -> bool:
        return (now - entry.stored_at) <= self._ttl_s

    def get(self, key: str) -> dict[str, Any] | None:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not self._fresh(entry, now):
                del self._entries[key]
                entry = None
            if entry is None:
                self._counters["misses"] += 1
                return None
            self._entries.move_to_end(key)
            self._counters["hits"] += 1
            payload = entry.payload
        # Callers may decorate the payload; never hand out the stored object.
        return copy.deepcopy(payload)

    def set(self, key: str, value: dict[str, Any], *, graph_version: str = "") -> None:
        entry = _CachedRoute(graph_version=graph_version, stored_at=time.monotonic(), payload=copy.deepcopy(value))
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            overflow = len(self._entries) - self._max_entries
            for _ in range(max(0, overflow)):
                self._entries.popitem(last=False)
                self._counters["evictions"] += 1

    def drop_other_versions(self, graph_version: str) -> int:
        """Remove entries computed against any graph other than ``graph_version``."""
        with self._lock:
            stale = [key for key, entry in self._entries.items() if entry.graph_version != graph_version]
            for key in stale:
                del self._entries[key]
            self._counters["stale_dropped"] += len(stale)
        return len(stale)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                **self._counters,
                "ttl_s": self._ttl_s,
                "max_entries": self._max_entries,
            }


ROUTE_CACHE = RouteCacheStore(
    ttl_s=settings.route_cache_ttl_s,
    max_entries=settings.route_cache_max_entries,
)


def route_cache_key(*, graph_version: str, request: dict[str, Any]) -> str:
    blob = json.dumps({"graph_version": graph_version, "request": request}, sort_keys=True, default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def get_cached_route(key: str) -> dict[str, Any] | None:
    return ROUTE_CACHE.get(key)


def set_cached_route(key: str, value: dict[str, Any], *, graph_version: str) -> None:
    ROUTE_CACHE.set(key, value, graph_version=graph_version)


def drop_stale_routes(graph_version: str) -> int:
    return ROUTE_CACHE.drop_other_versions(graph_version)


def clear_route_cache() -> int:
    return ROUTE_CACHE.clear()


def route_cache_stats() -> dict[str, int]:
    return ROUTE_CACHE.snapshot()
