# backend/app/repositories/cache.py
"""
Injectable in-memory cache owned by a single UnitOfWork.

Entries expire after a TTL. Each namespace (one per repository) also carries
a version token: bumping it invalidates every entry written under the old
version without scanning keys. Repositories bump their own namespace on
every write, so readers in the same unit never see a snapshot older than
their own last write. Writers in other units are only visible after the TTL
or an explicit clear, which is why conflict checks never read from here.
"""

from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


@dataclass
class _Entry:
    version: int
    expires_at: float
    value: Any


class RepositoryCache:
    """TTL + version-token cache; safe to use from worker threads."""

    _MISSING = object()

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, Hashable], _Entry] = {}
        self._versions: Dict[str, int] = {}
        self._hits = 0
        self._misses = 0

    def version(self, namespace: str) -> int:
        with self._lock:
            return self._versions.get(namespace, 0)

    def get(self, namespace: str, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get((namespace, key))
            if entry is None:
                self._misses += 1
                return default
            if (
                entry.version != self._versions.get(namespace, 0)
                or entry.expires_at <= self._clock()
            ):
                del self._entries[(namespace, key)]
                self._misses += 1
                return default
            self._hits += 1
            return entry.value

    def contains(self, namespace: str, key: Hashable) -> bool:
        return self.get(namespace, key, self._MISSING) is not self._MISSING

    def set(
        self, namespace: str, key: Hashable, value: Any, *, version: Optional[int] = None
    ) -> None:
        """
        Store ``value``; ``version`` is the namespace version seen before the
        value was read. A value read across an invalidation is never served.
        """
        with self._lock:
            current = self._versions.get(namespace, 0)
            if version is not None and version != current:
                return
            self._entries[(namespace, key)] = _Entry(
                version=current,
                expires_at=self._clock() + self.ttl_seconds,
                value=value,
            )

    def invalidate(self, namespace: str) -> int:
        """Bump the namespace version; returns the new version."""
        with self._lock:
            new_version = self._versions.get(namespace, 0) + 1
            self._versions[namespace] = new_version
            stale = [k for k in self._entries if k[0] == namespace]
            for k in stale:
                del self._entries[k]
            return new_version

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            for namespace in list(self._versions):
                self._versions[namespace] += 1

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
                "ttl_seconds": self.ttl_seconds,
                "versions": dict(self._versions),
            }
