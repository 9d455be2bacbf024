# backend/app/repositories/cached_repository_mixin.py
"""
Cached Repository Mixin

Provides caching capabilities for repository classes with:
- Automatic cache key generation
- Namespace invalidation on writes
- Explicit bypass (``force_refresh``)

The cache is a RepositoryCache injected by the owning UnitOfWork; a
repository without one simply always reads from storage.
"""

from functools import wraps
import logging
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from .cache import RepositoryCache

logger = logging.getLogger(__name__)

_MISS = object()


class CachedRepositoryMixin:
    """
    Mixin to add caching capabilities to repositories.

    Usage:
        class RoomRepository(BaseRepository[Room]):
            def __init__(self, session_factory, cache=None):
                super().__init__(session_factory, Room)
                self.init_cache(cache)
    """

    _cache: Optional[RepositoryCache] = None
    _cache_enabled: bool = True

    def init_cache(self, cache: Optional[RepositoryCache] = None) -> None:
        self._cache = cache
        self._cache_prefix = self.__class__.__name__.lower().replace("repository", "")
        self._cache_enabled = True

    @property
    def cache(self) -> Optional[RepositoryCache]:
        return self._cache

    @property
    def cache_namespace(self) -> str:
        return getattr(self, "_cache_prefix", self.__class__.__name__.lower())

    def _generate_cache_key(self, method_name: str, *args: Any, **kwargs: Any) -> Tuple[Hashable, ...]:
        parts: list[Hashable] = [method_name]
        for arg in args:
            parts.append(arg.isoformat() if hasattr(arg, "isoformat") else arg)
        for key, value in sorted(kwargs.items()):
            parts.append((key, value))
        return tuple(parts)

    def invalidate_all_cache(self) -> None:
        """Invalidate all cache entries for this repository."""
        if self._cache is None:
            return
        version = self._cache.invalidate(self.cache_namespace)
        logger.debug(f"Invalidated cache namespace {self.cache_namespace} (version {version})")

    def with_cache_disabled(self):
        """
        Context manager to temporarily disable caching.

        Usage:
            with repository.with_cache_disabled():
                result = repository.find_all()  # Won't use cache
        """

        class CacheDisabler:
            def __init__(self, repo):
                self.repo = repo
                self.original_state = None

            def __enter__(self):
                self.original_state = self.repo._cache_enabled
                self.repo._cache_enabled = False
                return self

            def __exit__(self, exc_type, exc_val, exc_tb):
                self.repo._cache_enabled = self.original_state

        return CacheDisabler(self)

    def get_cache_stats(self) -> Optional[Dict[str, Any]]:
        if self._cache is None:
            return None
        stats = self._cache.stats()
        stats["repository"] = self.cache_namespace
        stats["version"] = self._cache.version(self.cache_namespace)
        return stats


def cached_method(func: Callable) -> Callable:
    """
    Cache a repository read under the repository's namespace.

    Callers may pass ``force_refresh=True`` to skip the cached value and
    store a fresh one.
    """

    @wraps(func)
    def wrapper(self, *args, force_refresh: bool = False, **kwargs):
        cache = getattr(self, "_cache", None)
        if cache is None or not getattr(self, "_cache_enabled", True):
            return func(self, *args, **kwargs)

        cache_key = self._generate_cache_key(func.__name__, *args, **kwargs)
        # Taken before the read so a concurrent invalidate discards this result
        version = cache.version(self.cache_namespace)
        if not force_refresh:
            cached_value = cache.get(self.cache_namespace, cache_key, _MISS)
            if cached_value is not _MISS:
                logger.debug(f"Cache hit for {func.__name__}: {cache_key}")
                return list(cached_value) if isinstance(cached_value, list) else cached_value

        result = func(self, *args, **kwargs)
        cache.set(
            self.cache_namespace,
            cache_key,
            list(result) if isinstance(result, list) else result,
            version=version,
        )
        return result

    return wrapper

