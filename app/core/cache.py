import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger("uvicorn.error")

DEFAULT_TTL_SECONDS = float(os.getenv("FOOD_LOG_CACHE_TTL_SECONDS", "30"))

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    key: str
    value: T
    created_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.created_at <= self.ttl


class BoundedCache:
    """Per-key TTL cache with lazy expiry.

    Expired entries are removed when they are next read; there is no
    background sweeper and no size bound. Concurrent misses on the same key
    are not coalesced: each caller runs its own load.
    """

    def __init__(self, default_ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}

    def __enter__(self) -> "BoundedCache":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            logger.debug("cache_expired key=%s", key)
            del self._entries[key]
            return None
        logger.debug("cache_hit key=%s", key)
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def invalidate(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            logger.debug("cache_invalidated key=%s", key)

    def clear(self) -> None:
        self._entries.clear()

    def get_or_set(self, key: str, loader: Callable[[], T], ttl: Optional[float] = None) -> T:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value, ttl=ttl)
        return value
