import asyncio
import copy
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Optional

from .providers.base import CacheBackend


@dataclass
class CacheEntry:
    value: Any
    # None means the entry lives until it is deleted
    expires_at: Optional[float]

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now > self.expires_at


class TTLCache(CacheBackend):
    """In-process cache backend with per-entry TTL and LRU eviction.

    Values are deep-copied on the way in and out so callers can never mutate
    a cached account or balance record in place.
    """

    name = "memory"

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(time.time()):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return copy.deepcopy(entry.value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        async with self._lock:
            expires_at = time.time() + ttl if ttl else None
            self._entries[key] = CacheEntry(value=copy.deepcopy(value), expires_at=expires_at)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def size(self) -> int:
        return len(self._entries)
