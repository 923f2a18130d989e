"""Namespaced cache store with per-category TTLs and Redis optional support.

The cache is an optimization only: every backend failure is logged and
treated as a miss, so callers fall through to the source of truth.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

import redis.asyncio as redis

from ..cache import TTLCache
from ..config import Settings, settings as default_settings
from ..providers.base import CacheBackend

logger = logging.getLogger(__name__)

Producer = Callable[[], Awaitable[Any]]


class CacheCategory(str, Enum):
    """Kinds of cached data; each has its own default TTL and key scope."""

    ACCOUNT = "account"
    SETTINGS = "settings"
    WALLET_MARKER = "wallet_marker"
    NATIVE_BALANCE = "native_balance"
    WALLET_BALANCES = "wallet_balances"
    ASSET_INFO = "asset_info"
    PORTFOLIO = "portfolio"
    PORTFOLIO_VALUE = "portfolio_value"
    USER_SUMMARY = "user_summary"


# None keeps the entry until it is invalidated.
DEFAULT_TTLS: Dict[CacheCategory, Optional[int]] = {
    CacheCategory.ACCOUNT: None,
    CacheCategory.SETTINGS: None,
    CacheCategory.WALLET_MARKER: 3600,
    CacheCategory.NATIVE_BALANCE: 30,
    CacheCategory.WALLET_BALANCES: 300,
    CacheCategory.ASSET_INFO: 300,
    CacheCategory.PORTFOLIO: 900,
    CacheCategory.PORTFOLIO_VALUE: 300,
    CacheCategory.USER_SUMMARY: 300,
}

ENVIRONMENT_TTL_OVERRIDES: Dict[str, Dict[CacheCategory, int]] = {
    "development": {
        CacheCategory.NATIVE_BALANCE: 15,
        CacheCategory.WALLET_BALANCES: 30,
        CacheCategory.PORTFOLIO: 60,
        CacheCategory.USER_SUMMARY: 30,
    },
    "testing": {
        CacheCategory.NATIVE_BALANCE: 5,
        CacheCategory.WALLET_BALANCES: 5,
        CacheCategory.PORTFOLIO: 10,
        CacheCategory.USER_SUMMARY: 5,
    },
}

# Categories keyed by wallet address; everything else is keyed by user id.
WALLET_SCOPED: frozenset = frozenset({
    CacheCategory.NATIVE_BALANCE,
    CacheCategory.WALLET_BALANCES,
    CacheCategory.PORTFOLIO_VALUE,
})


def ttl_table(environment: str = "production") -> Dict[CacheCategory, Optional[int]]:
    table = dict(DEFAULT_TTLS)
    table.update(ENVIRONMENT_TTL_OVERRIDES.get(environment.lower(), {}))
    return table


def _default_serializer(value: Any) -> str:
    def _encode(obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        raise TypeError(f"Object of type {type(obj).__name__} is not cacheable")

    return json.dumps(value, default=_encode)


def _default_deserializer(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except Exception:  # noqa: BLE001
        return None


class RedisCacheBackend(CacheBackend):
    """Redis-backed storage; values are stored as JSON documents."""

    name = "redis"

    def __init__(self, client: Any):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheBackend":
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True))

    async def get(self, key: str) -> Optional[Any]:
        payload = await self._client.get(key)
        return _default_deserializer(payload)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        payload = _default_serializer(value)
        if ttl:
            await self._client.set(key, payload, ex=ttl)
        else:
            await self._client.set(key, payload)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def close(self) -> None:
        await self._client.aclose()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    errors: int = 0
    producer_calls: int = 0
    coalesced: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return round(self.hits / total * 100, 2) if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "producerCalls": self.producer_calls,
            "coalesced": self.coalesced,
            "invalidations": self.invalidations,
            "hitRate": self.hit_rate,
        }


class CacheStore:
    """
    Category-aware cache facade over a CacheBackend.

    ``get_or_set`` coalesces concurrent misses for the same key: the first
    caller runs the producer, later callers await its result. Values are only
    ever written whole, so readers see either the previous value or the new one.
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        *,
        prefix: str = "swapdesk:",
        ttls: Optional[Dict[CacheCategory, Optional[int]]] = None,
    ):
        self.backend = backend or TTLCache()
        self.prefix = prefix
        self.ttls = ttls or ttl_table()
        self.stats = CacheStats()
        self._inflight: Dict[str, asyncio.Future] = {}

    def key_for(self, category: CacheCategory, key: Any) -> str:
        return f"{self.prefix}{CacheCategory(category).value}:{key}"

    def ttl_for(self, category: CacheCategory, ttl: Optional[int] = None) -> Optional[int]:
        if ttl is not None:
            return ttl
        return self.ttls.get(CacheCategory(category))

    async def get(self, category: CacheCategory, key: Any) -> Optional[Any]:
        full_key = self.key_for(category, key)
        try:
            value = await self.backend.get(full_key)
        except Exception as exc:  # noqa: BLE001
            self.stats.errors += 1
            self.stats.misses += 1
            logger.warning(f"Cache get failed for {full_key}: {exc}")
            return None

        if value is None:
            self.stats.misses += 1
            logger.debug(f"Cache MISS: {full_key}")
        else:
            self.stats.hits += 1
            logger.debug(f"Cache HIT: {full_key}")
        return value

    async def set(
        self,
        category: CacheCategory,
        key: Any,
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        full_key = self.key_for(category, key)
        try:
            await self.backend.set(full_key, value, ttl=self.ttl_for(category, ttl))
        except Exception as exc:  # noqa: BLE001
            self.stats.errors += 1
            logger.warning(f"Cache set failed for {full_key}: {exc}")
            return False
        return True

    async def get_or_set(
        self,
        category: CacheCategory,
        key: Any,
        producer: Producer,
        ttl: Optional[int] = None,
    ) -> Any:
        """Return the cached value or run ``producer`` once and cache its result.

        Producer errors propagate to every caller waiting on the same key.
        If the leading caller is cancelled, a waiter runs the producer itself.
        ``None`` results are returned but not cached.
        """
        cached = await self.get(category, key)
        if cached is not None:
            return cached

        full_key = self.key_for(category, key)
        pending = self._inflight.get(full_key)
        if pending is not None:
            self.stats.coalesced += 1
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled():
                    raise
                # The leading caller was cancelled, not this one: take over
                logger.debug(f"Leader for {full_key} cancelled; retrying")
                return await self.get_or_set(category, key, producer, ttl)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[full_key] = future
        try:
            self.stats.producer_calls += 1
            value = await producer()
            if value is not None:
                await self.set(category, key, value, ttl)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
                # Mark retrieved so an unawaited future does not log a warning.
                future.exception()
            raise
        else:
            if not future.done():
                future.set_result(value)
            return value
        finally:
            if self._inflight.get(full_key) is future:
                del self._inflight[full_key]

    async def invalidate(self, category: CacheCategory, key: Any) -> bool:
        full_key = self.key_for(category, key)
        self.stats.invalidations += 1
        try:
            return await self.backend.delete(full_key)
        except Exception as exc:  # noqa: BLE001
            self.stats.errors += 1
            logger.warning(f"Cache delete failed for {full_key}: {exc}")
            return False

    async def invalidate_many(self, keys: Iterable[Tuple[CacheCategory, Any]]) -> int:
        """Delete several entries concurrently; returns how many existed."""
        entries = list(keys)
        if not entries:
            return 0
        results = await asyncio.gather(
            *(self.invalidate(category, key) for category, key in entries)
        )
        return sum(1 for r in results if r)

    async def health_check(self) -> bool:
        probe_key = f"{self.prefix}health:check"
        probe_value = datetime.now(timezone.utc).isoformat()
        try:
            await self.backend.set(probe_key, probe_value, ttl=10)
            result = await self.backend.get(probe_key)
            await self.backend.delete(probe_key)
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Cache health check failed: {exc}")
            return False
        return result == probe_value


def build_cache_store(config: Optional[Settings] = None) -> CacheStore:
    """Create a CacheStore from settings: Redis when configured, else in-process."""
    config = config or default_settings
    backend: CacheBackend = TTLCache(max_size=config.max_cache_size)
    if config.redis_url:
        try:
            backend = RedisCacheBackend.from_url(config.redis_url)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to initialize Redis client, using in-memory cache", exc_info=exc)
    return CacheStore(
        backend,
        prefix=config.cache_key_prefix,
        ttls=ttl_table(config.environment),
    )


__all__ = [
    "CacheCategory",
    "CacheStats",
    "CacheStore",
    "DEFAULT_TTLS",
    "RedisCacheBackend",
    "WALLET_SCOPED",
    "build_cache_store",
    "ttl_table",
]
