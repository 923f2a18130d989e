"""Declarative cache invalidation rules.

Each state-changing operation maps to the cache categories it makes stale.
Callers never list keys themselves; they name the operation and hand the
user id and wallet address to ``invalidate_after_operation``.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .cache import WALLET_SCOPED, CacheCategory, CacheStore

logger = logging.getLogger(__name__)


class CacheOperation(str, Enum):
    BUY = "buy"
    SELL = "sell"
    TRANSFER = "transfer"
    SETTINGS_CHANGE = "settings_change"
    WALLET_IMPORT = "wallet_import"


_TRADE_RULES: Tuple[CacheCategory, ...] = (
    CacheCategory.NATIVE_BALANCE,
    CacheCategory.WALLET_BALANCES,
    CacheCategory.PORTFOLIO,
    CacheCategory.PORTFOLIO_VALUE,
    CacheCategory.USER_SUMMARY,
)

INVALIDATION_RULES: Dict[CacheOperation, Tuple[CacheCategory, ...]] = {
    CacheOperation.BUY: _TRADE_RULES,
    CacheOperation.SELL: _TRADE_RULES,
    CacheOperation.TRANSFER: (
        CacheCategory.NATIVE_BALANCE,
        CacheCategory.WALLET_BALANCES,
        CacheCategory.USER_SUMMARY,
    ),
    CacheOperation.SETTINGS_CHANGE: (
        CacheCategory.SETTINGS,
        CacheCategory.USER_SUMMARY,
    ),
    CacheOperation.WALLET_IMPORT: (
        CacheCategory.ACCOUNT,
        CacheCategory.SETTINGS,
        CacheCategory.WALLET_MARKER,
        CacheCategory.NATIVE_BALANCE,
        CacheCategory.WALLET_BALANCES,
        CacheCategory.USER_SUMMARY,
    ),
}


def invalidation_keys(
    operation: CacheOperation,
    user_id: Any,
    wallet_address: Optional[str],
) -> List[Tuple[CacheCategory, Any]]:
    """Resolve an operation into concrete (category, key) pairs."""
    keys: List[Tuple[CacheCategory, Any]] = []
    for category in INVALIDATION_RULES.get(CacheOperation(operation), ()):
        if category in WALLET_SCOPED:
            if wallet_address:
                keys.append((category, wallet_address))
        else:
            keys.append((category, user_id))
    return keys


async def invalidate_after_operation(
    cache: CacheStore,
    operation: CacheOperation,
    user_id: Any,
    wallet_address: Optional[str],
) -> int:
    """Drop every entry the operation made stale. Never raises."""
    keys = invalidation_keys(operation, user_id, wallet_address)
    if not keys:
        logger.info(f"No cache invalidation rules for operation: {operation}")
        return 0
    try:
        cleared = await cache.invalidate_many(keys)
    except Exception as exc:  # noqa: BLE001
        logger.error(f"Cache invalidation failed for {operation}: {exc}")
        return 0
    logger.info(
        f"Cache invalidation after {CacheOperation(operation).value} for user {user_id}: "
        f"{cleared}/{len(keys)} entries cleared"
    )
    return cleared


__all__ = [
    "CacheOperation",
    "INVALIDATION_RULES",
    "invalidate_after_operation",
    "invalidation_keys",
]
