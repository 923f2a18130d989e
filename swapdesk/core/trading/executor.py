"""
Trade Executor

Entry point of the trade pipeline. ``execute_trade`` never raises: every
failure comes back as a TradeResult carrying a typed TradeError.

Flow:
1. Coerce mode and action, then check the request shape (asset address,
   positive amount) before any lookup.
2. Build the ExecutionContext through the DataPreparer.
3. Hand off to the strategy for the mode (Normal validates, Turbo does not).
4. On success, invalidate stale cache entries and append a transaction
   record before returning.
5. Report the outcome to the metrics sink whatever happened.
"""

import logging
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from ...config import settings
from ...logging_config import bind_trade_context, clear_trade_context
from ...providers.base import AccountStore, ExchangeProvider
from ...services.cache import CacheStore
from ...services.invalidation import CacheOperation, invalidate_after_operation
from ..errors import InternalError, TradeError
from ..policy import ConfigPolicy, TradeMode, coerce_mode
from .data_preparer import DataPreparer
from .metrics import InMemoryMetricsSink, MetricsSink
from .models import (
    ExecutionContext,
    TradeAction,
    TradeRequest,
    TradeResult,
    TransactionRecord,
    coerce_action,
    parse_amount,
    require_address,
)
from .strategies import ModeStrategy, PreparedTrade, build_strategies

logger = logging.getLogger(__name__)

_CONTEXT_KEYS = ("user_id", "trade_mode", "trade_action")


class TradeExecutor:
    """Dispatches trade requests to mode strategies and keeps caches consistent."""

    def __init__(
        self,
        data_preparer: DataPreparer,
        exchange: ExchangeProvider,
        cache: CacheStore,
        account_store: AccountStore,
        metrics: Optional[MetricsSink] = None,
        policy: Optional[ConfigPolicy] = None,
    ):
        self.data_preparer = data_preparer
        self.exchange = exchange
        self.cache = cache
        self.account_store = account_store
        self.policy = policy or data_preparer.policy
        self.metrics = metrics or InMemoryMetricsSink(window_size=settings.metrics_window_size)
        self.strategies: Dict[TradeMode, ModeStrategy] = build_strategies(
            self.policy, data_preparer, exchange
        )

    async def execute_trade(self, request: TradeRequest) -> TradeResult:
        start = time.perf_counter()
        mode: Optional[TradeMode] = None
        action: Optional[TradeAction] = None
        amount: Optional[Decimal] = None
        result: Optional[TradeResult] = None

        try:
            mode = coerce_mode(request.mode)
            action = coerce_action(request.action)
            bind_trade_context(user_id=str(request.user_id), trade_mode=mode.value, trade_action=action.value)

            trade = self._check_request_shape(request, action)
            amount = trade.amount

            context = await self.data_preparer.prepare_trade_data(
                request.user_id,
                mode,
                preloaded_account=request.preloaded_account,
                preloaded_settings=request.preloaded_settings,
            )
            result = await self.strategies[mode].run(trade, context)
            await self._after_success(context, result)
            logger.info(
                f"Trade succeeded: {action.value} {amount} of {trade.asset_address} "
                f"({mode.value}) tx={result.tx_id}"
            )

        except TradeError as exc:
            logger.warning(f"Trade failed [{exc.code.value}]: {exc.message} {exc.details}")
            result = TradeResult.failure(
                exc, action, mode, asset_address=request.asset_address, amount_requested=amount
            )
        except Exception as exc:
            logger.error(f"Unexpected error executing trade for user {request.user_id}: {exc}", exc_info=True)
            result = TradeResult.failure(
                InternalError(str(exc)), action, mode, asset_address=request.asset_address, amount_requested=amount
            )
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            if result is not None:
                result.execution_time_ms = elapsed_ms
            self._record(mode, result is not None and result.success, elapsed_ms)
            clear_trade_context(*_CONTEXT_KEYS)

        return result

    def _check_request_shape(self, request: TradeRequest, action: TradeAction) -> PreparedTrade:
        """Checks every mode applies; malformed input never reaches a collaborator."""
        address = require_address(request.asset_address)
        amount = parse_amount(request.amount)
        return PreparedTrade(
            action=action,
            asset_address=address,
            amount=amount,
            sell_all=bool(request.sell_all) and action == TradeAction.SELL,
        )

    async def _after_success(self, context: ExecutionContext, result: TradeResult) -> None:
        operation = CacheOperation(result.action.value)
        await invalidate_after_operation(self.cache, operation, context.user_id, context.wallet_address)

        if not result.tx_id:
            logger.warning(f"Trade for user {context.user_id} succeeded without a transaction id; record skipped")
            return

        record = TransactionRecord.from_result(context.user_id, result)
        try:
            await self.account_store.append_transaction(context.user_id, record.to_dict())
        except Exception as exc:
            logger.error(f"Failed to append transaction {result.tx_id} for user {context.user_id}: {exc}")

    def _record(self, mode: Optional[TradeMode], success: bool, duration_ms: float) -> None:
        try:
            self.metrics.record_trade(mode, success, duration_ms)
        except Exception as exc:
            logger.warning(f"Metrics sink failed: {exc}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "trades": self.metrics.snapshot(),
            "cache": self.cache.stats.to_dict(),
        }

    async def health_check(self) -> Dict[str, Any]:
        cache_ok = await self.cache.health_check()
        return {
            "status": "healthy" if cache_ok else "degraded",
            "cache": cache_ok,
            "modes": sorted(mode.value for mode in self.strategies),
        }
