"""
Trade metrics sinks.

The executor reports every trade, successful or not, to an injected sink.
Statistics live on the sink instance, never in module globals.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from ..policy import TradeMode

logger = logging.getLogger(__name__)


class MetricsSink(ABC):
    @abstractmethod
    def record_trade(self, mode: Optional[TradeMode], success: bool, duration_ms: float) -> None:
        pass

    def snapshot(self) -> Dict[str, Any]:
        return {}


@dataclass
class ModeStats:
    """Aggregates for one trade mode."""
    window_size: int = 100
    total: int = 0
    successful: int = 0
    failed: int = 0
    _latencies: Deque[float] = field(init=False, repr=False)

    def __post_init__(self):
        self._latencies = deque(maxlen=self.window_size)

    def add(self, success: bool, duration_ms: float) -> None:
        self.total += 1
        if success:
            self.successful += 1
        else:
            self.failed += 1
        self._latencies.append(duration_ms)

    @property
    def avg_latency_ms(self) -> float:
        if not self._latencies:
            return 0.0
        return sum(self._latencies) / len(self._latencies)

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.successful / self.total * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "successRate": self.success_rate,
            "avgLatencyMs": round(self.avg_latency_ms, 2),
        }


class InMemoryMetricsSink(MetricsSink):
    """Per-mode counters plus a rolling latency window."""

    UNKNOWN_MODE = "unknown"

    def __init__(self, window_size: int = 100):
        self.window_size = window_size
        self._stats: Dict[str, ModeStats] = {}

    def _bucket(self, mode: Optional[TradeMode]) -> ModeStats:
        key = mode.value if isinstance(mode, TradeMode) else self.UNKNOWN_MODE
        if key not in self._stats:
            self._stats[key] = ModeStats(window_size=self.window_size)
        return self._stats[key]

    def record_trade(self, mode: Optional[TradeMode], success: bool, duration_ms: float) -> None:
        self._bucket(mode).add(success, duration_ms)

    def stats_for(self, mode: Optional[TradeMode]) -> ModeStats:
        return self._bucket(mode)

    def snapshot(self) -> Dict[str, Any]:
        total = sum(s.total for s in self._stats.values())
        successful = sum(s.successful for s in self._stats.values())
        return {
            "totalTrades": total,
            "successfulTrades": successful,
            "failedTrades": total - successful,
            "successRate": round(successful / total * 100, 2) if total else 0.0,
            "byMode": {mode: stats.to_dict() for mode, stats in self._stats.items()},
        }


class LoggingMetricsSink(MetricsSink):
    """Emits one structured log line per trade and forwards to an inner sink."""

    def __init__(self, inner: Optional[MetricsSink] = None, log: Optional[logging.Logger] = None):
        self.inner = inner or InMemoryMetricsSink()
        self.logger = log or logger

    def record_trade(self, mode: Optional[TradeMode], success: bool, duration_ms: float) -> None:
        self.inner.record_trade(mode, success, duration_ms)
        self.logger.info(
            "trade.recorded",
            extra={
                "mode": mode.value if isinstance(mode, TradeMode) else None,
                "success": success,
                "duration_ms": round(duration_ms, 2),
            },
        )

    def snapshot(self) -> Dict[str, Any]:
        return self.inner.snapshot()
