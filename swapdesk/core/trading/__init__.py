"""
Trading Module

Trade execution: context preparation, mode strategies, the executor and
its metrics sinks.
"""

from .data_preparer import DataPreparer
from .executor import TradeExecutor
from .metrics import InMemoryMetricsSink, LoggingMetricsSink, MetricsSink
from .models import (
    ExecutionContext,
    TradeAction,
    TradeRequest,
    TradeResult,
    TransactionRecord,
    is_valid_address,
    parse_amount,
)
from .strategies import NormalStrategy, TurboStrategy, build_strategies

__all__ = [
    # Services
    "DataPreparer",
    "TradeExecutor",
    # Strategies
    "NormalStrategy",
    "TurboStrategy",
    "build_strategies",
    # Metrics
    "InMemoryMetricsSink",
    "LoggingMetricsSink",
    "MetricsSink",
    # Models
    "ExecutionContext",
    "TradeAction",
    "TradeRequest",
    "TradeResult",
    "TransactionRecord",
    "is_valid_address",
    "parse_amount",
]
