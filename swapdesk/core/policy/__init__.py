"""
Trading Policy Module

Mode-dependent slippage, fee, timeout and validation policy.
"""

from .engine import ConfigPolicy, coerce_mode, default_policy
from .models import (
    GWEI,
    ExecutionPhase,
    ModeProfile,
    SecurityLimits,
    TradeMode,
    TradingSettings,
    ValidationCheck,
)

__all__ = [
    # Engine
    "ConfigPolicy",
    "coerce_mode",
    "default_policy",
    # Models
    "ExecutionPhase",
    "GWEI",
    "ModeProfile",
    "SecurityLimits",
    "TradeMode",
    "TradingSettings",
    "ValidationCheck",
]
