"""
Config Policy

Pure mapping from trade mode (and the user's settings) to slippage, fee rate,
timeouts and the set of pre-trade validations. No I/O happens here.

Turbo returns fixed constants and an empty validation set: it trades the
safety checks for latency. Normal uses the user's settings as stored and
falls back to the profile defaults for anything missing or malformed.
"""

from decimal import Decimal
from typing import Any, Dict, FrozenSet, Mapping, Optional, Union

from ..errors import InvalidModeError
from .models import (
    DEFAULT_SECURITY,
    MODE_PROFILES,
    ExecutionPhase,
    ModeProfile,
    SecurityLimits,
    TradeMode,
    TradingSettings,
    ValidationCheck,
)

SettingsLike = Optional[Union[TradingSettings, Mapping[str, Any]]]

DEFAULT_TIMEOUT_SECONDS = 30.0


def coerce_mode(mode: Any) -> TradeMode:
    """Resolve a mode value, raising InvalidModeError for anything unknown."""
    if isinstance(mode, TradeMode):
        return mode
    if isinstance(mode, str):
        try:
            return TradeMode(mode.strip().lower())
        except ValueError:
            pass
    raise InvalidModeError(mode)


class ConfigPolicy:
    """
    Mode-dependent trading policy.

    Every accessor accepts ``settings=None`` and treats it as "nothing
    configured". An unknown mode raises InvalidModeError, which the executor
    turns into a failed TradeResult.
    """

    def __init__(
        self,
        profiles: Optional[Dict[TradeMode, ModeProfile]] = None,
        security: Optional[SecurityLimits] = None,
    ):
        self._profiles = profiles or MODE_PROFILES
        self.security = security or DEFAULT_SECURITY

    def profile(self, mode: Any) -> ModeProfile:
        resolved = coerce_mode(mode)
        profile = self._profiles.get(resolved)
        if profile is None:
            raise InvalidModeError(mode)
        return profile

    def is_valid_mode(self, mode: Any) -> bool:
        try:
            self.profile(mode)
        except InvalidModeError:
            return False
        return True

    def get_slippage(self, mode: Any, settings: SettingsLike = None) -> Decimal:
        """Slippage tolerance in percent."""
        profile = self.profile(mode)
        if profile.fixed_slippage is not None:
            return profile.fixed_slippage

        configured = TradingSettings.from_raw(settings).slippage_tolerance
        return profile.default_slippage if configured is None else configured

    def get_fee_rate(self, mode: Any, settings: SettingsLike = None) -> int:
        """Gas price in wei."""
        profile = self.profile(mode)
        if profile.fixed_fee_rate is not None:
            return profile.fixed_fee_rate

        parsed = TradingSettings.from_raw(settings)
        if parsed.turbo_gas_takes_priority():
            turbo = self._profiles.get(TradeMode.TURBO)
            if turbo is not None and turbo.fixed_fee_rate is not None:
                return turbo.fixed_fee_rate
        return profile.default_fee_rate if parsed.gas_price is None else parsed.gas_price

    def get_timeout(self, mode: Any, phase: Union[ExecutionPhase, str] = ExecutionPhase.EXECUTION) -> float:
        """Timeout in seconds for a phase; phases a mode skips get the default."""
        profile = self.profile(mode)
        try:
            phase = ExecutionPhase(phase)
        except ValueError:
            return DEFAULT_TIMEOUT_SECONDS
        return profile.timeouts.get(phase, DEFAULT_TIMEOUT_SECONDS)

    def requires_validation(self, mode: Any, check: Union[ValidationCheck, str]) -> bool:
        profile = self.profile(mode)
        try:
            check = ValidationCheck(check)
        except ValueError:
            return False
        return check in profile.validations

    def validations_for(self, mode: Any) -> FrozenSet[ValidationCheck]:
        return self.profile(mode).validations


default_policy = ConfigPolicy()
