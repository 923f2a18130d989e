"""
Policy Models

Execution profiles, security limits and the tolerant user-settings view the
policy reads from.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator


GWEI = 1_000_000_000


class TradeMode(str, Enum):
    """Execution profile of a trade."""
    NORMAL = "normal"        # Full validation, user-configured slippage/gas
    TURBO = "turbo"          # No validation, fixed slippage/gas for speed


class ValidationCheck(str, Enum):
    """Pre-trade checks a mode may require."""
    BALANCE = "balance"
    ADDRESS_SHAPE = "address_shape"
    AMOUNT_BOUNDS = "amount_bounds"


class ExecutionPhase(str, Enum):
    """Phases that carry their own timeout."""
    VALIDATION = "validation"
    EXECUTION = "execution"


@dataclass(frozen=True)
class ModeProfile:
    """Static policy for one trade mode."""
    name: str
    validations: FrozenSet[ValidationCheck]
    timeouts: Dict[ExecutionPhase, float]

    # Slippage in percent
    default_slippage: Decimal = Decimal("1")
    fixed_slippage: Optional[Decimal] = None

    # Fee rate expressed as gas price in wei
    default_fee_rate: int = 50 * GWEI
    fixed_fee_rate: Optional[int] = None

    @property
    def is_fixed(self) -> bool:
        return self.fixed_slippage is not None and self.fixed_fee_rate is not None


@dataclass(frozen=True)
class SecurityLimits:
    """Account-level guard rails applied by the Normal validation set."""
    max_transaction_amount: Decimal = Decimal("1000")
    fee_buffer: Decimal = Decimal("0.05")
    min_balance: Decimal = Decimal("0.01")
    # Full-balance sells request 99.5% of the reported holding so that
    # rounding between the cached balance and the chain never over-sells.
    sell_all_haircut: Decimal = Decimal("0.995")


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None
    return parsed


def _split_items(value: Any) -> List[Any]:
    """Comma-separated string or list/tuple; anything else counts as empty."""
    if isinstance(value, str):
        return value.split(",")
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


class TradingSettings(BaseModel):
    """
    Read-only view of a user's stored trading settings.

    Malformed or missing fields become ``None`` rather than raising, so the
    policy can always fall back to its defaults.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    slippage_tolerance: Optional[Decimal] = None
    gas_price: Optional[int] = None
    turbo_mode: bool = False
    turbo_mode_updated_at: Optional[datetime] = None
    gas_settings_updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    custom_buy_amounts: List[Decimal] = []
    custom_sell_percentages: List[int] = []

    @field_validator("slippage_tolerance", mode="before")
    @classmethod
    def _parse_slippage(cls, value: Any) -> Optional[Decimal]:
        parsed = _to_decimal(value)
        if parsed is None or parsed <= 0:
            return None
        return parsed

    @field_validator("gas_price", mode="before")
    @classmethod
    def _parse_gas(cls, value: Any) -> Optional[int]:
        parsed = _to_decimal(value)
        if parsed is None or parsed <= 0:
            return None
        return int(parsed)

    @field_validator("turbo_mode", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"true", "1", "yes", "on"}
        return bool(value)

    @field_validator("turbo_mode_updated_at", "gas_settings_updated_at", "created_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> Optional[Any]:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return datetime.fromtimestamp(value / 1000 if value > 1e11 else value)
            except (OverflowError, OSError, ValueError):
                return None
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None

    @field_validator("custom_buy_amounts", mode="before")
    @classmethod
    def _parse_amounts(cls, value: Any) -> List[Decimal]:
        items = _split_items(value)
        amounts = [_to_decimal(item) for item in items]
        return [a for a in amounts if a is not None and a > 0]

    @field_validator("custom_sell_percentages", mode="before")
    @classmethod
    def _parse_percentages(cls, value: Any) -> List[int]:
        items = _split_items(value)
        result: List[int] = []
        for item in items:
            parsed = _to_decimal(item)
            if parsed is not None and 0 < parsed <= 100:
                result.append(int(parsed))
        return result

    @classmethod
    def from_raw(cls, raw: Optional[Mapping[str, Any]]) -> "TradingSettings":
        """Build from a stored settings record; ``None`` yields all defaults."""
        if isinstance(raw, TradingSettings):
            return raw
        if not raw or not isinstance(raw, Mapping):
            return cls()
        try:
            return cls.model_validate(dict(raw))
        except ValidationError:
            return cls()

    def turbo_gas_takes_priority(self) -> bool:
        """True when turbo was switched on no earlier than the last gas change."""
        if not self.turbo_mode:
            return False
        turbo_at = self.turbo_mode_updated_at or self.created_at
        gas_at = self.gas_settings_updated_at or self.created_at
        if turbo_at is None or gas_at is None:
            return False
        try:
            return turbo_at >= gas_at
        except TypeError:
            # naive vs aware timestamps
            return turbo_at.replace(tzinfo=None) >= gas_at.replace(tzinfo=None)


DEFAULT_SECURITY = SecurityLimits()

MODE_PROFILES: Dict[TradeMode, ModeProfile] = {
    TradeMode.NORMAL: ModeProfile(
        name="Normal Trading",
        validations=frozenset({
            ValidationCheck.BALANCE,
            ValidationCheck.ADDRESS_SHAPE,
            ValidationCheck.AMOUNT_BOUNDS,
        }),
        timeouts={
            ExecutionPhase.VALIDATION: 5.0,
            ExecutionPhase.EXECUTION: 30.0,
        },
    ),
    TradeMode.TURBO: ModeProfile(
        name="Turbo Trading",
        validations=frozenset(),
        timeouts={
            ExecutionPhase.EXECUTION: 10.0,
        },
        fixed_slippage=Decimal("20"),
        fixed_fee_rate=100 * GWEI,
    ),
}
