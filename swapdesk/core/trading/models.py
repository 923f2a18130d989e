"""
Trade execution models and types.
"""

import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from ..errors import InvalidActionError, InvalidAmountError, InvalidAssetError, TradeError
from ..policy import TradeMode, TradingSettings

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


class TradeAction(str, Enum):
    """Direction of a trade relative to the native asset."""
    BUY = "buy"      # Spend native asset on the target asset
    SELL = "sell"    # Sell the target asset for native asset


def coerce_action(action: Any) -> TradeAction:
    if isinstance(action, TradeAction):
        return action
    if isinstance(action, str):
        try:
            return TradeAction(action.strip().lower())
        except ValueError:
            pass
    raise InvalidActionError(action)


def is_valid_address(address: Any) -> bool:
    return isinstance(address, str) and bool(ADDRESS_PATTERN.match(address))


def require_address(address: Any) -> str:
    if not is_valid_address(address):
        raise InvalidAssetError(address)
    return address


def parse_amount(amount: Any) -> Decimal:
    """Parse a user-supplied amount into a positive Decimal."""
    if amount is None or isinstance(amount, bool):
        raise InvalidAmountError(amount)
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(amount, "Amount must be a valid number")
    if not value.is_finite():
        raise InvalidAmountError(amount, "Amount must be a valid number")
    if value <= 0:
        raise InvalidAmountError(amount, "Amount must be greater than 0")
    return value


@dataclass(frozen=True)
class TradeRequest:
    """One buy or sell intent. Built per invocation and discarded after."""
    mode: Union[TradeMode, str]
    action: Union[TradeAction, str]
    user_id: Any
    asset_address: str
    amount: Union[Decimal, str, int, float]

    # The amount is the full holding and the user wants to liquidate it
    sell_all: bool = False

    # Already resolved earlier in the same interaction
    preloaded_account: Optional[Mapping[str, Any]] = None
    preloaded_settings: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class ExecutionContext:
    """Per-request state assembled by the DataPreparer. Never persisted."""
    user_id: Any
    mode: TradeMode
    account: Mapping[str, Any]
    settings: TradingSettings
    wallet: Any
    wallet_address: str
    balance: Optional[Decimal]
    effective_slippage: Decimal
    effective_fee_rate: int
    prepared_in_ms: float = 0.0


@dataclass
class TradeResult:
    """Outcome of TradeExecutor.execute_trade; failures carry a typed error."""
    success: bool
    action: Optional[TradeAction]
    mode: Optional[TradeMode]
    execution_time_ms: float = 0.0

    tx_id: Optional[str] = None
    error: Optional[TradeError] = None

    # Asset info
    asset_address: Optional[str] = None
    asset_symbol: Optional[str] = None
    asset_name: Optional[str] = None

    # Amounts
    amount_requested: Optional[Decimal] = None
    amount_in: Optional[Decimal] = None
    expected_output: Optional[Decimal] = None
    price_impact: Optional[str] = None

    # Applied policy
    slippage: Optional[Decimal] = None
    fee_rate: Optional[int] = None

    timestamp: float = field(default_factory=time.time)

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code.value if self.error else None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @property
    def price_per_unit(self) -> Optional[Decimal]:
        """Native asset paid per unit received (buys only)."""
        if self.action != TradeAction.BUY or not self.expected_output or not self.amount_in:
            return None
        return (self.amount_in / self.expected_output).quantize(Decimal("0.000001"))

    @classmethod
    def failure(
        cls,
        error: TradeError,
        action: Optional[TradeAction],
        mode: Optional[TradeMode],
        **kwargs: Any,
    ) -> "TradeResult":
        return cls(success=False, action=action, mode=mode, error=error, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        def _s(value: Optional[Decimal]) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "success": self.success,
            "action": self.action.value if self.action else None,
            "mode": self.mode.value if self.mode else None,
            "executionTimeMs": round(self.execution_time_ms, 2),
            "txId": self.tx_id,
            "error": self.error.to_dict() if self.error else None,
            "assetAddress": self.asset_address,
            "assetSymbol": self.asset_symbol,
            "assetName": self.asset_name,
            "amountRequested": _s(self.amount_requested),
            "amountIn": _s(self.amount_in),
            "expectedOutput": _s(self.expected_output),
            "pricePerUnit": _s(self.price_per_unit),
            "priceImpact": self.price_impact,
            "slippage": _s(self.slippage),
            "feeRate": self.fee_rate,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TransactionRecord:
    """Immutable record appended after a successful trade."""
    tx_id: str
    user_id: Any
    action: TradeAction
    mode: TradeMode
    asset_address: str
    amount: Decimal
    total_value: Decimal
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    success: bool = True

    @classmethod
    def from_result(cls, user_id: Any, result: TradeResult) -> "TransactionRecord":
        amount = result.amount_in or Decimal("0")
        if result.action == TradeAction.BUY:
            # Native asset spent
            total_value = amount
        else:
            # Native asset received
            total_value = result.expected_output or amount
        return cls(
            tx_id=result.tx_id or "",
            user_id=user_id,
            action=result.action or TradeAction.BUY,
            mode=result.mode or TradeMode.NORMAL,
            asset_address=result.asset_address or "",
            amount=amount,
            total_value=total_value,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txId": self.tx_id,
            "type": self.action.value,
            "mode": self.mode.value,
            "tokenAddress": self.asset_address,
            "amount": str(self.amount),
            "totalValue": str(self.total_value),
            "timestamp": self.created_at.isoformat(),
            "success": self.success,
        }


@dataclass
class SwapOutcome:
    """Normalized response from ExchangeProvider.buy/sell."""
    success: bool
    tx_id: Optional[str] = None
    expected_output: Optional[Decimal] = None
    price_impact: Optional[str] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "SwapOutcome":
        if not isinstance(payload, Mapping):
            return cls(success=False, error=f"Unexpected provider response: {payload!r}")
        expected = payload.get("expectedOutput", payload.get("outputAmount"))
        try:
            expected_output = Decimal(str(expected)) if expected not in (None, "") else None
        except InvalidOperation:
            expected_output = None
        impact = payload.get("priceImpact")
        return cls(
            success=bool(payload.get("success")),
            tx_id=payload.get("txId") or payload.get("txHash"),
            expected_output=expected_output,
            price_impact=str(impact) if impact is not None else None,
            error=payload.get("error"),
            raw=dict(payload),
        )
