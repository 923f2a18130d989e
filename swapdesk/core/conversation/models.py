"""
Conversation state models.

A conversation state is one of five named states, each with its own payload
type. The persisted form is ``{"data": <payload>, "expiresAt": <iso>}`` stored
under the state name.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from ..policy import TradeMode
from ..trading.models import TradeAction


class ConversationStateName(str, Enum):
    """Steps of a multi-step trade interaction."""
    IDLE = "idle"
    AWAITING_ASSET_INPUT = "awaiting_asset_input"    # Waiting for a token address
    AWAITING_AMOUNT_INPUT = "awaiting_amount_input"  # Token chosen, waiting for amount or percentage
    CONFIRMING = "confirming"                        # Trade fully specified, waiting for confirm/cancel
    EXECUTING = "executing"                          # Handed to the executor


def _decimal_or_none(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _mode_or_none(value: Any) -> Optional[TradeMode]:
    if not value:
        return None
    try:
        return TradeMode(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class IdlePayload:
    def to_dict(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IdlePayload":
        return cls()


@dataclass(frozen=True)
class AwaitingAssetPayload:
    action: TradeAction
    mode: Optional[TradeMode] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "mode": self.mode.value if self.mode else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AwaitingAssetPayload":
        return cls(action=TradeAction(data["action"]), mode=_mode_or_none(data.get("mode")))


@dataclass(frozen=True)
class AwaitingAmountPayload:
    action: TradeAction
    asset_address: str
    asset_symbol: str = "UNKNOWN"
    asset_name: str = "Unknown Token"
    # Token units held; only meaningful for sells
    holding: Optional[Decimal] = None
    mode: Optional[TradeMode] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "assetAddress": self.asset_address,
            "assetSymbol": self.asset_symbol,
            "assetName": self.asset_name,
            "holding": str(self.holding) if self.holding is not None else None,
            "mode": self.mode.value if self.mode else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AwaitingAmountPayload":
        return cls(
            action=TradeAction(data["action"]),
            asset_address=data["assetAddress"],
            asset_symbol=data.get("assetSymbol") or "UNKNOWN",
            asset_name=data.get("assetName") or "Unknown Token",
            holding=_decimal_or_none(data.get("holding")),
            mode=_mode_or_none(data.get("mode")),
        )


@dataclass(frozen=True)
class PendingTradePayload:
    """A fully specified trade; used by both Confirming and Executing."""
    action: TradeAction
    asset_address: str
    amount: Decimal
    mode: TradeMode
    asset_symbol: str = "UNKNOWN"
    asset_name: str = "Unknown Token"
    sell_all: bool = False
    percentage: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "assetAddress": self.asset_address,
            "amount": str(self.amount),
            "mode": self.mode.value,
            "assetSymbol": self.asset_symbol,
            "assetName": self.asset_name,
            "sellAll": self.sell_all,
            "percentage": str(self.percentage) if self.percentage is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PendingTradePayload":
        amount = _decimal_or_none(data.get("amount"))
        if amount is None:
            raise ValueError("pending trade has no amount")
        return cls(
            action=TradeAction(data["action"]),
            asset_address=data["assetAddress"],
            amount=amount,
            mode=TradeMode(data["mode"]),
            asset_symbol=data.get("assetSymbol") or "UNKNOWN",
            asset_name=data.get("assetName") or "Unknown Token",
            sell_all=bool(data.get("sellAll")),
            percentage=_decimal_or_none(data.get("percentage")),
        )


@dataclass(frozen=True)
class ConfirmingPayload(PendingTradePayload):
    pass


@dataclass(frozen=True)
class ExecutingPayload(PendingTradePayload):
    pass


StatePayload = Union[
    IdlePayload,
    AwaitingAssetPayload,
    AwaitingAmountPayload,
    ConfirmingPayload,
    ExecutingPayload,
]

PAYLOAD_TYPES: Dict[ConversationStateName, Type] = {
    ConversationStateName.IDLE: IdlePayload,
    ConversationStateName.AWAITING_ASSET_INPUT: AwaitingAssetPayload,
    ConversationStateName.AWAITING_AMOUNT_INPUT: AwaitingAmountPayload,
    ConversationStateName.CONFIRMING: ConfirmingPayload,
    ConversationStateName.EXECUTING: ExecutingPayload,
}


@dataclass(frozen=True)
class ConversationState:
    """The single live interaction state for one user."""
    user_id: Any
    name: ConversationStateName
    payload: StatePayload
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_record(self) -> Dict[str, Any]:
        return {
            "data": self.payload.to_dict(),
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass
class FlowPresets:
    """Quick-pick options offered to the user at the amount step."""
    buy_amounts: List[Decimal] = field(
        default_factory=lambda: [Decimal("0.1"), Decimal("0.5"), Decimal("1"), Decimal("5")]
    )
    sell_percentages: List[int] = field(default_factory=lambda: [25, 50, 75, 100])
