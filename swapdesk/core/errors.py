"""
Error Classification

Typed failures for the trade pipeline. Every error belongs to one family:

- input: the caller sent something unusable (reported verbatim)
- policy: the request is well formed but the account cannot afford it
  (reported with the computed shortfall)
- infrastructure: a collaborator failed (reported with a paraphrase, the raw
  error is kept for logging only)
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class ErrorFamily(str, Enum):
    """Families of trade errors."""

    INPUT = "input"
    POLICY = "policy"
    INFRASTRUCTURE = "infrastructure"


class ErrorCode(str, Enum):
    """Stable identifiers surfaced on TradeResult.error."""

    INVALID_MODE = "invalid_mode"
    INVALID_ACTION = "invalid_action"
    INVALID_ASSET = "invalid_asset"
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    BELOW_MINIMUM_BALANCE = "below_minimum_balance"
    EXTERNAL_EXECUTION_FAILED = "external_execution_failed"
    WALLET_UNAVAILABLE = "wallet_unavailable"
    ACCOUNT_NOT_FOUND = "account_not_found"
    STORE_UNAVAILABLE = "store_unavailable"
    INTERNAL = "internal"


def _fmt(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return format(value.normalize(), "f")


class TradeError(Exception):
    """Base class for every failure the trade pipeline reports."""

    code: ErrorCode = ErrorCode.INTERNAL
    family: ErrorFamily = ErrorFamily.INFRASTRUCTURE

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "family": self.family.value,
            "message": self.message,
            "details": self.details,
        }


# Input errors
class InvalidModeError(TradeError):
    code = ErrorCode.INVALID_MODE
    family = ErrorFamily.INPUT

    def __init__(self, mode: Any):
        super().__init__(f"Invalid trade mode: {mode}", {"mode": str(mode)})
        self.mode = mode


class InvalidActionError(TradeError):
    code = ErrorCode.INVALID_ACTION
    family = ErrorFamily.INPUT

    def __init__(self, action: Any):
        super().__init__(f"Invalid action: {action}", {"action": str(action)})
        self.action = action


class InvalidAssetError(TradeError):
    code = ErrorCode.INVALID_ASSET
    family = ErrorFamily.INPUT

    def __init__(self, asset_address: Any, message: str = "Invalid token address"):
        super().__init__(message, {"assetAddress": str(asset_address)})
        self.asset_address = asset_address


class InvalidAmountError(TradeError):
    code = ErrorCode.INVALID_AMOUNT
    family = ErrorFamily.INPUT

    def __init__(self, amount: Any, message: str = "Invalid amount", limit: Optional[Decimal] = None):
        details: Dict[str, Any] = {"amount": str(amount)}
        if limit is not None:
            details["limit"] = _fmt(limit)
        super().__init__(message, details)
        self.amount = amount
        self.limit = limit


class AccountNotFoundError(TradeError):
    code = ErrorCode.ACCOUNT_NOT_FOUND
    family = ErrorFamily.INPUT

    def __init__(self, user_id: Any):
        super().__init__("User not found. Please start with /start", {"userId": str(user_id)})
        self.user_id = user_id


# Policy errors
class InsufficientBalanceError(TradeError):
    code = ErrorCode.INSUFFICIENT_BALANCE
    family = ErrorFamily.POLICY

    def __init__(self, required: Decimal, available: Decimal, symbol: str = ""):
        self.required = required
        self.available = available
        self.shortfall = max(required - available, Decimal("0"))
        unit = f" {symbol}" if symbol else ""
        super().__init__(
            "Insufficient balance to complete transaction. "
            f"Required: {required:.4f}{unit}, available: {available:.4f}{unit}",
            {
                "required": _fmt(required),
                "available": _fmt(available),
                "shortfall": _fmt(self.shortfall),
            },
        )


class BelowMinimumBalanceError(TradeError):
    code = ErrorCode.BELOW_MINIMUM_BALANCE
    family = ErrorFamily.POLICY

    def __init__(self, minimum: Decimal, available: Decimal, symbol: str = ""):
        self.minimum = minimum
        self.available = available
        self.shortfall = max(minimum - available, Decimal("0"))
        unit = f" {symbol}" if symbol else ""
        super().__init__(
            f"Balance below minimum required: {_fmt(minimum)}{unit}",
            {
                "minimum": _fmt(minimum),
                "available": _fmt(available),
                "shortfall": _fmt(self.shortfall),
            },
        )


# Infrastructure errors
class ExternalExecutionError(TradeError):
    code = ErrorCode.EXTERNAL_EXECUTION_FAILED
    family = ErrorFamily.INFRASTRUCTURE

    def __init__(self, provider_error: Any, message: Optional[str] = None):
        raw = str(provider_error) if provider_error is not None else "unknown error"
        super().__init__(
            message or paraphrase_provider_error(raw),
            {"providerError": raw},
        )
        self.provider_error = provider_error


class WalletUnavailableError(TradeError):
    code = ErrorCode.WALLET_UNAVAILABLE
    family = ErrorFamily.INFRASTRUCTURE

    def __init__(self, reason: Optional[str] = None):
        super().__init__(
            "Wallet access error",
            {"reason": reason} if reason else {},
        )
        self.reason = reason


class StoreUnavailableError(TradeError):
    code = ErrorCode.STORE_UNAVAILABLE
    family = ErrorFamily.INFRASTRUCTURE

    def __init__(self, operation: str, reason: Optional[str] = None):
        super().__init__(
            "Network error. Please try again",
            {"operation": operation, "reason": reason},
        )
        self.operation = operation
        self.reason = reason


class InternalError(TradeError):
    """Unexpected exception captured at the executor boundary."""

    code = ErrorCode.INTERNAL
    family = ErrorFamily.INFRASTRUCTURE

    def __init__(self, reason: str):
        super().__init__("An unexpected error occurred", {"reason": reason})


_PARAPHRASES = (
    (("insufficient",), "Insufficient balance for this transaction."),
    (("slippage", "price impact", "too little received"), "Price moved beyond your slippage tolerance. Try increasing slippage."),
    (("gas",), "Gas estimation failed. Try adjusting gas settings."),
    (("nonce",), "Another transaction from this wallet is pending. Please wait and retry."),
    (("timeout", "timed out"), "The network took too long to respond. Please try again."),
)


def paraphrase_provider_error(raw: str) -> str:
    """Translate a provider error string into user-facing text."""
    lowered = (raw or "").lower()
    for needles, text in _PARAPHRASES:
        if any(n in lowered for n in needles):
            return text
    return "Transaction execution failed. Please try again."


__all__ = [
    "ErrorFamily",
    "ErrorCode",
    "TradeError",
    "InvalidModeError",
    "InvalidActionError",
    "InvalidAssetError",
    "InvalidAmountError",
    "AccountNotFoundError",
    "InsufficientBalanceError",
    "BelowMinimumBalanceError",
    "ExternalExecutionError",
    "WalletUnavailableError",
    "StoreUnavailableError",
    "InternalError",
    "paraphrase_provider_error",
]
