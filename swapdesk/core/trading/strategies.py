"""
Mode strategies.

A strategy is selected once per request from the trade mode and owns the
three mode-dependent steps: validation, policy resolution and the exchange
call. Normal runs the full validation set concurrently with the asset
metadata read; Turbo skips validation and goes straight to the exchange.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from ...providers.base import ExchangeProvider
from ..errors import (
    BelowMinimumBalanceError,
    ExternalExecutionError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidAssetError,
    StoreUnavailableError,
    TradeError,
)
from ..policy import ConfigPolicy, ExecutionPhase, TradeMode, ValidationCheck
from .data_preparer import DataPreparer
from .models import ExecutionContext, SwapOutcome, TradeAction, TradeResult, require_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedTrade:
    """A request that passed the shape gate: typed action and parsed amount."""
    action: TradeAction
    asset_address: str
    amount: Decimal
    sell_all: bool = False


@dataclass(frozen=True)
class TradePolicy:
    """Resolved parameters for one exchange call."""
    slippage: Decimal
    fee_rate: int
    timeout_s: float
    turbo: bool

    def fee_opts(self) -> Dict[str, Any]:
        return {"gas_price": self.fee_rate, "turbo": self.turbo, "timeout_s": self.timeout_s}


class ModeStrategy(ABC):
    """Validate, resolve policy and execute for one trade mode."""

    mode: TradeMode

    def __init__(
        self,
        policy: ConfigPolicy,
        data_preparer: DataPreparer,
        exchange: ExchangeProvider,
    ):
        self.policy = policy
        self.data = data_preparer
        self.exchange = exchange

    @abstractmethod
    async def validate(self, trade: PreparedTrade, context: ExecutionContext) -> None:
        """Raise a TradeError if the trade must not reach the exchange."""

    @abstractmethod
    async def run(self, trade: PreparedTrade, context: ExecutionContext) -> TradeResult:
        """Validate (if the mode does) and execute the trade."""

    def compute_policy(self, context: ExecutionContext) -> TradePolicy:
        return TradePolicy(
            slippage=context.effective_slippage,
            fee_rate=context.effective_fee_rate,
            timeout_s=self.policy.get_timeout(self.mode, ExecutionPhase.EXECUTION),
            turbo=self.mode == TradeMode.TURBO,
        )

    def effective_amount(self, trade: PreparedTrade) -> Decimal:
        return trade.amount

    async def execute(
        self,
        trade: PreparedTrade,
        context: ExecutionContext,
        policy: TradePolicy,
        amount: Decimal,
    ) -> SwapOutcome:
        """Call the exchange, bounded by the mode's execution timeout."""
        method = self.exchange.buy if trade.action == TradeAction.BUY else self.exchange.sell
        try:
            payload = await asyncio.wait_for(
                method(context.wallet, trade.asset_address, amount, policy.slippage, policy.fee_opts()),
                timeout=policy.timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise ExternalExecutionError(f"Execution timed out after {policy.timeout_s}s") from exc
        except TradeError:
            raise
        except Exception as exc:
            logger.error(f"Exchange {trade.action.value} raised for {trade.asset_address}: {exc}")
            raise ExternalExecutionError(exc) from exc

        outcome = SwapOutcome.from_payload(payload)
        if not outcome.success:
            raise ExternalExecutionError(outcome.error or "provider reported failure")
        return outcome

    def build_result(
        self,
        trade: PreparedTrade,
        policy: TradePolicy,
        amount: Decimal,
        outcome: SwapOutcome,
        asset_info: Optional[Dict[str, Any]],
    ) -> TradeResult:
        token = (asset_info or {}).get("token") or {}
        return TradeResult(
            success=True,
            action=trade.action,
            mode=self.mode,
            tx_id=outcome.tx_id,
            asset_address=trade.asset_address,
            asset_symbol=token.get("symbol") or "UNKNOWN",
            asset_name=token.get("name") or "Unknown Token",
            amount_requested=trade.amount,
            amount_in=amount,
            expected_output=outcome.expected_output,
            price_impact=outcome.price_impact,
            slippage=policy.slippage,
            fee_rate=policy.fee_rate,
        )


class NormalStrategy(ModeStrategy):
    """Full validation set, user-configured slippage and fee."""

    mode = TradeMode.NORMAL

    def _requires(self, check: ValidationCheck) -> bool:
        return self.policy.requires_validation(self.mode, check)

    async def validate(self, trade: PreparedTrade, context: ExecutionContext) -> None:
        security = self.policy.security

        if self._requires(ValidationCheck.ADDRESS_SHAPE):
            require_address(trade.asset_address)

        if self._requires(ValidationCheck.AMOUNT_BOUNDS):
            if trade.amount <= 0:
                raise InvalidAmountError(trade.amount, "Amount must be greater than 0")
            if trade.action == TradeAction.BUY and trade.amount > security.max_transaction_amount:
                raise InvalidAmountError(
                    trade.amount,
                    f"Amount exceeds maximum limit: {security.max_transaction_amount}",
                    limit=security.max_transaction_amount,
                )

        if self._requires(ValidationCheck.BALANCE):
            balance = context.balance
            if balance is None:
                raise StoreUnavailableError("get_balance", "balance unavailable")
            if trade.action == TradeAction.BUY:
                required = trade.amount + security.fee_buffer
            else:
                # Selling spends the asset itself; native balance only covers fees
                required = security.fee_buffer
            if balance < required:
                raise InsufficientBalanceError(required, balance)
            if balance < security.min_balance:
                raise BelowMinimumBalanceError(security.min_balance, balance)

    def effective_amount(self, trade: PreparedTrade) -> Decimal:
        if trade.action == TradeAction.SELL and trade.sell_all:
            return trade.amount * self.policy.security.sell_all_haircut
        return trade.amount

    async def run(self, trade: PreparedTrade, context: ExecutionContext) -> TradeResult:
        validation_timeout = self.policy.get_timeout(self.mode, ExecutionPhase.VALIDATION)
        try:
            asset_info, _ = await asyncio.wait_for(
                asyncio.gather(
                    self.data.get_asset_info(trade.asset_address),
                    self.validate(trade, context),
                ),
                timeout=validation_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError("validation", f"timed out after {validation_timeout}s") from exc

        if trade.action == TradeAction.BUY and not (asset_info or {}).get("success"):
            raise InvalidAssetError(trade.asset_address, "Token not found or not supported")

        policy = self.compute_policy(context)
        amount = self.effective_amount(trade)
        if amount != trade.amount:
            logger.info(f"Sell-all amount adjusted from {trade.amount} to {amount}")

        outcome = await self.execute(trade, context, policy, amount)
        return self.build_result(trade, policy, amount, outcome, asset_info)


class TurboStrategy(ModeStrategy):
    """
    No validation, fixed slippage and fee.

    Callers must warn users out-of-band: nothing here checks balance or
    bounds before the exchange is called.
    """

    mode = TradeMode.TURBO

    async def validate(self, trade: PreparedTrade, context: ExecutionContext) -> None:
        return None

    async def run(self, trade: PreparedTrade, context: ExecutionContext) -> TradeResult:
        policy = self.compute_policy(context)
        amount = self.effective_amount(trade)

        # Display-only metadata, fetched alongside the swap
        info_task = asyncio.ensure_future(self.data.get_asset_info(trade.asset_address))
        try:
            outcome = await self.execute(trade, context, policy, amount)
        except BaseException:
            info_task.cancel()
            raise
        asset_info = await info_task
        return self.build_result(trade, policy, amount, outcome, asset_info)


STRATEGY_TYPES = {
    TradeMode.NORMAL: NormalStrategy,
    TradeMode.TURBO: TurboStrategy,
}


def build_strategies(
    policy: ConfigPolicy,
    data_preparer: DataPreparer,
    exchange: ExchangeProvider,
) -> Dict[TradeMode, ModeStrategy]:
    return {
        mode: strategy_type(policy, data_preparer, exchange)
        for mode, strategy_type in STRATEGY_TYPES.items()
    }
