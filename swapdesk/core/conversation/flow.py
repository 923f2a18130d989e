"""
Trade conversation flow.

Drives a buy or sell from first prompt to executed trade:

    start_buy ─▶ AWAITING_ASSET_INPUT ─(address)─▶ AWAITING_AMOUNT_INPUT
    start_sell ────────────────────────────────────▶ AWAITING_AMOUNT_INPUT
    AWAITING_AMOUNT_INPUT ─(amount / percentage)─▶ CONFIRMING  (Normal)
                                                 ─▶ EXECUTING   (Turbo)
    CONFIRMING ─(confirm)─▶ EXECUTING ─▶ IDLE

Rendering is the caller's job; every method returns a FlowOutcome that
says what happened and carries the data needed to render it.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import InvalidAmountError
from ..policy import TradeMode, TradingSettings
from ..trading import DataPreparer, TradeExecutor
from ..trading.models import TradeAction, TradeRequest, TradeResult, is_valid_address, parse_amount
from .models import (
    AwaitingAmountPayload,
    AwaitingAssetPayload,
    ConfirmingPayload,
    ConversationState,
    ConversationStateName,
    ExecutingPayload,
    FlowPresets,
    PendingTradePayload,
)
from .state_machine import ConversationStateMachine

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Token selection expired. Please try again."
HUNDRED = Decimal("100")


class FlowStatus(str, Enum):
    PROMPT = "prompt"                    # Waiting for the next input
    RETRY = "retry"                      # Input rejected; state unchanged
    SESSION_EXPIRED = "session_expired"  # No matching live state
    CONFIRM = "confirm"                  # Trade ready, waiting for confirm/cancel
    EXECUTED = "executed"                # Executor ran; see result
    CANCELLED = "cancelled"
    IGNORED = "ignored"                  # Input not meaningful in the current state


@dataclass
class FlowOutcome:
    status: FlowStatus
    message: str
    state: Optional[ConversationState] = None
    result: Optional[TradeResult] = None
    options: List[Any] = field(default_factory=list)

    @property
    def executed(self) -> bool:
        return self.status == FlowStatus.EXECUTED


class TradeConversation:
    """Multi-step buy/sell interaction on top of the state machine and executor."""

    def __init__(
        self,
        state_machine: ConversationStateMachine,
        executor: TradeExecutor,
        data_preparer: DataPreparer,
        presets: Optional[FlowPresets] = None,
    ):
        self.states = state_machine
        self.executor = executor
        self.data = data_preparer
        self.presets = presets or FlowPresets()

    # Entry points

    async def start_buy(self, user_id: Any, mode: Optional[TradeMode] = None) -> FlowOutcome:
        state = await self.states.set_state(
            user_id,
            ConversationStateName.AWAITING_ASSET_INPUT,
            AwaitingAssetPayload(action=TradeAction.BUY, mode=mode),
        )
        return FlowOutcome(FlowStatus.PROMPT, "Enter the token contract address you want to buy.", state)

    async def start_sell(
        self,
        user_id: Any,
        asset_address: str,
        holding: Any,
        mode: Optional[TradeMode] = None,
    ) -> FlowOutcome:
        """Begin a sell of a token the caller already knows the user holds."""
        if not is_valid_address(asset_address):
            return FlowOutcome(FlowStatus.RETRY, "Invalid token address format.")
        try:
            held = parse_amount(holding)
        except InvalidAmountError:
            return FlowOutcome(FlowStatus.RETRY, "You have no balance of this token to sell.")

        info = await self.data.get_asset_info(asset_address)
        token = (info.get("token") or {}) if info.get("success") else {}
        payload = AwaitingAmountPayload(
            action=TradeAction.SELL,
            asset_address=asset_address,
            asset_symbol=token.get("symbol") or "UNKNOWN",
            asset_name=token.get("name") or "Unknown Token",
            holding=held,
            mode=mode,
        )
        state = await self.states.set_state(user_id, ConversationStateName.AWAITING_AMOUNT_INPUT, payload)
        return FlowOutcome(
            FlowStatus.PROMPT,
            f"How much {payload.asset_symbol} do you want to sell?",
            state,
            options=await self._sell_options(user_id),
        )

    async def handle_text(self, user_id: Any, text: str) -> FlowOutcome:
        """Interpret free text according to the current state."""
        text = (text or "").strip()
        state = await self.states.get_state(user_id)

        if state is None:
            if is_valid_address(text):
                # Pasting an address with nothing pending starts a buy
                return await self._select_asset(user_id, None, TradeAction.BUY, None, text)
            return FlowOutcome(FlowStatus.IGNORED, "Please use the menu buttons to interact with the bot.")

        if state.name == ConversationStateName.AWAITING_ASSET_INPUT:
            payload = state.payload
            if not is_valid_address(text):
                return FlowOutcome(
                    FlowStatus.RETRY, "Invalid token address format. Please enter a valid address.", state
                )
            return await self._select_asset(user_id, state, payload.action, payload.mode, text)

        if state.name == ConversationStateName.AWAITING_AMOUNT_INPUT:
            if state.payload.action == TradeAction.SELL:
                return await self._apply_percentage(user_id, state, text.rstrip("%").strip())
            return await self._apply_amount(user_id, state, text)

        if state.name == ConversationStateName.CONFIRMING:
            return FlowOutcome(FlowStatus.IGNORED, "Please confirm or cancel the pending trade.", state)

        return FlowOutcome(FlowStatus.IGNORED, "A trade is already being processed.", state)

    async def select_amount(self, user_id: Any, amount: Any) -> FlowOutcome:
        """A preset buy amount was picked."""
        state = await self._expect(user_id, ConversationStateName.AWAITING_AMOUNT_INPUT, TradeAction.BUY)
        if state is None:
            return self._expired()
        return await self._apply_amount(user_id, state, amount)

    async def select_percentage(self, user_id: Any, percentage: Any) -> FlowOutcome:
        """A sell percentage was picked."""
        state = await self._expect(user_id, ConversationStateName.AWAITING_AMOUNT_INPUT, TradeAction.SELL)
        if state is None:
            return self._expired()
        return await self._apply_percentage(user_id, state, percentage)

    async def confirm(self, user_id: Any) -> FlowOutcome:
        state = await self._expect(user_id, ConversationStateName.CONFIRMING)
        if state is None:
            return self._expired()
        return await self._execute(user_id, state, state.payload)

    async def cancel(self, user_id: Any) -> FlowOutcome:
        await self.states.clear_state(user_id)
        return FlowOutcome(FlowStatus.CANCELLED, "Trade cancelled.")

    # Steps

    async def _select_asset(
        self,
        user_id: Any,
        state: Optional[ConversationState],
        action: TradeAction,
        mode: Optional[TradeMode],
        asset_address: str,
    ) -> FlowOutcome:
        info = await self.data.get_asset_info(asset_address)
        if not info.get("success"):
            return FlowOutcome(
                FlowStatus.RETRY,
                "Token not found or not supported. Please check the address and try again.",
                state,
            )

        token = info.get("token") or {}
        payload = AwaitingAmountPayload(
            action=action,
            asset_address=asset_address,
            asset_symbol=token.get("symbol") or "UNKNOWN",
            asset_name=token.get("name") or "Unknown Token",
            mode=mode,
        )
        new_state = await self.states.transition(
            user_id, ConversationStateName.AWAITING_AMOUNT_INPUT, payload, current=state
        )
        return FlowOutcome(
            FlowStatus.PROMPT,
            f"Select the amount to spend on {payload.asset_symbol}.",
            new_state,
            options=await self._buy_options(user_id),
        )

    async def _apply_amount(self, user_id: Any, state: ConversationState, raw: Any) -> FlowOutcome:
        try:
            amount = parse_amount(raw)
        except InvalidAmountError as exc:
            return FlowOutcome(FlowStatus.RETRY, f"{exc.message}. Please enter a positive number.", state)
        return await self._amount_chosen(user_id, state, amount)

    async def _apply_percentage(self, user_id: Any, state: ConversationState, raw: Any) -> FlowOutcome:
        payload = state.payload
        try:
            percentage = Decimal(str(raw).strip())
        except (InvalidOperation, ValueError):
            percentage = None
        if percentage is None or not percentage.is_finite() or percentage <= 0 or percentage > HUNDRED:
            return FlowOutcome(FlowStatus.RETRY, "Please enter a percentage above 0 and up to 100.", state)

        if not payload.holding:
            await self.states.clear_state(user_id)
            return FlowOutcome(FlowStatus.SESSION_EXPIRED, "No balance found for this token. Please start again.")

        sell_all = percentage == HUNDRED
        amount = payload.holding if sell_all else payload.holding * percentage / HUNDRED
        return await self._amount_chosen(user_id, state, amount, sell_all=sell_all, percentage=percentage)

    async def _amount_chosen(
        self,
        user_id: Any,
        state: ConversationState,
        amount: Decimal,
        sell_all: bool = False,
        percentage: Optional[Decimal] = None,
    ) -> FlowOutcome:
        payload = state.payload
        mode = payload.mode or await self._mode_from_settings(user_id)
        trade_fields = dict(
            action=payload.action,
            asset_address=payload.asset_address,
            amount=amount,
            mode=mode,
            asset_symbol=payload.asset_symbol,
            asset_name=payload.asset_name,
            sell_all=sell_all,
            percentage=percentage,
        )

        if mode == TradeMode.TURBO:
            # Turbo trades skip the confirmation step
            return await self._execute(user_id, state, ExecutingPayload(**trade_fields))

        confirming = ConfirmingPayload(**trade_fields)
        new_state = await self.states.transition(
            user_id, ConversationStateName.CONFIRMING, confirming, current=state
        )
        verb = "Buy" if confirming.action == TradeAction.BUY else "Sell"
        unit = "native" if confirming.action == TradeAction.BUY else confirming.asset_symbol
        return FlowOutcome(
            FlowStatus.CONFIRM,
            f"{verb} {confirming.asset_name} ({confirming.asset_symbol}) for {amount} {unit}? Confirm or cancel.",
            new_state,
        )

    async def _execute(
        self,
        user_id: Any,
        state: ConversationState,
        pending: PendingTradePayload,
    ) -> FlowOutcome:
        executing = pending if isinstance(pending, ExecutingPayload) else ExecutingPayload(**_fields(pending))
        await self.states.transition(user_id, ConversationStateName.EXECUTING, executing, current=state)

        request = TradeRequest(
            mode=executing.mode,
            action=executing.action,
            user_id=user_id,
            asset_address=executing.asset_address,
            amount=executing.amount,
            sell_all=executing.sell_all,
        )
        try:
            result = await self.executor.execute_trade(request)
        finally:
            await self._clear_after_execution(user_id)

        if result.success:
            message = f"{executing.action.value.capitalize()} executed. Transaction: {result.tx_id}"
        else:
            message = result.error_message or "Trade failed."
        return FlowOutcome(FlowStatus.EXECUTED, message, result=result)

    # Helpers

    async def _expect(
        self,
        user_id: Any,
        name: ConversationStateName,
        action: Optional[TradeAction] = None,
    ) -> Optional[ConversationState]:
        state = await self.states.get_state(user_id)
        if state is None or state.name != name:
            return None
        if action is not None and state.payload.action != action:
            return None
        return state

    def _expired(self) -> FlowOutcome:
        return FlowOutcome(FlowStatus.SESSION_EXPIRED, SESSION_EXPIRED_MESSAGE)

    async def _settings(self, user_id: Any) -> TradingSettings:
        return TradingSettings.from_raw(await self.data.get_settings(user_id))

    async def _mode_from_settings(self, user_id: Any) -> TradeMode:
        settings = await self._settings(user_id)
        return TradeMode.TURBO if settings.turbo_mode else TradeMode.NORMAL

    async def _buy_options(self, user_id: Any) -> List[Decimal]:
        settings = await self._settings(user_id)
        return list(settings.custom_buy_amounts) or list(self.presets.buy_amounts)

    async def _sell_options(self, user_id: Any) -> List[int]:
        settings = await self._settings(user_id)
        return list(settings.custom_sell_percentages) or list(self.presets.sell_percentages)

    async def _clear_after_execution(self, user_id: Any) -> None:
        try:
            await self.states.clear_state(user_id)
        except Exception as exc:
            logger.warning(f"Failed to clear conversation state for user {user_id}: {exc}")


def _fields(payload: PendingTradePayload) -> Dict[str, Any]:
    return {f.name: getattr(payload, f.name) for f in dataclasses.fields(payload)}
