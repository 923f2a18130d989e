"""
Tests for the Trade Conversation flow

Buy and sell flows from first prompt to executor hand-off, with the executor
and data preparer mocked.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock

import pytest

from swapdesk.core.conversation import (
    ConversationStateMachine,
    ConversationStateName,
    FlowStatus,
    TradeConversation,
)
from swapdesk.core.errors import InsufficientBalanceError
from swapdesk.core.policy import TradeMode
from swapdesk.core.trading import DataPreparer, TradeAction, TradeExecutor, TradeResult
from swapdesk.providers.base import AccountStore

TOKEN = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"


class StateOnlyStore(AccountStore):
    def __init__(self):
        self.states: Dict[Any, Dict[str, Any]] = {}

    async def get_account(self, user_id: Any) -> Optional[Dict[str, Any]]:
        return None

    async def get_settings(self, user_id: Any) -> Optional[Dict[str, Any]]:
        return None

    async def set_state(self, user_id: Any, name: str, payload: Dict[str, Any]) -> None:
        self.states[user_id] = {"state": name, "data": payload}

    async def get_state(self, user_id: Any) -> Optional[Dict[str, Any]]:
        return self.states.get(user_id)

    async def clear_state(self, user_id: Any) -> None:
        self.states.pop(user_id, None)

    async def append_transaction(self, user_id: Any, record: Dict[str, Any]) -> None:
        pass


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def machine(clock: FakeClock) -> ConversationStateMachine:
    return ConversationStateMachine(StateOnlyStore(), ttl_seconds=600, clock=clock)


@pytest.fixture
def executor() -> AsyncMock:
    mock = AsyncMock(spec=TradeExecutor)
    mock.execute_trade.return_value = TradeResult(
        success=True, action=TradeAction.BUY, mode=TradeMode.NORMAL, tx_id="0xtx"
    )
    return mock


@pytest.fixture
def data_preparer() -> AsyncMock:
    mock = AsyncMock(spec=DataPreparer)
    mock.get_asset_info.return_value = {"success": True, "token": {"symbol": "TKN", "name": "Token"}}
    mock.get_settings.return_value = None
    return mock


@pytest.fixture
def flow(machine, executor, data_preparer) -> TradeConversation:
    return TradeConversation(machine, executor, data_preparer)


# =============================================================================
# Buy flow
# =============================================================================

class TestBuyFlow:
    """Buy: address, amount, confirm."""

    @pytest.mark.asyncio
    async def test_full_normal_buy(self, flow: TradeConversation, machine, executor):
        outcome = await flow.start_buy(1)
        assert outcome.status == FlowStatus.PROMPT
        assert outcome.state.name == ConversationStateName.AWAITING_ASSET_INPUT

        outcome = await flow.handle_text(1, f"  {TOKEN} ")
        assert outcome.status == FlowStatus.PROMPT
        assert outcome.state.name == ConversationStateName.AWAITING_AMOUNT_INPUT
        assert outcome.options == [Decimal("0.1"), Decimal("0.5"), Decimal("1"), Decimal("5")]

        outcome = await flow.select_amount(1, "0.5")
        assert outcome.status == FlowStatus.CONFIRM
        assert outcome.state.name == ConversationStateName.CONFIRMING
        executor.execute_trade.assert_not_awaited()

        outcome = await flow.confirm(1)
        assert outcome.status == FlowStatus.EXECUTED
        assert outcome.result.tx_id == "0xtx"

        request = executor.execute_trade.await_args.args[0]
        assert request.mode == TradeMode.NORMAL
        assert request.action == TradeAction.BUY
        assert request.asset_address == TOKEN
        assert request.amount == Decimal("0.5")
        assert request.user_id == 1
        assert await machine.get_state(1) is None

    @pytest.mark.asyncio
    async def test_address_shortcut_without_state(self, flow: TradeConversation):
        outcome = await flow.handle_text(1, TOKEN)

        assert outcome.status == FlowStatus.PROMPT
        assert outcome.state.name == ConversationStateName.AWAITING_AMOUNT_INPUT
        assert outcome.state.payload.action == TradeAction.BUY

    @pytest.mark.asyncio
    async def test_free_text_amount(self, flow: TradeConversation):
        await flow.handle_text(1, TOKEN)

        outcome = await flow.handle_text(1, "2.5")

        assert outcome.status == FlowStatus.CONFIRM
        assert outcome.state.payload.amount == Decimal("2.5")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["abc", "-1", "0", ""])
    async def test_bad_amount_does_not_advance(self, flow: TradeConversation, machine, text):
        await flow.handle_text(1, TOKEN)

        outcome = await flow.handle_text(1, text)

        assert outcome.status == FlowStatus.RETRY
        state = await machine.get_state(1)
        assert state.name == ConversationStateName.AWAITING_AMOUNT_INPUT

    @pytest.mark.asyncio
    async def test_bad_address_does_not_advance(self, flow: TradeConversation, machine, data_preparer):
        await flow.start_buy(1)

        outcome = await flow.handle_text(1, "not-an-address")

        assert outcome.status == FlowStatus.RETRY
        assert (await machine.get_state(1)).name == ConversationStateName.AWAITING_ASSET_INPUT
        data_preparer.get_asset_info.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_token_does_not_advance(self, flow: TradeConversation, machine, data_preparer):
        data_preparer.get_asset_info.return_value = {"success": False, "error": "HTTP 404"}
        await flow.start_buy(1)

        outcome = await flow.handle_text(1, TOKEN)

        assert outcome.status == FlowStatus.RETRY
        assert (await machine.get_state(1)).name == ConversationStateName.AWAITING_ASSET_INPUT

    @pytest.mark.asyncio
    async def test_custom_presets_from_settings(self, flow: TradeConversation, data_preparer):
        data_preparer.get_settings.return_value = {"custom_buy_amounts": "0.2,2"}

        outcome = await flow.handle_text(1, TOKEN)

        assert outcome.options == [Decimal("0.2"), Decimal("2")]

    @pytest.mark.asyncio
    async def test_turbo_skips_confirmation(self, flow: TradeConversation, machine, executor, data_preparer):
        data_preparer.get_settings.return_value = {"turbo_mode": True}
        await flow.handle_text(1, TOKEN)

        outcome = await flow.select_amount(1, "1")

        assert outcome.status == FlowStatus.EXECUTED
        assert executor.execute_trade.await_args.args[0].mode == TradeMode.TURBO
        assert await machine.get_state(1) is None

    @pytest.mark.asyncio
    async def test_explicit_mode_wins_over_settings(self, flow: TradeConversation, executor, data_preparer):
        data_preparer.get_settings.return_value = {"turbo_mode": True}
        await flow.start_buy(1, mode=TradeMode.NORMAL)
        await flow.handle_text(1, TOKEN)

        outcome = await flow.select_amount(1, "1")

        assert outcome.status == FlowStatus.CONFIRM
        executor.execute_trade.assert_not_awaited()


# =============================================================================
# Sell flow
# =============================================================================

class TestSellFlow:
    """Sell: percentage of the holding."""

    @pytest.mark.asyncio
    async def test_percentage_sell(self, flow: TradeConversation, executor):
        outcome = await flow.start_sell(1, TOKEN, "200")
        assert outcome.options == [25, 50, 75, 100]

        outcome = await flow.select_percentage(1, 25)
        assert outcome.status == FlowStatus.CONFIRM

        await flow.confirm(1)
        request = executor.execute_trade.await_args.args[0]
        assert request.action == TradeAction.SELL
        assert request.amount == Decimal("50")
        assert request.sell_all is False

    @pytest.mark.asyncio
    async def test_hundred_percent_is_sell_all(self, flow: TradeConversation, executor):
        await flow.start_sell(1, TOKEN, "200")

        await flow.select_percentage(1, "100")
        await flow.confirm(1)

        request = executor.execute_trade.await_args.args[0]
        assert request.amount == Decimal("200")
        assert request.sell_all is True

    @pytest.mark.asyncio
    async def test_free_text_percentage(self, flow: TradeConversation):
        await flow.start_sell(1, TOKEN, "10")

        outcome = await flow.handle_text(1, "33.5%")

        assert outcome.status == FlowStatus.CONFIRM
        assert outcome.state.payload.amount == Decimal("3.35")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("percentage", ["0", "101", "half", -5])
    async def test_out_of_range_percentage(self, flow: TradeConversation, machine, percentage):
        await flow.start_sell(1, TOKEN, "10")

        outcome = await flow.select_percentage(1, percentage)

        assert outcome.status == FlowStatus.RETRY
        assert outcome.message == "Please enter a percentage above 0 and up to 100."
        assert (await machine.get_state(1)).name == ConversationStateName.AWAITING_AMOUNT_INPUT

    @pytest.mark.asyncio
    async def test_fractional_percentage_is_accepted(self, flow: TradeConversation):
        await flow.start_sell(1, TOKEN, "10")

        outcome = await flow.select_percentage(1, "0.5")

        assert outcome.status == FlowStatus.CONFIRM
        assert outcome.state.payload.amount == Decimal("0.05")

    @pytest.mark.asyncio
    async def test_sell_needs_holding(self, flow: TradeConversation, machine):
        outcome = await flow.start_sell(1, TOKEN, "0")

        assert outcome.status == FlowStatus.RETRY
        assert await machine.get_state(1) is None


# =============================================================================
# Session handling
# =============================================================================

class TestSessions:
    """Actions without a matching live state fail soft."""

    @pytest.mark.asyncio
    async def test_percentage_without_state_is_expired(self, flow: TradeConversation, executor):
        outcome = await flow.select_percentage(1, 50)

        assert outcome.status == FlowStatus.SESSION_EXPIRED
        executor.execute_trade.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirm_after_expiry(self, flow: TradeConversation, clock: FakeClock, executor):
        await flow.handle_text(1, TOKEN)
        await flow.select_amount(1, "1")
        clock.now += timedelta(minutes=11)

        outcome = await flow.confirm(1)

        assert outcome.status == FlowStatus.SESSION_EXPIRED
        executor.execute_trade.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_amount_for_wrong_action_is_expired(self, flow: TradeConversation):
        await flow.start_sell(1, TOKEN, "10")

        outcome = await flow.select_amount(1, "1")

        assert outcome.status == FlowStatus.SESSION_EXPIRED

    @pytest.mark.asyncio
    async def test_cancel_clears_state(self, flow: TradeConversation, machine, executor):
        await flow.handle_text(1, TOKEN)
        await flow.select_amount(1, "1")

        outcome = await flow.cancel(1)

        assert outcome.status == FlowStatus.CANCELLED
        assert await machine.get_state(1) is None
        assert (await flow.confirm(1)).status == FlowStatus.SESSION_EXPIRED
        executor.execute_trade.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_random_text_without_state(self, flow: TradeConversation):
        outcome = await flow.handle_text(1, "hello")

        assert outcome.status == FlowStatus.IGNORED

    @pytest.mark.asyncio
    async def test_text_while_confirming_is_ignored(self, flow: TradeConversation, machine):
        await flow.handle_text(1, TOKEN)
        await flow.select_amount(1, "1")

        outcome = await flow.handle_text(1, "5")

        assert outcome.status == FlowStatus.IGNORED
        assert (await machine.get_state(1)).name == ConversationStateName.CONFIRMING

    @pytest.mark.asyncio
    async def test_failed_trade_still_clears_state(self, flow: TradeConversation, machine, executor):
        executor.execute_trade.return_value = TradeResult.failure(
            InsufficientBalanceError(Decimal("1.05"), Decimal("0.2")), TradeAction.BUY, TradeMode.NORMAL
        )
        await flow.handle_text(1, TOKEN)
        await flow.select_amount(1, "1")

        outcome = await flow.confirm(1)

        assert outcome.status == FlowStatus.EXECUTED
        assert outcome.result.success is False
        assert outcome.message.startswith("Insufficient balance")
        assert await machine.get_state(1) is None
