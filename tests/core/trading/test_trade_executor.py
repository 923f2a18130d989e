"""
Tests for the Trade Executor

End-to-end behaviour of execute_trade across modes and actions, with the
exchange, account store and wallet provider stubbed out.
"""

import asyncio
import dataclasses
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from swapdesk.cache import TTLCache
from swapdesk.core.errors import ErrorCode, ErrorFamily
from swapdesk.core.policy import ConfigPolicy, ExecutionPhase, SecurityLimits, TradeMode
from swapdesk.core.policy.models import MODE_PROFILES
from swapdesk.core.trading import (
    DataPreparer,
    InMemoryMetricsSink,
    MetricsSink,
    TradeAction,
    TradeExecutor,
    TradeRequest,
)
from swapdesk.providers.base import AccountStore, ExchangeProvider, WalletProvider
from swapdesk.services.cache import CacheCategory, CacheStore

WALLET = "0x1234567890123456789012345678901234567890"
TOKEN = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"
SIGNER = object()


class FailingSink(MetricsSink):
    def record_trade(self, mode, success, duration_ms):
        raise RuntimeError("sink down")


class Harness:
    """Executor wired to mocked collaborators."""

    def __init__(self, balance: str = "1.0", policy: ConfigPolicy = None):
        self.account_store = AsyncMock(spec=AccountStore)
        self.account_store.get_account.return_value = {
            "wallet_address": WALLET,
            "encrypted_private_key": "enc-key",
        }
        self.account_store.get_settings.return_value = None

        self.wallet_provider = AsyncMock(spec=WalletProvider)
        self.wallet_provider.get_wallet_handle.return_value = SIGNER

        self.exchange = AsyncMock(spec=ExchangeProvider)
        self.exchange.get_balance.return_value = {"balance": balance}
        self.exchange.get_asset_info.return_value = {
            "success": True,
            "token": {"symbol": "TKN", "name": "Token"},
        }
        self.exchange.buy.return_value = {
            "success": True,
            "txId": "0xbuy",
            "expectedOutput": "1234.5",
            "priceImpact": "0.3",
        }
        self.exchange.sell.return_value = {
            "success": True,
            "txId": "0xsell",
            "expectedOutput": "0.8",
        }

        self.cache = CacheStore(TTLCache())
        self.metrics = InMemoryMetricsSink()
        self.policy = policy or ConfigPolicy()
        self.preparer = DataPreparer(
            self.account_store, self.wallet_provider, self.exchange, self.cache, self.policy
        )
        self.executor = TradeExecutor(
            self.preparer,
            self.exchange,
            self.cache,
            self.account_store,
            metrics=self.metrics,
            policy=self.policy,
        )

    async def trade(self, mode="normal", action="buy", amount="0.5", asset=TOKEN, **kwargs):
        return await self.executor.execute_trade(
            TradeRequest(mode=mode, action=action, user_id=1, asset_address=asset, amount=amount, **kwargs)
        )


@pytest.fixture
def harness() -> Harness:
    return Harness()


# =============================================================================
# Normal mode
# =============================================================================

class TestNormalMode:
    """Validated trades."""

    @pytest.mark.asyncio
    async def test_buy_within_balance_succeeds(self, harness: Harness):
        """Balance 1.0 covers a 0.5 buy plus the 0.05 fee buffer."""
        await harness.cache.set(CacheCategory.PORTFOLIO, 1, {"tokens": []})
        await harness.cache.set(CacheCategory.USER_SUMMARY, 1, {"total": "1"})

        result = await harness.trade()

        assert result.success is True
        assert result.tx_id == "0xbuy"
        assert result.action == TradeAction.BUY
        assert result.mode == TradeMode.NORMAL
        assert result.expected_output == Decimal("1234.5")
        assert result.asset_symbol == "TKN"

        args = harness.exchange.buy.await_args.args
        assert args[0] is SIGNER
        assert args[1] == TOKEN
        assert args[2] == Decimal("0.5")
        assert args[3] == Decimal("1")

        assert await harness.cache.get(CacheCategory.NATIVE_BALANCE, WALLET) is None
        assert await harness.cache.get(CacheCategory.PORTFOLIO, 1) is None
        assert await harness.cache.get(CacheCategory.USER_SUMMARY, 1) is None

    @pytest.mark.asyncio
    async def test_success_appends_transaction_record(self, harness: Harness):
        await harness.trade()

        harness.account_store.append_transaction.assert_awaited_once()
        user_id, record = harness.account_store.append_transaction.await_args.args
        assert user_id == 1
        assert record["txId"] == "0xbuy"
        assert record["type"] == "buy"
        assert record["mode"] == "normal"
        assert record["amount"] == "0.5"

    @pytest.mark.asyncio
    async def test_insufficient_balance_reports_shortfall(self):
        harness = Harness(balance="0.02")

        result = await harness.trade()

        assert result.success is False
        assert result.error_code == ErrorCode.INSUFFICIENT_BALANCE.value
        assert result.error.family == ErrorFamily.POLICY
        assert result.error.details["required"] == "0.55"
        assert result.error.details["available"] == "0.02"
        assert result.error.details["shortfall"] == "0.53"
        harness.exchange.buy.assert_not_awaited()
        harness.account_store.append_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sufficiency_is_checked_before_minimum_floor(self):
        harness = Harness(balance="0.005")

        result = await harness.trade(amount="0.001")

        assert result.error_code == ErrorCode.INSUFFICIENT_BALANCE.value
        assert result.error.details["required"] == "0.051"
        harness.exchange.buy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_below_minimum_balance(self):
        policy = ConfigPolicy(security=SecurityLimits(fee_buffer=Decimal("0")))
        harness = Harness(balance="0.005", policy=policy)

        result = await harness.trade(amount="0.001")

        assert result.error_code == ErrorCode.BELOW_MINIMUM_BALANCE.value
        assert result.error.details["minimum"] == "0.01"
        harness.exchange.buy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_amount_over_maximum(self):
        harness = Harness(balance="10000")

        result = await harness.trade(amount="1500")

        assert result.error_code == ErrorCode.INVALID_AMOUNT.value
        assert result.error.details["limit"] == "1000"
        harness.exchange.buy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_token_blocks_buy(self, harness: Harness):
        harness.exchange.get_asset_info.return_value = {"success": False, "error": "HTTP 404"}

        result = await harness.trade()

        assert result.error_code == ErrorCode.INVALID_ASSET.value
        harness.exchange.buy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sell_all_applies_haircut(self, harness: Harness):
        result = await harness.trade(action="sell", amount="2", sell_all=True)

        assert result.success is True
        assert harness.exchange.sell.await_args.args[2] == Decimal("1.99")
        assert result.amount_requested == Decimal("2")
        assert result.amount_in == Decimal("1.99")

    @pytest.mark.asyncio
    async def test_partial_sell_has_no_haircut(self, harness: Harness):
        await harness.trade(action="sell", amount="2")

        assert harness.exchange.sell.await_args.args[2] == Decimal("2")

    @pytest.mark.asyncio
    async def test_sell_needs_fee_buffer(self):
        harness = Harness(balance="0.03")

        result = await harness.trade(action="sell", amount="100")

        assert result.error_code == ErrorCode.INSUFFICIENT_BALANCE.value
        assert result.error.details["required"] == "0.05"
        harness.exchange.sell.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sell_tolerates_missing_metadata(self, harness: Harness):
        harness.exchange.get_asset_info.return_value = {"success": False}

        result = await harness.trade(action="sell", amount="2")

        assert result.success is True
        assert result.asset_symbol == "UNKNOWN"


# =============================================================================
# Turbo mode
# =============================================================================

class TestTurboMode:
    """Unvalidated trades."""

    @pytest.mark.asyncio
    async def test_turbo_buy_reaches_exchange_with_zero_balance(self):
        harness = Harness(balance="0.0")

        result = await harness.trade(mode="turbo")

        harness.exchange.buy.assert_awaited_once()
        args = harness.exchange.buy.await_args.args
        assert args[3] == Decimal("20")
        assert args[4]["gas_price"] == 100 * 10 ** 9
        assert args[4]["turbo"] is True
        assert result.success is True

    @pytest.mark.asyncio
    async def test_turbo_ignores_balance_failure(self, harness: Harness):
        harness.exchange.get_balance.side_effect = ConnectionError("rpc down")

        result = await harness.trade(mode="turbo", amount="5000")

        assert result.success is True
        harness.exchange.buy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_turbo_sell_all_has_no_haircut(self, harness: Harness):
        await harness.trade(mode="turbo", action="sell", amount="2", sell_all=True)

        assert harness.exchange.sell.await_args.args[2] == Decimal("2")


# =============================================================================
# Request shape
# =============================================================================

class TestRequestShape:
    """Malformed requests fail before any collaborator is touched."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", ["normal", "turbo"])
    @pytest.mark.parametrize("action", ["buy", "sell"])
    async def test_malformed_address_makes_no_calls(self, harness: Harness, mode, action):
        result = await harness.trade(mode=mode, action=action, asset="not-an-address")

        assert result.success is False
        assert result.error_code == ErrorCode.INVALID_ASSET.value
        assert result.error.family == ErrorFamily.INPUT
        harness.account_store.get_account.assert_not_awaited()
        harness.exchange.get_balance.assert_not_awaited()
        harness.exchange.get_asset_info.assert_not_awaited()
        harness.exchange.buy.assert_not_awaited()
        harness.exchange.sell.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["abc", "0", "-1", None, "NaN"])
    async def test_bad_amount(self, harness: Harness, amount):
        result = await harness.trade(mode="turbo", amount=amount)

        assert result.error_code == ErrorCode.INVALID_AMOUNT.value
        harness.exchange.buy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_mode(self, harness: Harness):
        result = await harness.trade(mode="warp")

        assert result.error_code == ErrorCode.INVALID_MODE.value
        assert result.mode is None
        harness.account_store.get_account.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_action(self, harness: Harness):
        result = await harness.trade(action="hold")

        assert result.error_code == ErrorCode.INVALID_ACTION.value
        assert result.mode == TradeMode.NORMAL


# =============================================================================
# Exchange and collaborator failures
# =============================================================================

class TestFailures:
    """execute_trade never raises."""

    @pytest.mark.asyncio
    async def test_provider_failure_is_paraphrased(self, harness: Harness):
        harness.exchange.buy.return_value = {"success": False, "error": "Slippage tolerance exceeded"}

        result = await harness.trade()

        assert result.error_code == ErrorCode.EXTERNAL_EXECUTION_FAILED.value
        assert "slippage" in result.error_message.lower()
        assert result.error.details["providerError"] == "Slippage tolerance exceeded"
        harness.account_store.append_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_exception(self, harness: Harness):
        harness.exchange.sell.side_effect = RuntimeError("execution reverted: insufficient funds for gas")

        result = await harness.trade(action="sell", amount="1")

        assert result.error_code == ErrorCode.EXTERNAL_EXECUTION_FAILED.value
        assert result.error.family == ErrorFamily.INFRASTRUCTURE

    @pytest.mark.asyncio
    async def test_exchange_timeout(self):
        profiles = dict(MODE_PROFILES)
        profiles[TradeMode.TURBO] = dataclasses.replace(
            MODE_PROFILES[TradeMode.TURBO], timeouts={ExecutionPhase.EXECUTION: 0.01}
        )
        harness = Harness(policy=ConfigPolicy(profiles=profiles))

        async def slow_buy(*args):
            await asyncio.sleep(1)

        harness.exchange.buy.side_effect = slow_buy

        result = await harness.trade(mode="turbo")

        assert result.error_code == ErrorCode.EXTERNAL_EXECUTION_FAILED.value
        assert "timed out" in result.error.details["providerError"]

    @pytest.mark.asyncio
    async def test_failed_turbo_does_not_break_concurrent_asset_lookup(self, harness: Harness):
        """A Turbo failure cancels its metadata read; a Normal trade waiting on it still completes."""
        release = asyncio.Event()
        lookups = []

        async def slow_info(address):
            lookups.append(address)
            await release.wait()
            return {"success": True, "token": {"symbol": "TKN", "name": "Token"}}

        async def buy(wallet, asset, amount, slippage, opts):
            if opts["turbo"]:
                while harness.cache.stats.coalesced == 0:
                    await asyncio.sleep(0.001)
                raise RuntimeError("execution reverted")
            return {"success": True, "txId": "0xnormal", "expectedOutput": "10"}

        harness.exchange.get_asset_info.side_effect = slow_info
        harness.exchange.buy.side_effect = buy

        turbo = asyncio.create_task(harness.trade(mode="turbo"))
        while not lookups:
            await asyncio.sleep(0.001)
        normal = asyncio.create_task(harness.trade(mode="normal"))

        turbo_result = await turbo
        release.set()
        normal_result = await normal

        assert turbo_result.success is False
        assert turbo_result.error_code == ErrorCode.EXTERNAL_EXECUTION_FAILED.value
        assert normal_result.success is True
        assert normal_result.tx_id == "0xnormal"
        assert len(lookups) == 2

    @pytest.mark.asyncio
    async def test_wallet_unavailable(self, harness: Harness):
        harness.wallet_provider.get_wallet_handle.side_effect = ValueError("bad key")

        result = await harness.trade()

        assert result.error_code == ErrorCode.WALLET_UNAVAILABLE.value

    @pytest.mark.asyncio
    async def test_account_not_found(self, harness: Harness):
        harness.account_store.get_account.return_value = None

        result = await harness.trade()

        assert result.error_code == ErrorCode.ACCOUNT_NOT_FOUND.value

    @pytest.mark.asyncio
    async def test_transaction_log_failure_does_not_fail_trade(self, harness: Harness):
        harness.account_store.append_transaction.side_effect = ConnectionError("db down")

        result = await harness.trade()

        assert result.success is True

    @pytest.mark.asyncio
    async def test_missing_tx_id_skips_record(self, harness: Harness):
        harness.exchange.buy.return_value = {"success": True, "expectedOutput": "10"}

        result = await harness.trade()

        assert result.success is True
        harness.account_store.append_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_internal(self, harness: Harness):
        harness.preparer.prepare_trade_data = AsyncMock(side_effect=KeyError("boom"))

        result = await harness.trade()

        assert result.error_code == ErrorCode.INTERNAL.value


# =============================================================================
# Statistics
# =============================================================================

class TestStatistics:
    """Every outcome reaches the metrics sink."""

    @pytest.mark.asyncio
    async def test_records_success_and_failure_per_mode(self, harness: Harness):
        await harness.trade()
        await harness.trade(asset="nope")
        await harness.trade(mode="turbo")
        await harness.trade(mode="warp")

        normal = harness.metrics.stats_for(TradeMode.NORMAL)
        assert normal.total == 2
        assert normal.successful == 1
        assert normal.failed == 1
        assert harness.metrics.stats_for(TradeMode.TURBO).successful == 1
        assert harness.metrics.stats_for(None).failed == 1

    @pytest.mark.asyncio
    async def test_execution_time_is_set(self, harness: Harness):
        result = await harness.trade()

        assert result.execution_time_ms > 0

    @pytest.mark.asyncio
    async def test_metrics_failure_is_swallowed(self, harness: Harness):
        harness.executor.metrics = FailingSink()

        result = await harness.trade()

        assert result.success is True

    @pytest.mark.asyncio
    async def test_stats_and_health(self, harness: Harness):
        await harness.trade()

        stats = harness.executor.get_stats()
        health = await harness.executor.health_check()

        assert stats["trades"]["totalTrades"] == 1
        assert "hitRate" in stats["cache"]
        assert health["status"] == "healthy"
        assert health["modes"] == ["normal", "turbo"]
