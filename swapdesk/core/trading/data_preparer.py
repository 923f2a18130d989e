"""
Trade data preparation.

Assembles the ExecutionContext for one request: account and settings (cached
permanently until invalidated), a freshly built wallet handle, the native
balance (short TTL) and the policy-derived slippage and fee rate.
"""

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

from ...services.cache import CacheCategory, CacheStore
from ...services.invalidation import CacheOperation, invalidate_after_operation
from ...providers.base import AccountStore, MarketDataProvider, WalletProvider
from ..errors import (
    AccountNotFoundError,
    StoreUnavailableError,
    WalletUnavailableError,
)
from ..policy import ConfigPolicy, TradeMode, TradingSettings, ValidationCheck, coerce_mode
from .models import ExecutionContext

logger = logging.getLogger(__name__)

WALLET_MARKER = "warm"


class DataPreparer:
    """
    Builds ExecutionContext objects.

    The wallet handle is constructed on every call and never cached; only a
    "warm" marker is stored so diagnostics can tell first use from reuse.
    """

    def __init__(
        self,
        account_store: AccountStore,
        wallet_provider: WalletProvider,
        market_data: MarketDataProvider,
        cache: CacheStore,
        policy: Optional[ConfigPolicy] = None,
    ):
        self.account_store = account_store
        self.wallet_provider = wallet_provider
        self.market_data = market_data
        self.cache = cache
        self.policy = policy or ConfigPolicy()

    async def prepare_trade_data(
        self,
        user_id: Any,
        mode: Any,
        preloaded_account: Optional[Mapping[str, Any]] = None,
        preloaded_settings: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionContext:
        """
        Build the execution context for one trade.

        Raises:
            InvalidModeError: unknown mode
            AccountNotFoundError: no account record for ``user_id``
            WalletUnavailableError: the wallet handle could not be built
            StoreUnavailableError: a required lookup failed
        """
        start = time.perf_counter()
        trade_mode = coerce_mode(mode)

        account, raw_settings = await self._resolve_account_and_settings(
            user_id, preloaded_account, preloaded_settings
        )
        if not account:
            raise AccountNotFoundError(user_id)

        wallet_address = account.get("wallet_address")
        if not wallet_address:
            raise WalletUnavailableError("account has no wallet address")

        wallet = await self.get_wallet(user_id, account)
        balance = await self._resolve_balance(wallet_address, trade_mode)

        trading_settings = TradingSettings.from_raw(raw_settings)
        elapsed_ms = (time.perf_counter() - start) * 1000

        context = ExecutionContext(
            user_id=user_id,
            mode=trade_mode,
            account=account,
            settings=trading_settings,
            wallet=wallet,
            wallet_address=wallet_address,
            balance=balance,
            effective_slippage=self.policy.get_slippage(trade_mode, trading_settings),
            effective_fee_rate=self.policy.get_fee_rate(trade_mode, trading_settings),
            prepared_in_ms=elapsed_ms,
        )
        logger.info(f"Trade data prepared for user {user_id} ({trade_mode.value}) in {elapsed_ms:.1f}ms")
        return context

    async def _resolve_account_and_settings(
        self,
        user_id: Any,
        preloaded_account: Optional[Mapping[str, Any]],
        preloaded_settings: Optional[Mapping[str, Any]],
    ) -> Tuple[Optional[Mapping[str, Any]], Optional[Mapping[str, Any]]]:
        if preloaded_account is not None and preloaded_settings is not None:
            logger.debug(f"Using preloaded account and settings for user {user_id}")
            return preloaded_account, preloaded_settings

        async def _account() -> Optional[Mapping[str, Any]]:
            if preloaded_account is not None:
                return preloaded_account
            return await self.get_account(user_id)

        async def _settings() -> Optional[Mapping[str, Any]]:
            if preloaded_settings is not None:
                return preloaded_settings
            return await self.get_settings(user_id)

        account, settings = await asyncio.gather(_account(), _settings())
        return account, settings

    async def get_account(self, user_id: Any) -> Optional[Dict[str, Any]]:
        try:
            return await self.cache.get_or_set(
                CacheCategory.ACCOUNT,
                user_id,
                lambda: self.account_store.get_account(user_id),
            )
        except Exception as exc:
            logger.error(f"Account lookup failed for user {user_id}: {exc}")
            raise StoreUnavailableError("get_account", str(exc)) from exc

    async def get_settings(self, user_id: Any) -> Optional[Dict[str, Any]]:
        """Settings are optional; a failed lookup degrades to defaults."""
        try:
            return await self.cache.get_or_set(
                CacheCategory.SETTINGS,
                user_id,
                lambda: self.account_store.get_settings(user_id),
            )
        except Exception as exc:
            logger.warning(f"Settings lookup failed for user {user_id}, using defaults: {exc}")
            return None

    async def get_wallet(self, user_id: Any, account: Mapping[str, Any]) -> Any:
        marker = await self.cache.get(CacheCategory.WALLET_MARKER, user_id)
        if marker:
            logger.debug(f"Wallet warm for user {user_id}")
        else:
            await self.cache.set(CacheCategory.WALLET_MARKER, user_id, WALLET_MARKER)

        credential = account.get("encrypted_private_key")
        if not credential:
            raise WalletUnavailableError("account has no wallet credential")
        try:
            wallet = await self.wallet_provider.get_wallet_handle(credential)
        except Exception as exc:
            logger.error(f"Wallet construction failed for user {user_id}: {exc}")
            raise WalletUnavailableError(str(exc)) from exc
        if wallet is None:
            raise WalletUnavailableError("wallet provider returned no handle")
        return wallet

    async def get_balance(self, wallet_address: str) -> Decimal:
        payload = await self.cache.get_or_set(
            CacheCategory.NATIVE_BALANCE,
            wallet_address,
            lambda: self.market_data.get_balance(wallet_address),
        )
        return _parse_balance(payload)

    async def _resolve_balance(self, wallet_address: str, mode: TradeMode) -> Optional[Decimal]:
        try:
            return await self.get_balance(wallet_address)
        except Exception as exc:
            if self.policy.requires_validation(mode, ValidationCheck.BALANCE):
                logger.error(f"Balance lookup failed for {wallet_address}: {exc}")
                raise StoreUnavailableError("get_balance", str(exc)) from exc
            logger.warning(f"Balance lookup failed for {wallet_address}, continuing without it: {exc}")
            return None

    async def get_asset_info(self, asset_address: str) -> Optional[Dict[str, Any]]:
        """Asset metadata; provider failures are returned as ``success: False``."""
        miss: Dict[str, Any] = {"success": False, "error": "Token not found"}

        async def _fetch() -> Optional[Dict[str, Any]]:
            info = await self.market_data.get_asset_info(asset_address)
            # Only successful lookups are cached
            if info and info.get("success"):
                return info
            if info:
                miss.update(info)
            return None

        try:
            info = await self.cache.get_or_set(CacheCategory.ASSET_INFO, asset_address.lower(), _fetch)
        except Exception as exc:
            logger.warning(f"Asset info lookup failed for {asset_address}: {exc}")
            return {"success": False, "error": str(exc)}
        return info or miss

    async def refresh_account_cache(
        self,
        user_id: Any,
        operation: CacheOperation = CacheOperation.SETTINGS_CHANGE,
        wallet_address: Optional[str] = None,
    ) -> int:
        """Drop cached account data after a settings change or wallet import."""
        if wallet_address is None and operation == CacheOperation.WALLET_IMPORT:
            cached = await self.cache.get(CacheCategory.ACCOUNT, user_id)
            if cached:
                wallet_address = cached.get("wallet_address")
        return await invalidate_after_operation(self.cache, operation, user_id, wallet_address)


def _parse_balance(payload: Any) -> Decimal:
    raw = payload.get("balance") if isinstance(payload, Mapping) else payload
    if raw is None:
        raise ValueError("balance missing from provider response")
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"Unparseable balance value: {raw!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid balance value: {raw!r}")
    return value
