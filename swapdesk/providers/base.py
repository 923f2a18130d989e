from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional, Union


class AccountStore(ABC):
    """Source of truth for accounts, settings, conversation state and transactions"""

    @abstractmethod
    async def get_account(self, user_id: Any) -> Optional[Dict[str, Any]]:
        """Return the account record (wallet address, encrypted credential) or None"""
        pass

    @abstractmethod
    async def get_settings(self, user_id: Any) -> Optional[Dict[str, Any]]:
        """Return the user's trading settings record or None"""
        pass

    @abstractmethod
    async def set_state(self, user_id: Any, name: str, payload: Dict[str, Any]) -> None:
        """Replace the user's single conversation state record"""
        pass

    @abstractmethod
    async def get_state(self, user_id: Any) -> Optional[Dict[str, Any]]:
        """Return ``{"state": name, "data": payload}`` or None"""
        pass

    @abstractmethod
    async def clear_state(self, user_id: Any) -> None:
        pass

    @abstractmethod
    async def append_transaction(self, user_id: Any, record: Dict[str, Any]) -> None:
        """Persist an immutable transaction record"""
        pass


class MarketDataProvider(ABC):
    """Read-only asset and balance lookups"""

    name: str = "market_data"
    timeout_s: float = 10

    @abstractmethod
    async def get_asset_info(self, asset_address: str) -> Dict[str, Any]:
        """Return ``{"success": bool, "token": {...}}`` for an asset"""
        pass

    @abstractmethod
    async def get_balance(self, account_address: str) -> Dict[str, Any]:
        """Return the native-asset balance as ``{"balance": "<decimal string>"}``"""
        pass


class ExchangeProvider(MarketDataProvider):
    """Opaque swap capability; the routing and signing happen behind it"""

    name: str = "exchange"

    @abstractmethod
    async def buy(
        self,
        wallet: Any,
        asset_address: str,
        amount: Union[Decimal, str],
        slippage: Decimal,
        fee_opts: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Spend native asset on ``asset_address``.

        Returns ``{"success", "txId", "expectedOutput", "priceImpact", "error"}``.
        """
        pass

    @abstractmethod
    async def sell(
        self,
        wallet: Any,
        asset_address: str,
        amount: Union[Decimal, str],
        slippage: Decimal,
        fee_opts: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Sell ``amount`` of ``asset_address`` for native asset."""
        pass


class WalletProvider(ABC):
    """Builds signing handles from encrypted credentials"""

    @abstractmethod
    async def get_wallet_handle(self, encrypted_credential: str) -> Any:
        """Return an opaque signing handle; raise or return None on failure"""
        pass


class CacheBackend(ABC):
    """Namespaced key/value storage with optional expiry"""

    name: str = "cache"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store ``value``; ``ttl=None`` keeps it until deleted"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass
