"""
HTTP Market Data Provider

Asset metadata and native-asset balances from the exchange's public data API:
- GET {base}/token/{address}
- GET {base}/wallet/{address}/balances
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from .base import MarketDataProvider

logger = logging.getLogger(__name__)


class HttpMarketDataProvider(MarketDataProvider):
    """Read-only market data over HTTP."""

    name = "http_market_data"

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout_s: Optional[float] = None,
        native_address: Optional[str] = None,
        native_symbol: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.market_data_base_url).rstrip("/")
        self.timeout_s = timeout_s or settings.market_data_timeout_seconds
        self.native_address = (native_address or settings.native_asset_address).lower()
        self.native_symbol = native_symbol or settings.native_asset_symbol
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_s,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def get_asset_info(self, asset_address: str) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.get(f"{self.base_url}/token/{asset_address}")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Token info HTTP error for {asset_address}: {e}")
            return {"success": False, "error": f"HTTP {e.response.status_code}"}
        except Exception as e:
            logger.error(f"Token info lookup failed for {asset_address}: {e}", exc_info=True)
            return {"success": False, "error": str(e)}

        if not data or not isinstance(data, dict):
            return {"success": False, "error": "Token not found"}

        return {
            "success": True,
            "token": {
                "address": data.get("address") or asset_address,
                "symbol": data.get("symbol"),
                "name": data.get("name"),
                "decimals": data.get("decimals"),
                "price_usd": data.get("usd_per_token") or data.get("price"),
                "price_native": data.get("mon_per_token"),
                "market_cap": data.get("market_cap"),
                "volume_24h": data.get("volume_24h"),
            },
        }

    async def get_balance(self, account_address: str) -> Dict[str, Any]:
        """Native-asset balance; HTTP failures propagate to the caller."""
        client = await self._get_client()
        response = await client.get(f"{self.base_url}/wallet/{account_address}/balances")
        response.raise_for_status()
        data = response.json()

        if not isinstance(data, list):
            raise ValueError("Invalid balances response format")

        native = self._find_native(data)
        if native is None:
            return {"balance": "0", "price_usd": "0"}

        raw = (
            native.get("balance_formatted")
            or native.get("balanceFormatted")
            or native.get("balance")
            or "0"
        )
        try:
            balance = str(Decimal(str(raw)))
        except InvalidOperation:
            raise ValueError(f"Unparseable balance value: {raw!r}")

        return {
            "balance": balance,
            "price_usd": str(native.get("usd_per_token") or native.get("priceUSD") or "0"),
        }

    def _find_native(self, tokens: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        for token in tokens:
            address = str(token.get("address") or "").lower()
            if address == self.native_address or token.get("symbol") == self.native_symbol:
                return token
        return None
