from .base import AccountStore, CacheBackend, ExchangeProvider, MarketDataProvider, WalletProvider
from .market_data import HttpMarketDataProvider

__all__ = [
    "AccountStore",
    "CacheBackend",
    "ExchangeProvider",
    "HttpMarketDataProvider",
    "MarketDataProvider",
    "WalletProvider",
]
