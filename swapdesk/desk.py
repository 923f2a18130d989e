"""
Trade desk wiring.

Builds the cache, data preparer, executor and conversation flow from the
external collaborators and settings. Hosts (bots, workers) create one desk
at startup and share it across requests.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .config import Settings, settings as default_settings
from .core.conversation import ConversationStateMachine, TradeConversation
from .core.policy import ConfigPolicy
from .core.trading import DataPreparer, InMemoryMetricsSink, LoggingMetricsSink, MetricsSink, TradeExecutor
from .logging_config import setup_logging
from .providers.base import AccountStore, ExchangeProvider, MarketDataProvider, WalletProvider
from .services.cache import CacheStore, build_cache_store

logger = logging.getLogger(__name__)


@dataclass
class TradeDesk:
    cache: CacheStore
    data_preparer: DataPreparer
    executor: TradeExecutor
    states: ConversationStateMachine
    conversation: TradeConversation
    market_data: MarketDataProvider
    # Clients created by build_trade_desk; caller-supplied ones are left open
    owned: List[Any] = field(default_factory=list)

    async def close(self) -> None:
        """Release network clients owned by the desk."""
        for resource in self.owned:
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as exc:
                logger.warning(f"Failed to close {type(resource).__name__}: {exc}")
        self.owned.clear()


def build_trade_desk(
    account_store: AccountStore,
    wallet_provider: WalletProvider,
    exchange: ExchangeProvider,
    *,
    market_data: Optional[MarketDataProvider] = None,
    metrics: Optional[MetricsSink] = None,
    policy: Optional[ConfigPolicy] = None,
    cache: Optional[CacheStore] = None,
    config: Optional[Settings] = None,
    configure_logging: bool = False,
) -> TradeDesk:
    """Create a fully wired desk.

    Balance and asset lookups go through ``market_data`` when given, otherwise
    through the exchange itself. Only the cache backend built here is closed
    by ``TradeDesk.close()``.
    """
    config = config or default_settings
    if configure_logging:
        setup_logging(config=config)

    owned: List[Any] = []
    if cache is None:
        cache = build_cache_store(config)
        owned.append(cache.backend)

    policy = policy or ConfigPolicy()
    market_data = market_data or exchange
    metrics = metrics or LoggingMetricsSink(InMemoryMetricsSink(window_size=config.metrics_window_size))

    data_preparer = DataPreparer(account_store, wallet_provider, market_data, cache, policy)
    executor = TradeExecutor(data_preparer, exchange, cache, account_store, metrics=metrics, policy=policy)
    states = ConversationStateMachine(account_store, ttl_seconds=config.conversation_ttl_seconds)
    conversation = TradeConversation(states, executor, data_preparer)

    logger.info(
        f"Trade desk ready (cache={getattr(cache.backend, 'name', type(cache.backend).__name__)}, "
        f"environment={config.environment})"
    )
    return TradeDesk(
        cache=cache,
        data_preparer=data_preparer,
        executor=executor,
        states=states,
        conversation=conversation,
        market_data=market_data,
        owned=owned,
    )
