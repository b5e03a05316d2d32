"""
Chart Runtime

Wires the NATS client, historical fetch, ticker feed and one
SymbolCoordinator per configured symbol.
"""

import logging
from typing import Dict, Optional

from dataflow.adapters.nats_client import NatsClient, NatsConfig
from dataflow.ingestion.coinbase_feed import CoinbaseTickerFeed
from dataflow.ingestion.coinbase_history import CoinbaseHistoryClient
from engine.config.loader import ServiceConfig
from engine.runtime.coordinator import SymbolCoordinator

logger = logging.getLogger(__name__)


class ChartRuntime:
    """
    Owns every long-running component of the service.

    Coordinators subscribe before the feed starts publishing, so the first
    ticks of the session are buffered rather than lost.
    """

    def __init__(self, config: ServiceConfig, nats_config: Optional[NatsConfig] = None):
        self.config = config
        self.nats = NatsClient(nats_config or NatsConfig.from_env())
        self.history = CoinbaseHistoryClient(
            base_url=config.history.base_url,
            timeout=config.history.timeout,
        )

        self.coordinators: Dict[str, SymbolCoordinator] = {}
        for entry in config.symbols:
            self.coordinators[entry.symbol] = SymbolCoordinator(
                symbol=entry.symbol,
                interval=entry.get_interval(),
                nats_client=self.nats,
                history_client=self.history,
                tick_buffer_size=config.tick_buffer_size,
                history_retry_delay=config.history.retry_delay,
            )

        self.feed = CoinbaseTickerFeed(
            self.nats,
            symbols=list(self.coordinators),
            url=config.feed.url,
            reconnect_delay=config.feed.reconnect_delay,
        )

        self._running = False

    @property
    def is_connected(self) -> bool:
        return self.nats.is_connected

    def get(self, symbol: str) -> Optional[SymbolCoordinator]:
        return self.coordinators.get(symbol)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True

        await self.nats.connect()
        for coordinator in self.coordinators.values():
            await coordinator.start()
        await self.feed.start()

        logger.info(f"Chart runtime started for {len(self.coordinators)} symbols")

    async def stop(self) -> None:
        """Stop every component; safe to call more than once"""
        if not self._running:
            return
        self._running = False

        await self.feed.stop()
        for coordinator in self.coordinators.values():
            await coordinator.stop()
        await self.nats.close()

        logger.info("Chart runtime stopped")
