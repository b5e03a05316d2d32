"""
Symbol Coordinator

Drives the bar aggregator for a single symbol.
Handles the tick subscription, historical seeding, interval changes and
publishing of bar updates.
"""

import asyncio
import json
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from dataflow.adapters.nats_client import NatsClient, Topics
from dataflow.bar_aggregation.aggregator import BarAggregator, BarUpdate, BatchResult
from dataflow.ingestion.coinbase_history import CoinbaseHistoryClient
from schemas.errors import InvalidTick, TransportFailure
from schemas.market_data import Bar, Interval, Tick

logger = logging.getLogger(__name__)


class SymbolCoordinator:
    """
    Coordinates bar aggregation for a single symbol.

    The coordinator:
    1. Subscribes to ticks.raw.{symbol}
    2. Activates an interval: invalidates the aggregator and fetches history
    3. Buffers ticks until the historical batch is seeded, then replays them
    4. Applies every later tick to the aggregator, in arrival order
    5. Publishes bar updates to bars.{symbol}.{interval}

    Each activation gets a generation number. A historical batch that
    arrives for an older generation is discarded, so a slow fetch for a
    previous interval can never seed bars for the current one.

    Example usage:
        nats_client = NatsClient(nats_config)
        await nats_client.connect()

        coordinator = SymbolCoordinator(
            symbol="BTC-USD",
            interval=INTERVALS["1m"],
            nats_client=nats_client,
            history_client=CoinbaseHistoryClient(),
        )
        await coordinator.start()
        ...
        await coordinator.change_interval(INTERVALS["15m"])
    """

    def __init__(
        self,
        symbol: str,
        interval: Interval,
        nats_client: NatsClient,
        history_client: CoinbaseHistoryClient,
        tick_buffer_size: int = 1000,
        history_retry_delay: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize coordinator for a symbol.

        Args:
            symbol: Product id (e.g., "BTC-USD")
            interval: Starting interval
            nats_client: Connected NATS client
            history_client: Historical candle fetcher
            tick_buffer_size: Ticks kept while waiting for history; oldest are
                dropped first when full
            history_retry_delay: Seconds between failed history fetches
            clock: Wall-clock source used to stamp ticks on receipt
        """
        self.symbol = symbol
        self.nats = nats_client
        self.history = history_client
        self.history_retry_delay = history_retry_delay
        self._clock = clock

        self.aggregator = BarAggregator(symbol, interval, clock=clock)

        self._pending: Deque[Tick] = deque(maxlen=tick_buffer_size)
        self._awaiting_history = True
        self._generation = 0
        self._fetch_task: Optional[asyncio.Task] = None

        self._outbox: "asyncio.Queue[Tuple[str, Dict[str, Any]]]" = asyncio.Queue()
        self._publish_task: Optional[asyncio.Task] = None

        self._started = False
        self._stopped = False

        # Metrics
        self._ticks_processed = 0
        self._ticks_rejected = 0
        self._ticks_buffered = 0
        self._ticks_overflowed = 0
        self._bars_finalized = 0
        self._history_failures = 0

    @property
    def interval(self) -> Interval:
        return self.aggregator.interval

    @property
    def awaiting_history(self) -> bool:
        return self._awaiting_history

    @property
    def generation(self) -> int:
        return self._generation

    async def start(self) -> None:
        """Subscribe to ticks and activate the configured interval"""
        if self._started:
            return
        if self._stopped:
            raise RuntimeError(f"Coordinator for {self.symbol} has been stopped")
        self._started = True

        logger.info(f"Starting coordinator for {self.symbol} ({self.interval.label})")
        self._publish_task = asyncio.create_task(self._publish_loop())
        await self.nats.subscribe(Topics.ticks_raw(self.symbol), self._handle_tick)
        await self._activate(self.interval)
        logger.info(f"Coordinator started for {self.symbol}")

    async def change_interval(self, interval: Interval) -> None:
        """
        Switch to a new interval.

        Bars of the old interval are discarded and a fresh historical batch
        is fetched. Ticks arriving before it lands are buffered.
        """
        if self._stopped:
            raise RuntimeError(f"Coordinator for {self.symbol} has been stopped")
        if not self._started:
            self.aggregator.on_interval_change(interval)
            self._awaiting_history = True
            return
        await self._activate(interval)

    async def _activate(self, interval: Interval) -> None:
        await self._cancel_fetch()

        self._generation += 1
        self._awaiting_history = True
        self._pending.clear()

        request = self.aggregator.on_interval_change(interval)
        self._enqueue({"type": "reset", "symbol": self.symbol, "interval": interval.label})

        self._fetch_task = asyncio.create_task(
            self._load_history(self._generation, request.interval)
        )

    async def _cancel_fetch(self) -> None:
        task, self._fetch_task = self._fetch_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _is_current(self, generation: int) -> bool:
        return not self._stopped and generation == self._generation

    async def _load_history(self, generation: int, interval: Interval) -> None:
        """Fetch history for an activation, retrying until it succeeds or goes stale"""
        while True:
            try:
                rows = await self.history.fetch_candles(self.symbol, interval)
                break
            except TransportFailure as e:
                self._history_failures += 1
                logger.error(
                    f"History fetch for {self.symbol} {interval.label} failed: {e}. "
                    f"Retrying in {self.history_retry_delay}s"
                )
            await asyncio.sleep(self.history_retry_delay)
            if not self._is_current(generation):
                return

        if not self._is_current(generation):
            logger.info(
                f"Discarding stale {interval.label} history for {self.symbol} "
                f"(generation {generation}, current {self._generation})"
            )
            return

        self.seed(interval, rows)

    def seed(self, interval: Interval, rows: List[Any]) -> Tuple[BatchResult, List[BarUpdate]]:
        """
        Seed the aggregator and replay buffered ticks.

        Runs without yielding to the event loop so no new tick can be applied
        between the batch and the buffered ticks.
        """
        result = self.aggregator.on_historical_batch(self.symbol, interval, rows)
        self._enqueue({
            "type": "snapshot",
            "symbol": self.symbol,
            "interval": interval.label,
            "bars": [bar.to_dict() for bar in self.aggregator.snapshot()],
        })

        updates = []
        replayed = len(self._pending)
        while self._pending:
            updates.append(self._apply(self._pending.popleft()))
        self._awaiting_history = False

        logger.info(
            f"{self.symbol} {interval.label} ready: {result.seeded} bars seeded, "
            f"{replayed} buffered ticks replayed"
        )
        return result, updates

    async def _handle_tick(self, msg) -> None:
        """
        Handle incoming tick from NATS.

        Args:
            msg: NATS message with tick data
        """
        try:
            tick = Tick.from_json(msg.data.decode())
        except InvalidTick as e:
            self._ticks_rejected += 1
            logger.error(f"Failed to parse tick for {self.symbol}: {e}")
            return

        if tick.symbol != self.symbol:
            logger.warning(
                f"Received tick for wrong symbol: {tick.symbol} (expected {self.symbol})"
            )
            return

        self.process_tick(tick)

    def process_tick(self, tick: Tick) -> Optional[BarUpdate]:
        """
        Apply a tick, or buffer it while history is loading.

        Returns:
            The aggregator's update, or None if the tick was buffered or the
            coordinator is stopped
        """
        if self._stopped:
            return None
        if tick.received_at is None:
            tick.received_at = self._clock()

        if self._awaiting_history:
            if len(self._pending) == self._pending.maxlen:
                self._ticks_overflowed += 1
                logger.warning(
                    f"Tick buffer full for {self.symbol}; dropping oldest buffered tick"
                )
            self._pending.append(tick)
            self._ticks_buffered += 1
            return None

        return self._apply(tick)

    def _apply(self, tick: Tick) -> BarUpdate:
        update = self.aggregator.on_tick(tick)
        if not update.ok:
            self._ticks_rejected += 1
            return update

        self._ticks_processed += 1
        if update.finalized is not None:
            self._bars_finalized += 1
        self._enqueue(update.to_dict(self.symbol, self.interval))
        return update

    def _enqueue(self, payload: Dict[str, Any]) -> None:
        topic = Topics.bars(self.symbol, payload["interval"])
        self._outbox.put_nowait((topic, payload))

    async def _publish_loop(self) -> None:
        """Publish queued bar messages in the order they were produced"""
        while True:
            topic, payload = await self._outbox.get()
            try:
                await self.nats.publish_json(topic, json.dumps(payload))
            except Exception as e:
                logger.error(f"Failed to publish {payload['type']} to {topic}: {e}")
            finally:
                self._outbox.task_done()

    async def flush(self) -> None:
        """Wait until every queued bar message has been published"""
        await self._outbox.join()

    async def wait_for_history(self) -> None:
        """Wait for the in-flight historical fetch, if any"""
        task = self._fetch_task
        if task is not None:
            await asyncio.shield(task)

    def snapshot(self) -> Tuple[Bar, ...]:
        return self.aggregator.snapshot()

    async def stop(self) -> None:
        """Stop the coordinator; safe to call more than once"""
        if self._stopped:
            return
        self._stopped = True
        logger.info(f"Stopping coordinator for {self.symbol}")

        if self._started:
            try:
                await self.nats.unsubscribe(Topics.ticks_raw(self.symbol))
            except Exception as e:
                logger.error(f"Failed to unsubscribe {self.symbol}: {e}")

        await self._cancel_fetch()
        self._pending.clear()

        if self._publish_task:
            self._publish_task.cancel()
            try:
                await self._publish_task
            except asyncio.CancelledError:
                pass
            self._publish_task = None

        logger.info(
            f"Coordinator stopped for {self.symbol}: "
            f"{self._ticks_processed} ticks processed, {self._bars_finalized} bars finalized"
        )

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get coordinator metrics.

        Returns:
            Dictionary with coordinator statistics
        """
        return {
            **self.aggregator.get_metrics(),
            "generation": self._generation,
            "awaiting_history": self._awaiting_history,
            "ticks_processed": self._ticks_processed,
            "ticks_rejected": self._ticks_rejected,
            "ticks_buffered": self._ticks_buffered,
            "ticks_overflowed": self._ticks_overflowed,
            "bars_finalized": self._bars_finalized,
            "history_failures": self._history_failures,
        }
