"""
Coinbase Ticker Feed

Subscribes to the Coinbase Exchange websocket "ticker" channel and
publishes each price update as a Tick on ticks.raw.{symbol}, in the
order the messages were received.

Ticks are stamped with local receipt time; the feed's own "time" field
is not used for bucketing.
"""

import asyncio
import json
import logging
import time
from typing import Callable, Iterable, Optional

import websockets
from websockets.exceptions import WebSocketException

from dataflow.adapters.nats_client import NatsClient, Topics
from schemas.errors import InvalidTick, TransportFailure
from schemas.market_data import Tick, decode_feed_message

logger = logging.getLogger(__name__)

DEFAULT_FEED_URL = "wss://ws-feed.exchange.coinbase.com"


def subscribe_message(symbols: Iterable[str]) -> dict:
    """Subscription request for the ticker channel"""
    return {
        "type": "subscribe",
        "product_ids": list(symbols),
        "channels": ["ticker"],
    }


class CoinbaseTickerFeed:
    """
    Live tick transport.

    Reconnects after reconnect_delay whenever the socket drops. Each
    reconnect re-subscribes; ticks missed while disconnected are not
    recovered.
    """

    def __init__(
        self,
        nats_client: NatsClient,
        symbols: Iterable[str],
        url: str = DEFAULT_FEED_URL,
        reconnect_delay: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.nats = nats_client
        self.symbols = list(symbols)
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

        self._ticks_published = 0
        self._messages_dropped = 0

    def decode(self, raw: str) -> Optional[Tick]:
        """
        Decode one websocket frame into a Tick stamped with receipt time.

        Returns None for frames that are not price updates or cannot be
        decoded.

        Raises:
            TransportFailure: If the feed sent an error envelope
        """
        received_at = self._clock()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Skipping non-JSON feed message: {raw!r:.200}")
            self._messages_dropped += 1
            return None
        if not isinstance(data, dict):
            self._messages_dropped += 1
            return None

        try:
            message = decode_feed_message(data)
        except InvalidTick as e:
            logger.warning(f"Skipping ticker message: {e}")
            self._messages_dropped += 1
            return None

        if message is None:
            return None
        return message.to_tick(received_at=received_at)

    async def _publish(self, tick: Tick) -> None:
        try:
            await self.nats.publish_json(Topics.ticks_raw(tick.symbol), tick.to_json())
            self._ticks_published += 1
        except Exception as e:
            logger.error(f"Failed to publish tick for {tick.symbol}: {e}")

    async def _consume(self) -> None:
        """Run a single websocket session until it closes"""
        logger.info(f"Connecting to ticker feed: {self.url}")
        async with websockets.connect(self.url, ping_interval=20, ping_timeout=20) as ws:
            await ws.send(json.dumps(subscribe_message(self.symbols)))
            logger.info(f"Subscribed to ticker channel for {self.symbols}")

            async for raw in ws:
                tick = self.decode(raw)
                if tick is not None:
                    await self._publish(tick)

    async def run(self) -> None:
        """Consume the feed until stopped, reconnecting on failure"""
        while not self._stopped:
            try:
                await self._consume()
                logger.warning("Ticker feed closed by server")
            except asyncio.CancelledError:
                raise
            except (WebSocketException, OSError, TransportFailure) as e:
                logger.error(f"Ticker feed failed: {e}")

            if not self._stopped:
                logger.info(f"Reconnecting to ticker feed in {self.reconnect_delay}s")
                await asyncio.sleep(self.reconnect_delay)

    async def start(self) -> None:
        if self._task is None and not self._stopped:
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Stop the feed; safe to call more than once"""
        if self._stopped:
            return
        self._stopped = True

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(
            f"Ticker feed stopped. Published {self._ticks_published} ticks, "
            f"dropped {self._messages_dropped} messages"
        )
