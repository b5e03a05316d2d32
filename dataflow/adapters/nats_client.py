"""
NATS Client Adapter

Async NATS client used to move ticks from the feed to the symbol
coordinators and to publish bar updates to chart renderers.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import nats
from nats.aio.client import Client as NatsConnection
from nats.aio.msg import Msg

logger = logging.getLogger(__name__)


@dataclass
class NatsConfig:
    """NATS connection configuration"""
    servers: list[str] = field(default_factory=lambda: ["nats://localhost:4222"])
    name: str = "live-bars"
    reconnect_time_wait: float = 2.0
    max_reconnect_attempts: int = -1  # Infinite reconnects
    ping_interval: int = 20
    max_outstanding_pings: int = 3

    @classmethod
    def from_env(cls, prefix: str = "NATS") -> "NatsConfig":
        """Create config from environment variables"""
        servers = os.getenv(f"{prefix}_SERVERS", "nats://localhost:4222")
        return cls(
            servers=[s.strip() for s in servers.split(",") if s.strip()],
            name=os.getenv(f"{prefix}_CLIENT_NAME", "live-bars"),
        )


class NatsClient:
    """
    Async NATS client wrapper.

    Subscriptions are keyed by subject so a coordinator can drop its own
    subscription on teardown without touching others.

    Topic Patterns:
    - ticks.raw.{symbol}          - Decoded ticks from the live feed
    - bars.{symbol}.{interval}    - Bar updates and snapshots for renderers
    """

    def __init__(self, config: Optional[NatsConfig] = None):
        self.config = config or NatsConfig()
        self._nc: Optional[NatsConnection] = None
        self._subscriptions: dict[str, Any] = {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if client is connected"""
        return self._connected and self._nc is not None and self._nc.is_connected

    async def connect(self) -> None:
        """Establish connection to NATS server"""
        if self._connected:
            return

        async def error_handler(e):
            logger.error(f"NATS error: {e}")

        async def closed_handler():
            logger.warning("NATS connection closed")
            self._connected = False

        async def reconnected_handler():
            logger.info("NATS reconnected")
            self._connected = True

        async def disconnected_handler():
            logger.warning("NATS disconnected")
            self._connected = False

        try:
            self._nc = await nats.connect(
                servers=self.config.servers,
                name=self.config.name,
                reconnect_time_wait=self.config.reconnect_time_wait,
                max_reconnect_attempts=self.config.max_reconnect_attempts,
                ping_interval=self.config.ping_interval,
                max_outstanding_pings=self.config.max_outstanding_pings,
                error_cb=error_handler,
                closed_cb=closed_handler,
                reconnected_cb=reconnected_handler,
                disconnected_cb=disconnected_handler,
            )
            self._connected = True
            logger.info(f"Connected to NATS: {self.config.servers}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def close(self) -> None:
        """Drain and close the connection; safe to call more than once"""
        if self._nc is None:
            return
        nc, self._nc = self._nc, None
        self._subscriptions.clear()
        await nc.drain()
        self._connected = False
        logger.info("NATS connection closed")

    async def publish(self, subject: str, data: bytes) -> None:
        """
        Publish data to a NATS subject.

        Args:
            subject: NATS subject (e.g., "bars.BTC-USD.1m")
            data: Bytes payload (typically JSON)
        """
        if not self.is_connected:
            raise RuntimeError("NATS client not connected")
        await self._nc.publish(subject, data)
        logger.debug(f"Published to {subject}: {len(data)} bytes")

    async def publish_json(self, subject: str, data: str) -> None:
        """Publish a JSON string to a NATS subject"""
        await self.publish(subject, data.encode("utf-8"))

    async def subscribe(
        self,
        subject: str,
        callback: Callable[[Msg], Awaitable[None]],
    ) -> None:
        """
        Subscribe to a NATS subject.

        Messages of one subscription are handed to the callback one at a
        time, in the order they were received.

        Args:
            subject: NATS subject
            callback: Async callback for received messages
        """
        if not self.is_connected:
            raise RuntimeError("NATS client not connected")

        sub = await self._nc.subscribe(subject, cb=callback)

        self._subscriptions[subject] = sub
        logger.info(f"Subscribed to {subject}")

    async def unsubscribe(self, subject: str) -> None:
        """Unsubscribe from a subject; unknown subjects are ignored"""
        sub = self._subscriptions.pop(subject, None)
        if sub is not None:
            await sub.unsubscribe()
            logger.info(f"Unsubscribed from {subject}")


class Topics:
    """NATS topic name builders"""

    @staticmethod
    def _sanitize(name: str) -> str:
        """
        Sanitize a name for use as a single NATS topic segment.

        Only alphanumeric characters, hyphens and underscores are kept;
        everything else (spaces, dots, slashes) becomes an underscore.
        """
        return "".join(c if c.isalnum() or c in "-_" else "_" for c in name)

    @staticmethod
    def ticks_raw(symbol: str) -> str:
        """Raw tick topic for a symbol"""
        return f"ticks.raw.{Topics._sanitize(symbol)}"

    @staticmethod
    def bars(symbol: str, interval: str) -> str:
        """Bar update topic for a symbol and interval label"""
        return f"bars.{Topics._sanitize(symbol)}.{interval}"
