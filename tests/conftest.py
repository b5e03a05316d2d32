"""Shared fixtures and fakes for the bar service tests."""

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from schemas.errors import TransportFailure
from schemas.market_data import INTERVALS, Interval, Tick


class FakeNatsClient:
    """In-memory stand-in for NatsClient."""

    def __init__(self) -> None:
        self.subscriptions: Dict[str, Callable] = {}
        self.published: List[Tuple[str, Any]] = []
        self.unsubscribed: List[str] = []
        self.is_connected = True

    async def subscribe(self, subject: str, callback: Callable) -> None:
        self.subscriptions[subject] = callback

    async def unsubscribe(self, subject: str) -> None:
        self.subscriptions.pop(subject, None)
        self.unsubscribed.append(subject)

    async def publish_json(self, subject: str, data: str) -> None:
        self.published.append((subject, json.loads(data)))

    async def deliver(self, subject: str, tick: Tick) -> None:
        """Hand a tick to the subscriber of a subject, as NATS would."""
        msg = SimpleNamespace(data=tick.to_json().encode())
        await self.subscriptions[subject](msg)


class FakeHistoryClient:
    """Historical fetch stand-in with optional gating and failures."""

    def __init__(self, rows: Optional[list] = None, failures: int = 0) -> None:
        self.rows = rows or []
        self.failures = failures
        self.calls: List[Tuple[str, Interval]] = []
        self.gate: Optional[asyncio.Event] = None

    async def fetch_candles(self, symbol: str, interval: Interval) -> list:
        self.calls.append((symbol, interval))
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            self.failures -= 1
            raise TransportFailure("connection refused")
        return list(self.rows)


@pytest.fixture
def one_minute() -> Interval:
    return INTERVALS["1m"]


@pytest.fixture
def history_row() -> list:
    """[time, low, high, open, close]"""
    return [0, 100, 110, 105, 108]


@pytest.fixture
def fake_nats() -> FakeNatsClient:
    return FakeNatsClient()


@pytest.fixture
def fake_history(history_row) -> FakeHistoryClient:
    return FakeHistoryClient(rows=[history_row])
