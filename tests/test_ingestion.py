"""Tests for the Coinbase historical client and ticker feed."""

import json

import pytest

from dataflow.ingestion import coinbase_history
from dataflow.ingestion.coinbase_feed import CoinbaseTickerFeed, subscribe_message
from dataflow.ingestion.coinbase_history import CoinbaseHistoryClient
from schemas.errors import TransportFailure
from schemas.market_data import INTERVALS, Tick


class FakeResponse:
    def __init__(self, status: int, payload, body: str = None):
        self.status = status
        self.payload = payload
        self.body = body

    async def json(self, content_type=None):
        if self.body is not None:
            return json.loads(self.body)
        return self.payload

    async def text(self):
        return self.body if self.body is not None else json.dumps(self.payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Replaces aiohttp.ClientSession for one test."""
    requests: list = []
    response: FakeResponse = FakeResponse(200, [])

    def __init__(self, *args, **kwargs):
        pass

    def get(self, url, params=None):
        FakeSession.requests.append((url, params))
        return FakeSession.response

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


@pytest.fixture
def fake_session(monkeypatch):
    FakeSession.requests = []
    monkeypatch.setattr(coinbase_history.aiohttp, "ClientSession", FakeSession)
    return FakeSession


class TestCoinbaseHistoryClient:
    """Tests for the historical candle fetch."""

    @pytest.mark.asyncio
    async def test_fetch_returns_raw_rows(self, fake_session) -> None:
        """Rows are returned as received, for the aggregator to decode."""
        rows = [[120, 1, 4, 2, 3, 9.5], [60, 1, 4, 2, 3, 1.0]]
        fake_session.response = FakeResponse(200, rows)

        client = CoinbaseHistoryClient(base_url="https://example.test/")
        result = await client.fetch_candles("BTC-USD", INTERVALS["5m"])

        assert result == rows
        assert fake_session.requests == [
            ("https://example.test/products/BTC-USD/candles", {"granularity": 300})
        ]

    @pytest.mark.asyncio
    async def test_http_error_is_transport_failure(self, fake_session) -> None:
        fake_session.response = FakeResponse(404, {"message": "NotFound"})

        with pytest.raises(TransportFailure, match="HTTP 404"):
            await CoinbaseHistoryClient().fetch_candles("NOPE-USD", INTERVALS["1m"])

    @pytest.mark.asyncio
    async def test_unexpected_payload_is_transport_failure(self, fake_session) -> None:
        fake_session.response = FakeResponse(200, {"message": "rate limited"})

        with pytest.raises(TransportFailure):
            await CoinbaseHistoryClient().fetch_candles("BTC-USD", INTERVALS["1m"])

    @pytest.mark.asyncio
    async def test_non_json_reply_is_transport_failure(self, fake_session) -> None:
        """A 200 reply with an HTML body is retried like any transport error."""
        fake_session.response = FakeResponse(200, None, body="<html>Down for maintenance</html>")

        with pytest.raises(TransportFailure, match="not JSON"):
            await CoinbaseHistoryClient().fetch_candles("BTC-USD", INTERVALS["1m"])

    @pytest.mark.asyncio
    async def test_unserved_granularity_returns_empty_batch(self, fake_session) -> None:
        """30m and 2h have no exchange candles; bars start from live ticks."""
        client = CoinbaseHistoryClient()

        assert not client.supports(INTERVALS["30m"])
        assert await client.fetch_candles("BTC-USD", INTERVALS["30m"]) == []
        assert await client.fetch_candles("BTC-USD", INTERVALS["2h"]) == []
        assert fake_session.requests == []


class TestCoinbaseTickerFeed:
    """Tests for feed message handling."""

    @pytest.fixture
    def feed(self, fake_nats) -> CoinbaseTickerFeed:
        return CoinbaseTickerFeed(fake_nats, ["BTC-USD", "ETH-USD"], clock=lambda: 1234.5)

    def test_subscribe_message(self) -> None:
        assert subscribe_message(["BTC-USD"]) == {
            "type": "subscribe",
            "product_ids": ["BTC-USD"],
            "channels": ["ticker"],
        }

    def test_ticker_frame_becomes_stamped_tick(self, feed: CoinbaseTickerFeed) -> None:
        """Ticks carry local receipt time, not the exchange's time field."""
        raw = json.dumps({
            "type": "ticker",
            "product_id": "BTC-USD",
            "price": "50000.01",
            "time": "2020-01-01T00:00:00Z",
        })
        assert feed.decode(raw) == Tick(symbol="BTC-USD", price=50000.01, received_at=1234.5)

    @pytest.mark.parametrize(
        "raw",
        [
            '{"type": "subscriptions", "channels": []}',
            '{"type": "heartbeat"}',
            '{"type": "ticker", "product_id": "BTC-USD"}',
            "[]",
            "garbage",
        ],
    )
    def test_non_price_frames_are_skipped(self, feed: CoinbaseTickerFeed, raw: str) -> None:
        assert feed.decode(raw) is None

    def test_error_frame_raises(self, feed: CoinbaseTickerFeed) -> None:
        with pytest.raises(TransportFailure):
            feed.decode('{"type": "error", "message": "Failed to subscribe"}')

    @pytest.mark.asyncio
    async def test_publish_to_symbol_topic(self, feed: CoinbaseTickerFeed, fake_nats) -> None:
        await feed._publish(Tick("ETH-USD", 3000.0, received_at=1.0))

        assert fake_nats.published == [
            ("ticks.raw.ETH-USD", {"symbol": "ETH-USD", "price": 3000.0, "received_at": 1.0})
        ]

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, feed: CoinbaseTickerFeed) -> None:
        await feed.stop()
        await feed.stop()
        await feed.start()
        assert feed._task is None
