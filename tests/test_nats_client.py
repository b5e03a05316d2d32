"""Tests for the NATS adapter."""

import pytest

from dataflow.adapters.nats_client import NatsClient, NatsConfig, Topics


class TestTopics:
    """Tests for topic name builders."""

    def test_tick_and_bar_topics(self) -> None:
        assert Topics.ticks_raw("BTC-USD") == "ticks.raw.BTC-USD"
        assert Topics.bars("BTC-USD", "15m") == "bars.BTC-USD.15m"

    def test_symbol_cannot_add_topic_segments(self) -> None:
        """Dots and wildcards in a symbol are flattened into one segment."""
        assert Topics.ticks_raw("BTC.USD") == "ticks.raw.BTC_USD"
        assert Topics.bars("a/b *", "1m") == "bars.a_b__.1m"


class TestNatsConfig:
    """Tests for environment-driven configuration."""

    def test_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("NATS_SERVERS", raising=False)
        monkeypatch.delenv("NATS_CLIENT_NAME", raising=False)

        config = NatsConfig.from_env()

        assert config.servers == ["nats://localhost:4222"]
        assert config.name == "live-bars"

    def test_server_list_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("NATS_SERVERS", "nats://a:4222, nats://b:4222,")

        assert NatsConfig.from_env().servers == ["nats://a:4222", "nats://b:4222"]


class TestNatsClient:
    """Tests for client behaviour without a server."""

    @pytest.mark.asyncio
    async def test_publish_requires_connection(self) -> None:
        client = NatsClient()

        assert not client.is_connected
        with pytest.raises(RuntimeError):
            await client.publish_json("bars.BTC-USD.1m", "{}")

    @pytest.mark.asyncio
    async def test_close_and_unsubscribe_without_connection(self) -> None:
        """Teardown calls are safe before connect."""
        client = NatsClient()

        await client.unsubscribe("ticks.raw.BTC-USD")
        await client.close()
        await client.close()
