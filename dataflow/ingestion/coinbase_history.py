"""
Coinbase History Client

Fetches the historical candle batch used to seed an aggregator, from the
Coinbase Exchange public REST API. Rows are returned undecoded; the
aggregator owns their interpretation.
"""

import asyncio
import logging
from typing import Any, List

import aiohttp

from schemas.errors import TransportFailure
from schemas.market_data import Interval

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.exchange.coinbase.com"

# Granularities (seconds) served by the candles endpoint
SUPPORTED_GRANULARITIES = frozenset({60, 300, 900, 3600, 21600, 86400})


class CoinbaseHistoryClient:
    """
    Historical candle fetcher.

    No API key required. The endpoint returns up to 300 rows, newest first,
    laid out as [time, low, high, open, close, volume].
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def supports(self, interval: Interval) -> bool:
        return interval.seconds in SUPPORTED_GRANULARITIES

    async def fetch_candles(self, symbol: str, interval: Interval) -> List[Any]:
        """
        Fetch the most recent candles for a product.

        Args:
            symbol: Product id (e.g., "BTC-USD")
            interval: Bar interval; its seconds are the granularity

        Returns:
            Raw candle rows. Empty when the exchange has no granularity for
            this interval.

        Raises:
            TransportFailure: On network errors, non-200 responses or an
                unexpected payload
        """
        if not self.supports(interval):
            logger.warning(
                f"Granularity {interval.seconds}s is not served for {symbol}; "
                f"starting {interval.label} bars from live ticks"
            )
            return []

        url = f"{self.base_url}/products/{symbol}/candles"
        params = {"granularity": interval.seconds}

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, params=params) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise TransportFailure(
                            f"Candle fetch for {symbol} {interval.label} failed: "
                            f"HTTP {resp.status} {body[:200]}"
                        )
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportFailure(f"Candle fetch for {symbol} {interval.label} failed: {e}") from e
        except ValueError as e:
            raise TransportFailure(
                f"Candle reply for {symbol} {interval.label} is not JSON: {e}"
            ) from e

        if not isinstance(data, list):
            raise TransportFailure(f"Unexpected candle payload for {symbol}: {data!r:.200}")

        logger.info(f"Fetched {len(data)} {interval.label} candles for {symbol}")
        return data
