"""
Ingestion

External transports: historical candle fetch and the live ticker feed.
"""

from dataflow.ingestion.coinbase_feed import CoinbaseTickerFeed
from dataflow.ingestion.coinbase_history import CoinbaseHistoryClient

__all__ = ["CoinbaseHistoryClient", "CoinbaseTickerFeed"]
