"""
Schemas

Typed messages flowing through the bar aggregation service.
"""

from schemas.errors import (
    AggregationError,
    InvalidBar,
    InvalidHistoricalRecord,
    InvalidTick,
    TransportFailure,
)
from schemas.market_data import (
    DEFAULT_INTERVAL,
    INTERVALS,
    Bar,
    Interval,
    Tick,
    TickerMessage,
    decode_feed_message,
)

__all__ = [
    "AggregationError",
    "InvalidBar",
    "InvalidHistoricalRecord",
    "InvalidTick",
    "TransportFailure",
    "DEFAULT_INTERVAL",
    "INTERVALS",
    "Bar",
    "Interval",
    "Tick",
    "TickerMessage",
    "decode_feed_message",
]
