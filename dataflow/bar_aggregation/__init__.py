"""
Bar Aggregation

Aggregates live ticks into OHLC bars on top of a historical batch.
One aggregator per symbol; intervals: 1m, 5m, 15m, 30m, 1h, 2h, 6h, 1d.
"""

from dataflow.bar_aggregation.store import BarStore
from dataflow.bar_aggregation.aggregator import (
    AggregatorState,
    BarAggregator,
    BarUpdate,
    BatchResult,
    HistoryRequest,
    UpdateKind,
)

__all__ = [
    "AggregatorState",
    "BarAggregator",
    "BarStore",
    "BarUpdate",
    "BatchResult",
    "HistoryRequest",
    "UpdateKind",
]
