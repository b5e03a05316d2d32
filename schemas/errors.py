"""
Error Types

Errors raised while turning ticks and historical records into bars.
Aggregation errors are local and non-fatal: the aggregator returns them
inside its results instead of letting them unwind to the caller.
"""

from typing import Any, Optional


class AggregationError(ValueError):
    """Base class for errors produced by the bar aggregation core"""


class InvalidTick(AggregationError):
    """Tick price is missing, non-finite, non-positive or out of order"""


class InvalidHistoricalRecord(AggregationError):
    """A single historical record could not be decoded into a bar"""

    def __init__(self, message: str, record: Any = None, index: Optional[int] = None):
        super().__init__(message)
        self.record = record
        self.index = index


class InvalidBar(AggregationError):
    """A bar write would violate the OHLC invariant or the bar ordering"""

    def __init__(self, message: str, bar: Any = None):
        super().__init__(message)
        self.bar = bar


class TransportFailure(Exception):
    """Historical fetch or live feed failed at the transport level"""
