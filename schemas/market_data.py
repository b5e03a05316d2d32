"""
Market Data Types

Core market data types used by the bar aggregation service.
These types travel over NATS as JSON and are served by the chart API.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence
import json
import math

from schemas.errors import InvalidHistoricalRecord, InvalidTick, TransportFailure


@dataclass(frozen=True)
class Interval:
    """Aggregation granularity"""
    label: str
    seconds: int

    def __post_init__(self) -> None:
        if isinstance(self.seconds, bool) or not isinstance(self.seconds, int):
            raise ValueError(f"Interval seconds must be an integer, got {self.seconds!r}")
        if self.seconds <= 0:
            raise ValueError(f"Interval seconds must be positive, got {self.seconds}")

    def bucket_start(self, timestamp: float) -> int:
        """Start of the bucket containing this epoch timestamp"""
        return int(timestamp // self.seconds) * self.seconds

    def is_aligned(self, bucket_time: int) -> bool:
        return bucket_time % self.seconds == 0

    @classmethod
    def parse(cls, value: Any) -> "Interval":
        """
        Resolve an interval from a label ("5m") or a number of seconds (300).

        Raises:
            ValueError: If the value is not a known label or a positive integer
        """
        if isinstance(value, Interval):
            return value
        if isinstance(value, str):
            if value in INTERVALS:
                return INTERVALS[value]
            if not value.isdigit():
                raise ValueError(
                    f"Unknown interval '{value}'. Must be one of: {list(INTERVALS.keys())}"
                )
            value = int(value)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Invalid interval: {value!r}")
        for interval in INTERVALS.values():
            if interval.seconds == value:
                return interval
        return cls(label=f"{value}s", seconds=value)


INTERVALS: Dict[str, Interval] = {
    interval.label: interval
    for interval in (
        Interval("1m", 60),
        Interval("5m", 300),
        Interval("15m", 900),
        Interval("30m", 1800),
        Interval("1h", 3600),
        Interval("2h", 7200),
        Interval("6h", 21600),
        Interval("1d", 86400),
    )
}

DEFAULT_INTERVAL = INTERVALS["1m"]


def _as_price(value: Any) -> float:
    """Convert a feed value to a float price, raising on non-numeric input"""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a number: {value!r}")
    return float(value)


@dataclass(frozen=True)
class Bar:
    """One OHLC candle, identified by the start of its bucket"""
    bucket_start: int
    open: float
    high: float
    low: float
    close: float

    def is_consistent(self) -> bool:
        """low <= open, close <= high"""
        return (
            self.low <= self.open <= self.high
            and self.low <= self.close <= self.high
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "time": self.bucket_start,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
        }

    def to_json(self) -> str:
        """Serialize to JSON string"""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Bar":
        """Create Bar from dictionary"""
        return cls(
            bucket_start=int(data["time"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
        )

    @classmethod
    def from_historical_record(cls, record: Sequence[Any]) -> "Bar":
        """
        Decode an upstream candle row.

        Rows are laid out as [time, low, high, open, close, ...]; low and high
        come before open and close. Anything after the close (volume) is
        ignored.

        Raises:
            InvalidHistoricalRecord: If the row is short, non-numeric or
                its prices do not form a consistent bar
        """
        if isinstance(record, (str, bytes)) or not isinstance(record, Sequence):
            raise InvalidHistoricalRecord(f"record is not a sequence: {record!r}", record)
        if len(record) < 5:
            raise InvalidHistoricalRecord(
                f"record has {len(record)} fields, expected at least 5", record
            )

        try:
            raw_time = record[0]
            if isinstance(raw_time, bool):
                raise ValueError("boolean time")
            bucket_time = float(raw_time)
            low = _as_price(record[1])
            high = _as_price(record[2])
            open_ = _as_price(record[3])
            close = _as_price(record[4])
        except (TypeError, ValueError) as e:
            raise InvalidHistoricalRecord(f"non-numeric field: {e}", record) from e

        values = (bucket_time, low, high, open_, close)
        if not all(math.isfinite(v) for v in values):
            raise InvalidHistoricalRecord("non-finite field", record)
        if bucket_time != int(bucket_time):
            raise InvalidHistoricalRecord(f"fractional bucket time {bucket_time}", record)

        bar = cls(bucket_start=int(bucket_time), open=open_, high=high, low=low, close=close)
        if not bar.is_consistent():
            raise InvalidHistoricalRecord(
                f"inconsistent OHLC O={open_} H={high} L={low} C={close}", record
            )
        return bar


@dataclass
class Tick:
    """One price observation from the live feed"""
    symbol: str
    price: float
    received_at: Optional[float] = None  # local wall-clock seconds, not exchange time

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "received_at": self.received_at,
        }

    def to_json(self) -> str:
        """Serialize to JSON string"""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Tick":
        """
        Create Tick from dictionary.

        Raises:
            InvalidTick: If symbol or price is missing, or price or
                received_at is not numeric
        """
        try:
            price = _as_price(data["price"])
            symbol = data["symbol"]
        except KeyError as e:
            raise InvalidTick(f"tick missing field {e}") from e
        except (TypeError, ValueError) as e:
            raise InvalidTick(f"tick price is not numeric: {data.get('price')!r}") from e

        received_at = data.get("received_at")
        if received_at is not None:
            try:
                received_at = float(received_at)
            except (TypeError, ValueError) as e:
                raise InvalidTick(f"tick received_at is not numeric: {received_at!r}") from e

        return cls(symbol=symbol, price=price, received_at=received_at)

    @classmethod
    def from_json(cls, json_str: str) -> "Tick":
        """Deserialize from JSON string"""
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise InvalidTick(f"tick is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidTick(f"tick is not an object: {data!r}")
        return cls.from_dict(data)


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class TickerMessage:
    """
    Decoded "ticker" envelope from the exchange feed.

    The 24h fields are passed through as received; nothing in this service
    derives statistics from them.
    """
    symbol: str
    price: float
    open_24h: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    volume_24h: Optional[float] = None

    def to_tick(self, received_at: Optional[float] = None) -> Tick:
        return Tick(symbol=self.symbol, price=self.price, received_at=received_at)


def decode_feed_message(data: dict) -> Optional[TickerMessage]:
    """
    Classify and decode one feed message.

    Returns:
        TickerMessage for "ticker" envelopes, None for any other type

    Raises:
        InvalidTick: If a ticker envelope has no usable price
        TransportFailure: If the feed reports an error envelope
    """
    msg_type = data.get("type")

    if msg_type == "error":
        raise TransportFailure(
            f"Feed error: {data.get('message')} {data.get('reason', '')}".strip()
        )
    if msg_type != "ticker":
        return None

    try:
        price = _as_price(data["price"])
    except KeyError as e:
        raise InvalidTick("ticker message has no price") from e
    except (TypeError, ValueError) as e:
        raise InvalidTick(f"ticker price is not numeric: {data.get('price')!r}") from e

    return TickerMessage(
        symbol=data.get("product_id", ""),
        price=price,
        open_24h=_optional_float(data.get("open_24h")),
        high_24h=_optional_float(data.get("high_24h")),
        low_24h=_optional_float(data.get("low_24h")),
        volume_24h=_optional_float(data.get("volume_24h")),
    )
