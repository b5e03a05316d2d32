"""
Bar Aggregator

Turns a live sequence of price ticks into fixed-interval OHLC bars,
continuing from a historical batch fetched once per activation.

The aggregator is a synchronous single-owner state machine:

    UNSEEDED --on_historical_batch / first tick--> TRACKING(bucket)
    TRACKING(bucket) --tick in later bucket--> TRACKING(bucket')
    any state --on_interval_change--> UNSEEDED

Ticks must be delivered one at a time in arrival order. Errors never
raise out of on_tick / on_historical_batch; they are returned in the
result objects for the caller to log.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from dataflow.bar_aggregation.store import BarStore
from schemas.errors import AggregationError, InvalidBar, InvalidHistoricalRecord, InvalidTick
from schemas.market_data import Bar, Interval, Tick

logger = logging.getLogger(__name__)


class AggregatorState(Enum):
    """Lifecycle state of an aggregator"""
    UNSEEDED = "unseeded"
    TRACKING = "tracking"


class UpdateKind(Enum):
    """How a renderer should apply an update"""
    REPLACE = "replace"  # open bar changed in place
    APPEND = "append"  # a new open bar started (after finalizing the previous one, if any)
    REJECTED = "rejected"  # tick dropped, nothing changed


@dataclass(frozen=True)
class BarUpdate:
    """Outcome of a single on_tick call"""
    kind: UpdateKind
    open_bar: Optional[Bar] = None
    finalized: Optional[Bar] = None
    error: Optional[AggregationError] = None

    @property
    def ok(self) -> bool:
        return self.kind is not UpdateKind.REJECTED

    def to_dict(self, symbol: str, interval: Interval) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "type": "bar",
            "kind": self.kind.value,
            "symbol": symbol,
            "interval": interval.label,
            "bar": self.open_bar.to_dict() if self.open_bar else None,
            "finalized": self.finalized.to_dict() if self.finalized else None,
            "error": str(self.error) if self.error else None,
        }


@dataclass(frozen=True)
class BatchResult:
    """Outcome of seeding from a historical batch"""
    symbol: str
    interval: Interval
    seeded: int
    open_bar: Optional[Bar] = None
    errors: List[InvalidHistoricalRecord] = field(default_factory=list)


@dataclass(frozen=True)
class HistoryRequest:
    """Signal that a fresh historical batch is needed for this activation"""
    symbol: str
    interval: Interval


class BarAggregator:
    """
    Bucketing state machine for one symbol.

    Owns its BarStore exclusively. Keeps its own bookkeeping of the tracked
    bucket (start, open, high, low) which always matches the store's open bar.

    Example usage:
        aggregator = BarAggregator("BTC-USD", INTERVALS["1m"])
        aggregator.on_historical_batch("BTC-USD", INTERVALS["1m"], rows)

        update = aggregator.on_tick(Tick("BTC-USD", 50123.5))
        if update.kind is UpdateKind.APPEND:
            ...  # draw a new bar
    """

    def __init__(
        self,
        symbol: str,
        interval: Interval,
        store: Optional[BarStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.symbol = symbol
        self.interval = interval
        self.store = store if store is not None else BarStore()
        self._clock = clock

        self._tracked_bucket_start: Optional[int] = None
        self._open: float = 0.0
        self._high: float = -math.inf
        self._low: float = math.inf

    @property
    def state(self) -> AggregatorState:
        if self._tracked_bucket_start is None:
            return AggregatorState.UNSEEDED
        return AggregatorState.TRACKING

    @property
    def tracked_bucket_start(self) -> Optional[int]:
        return self._tracked_bucket_start

    def _reset_tracking(self) -> None:
        self._tracked_bucket_start = None
        self._open = 0.0
        self._high = -math.inf
        self._low = math.inf

    def _track(self, bar: Bar) -> None:
        self._tracked_bucket_start = bar.bucket_start
        self._open = bar.open
        self._high = bar.high
        self._low = bar.low

    def _decode_batch(
        self, interval: Interval, raw_bars: Iterable[Any]
    ) -> Tuple[List[Bar], List[InvalidHistoricalRecord]]:
        """Decode, sort and deduplicate historical rows"""
        bars: List[Bar] = []
        errors: List[InvalidHistoricalRecord] = []

        for index, record in enumerate(raw_bars):
            try:
                bar = Bar.from_historical_record(record)
                if not interval.is_aligned(bar.bucket_start):
                    raise InvalidHistoricalRecord(
                        f"bucket time {bar.bucket_start} is not aligned to {interval.label}",
                        record,
                    )
            except InvalidHistoricalRecord as e:
                e.index = index
                errors.append(e)
                logger.warning(f"Dropping historical record #{index} for {self.symbol}: {e}")
                continue
            bars.append(bar)

        # Upstream ordering is not guaranteed
        bars.sort(key=lambda b: b.bucket_start)

        unique: List[Bar] = []
        for bar in bars:
            if unique and unique[-1].bucket_start == bar.bucket_start:
                error = InvalidHistoricalRecord(
                    f"duplicate bucket time {bar.bucket_start}", unique[-1]
                )
                errors.append(error)
                logger.warning(f"Dropping historical record for {self.symbol}: {error}")
                unique[-1] = bar
            else:
                unique.append(bar)

        return unique, errors

    def on_historical_batch(
        self, symbol: str, interval: Interval, raw_bars: Iterable[Any]
    ) -> BatchResult:
        """
        Seed the store from a historical batch.

        Rows are [time, low, high, open, close, ...]. Malformed rows are
        dropped and reported; the rest of the batch is still used. The most
        recent bar stays open and is continued by subsequent ticks.

        Args:
            symbol: Symbol the batch was fetched for
            interval: Interval the batch was fetched for
            raw_bars: Upstream candle rows, in any order

        Returns:
            BatchResult with the number of bars seeded and the dropped records
        """
        if symbol != self.symbol:
            logger.warning(
                f"Historical batch for {symbol} delivered to aggregator for {self.symbol}"
            )
            self.symbol = symbol

        bars, errors = self._decode_batch(interval, raw_bars)

        self.interval = interval
        self._reset_tracking()
        self.store.seed(bars)

        if bars:
            self._track(bars[-1])
            logger.info(
                f"Seeded {symbol} {interval.label} with {len(bars)} bars, "
                f"open bar at {bars[-1].bucket_start}"
                + (f" ({len(errors)} records dropped)" if errors else "")
            )
        else:
            logger.info(
                f"Empty historical batch for {symbol} {interval.label}; "
                f"waiting for first tick"
            )

        return BatchResult(
            symbol=symbol,
            interval=interval,
            seeded=len(bars),
            open_bar=self.store.open_bar,
            errors=errors,
        )

    def _reject(self, error: AggregationError) -> BarUpdate:
        logger.warning(f"Rejected tick for {self.symbol}: {error}")
        return BarUpdate(kind=UpdateKind.REJECTED, open_bar=self.store.open_bar, error=error)

    def on_tick(self, tick: Tick) -> BarUpdate:
        """
        Apply one tick.

        Same bucket as the tracked bar: extend high/low and move the close.
        Later bucket: finalize the tracked bar with this tick's price as its
        close, then open a fresh single-price bar. Buckets skipped while no
        ticks arrived are not synthesized.

        Returns:
            BarUpdate describing the change, or a REJECTED update carrying
            the error
        """
        price = tick.price
        if (
            isinstance(price, bool)
            or not isinstance(price, (int, float))
            or not math.isfinite(price)
            or price <= 0
        ):
            return self._reject(InvalidTick(f"price must be finite and positive, got {price!r}"))

        arrival = tick.received_at if tick.received_at is not None else self._clock()
        if (
            isinstance(arrival, bool)
            or not isinstance(arrival, (int, float))
            or not math.isfinite(arrival)
        ):
            return self._reject(InvalidTick(f"arrival time must be finite, got {arrival!r}"))
        bucket = self.interval.bucket_start(arrival)
        tracked = self._tracked_bucket_start

        if tracked is not None and bucket < tracked:
            return self._reject(
                InvalidTick(f"tick bucket {bucket} precedes open bar {tracked}")
            )

        try:
            if bucket == tracked:
                high = max(self._high, price)
                low = min(self._low, price)
                bar = Bar(bucket_start=bucket, open=self._open, high=high, low=low, close=price)
                self.store.set_open(bar)
                self._high = high
                self._low = low
                logger.debug(f"{self.symbol} {self.interval.label} bar {bucket} -> {price}")
                return BarUpdate(kind=UpdateKind.REPLACE, open_bar=bar)

            finalized = None
            if tracked is not None:
                # The first tick of the new bucket closes the previous bar.
                # High and low stay as tracked, so close may lie outside them.
                finalized = Bar(
                    bucket_start=tracked,
                    open=self._open,
                    high=self._high,
                    low=self._low,
                    close=price,
                )
                if self.store.open_bar is not None:
                    self.store.append_finalized(finalized)
                else:
                    logger.warning(
                        f"{self.symbol}: tracked bucket {tracked} has no open bar in store"
                    )
                    finalized = None

            bar = Bar(bucket_start=bucket, open=price, high=price, low=price, close=price)
            self.store.set_open(bar)
            self._track(bar)

            if finalized is not None:
                logger.info(
                    f"Finalized {self.symbol} {self.interval.label} bar {finalized.bucket_start} "
                    f"O={finalized.open:.2f} H={finalized.high:.2f} "
                    f"L={finalized.low:.2f} C={finalized.close:.2f}"
                )
            return BarUpdate(kind=UpdateKind.APPEND, open_bar=bar, finalized=finalized)

        except InvalidBar as e:
            logger.error(f"Bar invariant violated for {self.symbol}: {e}")
            return BarUpdate(kind=UpdateKind.REJECTED, open_bar=self.store.open_bar, error=e)

    def on_interval_change(self, new_interval: Interval) -> HistoryRequest:
        """
        Invalidate all bars and tracking for a new interval.

        The in-progress bar is discarded, not finalized. The caller must fetch
        a fresh historical batch for the returned request.
        """
        logger.info(
            f"Interval change for {self.symbol}: {self.interval.label} -> {new_interval.label}"
        )
        self.interval = new_interval
        self._reset_tracking()
        self.store.clear()
        return HistoryRequest(symbol=self.symbol, interval=new_interval)

    def snapshot(self) -> Tuple[Bar, ...]:
        return self.store.snapshot()

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "interval": self.interval.label,
            "state": self.state.value,
            "tracked_bucket_start": self._tracked_bucket_start,
            "bars": len(self.store),
        }
