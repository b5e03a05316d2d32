"""
Bar Store

Holds the finalized bar history plus at most one open bar for the
current interval. Only the aggregator writes to it; renderers read
snapshots.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from schemas.errors import InvalidBar
from schemas.market_data import Bar

logger = logging.getLogger(__name__)


class BarStore:
    """
    Append-only finalized bars followed by a single mutable open bar.

    Bars are ordered by strictly ascending bucket_start. The open bar is
    replaced in place while its bucket is current and moved to the
    finalized sequence once the next bucket starts.
    """

    def __init__(self):
        self._finalized: List[Bar] = []
        self._open: Optional[Bar] = None

    @property
    def open_bar(self) -> Optional[Bar]:
        return self._open

    @property
    def finalized(self) -> Tuple[Bar, ...]:
        return tuple(self._finalized)

    def __len__(self) -> int:
        return len(self._finalized) + (1 if self._open is not None else 0)

    def _last_finalized_start(self) -> Optional[int]:
        return self._finalized[-1].bucket_start if self._finalized else None

    def seed(self, bars: Sequence[Bar]) -> None:
        """
        Replace the entire store contents.

        The caller sorts; the store only checks. The last bar becomes the
        open bar, every other bar is finalized.

        Raises:
            InvalidBar: If a bar is inconsistent or the bars are not strictly
                ascending by bucket_start. The store is left unchanged.
        """
        previous: Optional[int] = None
        for bar in bars:
            if not bar.is_consistent():
                raise InvalidBar(f"Cannot seed inconsistent bar: {bar}", bar)
            if previous is not None and bar.bucket_start <= previous:
                raise InvalidBar(
                    f"Seed bars must be strictly ascending: "
                    f"{bar.bucket_start} after {previous}",
                    bar,
                )
            previous = bar.bucket_start

        bars = list(bars)
        self._finalized = bars[:-1]
        self._open = bars[-1] if bars else None
        logger.debug(f"Seeded store with {len(bars)} bars")

    def set_open(self, bar: Bar) -> None:
        """
        Replace the open bar in place.

        Raises:
            InvalidBar: If the bar violates the OHLC invariant or does not come
                after the last finalized bar
        """
        if not bar.is_consistent():
            raise InvalidBar(
                f"Open bar violates OHLC invariant: O={bar.open} H={bar.high} "
                f"L={bar.low} C={bar.close}",
                bar,
            )
        last = self._last_finalized_start()
        if last is not None and bar.bucket_start <= last:
            raise InvalidBar(
                f"Open bar {bar.bucket_start} does not follow finalized bar {last}",
                bar,
            )
        self._open = bar

    def append_finalized(self, bar: Optional[Bar] = None) -> Optional[Bar]:
        """
        Move the open bar into the finalized sequence and clear the open slot.

        Args:
            bar: Final version of the open bar. Must share its bucket_start.
                 When omitted the open bar is finalized unchanged.

        Returns:
            The finalized bar, or None if there was no open bar

        Raises:
            InvalidBar: If the final version belongs to a different bucket
        """
        if self._open is None:
            logger.warning("append_finalized called with no open bar")
            return None

        final = self._open if bar is None else bar
        if final.bucket_start != self._open.bucket_start:
            raise InvalidBar(
                f"Final bar {final.bucket_start} does not match open bar "
                f"{self._open.bucket_start}",
                final,
            )

        self._finalized.append(final)
        self._open = None
        return final

    def clear(self) -> None:
        self._finalized = []
        self._open = None

    def snapshot(self) -> Tuple[Bar, ...]:
        """Finalized bars followed by the open bar, as an immutable tuple"""
        if self._open is None:
            return tuple(self._finalized)
        return tuple(self._finalized) + (self._open,)
