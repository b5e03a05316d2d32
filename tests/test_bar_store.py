"""Tests for the BarStore."""

import pytest

from dataflow.bar_aggregation.store import BarStore
from schemas.errors import InvalidBar
from schemas.market_data import Bar


def bar(start: int, o: float = 10.0, h: float = 12.0, l: float = 9.0, c: float = 11.0) -> Bar:
    return Bar(bucket_start=start, open=o, high=h, low=l, close=c)


@pytest.fixture
def store() -> BarStore:
    return BarStore()


class TestSeed:
    """Tests for seeding the store."""

    def test_last_bar_becomes_open(self, store: BarStore) -> None:
        """All but the last seeded bar are finalized."""
        store.seed([bar(0), bar(60), bar(120)])

        assert store.finalized == (bar(0), bar(60))
        assert store.open_bar == bar(120)
        assert len(store) == 3

    def test_empty_seed_clears_store(self, store: BarStore) -> None:
        """Seeding with nothing leaves an empty store without an open bar."""
        store.seed([bar(0), bar(60)])
        store.seed([])

        assert store.snapshot() == ()
        assert store.open_bar is None

    def test_seed_replaces_previous_contents(self, store: BarStore) -> None:
        """A second seed fully replaces the first."""
        store.seed([bar(0), bar(60)])
        store.seed([bar(600)])

        assert store.snapshot() == (bar(600),)

    def test_unsorted_seed_is_rejected_atomically(self, store: BarStore) -> None:
        """Out-of-order input is rejected and the store stays unchanged."""
        store.seed([bar(0)])

        with pytest.raises(InvalidBar):
            store.seed([bar(120), bar(60)])

        assert store.snapshot() == (bar(0),)

    def test_duplicate_seed_is_rejected(self, store: BarStore) -> None:
        """Two bars with the same bucket start are not allowed."""
        with pytest.raises(InvalidBar):
            store.seed([bar(60), bar(60)])

    def test_inconsistent_seed_is_rejected(self, store: BarStore) -> None:
        """Seeded bars must satisfy the OHLC invariant."""
        with pytest.raises(InvalidBar):
            store.seed([bar(0, l=11.5)])


class TestSetOpen:
    """Tests for replacing the open bar."""

    def test_replaces_in_place(self, store: BarStore) -> None:
        """Updating the open bar never appends."""
        store.seed([bar(0), bar(60)])
        store.set_open(bar(60, c=11.5))

        assert store.snapshot() == (bar(0), bar(60, c=11.5))

    @pytest.mark.parametrize(
        "invalid",
        [
            bar(60, l=10.5),  # low above open
            bar(60, h=10.5),  # high below close
            bar(60, c=8.0),  # close below low
        ],
    )
    def test_invariant_violation_keeps_prior_bar(self, store: BarStore, invalid: Bar) -> None:
        """A write that breaks low <= open,close <= high is rejected."""
        store.seed([bar(0), bar(60)])

        with pytest.raises(InvalidBar) as excinfo:
            store.set_open(invalid)

        assert excinfo.value.bar == invalid
        assert store.open_bar == bar(60)

    def test_open_bar_must_follow_finalized(self, store: BarStore) -> None:
        """The open bar cannot share or precede a finalized bucket."""
        store.seed([bar(0), bar(60)])
        store.append_finalized()

        with pytest.raises(InvalidBar):
            store.set_open(bar(60))
        with pytest.raises(InvalidBar):
            store.set_open(bar(0))

        store.set_open(bar(120))
        assert store.open_bar == bar(120)


class TestAppendFinalized:
    """Tests for finalizing the open bar."""

    def test_moves_open_bar_unchanged(self, store: BarStore) -> None:
        """Without an argument the open bar is finalized as-is."""
        store.seed([bar(0)])

        finalized = store.append_finalized()

        assert finalized == bar(0)
        assert store.finalized == (bar(0),)
        assert store.open_bar is None

    def test_final_version_of_open_bar(self, store: BarStore) -> None:
        """A final version of the same bucket may be supplied."""
        store.seed([bar(0)])

        store.append_finalized(bar(0, c=9.5))

        assert store.finalized == (bar(0, c=9.5),)

    def test_final_version_must_match_bucket(self, store: BarStore) -> None:
        """A bar for another bucket cannot finalize the open bar."""
        store.seed([bar(0)])

        with pytest.raises(InvalidBar):
            store.append_finalized(bar(60))

        assert store.open_bar == bar(0)
        assert store.finalized == ()

    def test_close_outside_tracked_range_is_kept(self, store: BarStore) -> None:
        """The closing price of a finished bar is stored as given."""
        store.seed([bar(0, o=105, h=120, l=100, c=120)])

        final = store.append_finalized(bar(0, o=105, h=120, l=100, c=90))

        assert final == bar(0, o=105, h=120, l=100, c=90)
        assert store.finalized == (final,)
        assert store.open_bar is None

    def test_no_open_bar_is_a_reported_noop(self, store: BarStore, caplog) -> None:
        """Finalizing with nothing open changes nothing."""
        assert store.append_finalized() is None
        assert store.snapshot() == ()
        assert "no open bar" in caplog.text


class TestSnapshot:
    """Tests for snapshot semantics."""

    def test_snapshot_is_immutable_copy(self, store: BarStore) -> None:
        """Later writes do not change an earlier snapshot."""
        store.seed([bar(0), bar(60)])
        before = store.snapshot()

        store.set_open(bar(60, c=11.9))
        store.append_finalized()

        assert isinstance(before, tuple)
        assert before == (bar(0), bar(60))

    def test_snapshot_is_idempotent(self, store: BarStore) -> None:
        """Two snapshots without writes in between are identical."""
        store.seed([bar(0), bar(60)])
        assert store.snapshot() == store.snapshot()

    def test_clear(self, store: BarStore) -> None:
        store.seed([bar(0), bar(60)])
        store.clear()
        assert store.snapshot() == ()
        assert len(store) == 0
