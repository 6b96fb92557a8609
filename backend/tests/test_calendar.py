"""
Test per il calcolo dei giorni e la sovrapposizione degli intervalli.
"""

import datetime

import pytest

from noleggio.core.calendar import (
    SystemClock,
    ensure_aware,
    extension_days,
    intervals_overlap,
    rental_days,
    start_of_day,
    start_of_next_day,
)

from conftest import dt


class TestRentalDays:
    """Test per rental_days (giorni inclusivi)."""

    def test_whole_days(self):
        assert rental_days(dt(2024, 1, 1), dt(2024, 1, 5)) == 5

    def test_partial_day_counts_as_started(self):
        assert rental_days(dt(2024, 1, 1), dt(2024, 1, 2, 12)) == 2

    def test_same_day_is_one_day(self):
        assert rental_days(dt(2024, 1, 1, 9), dt(2024, 1, 1, 18)) == 1

    def test_naive_timestamps_are_utc(self):
        naive_start = datetime.datetime(2024, 1, 1)
        assert rental_days(naive_start, dt(2024, 1, 3)) == 3

    def test_end_before_start_raises(self):
        with pytest.raises(ValueError):
            rental_days(dt(2024, 1, 5), dt(2024, 1, 1))


class TestExtensionDays:
    """Test per extension_days."""

    def test_extension_from_fifth_to_eighth(self):
        assert extension_days(dt(2024, 1, 1), dt(2024, 1, 5), dt(2024, 1, 8)) == 3

    def test_extension_within_started_day_adds_nothing(self):
        assert extension_days(dt(2024, 1, 1), dt(2024, 1, 5), dt(2024, 1, 5, 6)) == 0


class TestIntervalsOverlap:
    """Test per intervals_overlap su intervalli semiaperti."""

    def test_touching_intervals_do_not_overlap(self):
        assert not intervals_overlap(dt(2024, 1, 1), dt(2024, 1, 5), dt(2024, 1, 5), dt(2024, 1, 8))

    def test_contained_interval_overlaps(self):
        assert intervals_overlap(dt(2024, 1, 1), dt(2024, 1, 10), dt(2024, 1, 3), dt(2024, 1, 4))

    def test_partial_overlap(self):
        assert intervals_overlap(dt(2024, 1, 3), dt(2024, 1, 7), dt(2024, 1, 1), dt(2024, 1, 5))

    def test_disjoint_intervals(self):
        assert not intervals_overlap(dt(2024, 1, 1), dt(2024, 1, 2), dt(2024, 2, 1), dt(2024, 2, 2))


class TestHelpers:
    def test_ensure_aware_keeps_timezone(self):
        cet = datetime.timezone(datetime.timedelta(hours=1))
        value = datetime.datetime(2024, 1, 1, tzinfo=cet)
        assert ensure_aware(value) is value

    def test_day_boundaries(self):
        day = datetime.date(2024, 1, 31)
        assert start_of_day(day) == dt(2024, 1, 31)
        assert start_of_next_day(day) == dt(2024, 2, 1)

    def test_system_clock_is_aware(self):
        assert SystemClock().now().tzinfo is not None
