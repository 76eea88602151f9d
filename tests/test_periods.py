# tests/test_periods.py
"""Tests for period key range generation."""

import logging
from datetime import UTC, datetime

import pytest

from countboard.core.calendar import PeriodCalendar
from countboard.core.errors import PeriodRangeError
from countboard.services.periods import RangeKeyGenerator


class StuckCalendar(PeriodCalendar):
    """Calendar whose period arithmetic never moves forward."""

    def add_periods(self, instant, n, granularity):
        return instant


def at(value: str) -> datetime:
    return datetime.fromisoformat(value)


@pytest.mark.parametrize("host_tz", ["UTC", "America/Los_Angeles", "Asia/Tokyo"])
def test_day_keys_across_fall_back(nyc, host_timezone, host_tz) -> None:
    """A 25-hour day still yields exactly one key, on any host."""
    host_timezone(host_tz)
    keys = RangeKeyGenerator(nyc).generate_keys(
        at("2024-10-31T12:00:00-04:00"),
        at("2024-11-03T12:00:00-05:00"),
        "day",
    )
    assert keys == ["2024-10-31", "2024-11-01", "2024-11-02", "2024-11-03"]


def test_hour_keys_across_fall_back(nyc) -> None:
    """The repeated 01:00 hour appears once."""
    keys = RangeKeyGenerator(nyc).generate_keys(
        at("2024-11-03T00:00:00-04:00"),
        at("2024-11-03T03:00:00-05:00"),
        "hour",
    )
    assert keys == ["2024-11-03T00", "2024-11-03T01", "2024-11-03T02", "2024-11-03T03"]


def test_hour_keys_across_spring_forward(nyc) -> None:
    """The skipped 02:00 hour has no key."""
    keys = RangeKeyGenerator(nyc).generate_keys(
        at("2024-03-10T00:00:00-05:00"),
        at("2024-03-10T04:00:00-04:00"),
        "hour",
    )
    assert keys == ["2024-03-10T00", "2024-03-10T01", "2024-03-10T03", "2024-03-10T04"]


def test_month_keys_across_year_boundary(nyc) -> None:
    keys = RangeKeyGenerator(nyc).generate_keys(
        at("2024-11-15T12:00:00-05:00"),
        at("2025-02-10T12:00:00-05:00"),
        "month",
    )
    assert keys == ["2024-11", "2024-12", "2025-01", "2025-02"]


def test_month_keys_from_month_end(nyc) -> None:
    """Clamping Jan 31 to Feb 28 must not skip or repeat a month."""
    keys = RangeKeyGenerator(nyc).generate_keys(
        at("2025-01-31T12:00:00-05:00"),
        at("2025-05-01T12:00:00-04:00"),
        "month",
    )
    assert keys == ["2025-01", "2025-02", "2025-03", "2025-04", "2025-05"]


def test_keys_strictly_increasing_and_unique(nyc) -> None:
    keys = RangeKeyGenerator(nyc).generate_keys(
        at("2024-11-01T00:00:00-04:00"),
        at("2024-11-05T23:00:00-05:00"),
        "hour",
    )
    assert all(a < b for a, b in zip(keys, keys[1:]))
    assert len(keys) == len(set(keys))


def test_single_period_range(nyc) -> None:
    instant = at("2025-06-01T10:00:00-04:00")
    assert RangeKeyGenerator(nyc).generate_keys(instant, instant, "day") == ["2025-06-01"]


def test_start_after_end_yields_nothing(nyc) -> None:
    keys = RangeKeyGenerator(nyc).generate_keys(
        at("2025-06-05T10:00:00-04:00"),
        at("2025-06-01T10:00:00-04:00"),
        "day",
    )
    assert keys == []


def test_endpoints_use_reference_timezone(nyc) -> None:
    """UTC instants late in the evening belong to the New York day."""
    keys = RangeKeyGenerator(nyc).generate_keys(
        datetime(2025, 6, 2, 2, 0, tzinfo=UTC),
        datetime(2025, 6, 3, 2, 0, tzinfo=UTC),
        "day",
    )
    assert keys == ["2025-06-01", "2025-06-02"]


def test_iteration_limit_raises(nyc, caplog) -> None:
    generator = RangeKeyGenerator(nyc, iteration_limit=5)
    with caplog.at_level(logging.CRITICAL, logger="countboard.services.periods"):
        with pytest.raises(PeriodRangeError):
            generator.generate_keys(
                at("2025-06-01T00:00:00-04:00"),
                at("2025-06-10T00:00:00-04:00"),
                "day",
            )
    assert any(record.levelno == logging.CRITICAL for record in caplog.records)


def test_non_advancing_arithmetic_raises() -> None:
    stuck = StuckCalendar.for_timezone("America/New_York")
    with pytest.raises(PeriodRangeError, match="does not follow"):
        RangeKeyGenerator(stuck).generate_keys(
            at("2025-06-01T00:00:00-04:00"),
            at("2025-06-03T00:00:00-04:00"),
            "day",
        )
