"""Calendar period arithmetic in a fixed reference timezone.

Every function here takes and returns absolute (timezone-aware) instants.
Civil-time math happens in the calendar's reference timezone and never in
the timezone of the host running the code, so a period key computed on a
UTC server matches one computed on a laptop in Tokyo.

Naive datetimes are rejected rather than guessed at: ``astimezone`` would
silently read them as host-local time.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from functools import lru_cache
from typing import Final, Literal, get_args
from zoneinfo import ZoneInfo

from countboard.core.settings import settings

Granularity = Literal["month", "day", "hour"]
GRANULARITIES: Final[tuple[str, ...]] = get_args(Granularity)

_ONE_MICROSECOND: Final[timedelta] = timedelta(microseconds=1)


def _require_aware(instant: datetime) -> None:
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError(
            f"Expected a timezone-aware instant, got naive datetime {instant.isoformat()}"
        )


def _require_granularity(granularity: str) -> None:
    if granularity not in GRANULARITIES:
        raise ValueError(f"Unsupported granularity {granularity!r}")


@dataclass(frozen=True)
class PeriodCalendar:
    """Period keys and bounds for one reference timezone.

    Keys are fixed-width and zero-padded so that string order equals
    chronological order: ``2025-11``, ``2025-11-02``, ``2025-11-02T14``.
    """

    tz: ZoneInfo

    @classmethod
    def for_timezone(cls, name: str) -> PeriodCalendar:
        """Build a calendar for an IANA timezone name."""
        return cls(ZoneInfo(name))

    def to_civil(self, instant: datetime) -> datetime:
        """Return the wall-clock time of ``instant`` in the reference timezone."""
        _require_aware(instant)
        return instant.astimezone(self.tz)

    def from_civil(self, wall: datetime, *, fold: int = 0) -> datetime:
        """Resolve a naive reference-timezone wall time to a UTC instant.

        Ambiguous wall times (the repeated hour when clocks fall back) resolve
        according to ``fold``. Wall times that do not exist (skipped when clocks
        spring forward) resolve to the instant just after the gap.
        """
        if wall.tzinfo is not None:
            raise ValueError("from_civil expects a naive wall-clock time")
        resolved = wall.replace(tzinfo=self.tz, fold=fold).astimezone(UTC)
        if resolved.astimezone(self.tz).replace(tzinfo=None) != wall:
            # Inside a gap; fold=0 applies the pre-transition offset, which
            # lands after the gap.
            resolved = wall.replace(tzinfo=self.tz, fold=0).astimezone(UTC)
        return resolved

    def period_key(self, instant: datetime, granularity: Granularity) -> str:
        """Return the key of the period containing ``instant``."""
        _require_granularity(granularity)
        civil = self.to_civil(instant)
        if granularity == "month":
            return f"{civil.year:04d}-{civil.month:02d}"
        if granularity == "day":
            return f"{civil.year:04d}-{civil.month:02d}-{civil.day:02d}"
        return f"{civil.year:04d}-{civil.month:02d}-{civil.day:02d}T{civil.hour:02d}"

    def start_of_period(self, instant: datetime, granularity: Granularity) -> datetime:
        """Return the first instant of the period containing ``instant``."""
        _require_granularity(granularity)
        return self.from_civil(self._period_start_wall(self.to_civil(instant), granularity))

    def end_of_period(self, instant: datetime, granularity: Granularity) -> datetime:
        """Return the last instant (inclusive) of the period containing ``instant``."""
        _require_granularity(granularity)
        start_wall = self._period_start_wall(self.to_civil(instant), granularity)
        next_start = self.from_civil(self._shift_wall(start_wall, 1, granularity))
        return next_start - _ONE_MICROSECOND

    def add_periods(self, instant: datetime, n: int, granularity: Granularity) -> datetime:
        """Move ``instant`` by ``n`` whole calendar periods.

        The shift happens on the reference-timezone wall clock: adding one day
        across a daylight-saving transition lands on the same wall time of the
        next civil day, not 24 elapsed hours later. Month shifts clamp the day
        to the length of the target month (Jan 31 + 1 month = Feb 28/29).
        """
        _require_granularity(granularity)
        civil = self.to_civil(instant)
        shifted = self._shift_wall(civil.replace(tzinfo=None), n, granularity)
        return self.from_civil(shifted, fold=civil.fold)

    @staticmethod
    def _period_start_wall(civil: datetime, granularity: Granularity) -> datetime:
        if granularity == "month":
            return datetime(civil.year, civil.month, 1)
        if granularity == "day":
            return datetime(civil.year, civil.month, civil.day)
        return datetime(civil.year, civil.month, civil.day, civil.hour)

    @staticmethod
    def _shift_wall(wall: datetime, n: int, granularity: Granularity) -> datetime:
        if granularity == "hour":
            return wall + timedelta(hours=n)
        if granularity == "day":
            shifted_date = date(wall.year, wall.month, wall.day) + timedelta(days=n)
            return datetime.combine(shifted_date, wall.time())
        month_index = wall.year * 12 + (wall.month - 1) + n
        year, month_zero = divmod(month_index, 12)
        month = month_zero + 1
        day = min(wall.day, calendar.monthrange(year, month)[1])
        return wall.replace(year=year, month=month, day=day)


@lru_cache(maxsize=None)
def get_reference_calendar() -> PeriodCalendar:
    """Return the calendar for the configured reference timezone."""
    return PeriodCalendar.for_timezone(settings.reference_timezone)
