"""Time-bucketed aggregates over a counter's mutation history.

History rows are absolute snapshots, not deltas, and are sparse: a period
with no rows still has a value, carried forward from the last row before
it. The engine rebuilds per-period start/end values from that log in the
reference calendar, then derives chart statistics for each period.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Final

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from countboard.core.calendar import Granularity, PeriodCalendar, get_reference_calendar
from countboard.core.errors import (
    CounterNotFoundError,
    InvalidLookbackError,
    PermissionType,
    TransientStoreError,
)
from countboard.models import CounterHistory
from countboard.repositories.counter_repo import CounterHistoryRepository, CounterRepository
from countboard.services.periods import RangeKeyGenerator
from countboard.services.permissions import (
    COUNTERS_RESOURCE,
    CallerContext,
    SharePermissionService,
    get_permission_service,
)

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK: Final[dict[str, int]] = {"hour": 24, "day": 30, "month": 12}
MAX_LOOKBACK: Final[dict[str, int]] = {"hour": 168, "day": 365, "month": 120}


def validate_lookback(granularity: Granularity, lookback: int | None) -> int:
    """Return ``lookback`` (or the granularity default) if it is within bounds."""
    if lookback is None:
        return DEFAULT_LOOKBACK[granularity]
    upper = MAX_LOOKBACK[granularity]
    if lookback < 1 or lookback > upper:
        raise InvalidLookbackError(
            f"Invalid timeRange value (must be between 1 and {upper} for {granularity})"
        )
    return lookback


@dataclass
class PeriodBucket:
    """Working state for one period while the walk is in progress."""

    period: str
    change_values: list[float] = field(default_factory=list)
    start_value: float = 0.0
    end_value: float = 0.0

    @property
    def change_count(self) -> int:
        return len(self.change_values)


@dataclass(frozen=True)
class AggregateResult:
    """Chart-ready statistics for one period."""

    period: str
    total_changes: float
    net_change: float
    start_value: float
    end_value: float
    change_count: int
    average_value: float

    @classmethod
    def from_bucket(cls, bucket: PeriodBucket) -> AggregateResult:
        values = bucket.change_values
        # Distance of each event from the period's start value, summed.
        total_changes = sum(abs(value - bucket.start_value) for value in values)
        average_value = sum(values) / len(values) if values else 0.0
        return cls(
            period=bucket.period,
            total_changes=total_changes,
            net_change=bucket.end_value - bucket.start_value,
            start_value=bucket.start_value,
            end_value=bucket.end_value,
            change_count=bucket.change_count,
            average_value=average_value,
        )


class AggregationEngine:
    """Pure aggregation over an already-fetched history snapshot.

    For a fixed history and ``now`` the output is fully determined; the
    engine keeps no state between calls.
    """

    def __init__(
        self,
        calendar: PeriodCalendar,
        key_generator: RangeKeyGenerator | None = None,
    ) -> None:
        self.calendar = calendar
        self.key_generator = key_generator or RangeKeyGenerator(calendar)

    def window(
        self,
        granularity: Granularity,
        lookback: int,
        now: datetime,
    ) -> tuple[datetime, datetime]:
        """Return the inclusive ``[start, end]`` instants covering ``lookback`` periods."""
        first = self.calendar.add_periods(now, -(lookback - 1), granularity)
        start = self.calendar.start_of_period(first, granularity)
        end = self.calendar.end_of_period(now, granularity)
        return start, end

    def build(
        self,
        events: Iterable[CounterHistory],
        *,
        baseline: float,
        current_value: float,
        granularity: Granularity,
        start: datetime,
        end: datetime,
        now: datetime,
    ) -> list[AggregateResult]:
        """Walk every period in ``[start, end]`` and summarise it.

        Args:
            events: History rows inside the window, in any order.
            baseline: Value carried into the window from before ``start``.
            current_value: Live counter value, used as the end value of the
                period containing ``now`` when that period has no events.
            granularity: Period size.
            start: First instant of the window.
            end: Last instant of the window.
            now: Reference instant; periods after the one containing it
                are never reported.
        """
        grouped: dict[str, list[float]] = defaultdict(list)
        for event in sorted(events, key=lambda e: e.timestamp):
            grouped[self.calendar.period_key(event.timestamp, granularity)].append(event.value)

        current_key = self.calendar.period_key(now, granularity)
        keys = self.key_generator.generate_keys(start, end, granularity)

        results: list[AggregateResult] = []
        running = baseline
        for key in keys:
            if key > current_key:
                break
            bucket = PeriodBucket(period=key, change_values=grouped.get(key, []))
            bucket.start_value = running
            if bucket.change_values:
                bucket.end_value = bucket.change_values[-1]
            elif key == current_key:
                bucket.end_value = current_value
            else:
                bucket.end_value = running
            running = bucket.end_value
            results.append(AggregateResult.from_bucket(bucket))
        return results


class CounterAggregationService:
    """Fetches a counter's history and hands it to the engine."""

    def __init__(
        self,
        db: Session,
        calendar: PeriodCalendar | None = None,
        permissions: SharePermissionService | None = None,
    ) -> None:
        self.db = db
        self.engine = AggregationEngine(calendar or get_reference_calendar())
        self.permissions = permissions or get_permission_service()
        self.counters = CounterRepository(db)
        self.history = CounterHistoryRepository(db)

    def aggregate(
        self,
        counter_id: int,
        owner_user_id: int,
        granularity: Granularity,
        lookback: int | None,
        now: datetime,
        caller: CallerContext,
    ) -> list[AggregateResult]:
        """Return one result per period in the lookback window, oldest first.

        Raises:
            CounterPermissionError: If the caller may not read the counter.
            CounterNotFoundError: If the owner has no such counter.
            InvalidLookbackError: If ``lookback`` is out of bounds.
            TransientStoreError: If the history read fails. No partial
                result is produced.
        """
        lookback = validate_lookback(granularity, lookback)
        self.permissions.require_permission(
            owner_user_id, COUNTERS_RESOURCE, counter_id, PermissionType.READ, caller
        )

        start, end = self.engine.window(granularity, lookback, now)
        try:
            counter = self.counters.get_owned(counter_id, owner_user_id)
            if counter is None:
                raise CounterNotFoundError(
                    f"Counter {counter_id} not found for user {owner_user_id}"
                )
            events = self.history.list_range(counter_id, owner_user_id, start, end)
            baseline = self.history.latest_value_before(counter_id, owner_user_id, start)
        except OperationalError as exc:
            raise TransientStoreError(
                f"Failed to read history of counter {counter_id}: {exc}"
            ) from exc

        logger.debug(
            "Aggregating counter %s by %s over %d periods (%d events, baseline %s)",
            counter_id,
            granularity,
            lookback,
            len(events),
            baseline,
        )
        return self.engine.build(
            events,
            baseline=baseline if baseline is not None else 0.0,
            current_value=counter.value,
            granularity=granularity,
            start=start,
            end=end,
            now=now,
        )
