"""Ordered period key ranges built on the reference calendar."""

from __future__ import annotations

import logging
from datetime import datetime

from countboard.core.calendar import Granularity, PeriodCalendar
from countboard.core.errors import PeriodRangeError
from countboard.core.settings import settings

logger = logging.getLogger(__name__)


class RangeKeyGenerator:
    """Builds the duplicate-free list of period keys spanning two instants."""

    def __init__(self, calendar: PeriodCalendar, iteration_limit: int | None = None) -> None:
        self.calendar = calendar
        self.iteration_limit = iteration_limit or settings.period_key_iteration_limit

    def generate_keys(
        self,
        start: datetime,
        end: datetime,
        granularity: Granularity,
    ) -> list[str]:
        """Return every period key from ``start`` through ``end``, ascending.

        The first key is the key of ``start`` and the last is the key of
        ``end``. An empty list is returned when ``start`` falls in a later
        period than ``end``.

        Raises:
            PeriodRangeError: If the walk produces a key that does not advance
                or exceeds the iteration limit. Both mean the calendar's
                arithmetic and key formatting disagree.
        """
        end_key = self.calendar.period_key(end, granularity)
        keys: list[str] = []
        current = start
        key = self.calendar.period_key(current, granularity)

        while key <= end_key:
            if keys and key <= keys[-1]:
                logger.critical(
                    "Period key %s did not advance past %s (%s walk from %s to %s)",
                    key,
                    keys[-1],
                    granularity,
                    start.isoformat(),
                    end.isoformat(),
                )
                raise PeriodRangeError(
                    f"Period key {key} does not follow {keys[-1]} for granularity {granularity}"
                )
            keys.append(key)
            if len(keys) > self.iteration_limit:
                logger.critical(
                    "Period key walk exceeded %d iterations (%s from %s to %s)",
                    self.iteration_limit,
                    granularity,
                    start.isoformat(),
                    end.isoformat(),
                )
                raise PeriodRangeError(
                    f"Generating {granularity} keys from {start.isoformat()} to "
                    f"{end.isoformat()} exceeded {self.iteration_limit} periods"
                )
            current = self.calendar.add_periods(current, 1, granularity)
            key = self.calendar.period_key(current, granularity)

        logger.debug(
            "Generated %d %s keys from %s to %s",
            len(keys),
            granularity,
            keys[0] if keys else None,
            end_key,
        )
        return keys
