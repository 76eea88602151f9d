"""Data access helpers for counters and their mutation history."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from countboard.models.counter import Counter, CounterHistory

__all__ = ["CounterRepository", "CounterHistoryRepository"]


class CounterRepository:
    """Thin wrapper around database access for counter entities."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_owned(self, counter_id: int, user_id: int) -> Counter | None:
        """Return a counter only if it belongs to ``user_id``."""
        result = self.session.execute(
            select(Counter).where(Counter.id == counter_id, Counter.user_id == user_id)
        )
        return result.scalars().first()

    def list_for_user(self, user_id: int) -> list[Counter]:
        """Return the user's counters sorted by name."""
        result = self.session.execute(
            select(Counter).where(Counter.user_id == user_id).order_by(Counter.name.asc())
        )
        return list(result.scalars())

    def create(self, *, user_id: int, name: str, value: float) -> Counter:
        """Insert a new counter and return the persisted ORM instance."""
        counter = Counter(user_id=user_id, name=name, value=value)
        self.session.add(counter)
        self.session.flush()
        return counter


class CounterHistoryRepository:
    """Queries over the append-only ``counter_history`` log."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def list_range(
        self,
        counter_id: int,
        user_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CounterHistory]:
        """Return events with ``start <= timestamp <= end``, oldest first.

        Either bound may be omitted.
        """
        stmt = select(CounterHistory).where(
            CounterHistory.counter_id == counter_id,
            CounterHistory.user_id == user_id,
        )
        if start is not None:
            stmt = stmt.where(CounterHistory.timestamp >= start)
        if end is not None:
            stmt = stmt.where(CounterHistory.timestamp <= end)
        stmt = stmt.order_by(CounterHistory.timestamp.asc(), CounterHistory.id.asc())
        return list(self.session.execute(stmt).scalars())

    def latest_value_before(self, counter_id: int, user_id: int, instant: datetime) -> float | None:
        """Return the value of the newest event strictly before ``instant``."""
        result = self.session.execute(
            select(CounterHistory.value)
            .where(
                CounterHistory.counter_id == counter_id,
                CounterHistory.user_id == user_id,
                CounterHistory.timestamp < instant,
            )
            .order_by(CounterHistory.timestamp.desc(), CounterHistory.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    def append(
        self,
        *,
        counter_id: int,
        user_id: int,
        value: float,
        timestamp: datetime,
    ) -> CounterHistory:
        """Insert one event; the unique (counter, timestamp) constraint applies on flush."""
        entry = CounterHistory(
            counter_id=counter_id,
            user_id=user_id,
            value=value,
            timestamp=timestamp,
        )
        self.session.add(entry)
        self.session.flush()
        return entry
