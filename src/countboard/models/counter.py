# src/countboard/models/counter.py
"""SQLAlchemy models for counters and their value history."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from countboard.db.session import Base
from countboard.db.time import UTCDateTime, utcnow


class Counter(Base):
    """User-defined numeric value with a durable history of every change.

    ``value`` is the live, authoritative value; it only moves through
    accepted mutations, each of which also lands in ``counter_history``.
    """

    __tablename__ = "counter"
    __table_args__ = (Index("ix_counter_user_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    history: Mapped[list[CounterHistory]] = relationship(
        "CounterHistory",
        back_populates="counter",
        cascade="all, delete-orphan",
        order_by="CounterHistory.timestamp",
    )


class CounterHistory(Base):
    """Append-only absolute-value snapshot of a counter.

    Rows are never edited. At most one row may exist per counter and
    timestamp, which gives the log a total order per counter.
    """

    __tablename__ = "counter_history"
    __table_args__ = (
        UniqueConstraint("counter_id", "timestamp", name="uq_counter_history_counter_timestamp"),
        Index("ix_counter_history_counter_timestamp", "counter_id", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    counter_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("counter.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Absolute value after the change, not a delta.
    value: Mapped[float] = mapped_column(Float, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    counter: Mapped[Counter] = relationship("Counter", back_populates="history")
