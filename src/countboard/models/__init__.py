# src/countboard/models/__init__.py
"""SQLAlchemy models for the Countboard application."""

from .counter import Counter, CounterHistory

__all__ = ["Counter", "CounterHistory"]
