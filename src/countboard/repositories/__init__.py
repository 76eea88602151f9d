"""Data access helpers."""

from .counter_repo import CounterHistoryRepository, CounterRepository

__all__ = ["CounterRepository", "CounterHistoryRepository"]
