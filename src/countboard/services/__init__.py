# src/countboard/services/__init__.py
"""Business logic services for counters, history and aggregates."""

from .aggregation import AggregationEngine, CounterAggregationService
from .counters import AppendResult, CounterService
from .mutation_queue import MutationQueue
from .periods import RangeKeyGenerator
from .permissions import SharePermissionService

__all__ = [
    "AggregationEngine",
    "AppendResult",
    "CounterAggregationService",
    "CounterService",
    "MutationQueue",
    "RangeKeyGenerator",
    "SharePermissionService",
]
