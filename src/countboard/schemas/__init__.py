# src/countboard/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .counter import (
    AggregateResponse,
    CounterCreate,
    CounterResponse,
    CounterUpdate,
    DataEnvelope,
    MutationAccepted,
    MutationCreate,
    MutationEventResponse,
)

__all__ = [
    "AggregateResponse",
    "CounterCreate", "CounterResponse", "CounterUpdate",
    "DataEnvelope",
    "MutationAccepted", "MutationCreate", "MutationEventResponse",
]
