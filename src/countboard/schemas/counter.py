# src/countboard/schemas/counter.py
"""Counter-related Pydantic schemas."""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class CounterCreate(BaseModel):
    """Schema for creating a new counter."""

    user_id: int = Field(..., description="Owner of the counter")
    name: str = Field(..., min_length=1, max_length=200)
    value: float = Field(0.0, description="Initial value")


class CounterUpdate(BaseModel):
    """Schema for renaming a counter or setting its value."""

    user_id: int = Field(..., description="Owner of the counter")
    name: str | None = Field(None, min_length=1, max_length=200)
    value: float | None = None


class CounterResponse(BaseModel):
    """Schema for counter information returned by the API."""

    id: int
    user_id: int
    name: str
    value: float
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MutationCreate(BaseModel):
    """Schema for recording a new absolute counter value."""

    user_id: int = Field(..., description="Owner of the counter")
    value: float


class MutationAccepted(BaseModel):
    """Schema returned once a mutation is durably recorded."""

    accepted_value: float
    timestamp: datetime


class MutationEventResponse(BaseModel):
    """One entry of a counter's history."""

    id: int
    counter_id: int
    user_id: int
    value: float
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class AggregateResponse(BaseModel):
    """Statistics for one calendar period."""

    period: str = Field(..., description="Period key, e.g. 2025-11, 2025-11-02 or 2025-11-02T14")
    total_changes: float
    net_change: float
    start_value: float
    end_value: float
    change_count: int
    average_value: float

    model_config = ConfigDict(from_attributes=True)


class DataEnvelope(BaseModel, Generic[T]):
    """List payload wrapped under ``data``."""

    data: list[T]
