# src/countboard/api/v1/endpoints/counters.py
"""Counter endpoints: lifecycle, history and time-bucketed aggregates."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, HTTPException, Query, status

from countboard.core.errors import (
    CounterNotFoundError,
    CounterPermissionError,
    DuplicateMutationError,
    InvalidLookbackError,
    PeriodRangeError,
    TransientStoreError,
)
from countboard.db.time import utcnow
from countboard.schemas.counter import (
    AggregateResponse,
    CounterCreate,
    CounterResponse,
    CounterUpdate,
    DataEnvelope,
    MutationAccepted,
    MutationCreate,
    MutationEventResponse,
)

from ..dependencies import AggregationServiceDep, CallerDep, CounterServiceDep

router = APIRouter(prefix="/counters", tags=["counters"])

logger = logging.getLogger(__name__)

UserIdQuery = Annotated[int, Query(description="Owner of the counter")]


@contextmanager
def _domain_errors() -> Iterator[None]:
    """Translate domain failures into HTTP responses."""
    try:
        yield
    except CounterPermissionError as err:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(err)) from err
    except CounterNotFoundError as err:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err)) from err
    except DuplicateMutationError as err:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(err)) from err
    except InvalidLookbackError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    except TransientStoreError as err:
        logger.warning("Store unavailable: %s", err)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Counter store temporarily unavailable",
        ) from err
    except PeriodRangeError as err:
        logger.exception("Period key generation failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build period range",
        ) from err


def _require_aware(value: datetime | None, name: str) -> None:
    if value is not None and (value.tzinfo is None or value.utcoffset() is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {name} format: a timezone offset is required",
        )


@router.get("/", response_model=DataEnvelope[CounterResponse])
async def list_counters(
    user_id: UserIdQuery,
    caller: CallerDep,
    service: CounterServiceDep,
) -> dict[str, object]:
    """Fetch all counters for a user."""
    with _domain_errors():
        counters = service.list_counters(user_id, caller)
    return {"data": counters}


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=CounterResponse)
async def create_counter(
    payload: CounterCreate,
    caller: CallerDep,
    service: CounterServiceDep,
) -> object:
    """Create a new counter."""
    with _domain_errors():
        return service.create_counter(payload.user_id, payload.name, caller, value=payload.value)


@router.get("/{counter_id}", response_model=CounterResponse)
async def get_counter(
    counter_id: int,
    user_id: UserIdQuery,
    caller: CallerDep,
    service: CounterServiceDep,
) -> object:
    """Fetch a single counter."""
    with _domain_errors():
        return service.get_counter(user_id, counter_id, caller)


@router.patch("/{counter_id}", response_model=CounterResponse)
async def update_counter(
    counter_id: int,
    payload: CounterUpdate,
    caller: CallerDep,
    service: CounterServiceDep,
) -> object:
    """Rename a counter and/or set its value."""
    with _domain_errors():
        return service.update_counter(
            payload.user_id,
            counter_id,
            caller,
            name=payload.name,
            value=payload.value,
        )


@router.delete("/{counter_id}")
async def delete_counter(
    counter_id: int,
    user_id: UserIdQuery,
    caller: CallerDep,
    service: CounterServiceDep,
) -> dict[str, str]:
    """Delete a counter and its history."""
    with _domain_errors():
        service.delete_counter(user_id, counter_id, caller)
    return {"message": "Counter deleted successfully"}


@router.post(
    "/{counter_id}/mutations",
    status_code=status.HTTP_201_CREATED,
    response_model=MutationAccepted,
)
async def append_mutation(
    counter_id: int,
    payload: MutationCreate,
    caller: CallerDep,
    service: CounterServiceDep,
) -> object:
    """Durably record a new absolute value for the counter."""
    with _domain_errors():
        return service.append_mutation(counter_id, payload.user_id, payload.value, caller)


@router.get("/{counter_id}/history", response_model=DataEnvelope[MutationEventResponse])
async def get_counter_history(
    counter_id: int,
    user_id: UserIdQuery,
    caller: CallerDep,
    service: CounterServiceDep,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict[str, object]:
    """Fetch a counter's history within an optional inclusive date range."""
    _require_aware(start_date, "start_date")
    _require_aware(end_date, "end_date")
    with _domain_errors():
        history = service.list_mutations(counter_id, user_id, caller, start_date, end_date)
    return {"data": history}


@router.get("/{counter_id}/aggregated", response_model=DataEnvelope[AggregateResponse])
async def get_counter_aggregates(
    counter_id: int,
    user_id: UserIdQuery,
    group_by: Literal["month", "day", "hour"],
    caller: CallerDep,
    service: AggregationServiceDep,
    time_range: int | None = None,
) -> dict[str, object]:
    """Fetch per-period aggregates for the last ``time_range`` periods."""
    with _domain_errors():
        data = service.aggregate(counter_id, user_id, group_by, time_range, utcnow(), caller)
    return {"data": data}


@router.get("/{counter_id}/monthly", response_model=DataEnvelope[AggregateResponse])
async def get_counter_monthly(
    counter_id: int,
    user_id: UserIdQuery,
    caller: CallerDep,
    service: AggregationServiceDep,
    months_back: int = 12,
) -> dict[str, object]:
    """Fetch monthly aggregates for the last ``months_back`` months."""
    with _domain_errors():
        data = service.aggregate(counter_id, user_id, "month", months_back, utcnow(), caller)
    return {"data": data}
