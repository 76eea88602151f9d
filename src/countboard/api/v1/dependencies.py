"""Shared API dependencies for caller identity and services."""

from typing import Annotated

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from countboard.core.calendar import PeriodCalendar, get_reference_calendar
from countboard.core.security import decode_access_token
from countboard.db.session import get_db
from countboard.services.aggregation import CounterAggregationService
from countboard.services.counters import CounterService
from countboard.services.permissions import (
    CallerContext,
    SharePermissionService,
    get_permission_service,
)

# Bearer auth is optional: share-token callers may have no session at all.
bearer_scheme = HTTPBearer(auto_error=False)

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_caller_context(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    share_token: Annotated[str | None, Query(description="Share token granting access")] = None,
) -> CallerContext:
    """Identify the caller from an optional bearer token and share token.

    Raises:
        HTTPException: If a bearer token is presented but invalid
    """
    session_user_id: int | None = None
    if credentials is not None:
        try:
            session_user_id = decode_access_token(credentials.credentials)
        except (JWTError, ValueError) as err:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Could not validate credentials",
            ) from err
    return CallerContext(session_user_id=session_user_id, share_token=share_token)


def get_permission_service_dep() -> SharePermissionService:
    """Return the shared permission service."""
    return get_permission_service()


def get_calendar_dep() -> PeriodCalendar:
    """Return the reference-timezone calendar."""
    return get_reference_calendar()


CallerDep = Annotated[CallerContext, Depends(get_caller_context)]
PermissionServiceDep = Annotated[SharePermissionService, Depends(get_permission_service_dep)]
CalendarDep = Annotated[PeriodCalendar, Depends(get_calendar_dep)]


def get_counter_service(db: SessionDep, permissions: PermissionServiceDep) -> CounterService:
    """Build a request-scoped counter service."""
    return CounterService(db, permissions)


def get_aggregation_service(
    db: SessionDep,
    calendar: CalendarDep,
    permissions: PermissionServiceDep,
) -> CounterAggregationService:
    """Build a request-scoped aggregation service."""
    return CounterAggregationService(db, calendar, permissions)


CounterServiceDep = Annotated[CounterService, Depends(get_counter_service)]
AggregationServiceDep = Annotated[CounterAggregationService, Depends(get_aggregation_service)]
