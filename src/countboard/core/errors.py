"""Domain exceptions shared by the counter read and write paths."""

from __future__ import annotations

from enum import Enum


class PermissionType(str, Enum):
    """Actions a caller can be granted on a shared resource."""

    READ = "READ"
    WRITE = "WRITE"


class CounterError(RuntimeError):
    """Base exception for counter failures."""


class CounterPermissionError(CounterError):
    """Raised when a caller lacks the permission required for an action."""

    def __init__(
        self,
        *,
        owner_user_id: int,
        resource_type: str,
        resource_id: int | None,
        action: PermissionType,
        session_user_id: int | None,
    ) -> None:
        target = f"{resource_id} from" if resource_id is not None else "all"
        super().__init__(
            f"userId {session_user_id} does not have {action.value} access to "
            f"{target} {resource_type} of userId {owner_user_id}"
        )
        self.owner_user_id = owner_user_id
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.action = action
        self.session_user_id = session_user_id


class CounterNotFoundError(CounterError):
    """Raised when a counter does not exist or is not owned by the user."""


class TransientStoreError(CounterError):
    """Raised for network, timeout or contention failures that may succeed later."""


class DuplicateMutationError(CounterError):
    """Raised when a mutation collides with an existing (counter, timestamp) row."""


class PeriodRangeError(CounterError):
    """Raised when period key generation breaks its ordering invariant.

    This is a programming error: the calendar's key formatting and period
    arithmetic disagree. Results are never truncated to hide it.
    """


class InvalidLookbackError(ValueError):
    """Raised when a lookback is outside the bound allowed for its granularity."""
