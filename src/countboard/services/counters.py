"""Counter lifecycle and history read/write operations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from countboard.core.errors import (
    CounterNotFoundError,
    DuplicateMutationError,
    PermissionType,
    TransientStoreError,
)
from countboard.db.time import utcnow
from countboard.models import Counter, CounterHistory
from countboard.repositories.counter_repo import CounterHistoryRepository, CounterRepository
from countboard.services.permissions import (
    COUNTERS_RESOURCE,
    CallerContext,
    SharePermissionService,
    get_permission_service,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppendResult:
    """Outcome of a durable write: the stored value and its timestamp."""

    accepted_value: float
    timestamp: datetime


class CounterService:
    """Owns every read and write of counters and their history.

    Each operation checks authorization once, before touching the store,
    unless the caller is the authenticated owner.
    """

    def __init__(
        self,
        db: Session,
        permissions: SharePermissionService | None = None,
    ) -> None:
        self.db = db
        self.permissions = permissions or get_permission_service()
        self.counters = CounterRepository(db)
        self.history = CounterHistoryRepository(db)

    def _authorize(
        self,
        owner_user_id: int,
        counter_id: int | None,
        action: PermissionType,
        caller: CallerContext,
    ) -> None:
        self.permissions.require_permission(
            owner_user_id, COUNTERS_RESOURCE, counter_id, action, caller
        )

    def _get_owned_or_404(self, owner_user_id: int, counter_id: int) -> Counter:
        counter = self.counters.get_owned(counter_id, owner_user_id)
        if counter is None:
            raise CounterNotFoundError(f"Counter {counter_id} not found for user {owner_user_id}")
        return counter

    def list_counters(self, owner_user_id: int, caller: CallerContext) -> list[Counter]:
        """Return all of the owner's counters ordered by name."""
        self._authorize(owner_user_id, None, PermissionType.READ, caller)
        try:
            return self.counters.list_for_user(owner_user_id)
        except OperationalError as exc:
            raise TransientStoreError(f"Failed to list counters: {exc}") from exc

    def get_counter(self, owner_user_id: int, counter_id: int, caller: CallerContext) -> Counter:
        """Return one counter owned by ``owner_user_id``."""
        self._authorize(owner_user_id, counter_id, PermissionType.READ, caller)
        try:
            return self._get_owned_or_404(owner_user_id, counter_id)
        except OperationalError as exc:
            raise TransientStoreError(f"Failed to load counter {counter_id}: {exc}") from exc

    def create_counter(
        self,
        owner_user_id: int,
        name: str,
        caller: CallerContext,
        value: float = 0.0,
    ) -> Counter:
        """Create a counter for the owner."""
        self._authorize(owner_user_id, None, PermissionType.WRITE, caller)
        try:
            counter = self.counters.create(user_id=owner_user_id, name=name, value=value)
            self.db.commit()
        except OperationalError as exc:
            self.db.rollback()
            raise TransientStoreError(f"Failed to create counter: {exc}") from exc
        logger.info("Created counter %s for user %s", counter.id, owner_user_id)
        return counter

    def update_counter(
        self,
        owner_user_id: int,
        counter_id: int,
        caller: CallerContext,
        *,
        name: str | None = None,
        value: float | None = None,
    ) -> Counter:
        """Rename a counter and/or set its value.

        A history entry is appended in the same transaction only when the
        value actually changes.
        """
        self._authorize(owner_user_id, counter_id, PermissionType.WRITE, caller)
        try:
            counter = self._get_owned_or_404(owner_user_id, counter_id)
            if name is not None:
                counter.name = name
            if value is not None and value != counter.value:
                counter.value = value
                self.history.append(
                    counter_id=counter_id,
                    user_id=owner_user_id,
                    value=value,
                    timestamp=utcnow(),
                )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateMutationError(
                f"Counter {counter_id} already has a mutation at this timestamp"
            ) from exc
        except OperationalError as exc:
            self.db.rollback()
            raise TransientStoreError(f"Failed to update counter {counter_id}: {exc}") from exc
        return counter

    def delete_counter(self, owner_user_id: int, counter_id: int, caller: CallerContext) -> None:
        """Delete a counter together with its history."""
        self._authorize(owner_user_id, counter_id, PermissionType.WRITE, caller)
        try:
            counter = self._get_owned_or_404(owner_user_id, counter_id)
            self.db.delete(counter)
            self.db.commit()
        except OperationalError as exc:
            self.db.rollback()
            raise TransientStoreError(f"Failed to delete counter {counter_id}: {exc}") from exc
        logger.info("Deleted counter %s for user %s", counter_id, owner_user_id)

    def list_mutations(
        self,
        counter_id: int,
        owner_user_id: int,
        caller: CallerContext,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CounterHistory]:
        """Return the counter's events in ``[start, end]``, oldest first."""
        self._authorize(owner_user_id, counter_id, PermissionType.READ, caller)
        try:
            return self.history.list_range(counter_id, owner_user_id, start, end)
        except OperationalError as exc:
            raise TransientStoreError(
                f"Failed to read history of counter {counter_id}: {exc}"
            ) from exc

    def append_mutation(
        self,
        counter_id: int,
        owner_user_id: int,
        new_value: float,
        caller: CallerContext,
    ) -> AppendResult:
        """Record ``new_value`` as the counter's current value.

        Always appends exactly one history event. A second event for the same
        counter and timestamp is rejected, never merged.
        """
        self._authorize(owner_user_id, counter_id, PermissionType.WRITE, caller)
        timestamp = utcnow()
        try:
            counter = self._get_owned_or_404(owner_user_id, counter_id)
            counter.value = new_value
            entry = self.history.append(
                counter_id=counter_id,
                user_id=owner_user_id,
                value=new_value,
                timestamp=timestamp,
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateMutationError(
                f"Counter {counter_id} already has a mutation at {timestamp.isoformat()}"
            ) from exc
        except OperationalError as exc:
            self.db.rollback()
            raise TransientStoreError(
                f"Failed to append mutation to counter {counter_id}: {exc}"
            ) from exc
        logger.debug("Appended value %s to counter %s at %s", new_value, counter_id, timestamp)
        return AppendResult(accepted_value=entry.value, timestamp=timestamp)
