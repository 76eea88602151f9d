"""Authorization checks for access to another user's counters."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Final

from jose import JWTError

from countboard.core.errors import CounterPermissionError, PermissionType
from countboard.core.security import decode_share_token

COUNTERS_RESOURCE: Final[str] = "counters"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerContext:
    """Who is asking: the signed-in user (if any) and a presented share token."""

    session_user_id: int | None = None
    share_token: str | None = None

    def is_owner(self, owner_user_id: int) -> bool:
        """Return True when the caller is the authenticated owner."""
        return self.session_user_id is not None and self.session_user_id == owner_user_id


def _grants(permissions: list[str], action: PermissionType) -> bool:
    # WRITE implies READ.
    if action.value in permissions:
        return True
    return action is PermissionType.READ and PermissionType.WRITE.value in permissions


class SharePermissionService:
    """Decides whether a non-owner caller may act on an owner's resources."""

    def has_permission(
        self,
        owner_user_id: int,
        resource_type: str,
        resource_id: int | None,
        action: PermissionType,
        caller: CallerContext,
    ) -> bool:
        """Return True when ``caller`` may perform ``action`` on the resource."""
        if caller.is_owner(owner_user_id):
            return True
        if not caller.share_token:
            return False

        try:
            payload = decode_share_token(caller.share_token)
        except JWTError as exc:
            logger.debug("Rejecting share token for owner %s: %s", owner_user_id, exc)
            return False

        if payload.get("ownerId") != owner_user_id:
            return False

        scopes = payload.get("scopes") or []
        return any(
            self._scope_matches(scope, resource_type, resource_id, action)
            for scope in scopes
            if isinstance(scope, Mapping)
        )

    def require_permission(
        self,
        owner_user_id: int,
        resource_type: str,
        resource_id: int | None,
        action: PermissionType,
        caller: CallerContext,
    ) -> None:
        """Raise ``CounterPermissionError`` unless the caller is allowed."""
        if not self.has_permission(owner_user_id, resource_type, resource_id, action, caller):
            raise CounterPermissionError(
                owner_user_id=owner_user_id,
                resource_type=resource_type,
                resource_id=resource_id,
                action=action,
                session_user_id=caller.session_user_id,
            )

    @staticmethod
    def _scope_matches(
        scope: Mapping[str, Any],
        resource_type: str,
        resource_id: int | None,
        action: PermissionType,
    ) -> bool:
        if scope.get("resourceType") != resource_type:
            return False
        scope_resource = scope.get("resourceId")
        if scope_resource is not None and scope_resource != resource_id:
            return False
        return _grants(list(scope.get("permissions") or []), action)


@lru_cache(maxsize=1)
def get_permission_service() -> SharePermissionService:
    """Return the shared permission service."""
    return SharePermissionService()
