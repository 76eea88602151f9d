"""Access and share token helpers built on python-jose."""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import jwt

from countboard.core.settings import settings


def create_access_token(user_id: int, extra_claims: dict[str, str] | None = None) -> str:
    """Create a first-party JWT access token whose subject is ``user_id``."""
    to_encode: dict[str, object] = {"sub": str(user_id)}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode["exp"] = expire
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str) -> int:
    """Return the user id carried by an access token.

    Raises:
        jose.JWTError: If the token is invalid or expired.
        ValueError: If the subject is missing or not an integer.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    subject = payload.get("sub")
    if subject is None:
        raise ValueError("Token has no subject")
    return int(subject)


def create_share_token(
    owner_user_id: int,
    scopes: Iterable[Mapping[str, Any]],
    expires_minutes: int | None = None,
) -> str:
    """Issue a share token granting scoped access to an owner's resources.

    Each scope is ``{"resourceType": str, "resourceId": int | None,
    "permissions": ["READ" | "WRITE", ...]}``; a null ``resourceId`` covers
    every resource of that type.
    """
    payload: dict[str, object] = {
        "ownerId": owner_user_id,
        "scopes": [dict(scope) for scope in scopes],
    }
    if expires_minutes is not None:
        payload["exp"] = datetime.now(UTC) + timedelta(minutes=expires_minutes)
    encoded: str = jwt.encode(
        payload,
        settings.effective_share_secret,
        algorithm=settings.jwt_algorithm,
    )
    return encoded


def decode_share_token(token: str) -> dict[str, Any]:
    """Verify a share token and return its payload.

    Raises:
        jose.JWTError: If the signature is invalid or the token expired.
    """
    payload: dict[str, Any] = jwt.decode(
        token,
        settings.effective_share_secret,
        algorithms=[settings.jwt_algorithm],
    )
    return payload
