"""HTTP client the mutation queue uses to reach the counters API.

Implements the two calls the queue needs: a durable append of a new value
and a fresh read of the authoritative value for reconciliation.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from countboard.core.errors import (
    CounterError,
    CounterNotFoundError,
    CounterPermissionError,
    DuplicateMutationError,
    PermissionType,
    TransientStoreError,
)
from countboard.core.settings import settings
from countboard.services.counters import AppendResult

logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_INTERNAL_SERVER_ERROR = 500


@dataclass(frozen=True)
class CounterClientConfig:
    """Immutable configuration for talking to the counters API."""

    base_url: str
    owner_user_id: int
    access_token: str | None = None
    share_token: str | None = None
    timeout_seconds: float = 10.0


class CounterApiClient:
    """httpx wrapper for one owner's counters."""

    def __init__(
        self,
        config: CounterClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        owner_user_id: int,
        *,
        access_token: str | None = None,
        share_token: str | None = None,
    ) -> CounterApiClient:
        """Build a client pointed at the configured API base URL."""
        return cls(
            CounterClientConfig(
                base_url=settings.api_base_url,
                owner_user_id=owner_user_id,
                access_token=access_token,
                share_token=share_token,
                timeout_seconds=settings.api_timeout_seconds,
            )
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                headers: dict[str, str] = {}
                if self.config.access_token:
                    headers["Authorization"] = f"Bearer {self.config.access_token}"
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    headers=headers,
                    transport=self._transport,
                )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"user_id": self.config.owner_user_id}
        if self.config.share_token:
            params["share_token"] = self.config.share_token
        return params

    async def _request(
        self,
        method: str,
        path: str,
        *,
        counter_id: int,
        action: PermissionType,
        json_data: Any | None = None,
    ) -> httpx.Response:
        client = await self._ensure_client()
        try:
            response = await client.request(method, path, params=self._params(), json=json_data)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            # The request never reached the server, so sending it again is safe.
            raise TransientStoreError(f"{method} {path} failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise CounterError(f"{method} {path} outcome unknown: {exc}") from exc

        if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
            raise TransientStoreError(f"{method} {path} responded with {response.status_code}")
        if response.status_code == HTTP_FORBIDDEN:
            raise CounterPermissionError(
                owner_user_id=self.config.owner_user_id,
                resource_type="counters",
                resource_id=counter_id,
                action=action,
                session_user_id=None,
            )
        if response.status_code == HTTP_NOT_FOUND:
            raise CounterNotFoundError(f"Counter {counter_id} not found")
        if response.status_code == HTTP_CONFLICT:
            raise DuplicateMutationError(_detail(response))
        if response.is_error:
            raise CounterError(f"{method} {path} rejected: {_detail(response)}")
        return response

    async def append_mutation(self, counter_id: int, value: float) -> AppendResult:
        """Durably record ``value`` as the counter's new value."""
        response = await self._request(
            "POST",
            f"/api/v1/counters/{counter_id}/mutations",
            counter_id=counter_id,
            action=PermissionType.WRITE,
            json_data={"user_id": self.config.owner_user_id, "value": value},
        )
        try:
            payload = response.json()
            return AppendResult(
                accepted_value=float(payload["accepted_value"]),
                timestamp=datetime.fromisoformat(payload["timestamp"]),
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise CounterError(f"Malformed mutation response for counter {counter_id}") from exc

    async def fetch_counter_value(self, counter_id: int) -> float:
        """Read the counter's authoritative value."""
        response = await self._request(
            "GET",
            f"/api/v1/counters/{counter_id}",
            counter_id=counter_id,
            action=PermissionType.READ,
        )
        try:
            return float(response.json()["value"])
        except (ValueError, KeyError, TypeError) as exc:
            raise CounterError(f"Malformed counter response for counter {counter_id}") from exc


def _detail(response: httpx.Response) -> str:
    try:
        return str(response.json().get("detail", response.text))
    except (ValueError, AttributeError):
        return response.text
