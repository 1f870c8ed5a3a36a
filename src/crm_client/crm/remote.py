"""Async HTTP backend for the remote CRM API.

The remote exposes name-based operation endpoints (``/createLead``,
``/searchOpportunity``, ``/convertLead`` ...) that all accept a JSON body via
POST. Every call returns a RemoteResult instead of raising:
- 2xx           -> Ok(parsed JSON body)
- 404           -> NotFound
- anything else -> Failure(RemoteError) with status_code (0 = no response)

Transport errors may be retried with tenacity (REMOTE_MAX_ATTEMPTS, default 1
meaning no retry). HTTP status codes are never retried.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.crm_client.config import Settings, get_settings
from src.crm_client.core.monitoring import remote_requests_total
from src.crm_client.crm.errors import Failure, NotFound, Ok, RemoteError, RemoteResult

logger = structlog.get_logger(__name__)


class RemoteBackend:
    """Client for the remote CRM operation endpoints.

    Args:
        api_url: Base URL including path prefix (e.g. ``https://crm.example/api``).
            Empty means offline: every call fails with status 0.
        token: Optional bearer token for the Authorization header.
        timeout: Per-request timeout in seconds.
        max_attempts: Attempts per call for transport-level failures.
        transport: Optional httpx transport (tests inject MockTransport).
    """

    def __init__(
        self,
        api_url: str,
        token: str = "",
        timeout: float = 10.0,
        max_attempts: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._transport = transport
        self._headers = {"Content-Type": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RemoteBackend:
        settings = settings or get_settings()
        return cls(
            api_url="" if settings.is_offline else settings.api_url,
            token=settings.API_TOKEN,
            timeout=settings.API_TIMEOUT,
            max_attempts=settings.REMOTE_MAX_ATTEMPTS,
        )

    @property
    def is_offline(self) -> bool:
        return not self._api_url

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client for one call."""
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _post(self, operation: str, payload: dict[str, Any]) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                async with self._client() as client:
                    return await client.post(f"{self._api_url}/{operation}", json=payload)
        raise AssertionError("unreachable")  # pragma: no cover

    async def call(self, operation: str, payload: dict[str, Any]) -> RemoteResult:
        """POST payload to ``/{operation}`` and classify the outcome."""
        if self.is_offline:
            remote_requests_total.labels(operation=operation, outcome="failure").inc()
            return Failure(RemoteError("Failed to fetch", operation=operation, status_code=0))

        try:
            response = await self._post(operation, payload)
        except httpx.TransportError as exc:
            remote_requests_total.labels(operation=operation, outcome="failure").inc()
            logger.warning("remote.transport_error", operation=operation, error=str(exc))
            return Failure(
                RemoteError(str(exc) or "Network Error", operation=operation, status_code=0)
            )

        if response.status_code == 404:
            remote_requests_total.labels(operation=operation, outcome="not_found").inc()
            logger.info("remote.not_found", operation=operation)
            return NotFound(operation=operation, detail=response.text)

        if response.is_error:
            remote_requests_total.labels(operation=operation, outcome="failure").inc()
            logger.error(
                "remote.request_failed",
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500],
            )
            return Failure(
                RemoteError(
                    f"Request failed with status code {response.status_code}",
                    operation=operation,
                    status_code=response.status_code,
                )
            )

        try:
            data = response.json() if response.content else None
        except ValueError:
            remote_requests_total.labels(operation=operation, outcome="failure").inc()
            return Failure(
                RemoteError(
                    "Invalid JSON in response",
                    operation=operation,
                    status_code=response.status_code,
                )
            )

        remote_requests_total.labels(operation=operation, outcome="ok").inc()
        return Ok(data)

    # ── Named operations ────────────────────────────────────────────────

    @staticmethod
    def _id_field(entity: str) -> str:
        return f"{entity[0].lower()}{entity[1:]}Id"

    async def create(self, entity: str, draft: dict[str, Any]) -> RemoteResult:
        return await self.call(f"create{entity}", draft)

    async def search(self, entity: str, criteria: dict[str, Any] | None = None) -> RemoteResult:
        return await self.call(f"search{entity}", criteria or {})

    async def update(self, entity: str, entity_id: str, changes: dict[str, Any]) -> RemoteResult:
        return await self.call(f"update{entity}", {self._id_field(entity): entity_id, **changes})

    async def delete(self, entity: str, entity_id: str) -> RemoteResult:
        return await self.call(f"delete{entity}", {self._id_field(entity): entity_id})

    async def convert_lead(self, lead_id: str, value: float | None = None) -> RemoteResult:
        payload: dict[str, Any] = {"leadId": lead_id}
        if value is not None:
            payload["value"] = value
        return await self.call("convertLead", payload)
