"""HTTP client for the remote document endpoint and record authority.

Nothing here retries: a failed request surfaces as a ``RemoteError`` and the
next sync cycle is the retry.
"""

import logging
from typing import Any, Protocol

import httpx

from ..models import Employee

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Transient failure talking to the remote authority."""


class RemoteUnavailableError(RemoteError):
    """Remote could not be reached (connection refused, timeout)."""


class RemoteRejectedError(RemoteError):
    """Remote answered with a non-success status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code


class DocumentEndpoint(Protocol):
    """Exchanges opaque document snapshots with the remote."""

    async def fetch_document(self) -> bytes: ...

    async def push_document(self, snapshot: bytes) -> bool: ...


class RecordAuthority(Protocol):
    """Assigns permanent identifiers to new records."""

    async def insert_record(self, employee: Employee) -> int: ...


class RemoteClient:
    """Async client for the employee sync service.

    Implements both ``DocumentEndpoint`` and ``RecordAuthority``.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3001/api",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the remote client.

        Args:
            base_url: API base URL (already ending in ``/api``).
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, e.g. for testing.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request and translate failures into RemoteError.

        Raises:
            RemoteUnavailableError: On connection errors or timeouts.
            RemoteRejectedError: On non-2xx responses.
        """
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteUnavailableError(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise RemoteUnavailableError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            raise RemoteRejectedError(response.status_code, response.text[:200])
        return response

    async def check_connection(self) -> bool:
        """Check whether the remote health endpoint answers.

        Returns:
            True if the remote is reachable and healthy.
        """
        try:
            await self._request("GET", "/health")
            return True
        except RemoteError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    # ==================== Document Endpoint ====================

    async def fetch_document(self) -> bytes:
        """Fetch the authority's current document snapshot."""
        response = await self._request("GET", "/sync/document")
        logger.debug(f"Fetched remote document ({len(response.content)} bytes)")
        return response.content

    async def push_document(self, snapshot: bytes) -> bool:
        """Push a snapshot for the remote to merge.

        Returns:
            Whether the merge changed the remote's state.
        """
        response = await self._request(
            "POST",
            "/sync/document",
            content=snapshot,
            headers={"Content-Type": "application/octet-stream"},
        )
        data = response.json()
        merged = bool(data.get("merged", False))
        logger.debug(f"Pushed document ({len(snapshot)} bytes), remote merged={merged}")
        return merged

    # ==================== Record Authority ====================

    async def insert_record(self, employee: Employee) -> int:
        """Insert a record and return its server-assigned ID.

        Raises:
            RemoteRejectedError: If the response carries no positive ID.
        """
        payload = employee.to_dict()
        payload.pop("EmployeeID", None)

        response = await self._request("POST", "/employees", json=payload)
        data = response.json()
        employee_id = Employee.from_dict(data.get("employee") or {}).employee_id
        if employee_id <= 0:
            raise RemoteRejectedError(response.status_code, "no EmployeeID in insert response")
        return employee_id

    async def update_record(self, employee: Employee) -> Employee:
        response = await self._request(
            "PUT", f"/employees/{employee.employee_id}", json=employee.to_dict()
        )
        return Employee.from_dict(response.json().get("employee") or {})

    async def delete_record(self, employee_id: int) -> None:
        await self._request("DELETE", f"/employees/{employee_id}")

    async def list_records(self) -> list[Employee]:
        """Fetch all records from the REST endpoint, normalized."""
        response = await self._request("GET", "/employees")
        data = response.json()
        rows = data if isinstance(data, list) else []
        return [Employee.from_dict(row) for row in rows]
