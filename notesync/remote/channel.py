"""Authenticated GraphQL channel to the remote store."""

import logging
from typing import Any, Dict, Optional

import httpx

from notesync.errors import OperationRejectedError, TransportError
from notesync.session import Session

from .operations import check_variables, get_operation

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0

# HTTP statuses that mean the request should be retried or re-authenticated,
# as opposed to the server rejecting the operation itself
_TRANSPORT_STATUSES = frozenset({401, 403, 408, 429})


class RemoteChannel:
    """Request/response channel executing named operations.

    Every ``execute`` call is independent; there is no ordering or
    transaction across calls. Use as an async context manager so the
    underlying connection pool is closed::

        async with RemoteChannel(session) as channel:
            data = await channel.execute("sync", {"userId": session.owner_id})

    Args:
        session: The authenticated session; supplies endpoint and token.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        session: Session,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not session.backend_url:
            raise ValueError("Session has no backend URL")
        if not session.token:
            raise ValueError("Session has no auth token")
        self.endpoint = session.backend_url
        self._client = httpx.AsyncClient(
            headers=session.auth_headers(),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "RemoteChannel":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def execute(self, operation_name: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Execute a registered operation and return its ``data`` object.

        Raises:
            ProtocolError: Unknown operation or undeclared variables (no I/O done).
            TransportError: Network failure, timeout, auth rejection, 5xx.
            OperationRejectedError: GraphQL errors or an unusable response body.
        """
        operation = get_operation(operation_name)
        check_variables(operation, variables)
        payload = {
            "query": operation.document,
            "variables": variables,
            "operationName": operation.operation_name,
        }

        try:
            response = await self._client.post(self.endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise TransportError(f"{operation_name} timed out: {e}", operation=operation_name) from e
        except httpx.HTTPError as e:
            raise TransportError(
                f"{operation_name} request failed: {e}", operation=operation_name
            ) from e

        status = response.status_code
        if status in _TRANSPORT_STATUSES or status >= 500:
            raise TransportError(
                f"{operation_name} returned HTTP {status}",
                operation=operation_name,
                status_code=status,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise OperationRejectedError(
                f"{operation_name} returned a non-JSON body (HTTP {status})",
                operation=operation_name,
                status_code=status,
            ) from e

        if not isinstance(body, dict):
            raise OperationRejectedError(
                f"{operation_name} returned an unexpected body", operation=operation_name, status_code=status
            )

        errors = body.get("errors")
        if errors:
            messages = "; ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors
            )
            raise OperationRejectedError(
                f"{operation_name} rejected: {messages}",
                operation=operation_name,
                status_code=status,
                errors=errors if isinstance(errors, list) else [errors],
            )

        if status >= 400:
            raise OperationRejectedError(
                f"{operation_name} returned HTTP {status}", operation=operation_name, status_code=status
            )

        data = body.get("data")
        if not isinstance(data, dict):
            raise OperationRejectedError(
                f"{operation_name} response has no data", operation=operation_name, status_code=status
            )

        logger.debug(f"{operation_name} succeeded (HTTP {status})")
        return data
