"""Exception hierarchy for notesync.

Cycle-level failures (pull, merge, local persistence) abort a sync and
are reported through ``SyncReport``. ``RemoteError`` subclasses raised by
individual mutations are caught by the dispatcher and never escape it.
"""

from typing import Any, Dict, List, Optional


class NoteSyncError(Exception):
    """Base class for all notesync errors."""


class RemoteError(NoteSyncError):
    """A remote call failed."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class TransportError(RemoteError):
    """Network failure, timeout, auth rejection or server-side HTTP error.

    These are worth retrying; the request may never have reached the server.
    """


class OperationRejectedError(RemoteError):
    """The server processed the request and rejected the operation."""

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message, operation=operation, status_code=status_code)
        self.errors = errors or []


class ProtocolError(NoteSyncError):
    """Malformed pull payload or invalid operation definition."""


class LocalPersistenceError(NoteSyncError):
    """A local store write failed while applying remote data."""

    def __init__(self, kind: str, record_id: str, cause: Exception):
        super().__init__(f"Failed to persist {kind} {record_id}: {cause}")
        self.kind = kind
        self.record_id = record_id
        self.cause = cause


class PullFailure(NoteSyncError):
    """The pull or merge-down phase failed; the cycle was aborted."""
