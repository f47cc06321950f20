"""Storage protocols for notesync.

The sync engine only talks to these protocols; ``SQLiteStorage`` is the
bundled implementation. Any store honoring the contract (idempotent
upsert keyed by id, strictly-greater ``since`` filter) can replace it.
"""

from typing import Dict, List, Optional, Protocol, Tuple, TypeVar, runtime_checkable

from notesync.types import EntityKind, QueuedWrite, SyncConflict

RecordT = TypeVar("RecordT")


@runtime_checkable
class EntityStore(Protocol[RecordT]):
    """Local store for one entity kind."""

    kind: EntityKind

    def prepare_updates(self, since: int) -> List[RecordT]:
        """Records with ``dt_modify > since``, owner-scoped, in store order."""
        ...

    def save(self, record: RecordT) -> RecordT:
        """Upsert keyed by id; returns the persisted record."""
        ...

    def get(self, record_id: str) -> Optional[RecordT]:
        ...


@runtime_checkable
class SyncStorage(Protocol):
    """Everything the coordinator needs from local storage."""

    owner_id: str
    users: EntityStore
    folders: EntityStore
    notes: EntityStore

    def get_sync_meta(self, key: str) -> Optional[str]:
        ...

    def set_sync_meta(self, key: str, value: str) -> None:
        ...

    def record_write_failure(
        self, kind: EntityKind, record_id: str, dt_modify: Optional[int], error: str
    ) -> int:
        ...

    def record_write_success(self, kind: EntityKind, record_id: str) -> int:
        ...

    def get_pending_writes(self, limit: int = 500) -> List[QueuedWrite]:
        ...

    def get_dead_letter_versions(self) -> Dict[Tuple[EntityKind, str], Optional[int]]:
        ...

    def save_sync_conflict(self, conflict: SyncConflict) -> str:
        ...
