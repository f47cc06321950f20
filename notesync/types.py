"""
Shared record and result types for notesync.

These dataclasses are the vocabulary shared by the local stores, the
remote channel payload builders and the sync engine. A record type is
the same object whether it came from the local database or from a
remote pull; identifiers are identical on both sides.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

# === Shared Utility Functions ===


def utc_now_ts() -> int:
    """Current time as integer Unix epoch seconds."""
    return int(time.time())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# === Enums ===


class EntityKind(str, Enum):
    """The three synchronized entity kinds."""

    USER = "user"
    FOLDER = "folder"
    NOTE = "note"


class MergePolicy(str, Enum):
    """How a pulled record is applied over an existing local record."""

    OVERWRITE = "overwrite"  # remote always replaces local
    NEWER_WINS = "newer_wins"  # remote replaces local unless local dt_modify is greater


class CheckpointPolicy(str, Enum):
    """How far the checkpoint moves at the end of a cycle."""

    NOW = "now"  # wall clock after dispatch, regardless of write outcomes
    HIGH_WATER_MARK = "high_water_mark"  # highest confirmed dt_modify, capped below failures


class SyncStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    BUSY = "busy"


# Pending-write queue states
SYNC_PENDING = 0
SYNC_COMPLETED = 1
SYNC_DEAD_LETTER = 2


# === Records ===


@dataclass
class User:
    """The session owner."""

    id: str
    name: Optional[str] = None
    photo: Optional[str] = None
    email: Optional[str] = None
    dt_reg: Optional[int] = None
    dt_modify: Optional[int] = None


@dataclass
class Note:
    """A document inside a folder."""

    id: str
    folder_id: Optional[str] = None
    title: str = ""
    content: str = ""
    dt_create: Optional[int] = None
    dt_modify: Optional[int] = None
    is_removed: bool = False
    owner_id: Optional[str] = None  # local scoping only, never sent


@dataclass
class Folder:
    """A container of notes."""

    id: str
    title: str = ""
    dt_create: Optional[int] = None
    dt_modify: Optional[int] = None
    is_root: bool = False
    is_removed: bool = False
    owner_id: Optional[str] = None  # local scoping only, never sent
    # Notes attached by merge-down for reporting; not persisted with the folder
    notes: List[Note] = field(default_factory=list)


Record = Union[User, Folder, Note]


def record_kind(record: Record) -> EntityKind:
    if isinstance(record, User):
        return EntityKind.USER
    if isinstance(record, Folder):
        return EntityKind.FOLDER
    if isinstance(record, Note):
        return EntityKind.NOTE
    raise TypeError(f"Not a synchronized record: {type(record).__name__}")


# === Sync Types ===


@dataclass
class ChangeSet:
    """Locally modified records to push, grouped by kind.

    Order within each list is whatever the store returned.
    """

    user: List[User] = field(default_factory=list)
    folders: List[Folder] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)
    # (kind, id, dt_modify) of records skipped because the remote already holds them
    echoes: List[Tuple[EntityKind, str, Optional[int]]] = field(default_factory=list)
    # (kind, id) of pending-queue entries folded into this change set
    replayed: List[Tuple[EntityKind, str]] = field(default_factory=list)
    # (kind, id) of pending-queue entries whose local record no longer exists
    orphans: List[Tuple[EntityKind, str]] = field(default_factory=list)
    # (kind, id, dt_modify) of records held back because their write is dead-lettered
    held: List[Tuple[EntityKind, str, Optional[int]]] = field(default_factory=list)

    def entries(self) -> Iterator[Tuple[EntityKind, Record]]:
        for user in self.user:
            yield EntityKind.USER, user
        for folder in self.folders:
            yield EntityKind.FOLDER, folder
        for note in self.notes:
            yield EntityKind.NOTE, note

    @property
    def total(self) -> int:
        return len(self.user) + len(self.folders) + len(self.notes)

    def is_empty(self) -> bool:
        return self.total == 0

    def ids(self, kind: EntityKind) -> List[str]:
        return [record.id for entry_kind, record in self.entries() if entry_kind == kind]


@dataclass
class SyncConflict:
    """A merge-down decision where local and remote versions differed.

    Conflicts are resolved immediately by the configured merge policy and
    recorded here for visibility.
    """

    id: str
    kind: EntityKind
    record_id: str
    local_version: Dict[str, Any]
    cloud_version: Dict[str, Any]
    resolution: str  # "cloud_wins" or "local_wins"
    resolved_at: datetime
    policy_decision: Optional[str] = None
    diff_hash: Optional[str] = None


@dataclass
class MergeReport:
    """Outcome of applying one pull snapshot."""

    folders: List[Folder] = field(default_factory=list)
    applied: int = 0  # records written locally
    unchanged: int = 0  # identical to the local copy, not rewritten
    kept_local: int = 0  # local copy was newer
    conflicts: List[SyncConflict] = field(default_factory=list)
    # (kind, id) -> dt_modify of every record the remote is known to hold
    remote_versions: Dict[Tuple[EntityKind, str], Optional[int]] = field(default_factory=dict)

    @property
    def pulled(self) -> int:
        return self.applied + self.unchanged + self.kept_local


@dataclass
class MutationOutcome:
    """Settlement of a single outgoing write."""

    kind: EntityKind
    record_id: str
    dt_modify: Optional[int]
    ok: bool
    attempts: int = 1
    error: Optional[str] = None


@dataclass
class QueuedWrite:
    """A failed outgoing write waiting to be replayed."""

    id: int
    kind: EntityKind
    record_id: str
    dt_modify: Optional[int] = None
    state: int = SYNC_PENDING
    retry_count: int = 0
    last_error: Optional[str] = None
    queued_at: Optional[str] = None
    last_attempt_at: Optional[str] = None


@dataclass
class SyncReport:
    """Result of one sync cycle."""

    status: SyncStatus = SyncStatus.COMPLETED
    pulled: int = 0
    pushed: int = 0
    failed_writes: List[MutationOutcome] = field(default_factory=list)
    conflicts: List[SyncConflict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    checkpoint_before: Optional[int] = None
    checkpoint_after: Optional[int] = None

    @property
    def success(self) -> bool:
        """False only for cycle-level failures; per-write failures do not count."""
        return self.status in (SyncStatus.COMPLETED, SyncStatus.SKIPPED)

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "success": self.success,
            "pulled": self.pulled,
            "pushed": self.pushed,
            "failed_writes": [
                {
                    "kind": o.kind.value,
                    "record_id": o.record_id,
                    "attempts": o.attempts,
                    "error": o.error,
                }
                for o in self.failed_writes
            ],
            "conflicts": len(self.conflicts),
            "errors": list(self.errors),
            "checkpoint_before": self.checkpoint_before,
            "checkpoint_after": self.checkpoint_after,
        }
