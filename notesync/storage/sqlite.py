"""SQLite storage backend for notesync.

Local-first storage with:
- One entity store per kind (users, folders, notes)
- Sync metadata, pending-write queue and conflict history
"""

import contextlib
import logging
import sqlite3
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Generic, List, Optional, TypeVar

from notesync.types import EntityKind, Folder, Note, User, utc_now
from notesync.utils import get_notesync_home

from . import folders_crud, notes_crud, users_crud
from .schema import init_db
from .sync_state import DEFAULT_MAX_WRITE_ATTEMPTS, SyncState

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")


class SQLiteEntityStore(Generic[RecordT]):
    """EntityStore bound to one table of a SQLiteStorage."""

    def __init__(
        self,
        kind: EntityKind,
        save_fn: Callable[[RecordT], RecordT],
        get_fn: Callable[[str], Optional[RecordT]],
        updates_fn: Callable[[int], List[RecordT]],
    ):
        self.kind = kind
        self._save = save_fn
        self._get = get_fn
        self._updates = updates_fn

    def prepare_updates(self, since: int) -> List[RecordT]:
        return self._updates(since)

    def save(self, record: RecordT) -> RecordT:
        return self._save(record)

    def get(self, record_id: str) -> Optional[RecordT]:
        return self._get(record_id)

    def __repr__(self) -> str:
        return f"SQLiteEntityStore({self.kind.value})"


class SQLiteStorage:
    """SQLite-based local storage for one owner.

    Connections are opened per operation, so the instance can be used
    from worker threads (the sync engine runs store calls through
    ``asyncio.to_thread``). WAL mode and a busy timeout let SQLite
    serialize concurrent writers.

    Args:
        owner_id: The session owner; every folder/note row is scoped to it.
        db_path: Database file, defaults to ``~/.notesync/notes.db``.
        max_write_attempts: Failed-write cycles before dead-lettering.
    """

    BUSY_TIMEOUT_MS = 5000

    def __init__(
        self,
        owner_id: str,
        db_path: Optional[Path] = None,
        max_write_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS,
    ):
        if not owner_id or not owner_id.strip():
            raise ValueError("Owner ID cannot be empty")

        self.owner_id = owner_id
        self.db_path = self._resolve_db_path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._sync_state = SyncState(self, max_write_attempts=max_write_attempts)

        self.users: SQLiteEntityStore[User] = SQLiteEntityStore(
            EntityKind.USER,
            self.save_user,
            self.get_user,
            lambda since: users_crud.prepare_user_updates(self._connect, self.owner_id, since),
        )
        self.folders: SQLiteEntityStore[Folder] = SQLiteEntityStore(
            EntityKind.FOLDER,
            self.save_folder,
            self.get_folder,
            lambda since: folders_crud.prepare_folder_updates(self._connect, self.owner_id, since),
        )
        self.notes: SQLiteEntityStore[Note] = SQLiteEntityStore(
            EntityKind.NOTE,
            self.save_note,
            self.get_note,
            lambda since: notes_crud.prepare_note_updates(self._connect, self.owner_id, since),
        )

        with self._connect() as conn:
            init_db(conn)

    def _resolve_db_path(self, db_path: Optional[Path]) -> Path:
        """Resolve the database path, falling back to temp dir if home is not writable."""
        if db_path is not None:
            return Path(db_path).expanduser().resolve()

        default_path = get_notesync_home() / "notes.db"
        try:
            default_path.parent.mkdir(parents=True, exist_ok=True)
            return default_path
        except OSError as e:
            fallback_dir = Path(tempfile.gettempdir()) / ".notesync"
            logger.warning(f"Cannot write to {default_path.parent} ({e}), falling back to {fallback_dir}")
            return fallback_dir / "notes.db"

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.BUSY_TIMEOUT_MS / 1000)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={self.BUSY_TIMEOUT_MS}")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - Connection close in all cases
        """
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def close(self):
        """Connections are per-operation; kept for API symmetry."""
        pass

    def _now(self) -> str:
        return utc_now().isoformat()

    # === Users ===

    def save_user(self, user: User) -> User:
        return users_crud.save_user(self._connect, user, self._now)

    def get_user(self, user_id: Optional[str] = None) -> Optional[User]:
        return users_crud.get_user(self._connect, user_id or self.owner_id)

    # === Folders ===

    def save_folder(self, folder: Folder) -> Folder:
        return folders_crud.save_folder(self._connect, self.owner_id, folder, self._now)

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        return folders_crud.get_folder(self._connect, self.owner_id, folder_id)

    def list_folders(self, include_removed: bool = False) -> List[Folder]:
        return folders_crud.list_folders(self._connect, self.owner_id, include_removed)

    # === Notes ===

    def save_note(self, note: Note) -> Note:
        return notes_crud.save_note(self._connect, self.owner_id, note, self._now)

    def get_note(self, note_id: str) -> Optional[Note]:
        return notes_crud.get_note(self._connect, self.owner_id, note_id)

    def list_notes(self, folder_id: Optional[str] = None, include_removed: bool = False) -> List[Note]:
        return notes_crud.list_notes(self._connect, self.owner_id, folder_id, include_removed)

    # === Sync State (delegated to SyncState) ===

    def get_sync_meta(self, key: str) -> Optional[str]:
        return self._sync_state.get_sync_meta(key)

    def set_sync_meta(self, key: str, value: str) -> None:
        self._sync_state.set_sync_meta(key, value)

    def record_write_failure(self, kind, record_id, dt_modify, error) -> int:
        return self._sync_state.record_write_failure(kind, record_id, dt_modify, error)

    def record_write_success(self, kind, record_id) -> int:
        return self._sync_state.record_write_success(kind, record_id)

    def get_pending_writes(self, limit: int = 500):
        return self._sync_state.get_pending_writes(limit)

    def get_dead_letters(self, limit: int = 100):
        return self._sync_state.get_dead_letters(limit)

    def get_dead_letter_versions(self):
        return self._sync_state.get_dead_letter_versions()

    def requeue_dead_letters(self, entry_ids: Optional[List[int]] = None) -> int:
        return self._sync_state.requeue_dead_letters(entry_ids)

    def get_queue_status(self):
        return self._sync_state.get_queue_status()

    def save_sync_conflict(self, conflict) -> str:
        return self._sync_state.save_sync_conflict(conflict)

    def get_sync_conflicts(self, limit: int = 100):
        return self._sync_state.get_sync_conflicts(limit)

    def clear_sync_conflicts(self, before: Optional[datetime] = None) -> int:
        return self._sync_state.clear_sync_conflicts(before)
