"""notesync storage backends.

Local-first storage using SQLite, behind the EntityStore / SyncStorage
protocols the sync engine depends on.
"""

from .base import EntityStore, SyncStorage
from .sqlite import SQLiteEntityStore, SQLiteStorage
from .sync_state import SyncState

__all__ = [
    "EntityStore",
    "SyncStorage",
    "SQLiteEntityStore",
    "SQLiteStorage",
    "SyncState",
]
