"""
notesync - Local-first note synchronization.

Reconciles a local replica of a user's folders and notes against a
remote GraphQL store.
"""

from .config import SyncSettings, get_settings
from .session import Session, load_session
from .storage import SQLiteStorage
from .sync import SyncCoordinator
from .types import SyncReport, SyncStatus

try:
    from importlib.metadata import version

    __version__ = version("notesync")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "Session",
    "SQLiteStorage",
    "SyncCoordinator",
    "SyncReport",
    "SyncSettings",
    "SyncStatus",
    "get_settings",
    "load_session",
]
