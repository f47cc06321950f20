"""Folder CRUD operations for SQLiteStorage.

All functions receive dependencies explicitly (connection factory,
owner id, clock) so they can be tested without a storage instance.
"""

import logging
import sqlite3
from typing import Callable, List, Optional

from notesync.types import Folder

logger = logging.getLogger(__name__)


def row_to_folder(row: sqlite3.Row) -> Folder:
    return Folder(
        id=row["id"],
        owner_id=row["owner_id"],
        title=row["title"] or "",
        dt_create=row["dt_create"],
        dt_modify=row["dt_modify"],
        is_root=bool(row["is_root"]),
        is_removed=bool(row["is_removed"]),
    )


def save_folder(
    connect_fn: Callable,
    owner_id: str,
    folder: Folder,
    now_fn: Callable[[], str],
) -> Folder:
    """Upsert a folder keyed by id.

    The folder is always stored under ``owner_id``; ``dt_modify`` is
    written as given, the caller owns the timestamp.
    """
    folder.owner_id = owner_id
    with connect_fn() as conn:
        conn.execute(
            """
            INSERT INTO folders
            (id, owner_id, title, dt_create, dt_modify, is_root, is_removed, local_updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                owner_id = excluded.owner_id,
                title = excluded.title,
                dt_create = excluded.dt_create,
                dt_modify = excluded.dt_modify,
                is_root = excluded.is_root,
                is_removed = excluded.is_removed,
                local_updated_at = excluded.local_updated_at
            """,
            (
                folder.id,
                owner_id,
                folder.title or "",
                folder.dt_create,
                folder.dt_modify,
                1 if folder.is_root else 0,
                1 if folder.is_removed else 0,
                now_fn(),
            ),
        )
        conn.commit()
    return folder


def get_folder(connect_fn: Callable, owner_id: str, folder_id: str) -> Optional[Folder]:
    with connect_fn() as conn:
        row = conn.execute(
            "SELECT * FROM folders WHERE id = ? AND owner_id = ?", (folder_id, owner_id)
        ).fetchone()
    return row_to_folder(row) if row else None


def list_folders(
    connect_fn: Callable, owner_id: str, include_removed: bool = False
) -> List[Folder]:
    query = "SELECT * FROM folders WHERE owner_id = ?"
    if not include_removed:
        query += " AND is_removed = 0"
    query += " ORDER BY is_root DESC, dt_create, id"
    with connect_fn() as conn:
        rows = conn.execute(query, (owner_id,)).fetchall()
    return [row_to_folder(row) for row in rows]


def prepare_folder_updates(connect_fn: Callable, owner_id: str, since: int) -> List[Folder]:
    """Folders modified strictly after ``since``, tombstones included."""
    with connect_fn() as conn:
        rows = conn.execute(
            """SELECT * FROM folders
               WHERE owner_id = ? AND dt_modify IS NOT NULL AND dt_modify > ?
               ORDER BY dt_modify, id""",
            (owner_id, since),
        ).fetchall()
    return [row_to_folder(row) for row in rows]
