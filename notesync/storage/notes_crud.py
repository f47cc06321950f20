"""Note CRUD operations for SQLiteStorage."""

import logging
import sqlite3
from typing import Callable, List, Optional

from notesync.types import Note

logger = logging.getLogger(__name__)


def row_to_note(row: sqlite3.Row) -> Note:
    return Note(
        id=row["id"],
        owner_id=row["owner_id"],
        folder_id=row["folder_id"],
        title=row["title"] or "",
        content=row["content"] or "",
        dt_create=row["dt_create"],
        dt_modify=row["dt_modify"],
        is_removed=bool(row["is_removed"]),
    )


def save_note(
    connect_fn: Callable,
    owner_id: str,
    note: Note,
    now_fn: Callable[[], str],
) -> Note:
    """Upsert a note keyed by id."""
    if not note.folder_id:
        logger.warning(f"Saving note {note.id} without a folder")
    note.owner_id = owner_id
    with connect_fn() as conn:
        conn.execute(
            """
            INSERT INTO notes
            (id, owner_id, folder_id, title, content, dt_create, dt_modify, is_removed,
             local_updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                owner_id = excluded.owner_id,
                folder_id = excluded.folder_id,
                title = excluded.title,
                content = excluded.content,
                dt_create = excluded.dt_create,
                dt_modify = excluded.dt_modify,
                is_removed = excluded.is_removed,
                local_updated_at = excluded.local_updated_at
            """,
            (
                note.id,
                owner_id,
                note.folder_id,
                note.title or "",
                note.content or "",
                note.dt_create,
                note.dt_modify,
                1 if note.is_removed else 0,
                now_fn(),
            ),
        )
        conn.commit()
    return note


def get_note(connect_fn: Callable, owner_id: str, note_id: str) -> Optional[Note]:
    with connect_fn() as conn:
        row = conn.execute(
            "SELECT * FROM notes WHERE id = ? AND owner_id = ?", (note_id, owner_id)
        ).fetchone()
    return row_to_note(row) if row else None


def list_notes(
    connect_fn: Callable,
    owner_id: str,
    folder_id: Optional[str] = None,
    include_removed: bool = False,
) -> List[Note]:
    query = "SELECT * FROM notes WHERE owner_id = ?"
    params: list = [owner_id]
    if folder_id is not None:
        query += " AND folder_id = ?"
        params.append(folder_id)
    if not include_removed:
        query += " AND is_removed = 0"
    query += " ORDER BY dt_create, id"
    with connect_fn() as conn:
        rows = conn.execute(query, params).fetchall()
    return [row_to_note(row) for row in rows]


def prepare_note_updates(connect_fn: Callable, owner_id: str, since: int) -> List[Note]:
    """Notes modified strictly after ``since``, tombstones included."""
    with connect_fn() as conn:
        rows = conn.execute(
            """SELECT * FROM notes
               WHERE owner_id = ? AND dt_modify IS NOT NULL AND dt_modify > ?
               ORDER BY dt_modify, id""",
            (owner_id, since),
        ).fetchall()
    return [row_to_note(row) for row in rows]
