"""Owner record operations for SQLiteStorage."""

import sqlite3
from typing import Callable, List, Optional

from notesync.types import User


def row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        photo=row["photo"],
        email=row["email"],
        dt_reg=row["dt_reg"],
        dt_modify=row["dt_modify"],
    )


def save_user(connect_fn: Callable, user: User, now_fn: Callable[[], str]) -> User:
    with connect_fn() as conn:
        conn.execute(
            """
            INSERT INTO users (id, name, photo, email, dt_reg, dt_modify, local_updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                photo = excluded.photo,
                email = excluded.email,
                dt_reg = excluded.dt_reg,
                dt_modify = excluded.dt_modify,
                local_updated_at = excluded.local_updated_at
            """,
            (user.id, user.name, user.photo, user.email, user.dt_reg, user.dt_modify, now_fn()),
        )
        conn.commit()
    return user


def get_user(connect_fn: Callable, user_id: str) -> Optional[User]:
    with connect_fn() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return row_to_user(row) if row else None


def prepare_user_updates(connect_fn: Callable, user_id: str, since: int) -> List[User]:
    """The current owner, if modified strictly after ``since``."""
    with connect_fn() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE id = ? AND dt_modify IS NOT NULL AND dt_modify > ?",
            (user_id, since),
        ).fetchone()
    return [row_to_user(row)] if row else []
