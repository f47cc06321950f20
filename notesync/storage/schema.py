"""Database schema for notesync SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Database initialization (init_db)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Session owner (one row per owner that ever used this database)
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT,
    photo TEXT,
    email TEXT,
    dt_reg INTEGER,
    dt_modify INTEGER,
    local_updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS folders (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    dt_create INTEGER,
    dt_modify INTEGER,
    is_root INTEGER NOT NULL DEFAULT 0,
    is_removed INTEGER NOT NULL DEFAULT 0,
    local_updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_folders_owner_modify ON folders(owner_id, dt_modify);

-- folder_id is not a declared foreign key: merge-down may write notes
-- whose folder arrives in the same batch
CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    folder_id TEXT,
    title TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL DEFAULT '',
    dt_create INTEGER,
    dt_modify INTEGER,
    is_removed INTEGER NOT NULL DEFAULT 0,
    local_updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_notes_owner_modify ON notes(owner_id, dt_modify);
CREATE INDEX IF NOT EXISTS idx_notes_folder ON notes(folder_id);

-- Failed outgoing writes waiting for replay
CREATE TABLE IF NOT EXISTS sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    kind TEXT NOT NULL,  -- user, folder, note
    record_id TEXT NOT NULL,
    dt_modify INTEGER,
    state INTEGER NOT NULL DEFAULT 0,  -- 0 = pending, 1 = synced, 2 = dead letter
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    queued_at TEXT NOT NULL,
    last_attempt_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_queue_state ON sync_queue(owner_id, state);
-- One open entry per record, so repeated failures update in place
CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_queue_open_unique
    ON sync_queue(owner_id, kind, record_id) WHERE state != 1;

-- Sync metadata (checkpoint per owner)
CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Merge-down conflict history
CREATE TABLE IF NOT EXISTS sync_conflicts (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    record_id TEXT NOT NULL,
    local_version TEXT NOT NULL,   -- JSON snapshot of local version
    cloud_version TEXT NOT NULL,   -- JSON snapshot of remote version
    resolution TEXT NOT NULL,      -- "local_wins" or "cloud_wins"
    resolved_at TEXT NOT NULL,
    policy_decision TEXT,
    diff_hash TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_conflicts_record ON sync_conflicts(record_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_conflicts_hash ON sync_conflicts(diff_hash);
"""


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables and record the schema version."""
    conn.executescript(SCHEMA)
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row and row[0] is not None else None
    if current is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        logger.debug(f"Initialized schema version {SCHEMA_VERSION}")
    elif current > SCHEMA_VERSION:
        logger.warning(
            f"Database schema v{current} is newer than this client (v{SCHEMA_VERSION})"
        )
    conn.commit()
