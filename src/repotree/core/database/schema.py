"""SQLite schema creation and migration for the repotree database."""

import sqlite3

from loguru import logger

SCHEMA_VERSION = 2

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS repositories (
    rpid INTEGER PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    owner INTEGER NOT NULL,
    mode TEXT NOT NULL DEFAULT 'file',
    current_branch TEXT NOT NULL DEFAULT 'main',
    branches TEXT NOT NULL DEFAULT '["main"]',
    remote_url TEXT,
    views INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL,
    update_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS documents (
    rpid INTEGER NOT NULL,
    branch TEXT NOT NULL DEFAULT 'main',
    did INTEGER NOT NULL,
    parent_id INTEGER,
    path TEXT NOT NULL,
    owner INTEGER NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    sort_order INTEGER,
    views INTEGER NOT NULL DEFAULT 0,
    ip TEXT,
    created_at INTEGER NOT NULL,
    update_at INTEGER NOT NULL,
    PRIMARY KEY (rpid, branch, did)
);

CREATE INDEX IF NOT EXISTS idx_documents_parent ON documents(rpid, branch, parent_id);
CREATE INDEX IF NOT EXISTS idx_documents_path ON documents(rpid, branch, path);

CREATE TABLE IF NOT EXISTS blocks (
    rpid INTEGER NOT NULL,
    branch TEXT NOT NULL DEFAULT 'main',
    bid INTEGER NOT NULL,
    did INTEGER NOT NULL,
    owner INTEGER NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    sort_order INTEGER,
    views INTEGER NOT NULL DEFAULT 0,
    ip TEXT,
    created_at INTEGER NOT NULL,
    update_at INTEGER NOT NULL,
    PRIMARY KEY (rpid, branch, bid)
);

CREATE INDEX IF NOT EXISTS idx_blocks_document ON blocks(rpid, branch, did);

CREATE TABLE IF NOT EXISTS counters (
    scope TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes."""
    conn.executescript(_SCHEMA_SQL)
    set_metadata(conn, "schema_version", str(SCHEMA_VERSION))


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """Return the current schema version, or None if metadata table doesn't exist."""
    try:
        row = conn.execute(
            "SELECT value FROM metadata WHERE key = 'schema_version'"
        ).fetchone()
    except sqlite3.OperationalError:
        return None
    return int(row[0]) if row else None


def _has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    return any(row[1] == column for row in conn.execute(f"PRAGMA table_info({table})"))


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Create or migrate the database schema to the latest version."""
    from repotree.core.tree.store import backfill_order

    version = get_schema_version(conn)
    if version is None:
        create_schema(conn)
        return
    if version >= SCHEMA_VERSION:
        return

    # Version 1 stored documents and blocks without a sibling order.
    for table in ("documents", "blocks"):
        if not _has_column(conn, table, "sort_order"):
            conn.execute(f"ALTER TABLE {table} ADD COLUMN sort_order INTEGER")
    conn.executescript(_SCHEMA_SQL)
    updated = backfill_order(conn)
    set_metadata(conn, "schema_version", str(SCHEMA_VERSION))
    logger.info("Migrated schema {} -> {} ({} rows ordered)", version, SCHEMA_VERSION, updated)


def get_metadata(conn: sqlite3.Connection, key: str) -> str | None:
    """Return a metadata value, or None if unset."""
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row[0] if row else None


def set_metadata(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Store a metadata value, replacing any previous one."""
    conn.execute(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
        (key, value),
    )
    conn.commit()
