"""Tests for database schema."""

import sqlite3

from repotree.core.database.schema import (
    SCHEMA_VERSION,
    create_schema,
    get_metadata,
    get_schema_version,
    migrate_schema,
    set_metadata,
)
from repotree.core.tree.store import backfill_order

# Layout of a version 1 database: no sort_order on documents or blocks.
_V1_SQL = """\
CREATE TABLE repositories (
    rpid INTEGER PRIMARY KEY, title TEXT NOT NULL, content TEXT NOT NULL DEFAULT '',
    owner INTEGER NOT NULL, mode TEXT NOT NULL DEFAULT 'file',
    current_branch TEXT NOT NULL DEFAULT 'main', branches TEXT NOT NULL DEFAULT '["main"]',
    remote_url TEXT, views INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL, update_at INTEGER NOT NULL
);
CREATE TABLE documents (
    rpid INTEGER NOT NULL, branch TEXT NOT NULL DEFAULT 'main', did INTEGER NOT NULL,
    parent_id INTEGER, path TEXT NOT NULL, owner INTEGER NOT NULL, title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '', views INTEGER NOT NULL DEFAULT 0, ip TEXT,
    created_at INTEGER NOT NULL, update_at INTEGER NOT NULL,
    PRIMARY KEY (rpid, branch, did)
);
CREATE TABLE blocks (
    rpid INTEGER NOT NULL, branch TEXT NOT NULL DEFAULT 'main', bid INTEGER NOT NULL,
    did INTEGER NOT NULL, owner INTEGER NOT NULL, title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '', views INTEGER NOT NULL DEFAULT 0, ip TEXT,
    created_at INTEGER NOT NULL, update_at INTEGER NOT NULL,
    PRIMARY KEY (rpid, branch, bid)
);
CREATE TABLE metadata (key TEXT PRIMARY KEY, value TEXT NOT NULL);
INSERT INTO metadata VALUES ('schema_version', '1');
INSERT INTO repositories VALUES (1, 'Legacy', '', 1, 'file', 'main', '["main"]', NULL, 0, 0, 0);
INSERT INTO documents VALUES (1, 'main', 3, NULL, '/3', 1, 'Third', '', 0, NULL, 0, 0);
INSERT INTO documents VALUES (1, 'main', 1, NULL, '/1', 1, 'First', '', 0, NULL, 0, 0);
INSERT INTO documents VALUES (1, 'main', 2, NULL, '/2', 1, 'Second', '', 0, NULL, 0, 0);
INSERT INTO documents VALUES (1, 'main', 4, 1, '/1/4', 1, 'Child', '', 0, NULL, 0, 0);
INSERT INTO blocks VALUES (1, 'main', 2, 1, 1, 'B', '', 0, NULL, 0, 0);
INSERT INTO blocks VALUES (1, 'main', 1, 1, 1, 'A', '', 0, NULL, 0, 0);
"""


def _order_of(conn: sqlite3.Connection, table: str, column: str) -> dict[int, int]:
    return dict(conn.execute(f"SELECT {column}, sort_order FROM {table}").fetchall())


def test_create_schema_creates_all_tables() -> None:
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    tables = {
        row[0]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    }
    assert {"repositories", "documents", "blocks", "counters", "metadata"} <= tables


def test_migrate_schema_on_empty_db_creates_schema_and_sets_version() -> None:
    conn = sqlite3.connect(":memory:")
    assert get_schema_version(conn) is None
    migrate_schema(conn)
    assert get_schema_version(conn) == SCHEMA_VERSION


def test_migrate_schema_is_noop_on_current_db(db: sqlite3.Connection) -> None:
    migrate_schema(db)
    assert get_schema_version(db) == SCHEMA_VERSION


def test_migrate_schema_upgrades_v1_and_backfills_order() -> None:
    """A v1 database gains sort_order and every legacy sibling group is numbered."""
    conn = sqlite3.connect(":memory:")
    conn.executescript(_V1_SQL)

    migrate_schema(conn)

    assert get_schema_version(conn) == SCHEMA_VERSION
    assert _order_of(conn, "documents", "did") == {1: 0, 2: 1, 3: 2, 4: 0}
    assert _order_of(conn, "blocks", "bid") == {1: 0, 2: 1}
    tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert "counters" in tables


def test_backfill_order_is_idempotent() -> None:
    conn = sqlite3.connect(":memory:")
    conn.executescript(_V1_SQL)
    migrate_schema(conn)
    before = _order_of(conn, "documents", "did")

    updated = backfill_order(conn)

    assert updated == 0
    assert _order_of(conn, "documents", "did") == before


def test_backfill_order_renumbers_mixed_group_in_display_order(db: sqlite3.Connection) -> None:
    """A group with one legacy member is renumbered in its current display order."""
    db.execute(
        "INSERT INTO documents (rpid, branch, did, parent_id, path, owner, title, sort_order, "
        "created_at, update_at) VALUES (1, 'main', 1, NULL, '/1', 1, 'Ordered', 5, 0, 0)"
    )
    db.execute(
        "INSERT INTO documents (rpid, branch, did, parent_id, path, owner, title, sort_order, "
        "created_at, update_at) VALUES (1, 'main', 2, NULL, '/2', 1, 'Legacy', NULL, 0, 0)"
    )

    backfill_order(db)

    assert _order_of(db, "documents", "did") == {2: 0, 1: 1}


def test_metadata_roundtrip_and_replace(db: sqlite3.Connection) -> None:
    assert get_metadata(db, "github_token") is None

    set_metadata(db, "github_token", "one")
    set_metadata(db, "github_token", "two")

    assert get_metadata(db, "github_token") == "two"
