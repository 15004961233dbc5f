"""Shared test fixtures."""

import sqlite3

import pytest

from repotree.core.database.schema import create_schema
from repotree.core.tree.repository import create_repository


@pytest.fixture
def db() -> sqlite3.Connection:
    """Return an in-memory DB with the schema created."""
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    return conn


@pytest.fixture
def rpid(db: sqlite3.Connection) -> int:
    """Return the id of an empty repository in db."""
    return create_repository(db, title="Algo Notes", owner=1, content="All about algorithms")
