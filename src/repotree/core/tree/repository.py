"""Repository records: the owner of one branchable content tree."""

import json
import sqlite3
import time

from loguru import logger

from repotree.config import DEFAULT_BRANCH
from repotree.core.database.ids import next_id
from repotree.errors import NotFoundError, ValidationError
from repotree.models.node import Repository

MODES = ("file", "manuscript")

_REPOSITORY_COLUMNS = (
    "rpid, title, content, owner, mode, current_branch, branches, "
    "remote_url, views, created_at, update_at"
)


def _to_repository(row: tuple) -> Repository:
    branches = json.loads(row[6]) if row[6] else []
    if DEFAULT_BRANCH not in branches:
        branches.insert(0, DEFAULT_BRANCH)
    return Repository(
        rpid=row[0], title=row[1], content=row[2], owner=row[3], mode=row[4],
        current_branch=row[5], branches=tuple(branches), remote_url=row[7],
        views=row[8], created_at=row[9], update_at=row[10],
    )


def _check_mode(mode: str) -> None:
    if mode not in MODES:
        msg = f"Unknown repository mode {mode!r}, expected one of {MODES}"
        raise ValidationError(msg)


def create_repository(
    conn: sqlite3.Connection,
    *,
    title: str,
    owner: int,
    content: str = "",
    mode: str = "file",
    remote_url: str | None = None,
) -> int:
    """Create a repository with an empty main branch and return its rpid."""
    if not title.strip():
        msg = "Repository title is required"
        raise ValidationError(msg)
    _check_mode(mode)

    rpid = next_id(conn, "repository")
    now_ms = int(time.time() * 1000)
    conn.execute(
        f"""INSERT INTO repositories ({_REPOSITORY_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)""",
        (
            rpid, title, content, owner, mode, DEFAULT_BRANCH,
            json.dumps([DEFAULT_BRANCH]), remote_url or None, now_ms, now_ms,
        ),
    )
    conn.commit()
    logger.info("Created repository {} ({!r})", rpid, title)
    return rpid


def get_repository(conn: sqlite3.Connection, *, rpid: int) -> Repository:
    row = conn.execute(
        f"SELECT {_REPOSITORY_COLUMNS} FROM repositories WHERE rpid = ?", (rpid,)
    ).fetchone()
    if row is None:
        msg = f"Repository {rpid} not found"
        raise NotFoundError(msg)
    return _to_repository(row)


def list_repositories(conn: sqlite3.Connection) -> tuple[Repository, ...]:
    rows = conn.execute(
        f"SELECT {_REPOSITORY_COLUMNS} FROM repositories ORDER BY rpid DESC"
    ).fetchall()
    return tuple(_to_repository(r) for r in rows)


def edit_repository(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    title: str | None = None,
    content: str | None = None,
    mode: str | None = None,
    remote_url: str | None = None,
) -> Repository:
    """Update the given fields; an empty remote_url clears the remote."""
    get_repository(conn, rpid=rpid)
    updates: dict[str, str | int | None] = {}
    if title is not None:
        if not title.strip():
            msg = "Repository title is required"
            raise ValidationError(msg)
        updates["title"] = title
    if content is not None:
        updates["content"] = content
    if mode is not None:
        _check_mode(mode)
        updates["mode"] = mode
    if remote_url is not None:
        updates["remote_url"] = remote_url.strip() or None
    updates["update_at"] = int(time.time() * 1000)

    assignments = ", ".join(f"{column} = ?" for column in updates)
    conn.execute(
        f"UPDATE repositories SET {assignments} WHERE rpid = ?",
        [*updates.values(), rpid],
    )
    conn.commit()
    return get_repository(conn, rpid=rpid)


def set_branch_state(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    current_branch: str,
    branches: tuple[str, ...] | None = None,
) -> Repository:
    """Store the current-branch pointer and, optionally, the branch list."""
    repo = get_repository(conn, rpid=rpid)
    names = list(branches if branches is not None else repo.branches)
    if DEFAULT_BRANCH not in names:
        names.insert(0, DEFAULT_BRANCH)
    conn.execute(
        "UPDATE repositories SET current_branch = ?, branches = ?, update_at = ? WHERE rpid = ?",
        (current_branch, json.dumps(names), int(time.time() * 1000), rpid),
    )
    conn.commit()
    return get_repository(conn, rpid=rpid)


def delete_repository(conn: sqlite3.Connection, *, rpid: int) -> None:
    """Delete a repository with the documents and blocks of all its branches."""
    get_repository(conn, rpid=rpid)
    conn.execute("DELETE FROM blocks WHERE rpid = ?", (rpid,))
    conn.execute("DELETE FROM documents WHERE rpid = ?", (rpid,))
    conn.execute("DELETE FROM repositories WHERE rpid = ?", (rpid,))
    conn.commit()
    logger.info("Deleted repository {}", rpid)


def increment_views(conn: sqlite3.Connection, *, rpid: int) -> None:
    get_repository(conn, rpid=rpid)
    conn.execute("UPDATE repositories SET views = views + 1 WHERE rpid = ?", (rpid,))
    conn.commit()
