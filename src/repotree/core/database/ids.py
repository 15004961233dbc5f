"""Scoped monotonic ids for repositories, documents and blocks."""

import sqlite3

# collection -> (table, id column, scoped by repository and branch)
_COLLECTIONS: dict[str, tuple[str, str, bool]] = {
    "repository": ("repositories", "rpid", False),
    "document": ("documents", "did", True),
    "block": ("blocks", "bid", True),
}


def scope_key(collection: str, *, rpid: int | None = None, branch: str | None = None) -> str:
    """Return the counter key for a collection scope."""
    if collection not in _COLLECTIONS:
        msg = f"unknown id collection: {collection!r}"
        raise ValueError(msg)
    if not _COLLECTIONS[collection][2]:
        return collection
    if rpid is None or branch is None:
        msg = f"{collection} ids are scoped by rpid and branch"
        raise ValueError(msg)
    return f"{collection}:{rpid}:{branch}"


def next_id(
    conn: sqlite3.Connection,
    collection: str,
    *,
    rpid: int | None = None,
    branch: str | None = None,
) -> int:
    """Issue the next id in a scope.

    The counter row is seeded from the largest id already stored in the scope,
    and the read-increment-write happens in one upsert statement, so two
    callers can never receive the same value and the result is always greater
    than any existing id in the scope. Ids are not reused after deletes.

    The caller owns the transaction; the counter update commits together with
    the row that uses the id.
    """
    key = scope_key(collection, rpid=rpid, branch=branch)
    table, column, scoped = _COLLECTIONS[collection]

    seed_sql = f"SELECT COALESCE(MAX({column}), 0) + 1 FROM {table}"
    params: list[str | int] = [key]
    if scoped:
        seed_sql += " WHERE rpid = ? AND branch = ?"
        params += [rpid, branch]  # type: ignore[list-item]

    row = conn.execute(
        f"""INSERT INTO counters (scope, value) VALUES (?, ({seed_sql}))
            ON CONFLICT(scope) DO UPDATE SET value = MAX(counters.value + 1, excluded.value)
            RETURNING value""",
        params,
    ).fetchone()
    return int(row[0])
