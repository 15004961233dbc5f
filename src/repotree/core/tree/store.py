"""Document and block nodes of a (repository, branch) content tree."""

import sqlite3
import time

from loguru import logger

from repotree.core.database.ids import next_id
from repotree.errors import NotFoundError, ValidationError
from repotree.models.node import BlockNode, DocumentNode

_DOCUMENT_COLUMNS = (
    "rpid, branch, did, parent_id, path, owner, title, content, "
    "sort_order, views, created_at, update_at"
)
_BLOCK_COLUMNS = (
    "rpid, branch, bid, did, owner, title, content, "
    "sort_order, views, created_at, update_at"
)

# Siblings sort by order, missing order counts as 0, ties by id.
_DOCUMENT_ORDER = "COALESCE(sort_order, 0), did"
_BLOCK_ORDER = "COALESCE(sort_order, 0), bid"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _to_document(row: tuple) -> DocumentNode:
    return DocumentNode(
        rpid=row[0], branch=row[1], did=row[2], parent_id=row[3], path=row[4],
        owner=row[5], title=row[6], content=row[7], sort_order=row[8],
        views=row[9], created_at=row[10], update_at=row[11],
    )


def _to_block(row: tuple) -> BlockNode:
    return BlockNode(
        rpid=row[0], branch=row[1], bid=row[2], did=row[3], owner=row[4],
        title=row[5], content=row[6], sort_order=row[7], views=row[8],
        created_at=row[9], update_at=row[10],
    )


# --- Documents ---


def _insert_document(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    parent: DocumentNode | None,
    owner: int,
    title: str,
    content: str,
    sort_order: int,
    ip: str | None,
) -> int:
    did = next_id(conn, "document", rpid=rpid, branch=branch)
    path = f"{parent.path}/{did}" if parent else f"/{did}"
    now_ms = _now_ms()
    conn.execute(
        """INSERT INTO documents
           (rpid, branch, did, parent_id, path, owner, title, content,
            sort_order, views, ip, created_at, update_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)""",
        (
            rpid, branch, did, parent.did if parent else None, path, owner,
            title, content, sort_order, ip, now_ms, now_ms,
        ),
    )
    conn.commit()
    logger.debug("Created document {}:{}:{} at {}", rpid, branch, did, path)
    return did


def add_root(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    owner: int,
    title: str,
    content: str = "",
    sort_order: int = 0,
    ip: str | None = None,
) -> int:
    """Create a root document and return its did."""
    return _insert_document(
        conn, rpid=rpid, branch=branch, parent=None, owner=owner,
        title=title, content=content, sort_order=sort_order, ip=ip,
    )


def add_child(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    parent_did: int,
    owner: int,
    title: str,
    content: str = "",
    sort_order: int = 0,
    ip: str | None = None,
) -> int:
    """Create a document under parent_did and return its did."""
    parent = get_document(conn, rpid=rpid, branch=branch, did=parent_did)
    return _insert_document(
        conn, rpid=rpid, branch=branch, parent=parent, owner=owner,
        title=title, content=content, sort_order=sort_order, ip=ip,
    )


def get_document(conn: sqlite3.Connection, *, rpid: int, branch: str, did: int) -> DocumentNode:
    """Return one document, raising NotFoundError if it is not in the scope."""
    row = conn.execute(
        f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE rpid = ? AND branch = ? AND did = ?",
        (rpid, branch, did),
    ).fetchone()
    if row is None:
        msg = f"Document {did} not found in repository {rpid} branch {branch!r}"
        raise NotFoundError(msg)
    return _to_document(row)


def get_children(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    parent_did: int | None,
) -> tuple[DocumentNode, ...]:
    """Return the direct children of parent_did (roots when None), in sibling order."""
    if parent_did is None:
        where, params = "parent_id IS NULL", (rpid, branch)
    else:
        where, params = "parent_id = ?", (rpid, branch, parent_did)
    rows = conn.execute(
        f"SELECT {_DOCUMENT_COLUMNS} FROM documents "
        f"WHERE rpid = ? AND branch = ? AND {where} ORDER BY {_DOCUMENT_ORDER}",
        params,
    ).fetchall()
    return tuple(_to_document(r) for r in rows)


def list_documents(conn: sqlite3.Connection, *, rpid: int, branch: str) -> tuple[DocumentNode, ...]:
    """Return every document of the scope, shallowest first."""
    rows = conn.execute(
        f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE rpid = ? AND branch = ?",
        (rpid, branch),
    ).fetchall()
    docs = [_to_document(r) for r in rows]
    docs.sort(key=lambda d: (d.depth, d.sort_order or 0, d.did))
    return tuple(docs)


def get_subtree(
    conn: sqlite3.Connection, *, rpid: int, branch: str, did: int
) -> tuple[DocumentNode, ...]:
    """Return a document and all of its descendants."""
    node = get_document(conn, rpid=rpid, branch=branch, did=did)
    rows = conn.execute(
        f"SELECT {_DOCUMENT_COLUMNS} FROM documents "
        "WHERE rpid = ? AND branch = ? AND (path = ? OR path LIKE ? || '/%') "
        "ORDER BY path",
        (rpid, branch, node.path, node.path),
    ).fetchall()
    return tuple(_to_document(r) for r in rows)


def edit_document(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    did: int,
    title: str | None = None,
    content: str | None = None,
    sort_order: int | None = None,
) -> DocumentNode:
    """Update the given fields of a document in place."""
    get_document(conn, rpid=rpid, branch=branch, did=did)
    updates: dict[str, str | int] = {}
    if title is not None:
        updates["title"] = title
    if content is not None:
        updates["content"] = content
    if sort_order is not None:
        updates["sort_order"] = sort_order
    updates["update_at"] = _now_ms()

    assignments = ", ".join(f"{column} = ?" for column in updates)
    conn.execute(
        f"UPDATE documents SET {assignments} WHERE rpid = ? AND branch = ? AND did = ?",
        [*updates.values(), rpid, branch, did],
    )
    conn.commit()
    return get_document(conn, rpid=rpid, branch=branch, did=did)


def move_document(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    did: int,
    new_parent: int | None,
) -> DocumentNode:
    """Reparent a document, keeping the forest acyclic and every path consistent.

    Walks up from the proposed parent; if the moved node is met on the way the
    move would create a cycle and is rejected. The stored paths of the node and
    all of its descendants are rewritten.
    """
    node = get_document(conn, rpid=rpid, branch=branch, did=did)

    parent: DocumentNode | None = None
    if new_parent is not None:
        parent = get_document(conn, rpid=rpid, branch=branch, did=new_parent)
        seen: set[int] = set()
        ancestor: DocumentNode | None = parent
        while ancestor is not None:
            if ancestor.did == did:
                msg = f"Cannot move document {did} under its own descendant {new_parent}"
                raise ValidationError(msg)
            if ancestor.did in seen:
                msg = f"Ancestor chain of document {new_parent} contains a cycle"
                raise ValidationError(msg)
            seen.add(ancestor.did)
            ancestor = (
                get_document(conn, rpid=rpid, branch=branch, did=ancestor.parent_id)
                if ancestor.parent_id is not None
                else None
            )

    old_path = node.path
    new_path = f"{parent.path}/{did}" if parent else f"/{did}"
    conn.execute(
        "UPDATE documents SET parent_id = ?, path = ?, update_at = ? "
        "WHERE rpid = ? AND branch = ? AND did = ?",
        (parent.did if parent else None, new_path, _now_ms(), rpid, branch, did),
    )
    if new_path != old_path:
        conn.execute(
            "UPDATE documents SET path = ? || substr(path, ?) "
            "WHERE rpid = ? AND branch = ? AND path LIKE ? || '/%'",
            (new_path, len(old_path) + 1, rpid, branch, old_path),
        )
    conn.commit()
    logger.debug("Moved document {}:{}:{} from {} to {}", rpid, branch, did, old_path, new_path)
    return get_document(conn, rpid=rpid, branch=branch, did=did)


def delete_subtree(conn: sqlite3.Connection, *, rpid: int, branch: str, did: int) -> list[int]:
    """Delete a document and every document below it; return the deleted dids.

    Blocks of the deleted documents are left in place; callers delete them
    with delete_blocks_of_documents().
    """
    node = get_document(conn, rpid=rpid, branch=branch, did=did)
    where = "rpid = ? AND branch = ? AND (path = ? OR path LIKE ? || '/%')"
    params = (rpid, branch, node.path, node.path)
    dids = [r[0] for r in conn.execute(f"SELECT did FROM documents WHERE {where}", params)]
    conn.execute(f"DELETE FROM documents WHERE {where}", params)
    conn.commit()
    logger.debug("Deleted {} document(s) under {}:{}:{}", len(dids), rpid, branch, did)
    return dids


def increment_document_views(conn: sqlite3.Connection, *, rpid: int, branch: str, did: int) -> None:
    get_document(conn, rpid=rpid, branch=branch, did=did)
    conn.execute(
        "UPDATE documents SET views = views + 1 WHERE rpid = ? AND branch = ? AND did = ?",
        (rpid, branch, did),
    )
    conn.commit()


# --- Blocks ---


def create_block(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    did: int,
    owner: int,
    title: str,
    content: str = "",
    sort_order: int = 0,
    ip: str | None = None,
) -> int:
    """Create a block under document did and return its bid."""
    get_document(conn, rpid=rpid, branch=branch, did=did)
    bid = next_id(conn, "block", rpid=rpid, branch=branch)
    now_ms = _now_ms()
    conn.execute(
        """INSERT INTO blocks
           (rpid, branch, bid, did, owner, title, content,
            sort_order, views, ip, created_at, update_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)""",
        (rpid, branch, bid, did, owner, title, content, sort_order, ip, now_ms, now_ms),
    )
    conn.commit()
    return bid


def get_block(conn: sqlite3.Connection, *, rpid: int, branch: str, bid: int) -> BlockNode:
    row = conn.execute(
        f"SELECT {_BLOCK_COLUMNS} FROM blocks WHERE rpid = ? AND branch = ? AND bid = ?",
        (rpid, branch, bid),
    ).fetchone()
    if row is None:
        msg = f"Block {bid} not found in repository {rpid} branch {branch!r}"
        raise NotFoundError(msg)
    return _to_block(row)


def edit_block(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    bid: int,
    title: str | None = None,
    content: str | None = None,
    sort_order: int | None = None,
    did: int | None = None,
) -> BlockNode:
    """Update the given fields of a block; a new did moves it to another document."""
    get_block(conn, rpid=rpid, branch=branch, bid=bid)
    updates: dict[str, str | int] = {}
    if title is not None:
        updates["title"] = title
    if content is not None:
        updates["content"] = content
    if sort_order is not None:
        updates["sort_order"] = sort_order
    if did is not None:
        get_document(conn, rpid=rpid, branch=branch, did=did)
        updates["did"] = did
    updates["update_at"] = _now_ms()

    assignments = ", ".join(f"{column} = ?" for column in updates)
    conn.execute(
        f"UPDATE blocks SET {assignments} WHERE rpid = ? AND branch = ? AND bid = ?",
        [*updates.values(), rpid, branch, bid],
    )
    conn.commit()
    return get_block(conn, rpid=rpid, branch=branch, bid=bid)


def delete_block(conn: sqlite3.Connection, *, rpid: int, branch: str, bid: int) -> None:
    get_block(conn, rpid=rpid, branch=branch, bid=bid)
    conn.execute(
        "DELETE FROM blocks WHERE rpid = ? AND branch = ? AND bid = ?",
        (rpid, branch, bid),
    )
    conn.commit()


def increment_block_views(conn: sqlite3.Connection, *, rpid: int, branch: str, bid: int) -> None:
    get_block(conn, rpid=rpid, branch=branch, bid=bid)
    conn.execute(
        "UPDATE blocks SET views = views + 1 WHERE rpid = ? AND branch = ? AND bid = ?",
        (rpid, branch, bid),
    )
    conn.commit()


def list_blocks_of_doc(
    conn: sqlite3.Connection, *, rpid: int, branch: str, did: int
) -> tuple[BlockNode, ...]:
    """Return the blocks of one document in sibling order."""
    rows = conn.execute(
        f"SELECT {_BLOCK_COLUMNS} FROM blocks "
        f"WHERE rpid = ? AND branch = ? AND did = ? ORDER BY {_BLOCK_ORDER}",
        (rpid, branch, did),
    ).fetchall()
    return tuple(_to_block(r) for r in rows)


def list_blocks(conn: sqlite3.Connection, *, rpid: int, branch: str) -> tuple[BlockNode, ...]:
    """Return every block of the scope, grouped by document."""
    rows = conn.execute(
        f"SELECT {_BLOCK_COLUMNS} FROM blocks WHERE rpid = ? AND branch = ? "
        f"ORDER BY did, {_BLOCK_ORDER}",
        (rpid, branch),
    ).fetchall()
    return tuple(_to_block(r) for r in rows)


def delete_blocks_of_documents(
    conn: sqlite3.Connection, *, rpid: int, branch: str, dids: list[int]
) -> int:
    """Delete every block owned by the given documents; return the count."""
    if not dids:
        return 0
    placeholders = ",".join("?" * len(dids))
    cursor = conn.execute(
        f"DELETE FROM blocks WHERE rpid = ? AND branch = ? AND did IN ({placeholders})",
        [rpid, branch, *dids],
    )
    conn.commit()
    return cursor.rowcount


def clear_branch(conn: sqlite3.Connection, *, rpid: int, branch: str) -> tuple[int, int]:
    """Delete all documents and blocks of a scope; return (documents, blocks) removed."""
    docs = conn.execute(
        "DELETE FROM documents WHERE rpid = ? AND branch = ?", (rpid, branch)
    ).rowcount
    blocks = conn.execute(
        "DELETE FROM blocks WHERE rpid = ? AND branch = ?", (rpid, branch)
    ).rowcount
    conn.commit()
    logger.info("Cleared branch {!r} of repository {}: {} documents, {} blocks", branch, rpid, docs, blocks)
    return docs, blocks


# --- Migration ---


def backfill_order(conn: sqlite3.Connection) -> int:
    """Give every legacy node without an order its position among its siblings.

    A sibling group containing any NULL order is renumbered 0..n-1 in its
    current display sequence. Groups that are fully ordered are untouched, so
    running this again changes nothing. Returns the number of rows updated.
    """
    updated = 0
    groups = conn.execute(
        "SELECT DISTINCT rpid, branch, parent_id FROM documents WHERE sort_order IS NULL"
    ).fetchall()
    for rpid, branch, parent_id in groups:
        siblings = conn.execute(
            "SELECT did FROM documents WHERE rpid = ? AND branch = ? AND parent_id IS ? "
            f"ORDER BY {_DOCUMENT_ORDER}",
            (rpid, branch, parent_id),
        ).fetchall()
        for index, (did,) in enumerate(siblings):
            conn.execute(
                "UPDATE documents SET sort_order = ? WHERE rpid = ? AND branch = ? AND did = ?",
                (index, rpid, branch, did),
            )
            updated += 1

    groups = conn.execute(
        "SELECT DISTINCT rpid, branch, did FROM blocks WHERE sort_order IS NULL"
    ).fetchall()
    for rpid, branch, did in groups:
        siblings = conn.execute(
            f"SELECT bid FROM blocks WHERE rpid = ? AND branch = ? AND did = ? ORDER BY {_BLOCK_ORDER}",
            (rpid, branch, did),
        ).fetchall()
        for index, (bid,) in enumerate(siblings):
            conn.execute(
                "UPDATE blocks SET sort_order = ? WHERE rpid = ? AND branch = ? AND bid = ?",
                (index, rpid, branch, bid),
            )
            updated += 1

    conn.commit()
    return updated
