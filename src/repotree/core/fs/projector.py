"""Render a branch's document tree as directories and markdown files.

Layout, per document directory:

    README.md            document content, omitted when empty
    {block title}.md     one file per block
    {child title}/       one directory per child document
    .keep                only when there are neither blocks nor children

The repository content goes to README.md at the root. Names are sanitized but
not made unique: two siblings that sanitize to the same name share a directory.
"""

import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from repotree.core.tree.repository import get_repository
from repotree.core.tree.store import list_blocks, list_documents
from repotree.errors import ValidationError
from repotree.models.node import BlockNode, DocumentNode

README = "README.md"
KEEP_FILE = ".keep"

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|]')
# ".", ".." and the like would leave the target directory; git ignores ".git".
_RESERVED_NAME = re.compile(r"^(\.+|\.git)$", re.IGNORECASE)


def sanitize_name(name: str | None) -> str:
    """Make a title usable as a file or directory name."""
    safe = _UNSAFE_CHARS.sub("_", name or "").strip() or "untitled"
    if _RESERVED_NAME.match(safe):
        return f"_{safe}"
    return safe


def _node_dir(parent_dir: Path, title: str, root: Path) -> Path:
    node_dir = parent_dir / sanitize_name(title)
    if not node_dir.resolve().is_relative_to(root):
        msg = f"Document {title!r} would be written outside {root}"
        raise ValidationError(msg)
    return node_dir


@dataclass(frozen=True)
class ProjectionStats:
    """Summary of a projection."""

    documents_written: int
    blocks_written: int
    orphans_skipped: int


def _sibling_key(doc: DocumentNode) -> tuple[int, int]:
    return (doc.sort_order or 0, doc.did)


def project_branch(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    target_dir: Path,
) -> ProjectionStats:
    """Write the (rpid, branch) tree under target_dir.

    Args:
        conn: Database connection.
        rpid: Repository to render.
        branch: Branch to render.
        target_dir: Output directory, created if missing.

    Returns:
        ProjectionStats with counts of written documents and blocks.
    """
    repo = get_repository(conn, rpid=rpid)
    target_dir.mkdir(parents=True, exist_ok=True)
    root = target_dir.resolve()
    (target_dir / README).write_text(repo.content or "", encoding="utf-8", newline="")

    docs = list_documents(conn, rpid=rpid, branch=branch)
    known = {d.did for d in docs}
    orphans = 0
    children: dict[int | None, list[DocumentNode]] = {}
    for doc in docs:
        if doc.parent_id is not None and doc.parent_id not in known:
            orphans += 1
            continue
        children.setdefault(doc.parent_id, []).append(doc)
    for siblings in children.values():
        siblings.sort(key=_sibling_key)

    blocks: dict[int, list[BlockNode]] = {}
    for block in list_blocks(conn, rpid=rpid, branch=branch):
        blocks.setdefault(block.did, []).append(block)

    # Depth-first, in sibling order.
    docs_written = 0
    blocks_written = 0
    todo: list[tuple[Path, DocumentNode]] = [
        (target_dir, doc) for doc in reversed(children.get(None, []))
    ]
    while todo:
        parent_dir, doc = todo.pop()
        node_dir = _node_dir(parent_dir, doc.title, root)
        node_dir.mkdir(parents=True, exist_ok=True)
        docs_written += 1

        if doc.content:
            (node_dir / README).write_text(doc.content, encoding="utf-8", newline="")

        doc_blocks = blocks.get(doc.did, [])
        for block in doc_blocks:
            (node_dir / f"{sanitize_name(block.title)}.md").write_text(
                block.content or "", encoding="utf-8", newline=""
            )
            blocks_written += 1

        doc_children = children.get(doc.did, [])
        if not doc_blocks and not doc_children:
            (node_dir / KEEP_FILE).write_text("", encoding="utf-8")

        todo.extend((node_dir, child) for child in reversed(doc_children))

    if orphans:
        logger.warning("Skipped {} document(s) whose parent is missing", orphans)
    logger.info(
        "Projected repository {} branch {!r}: {} documents, {} blocks -> {}",
        rpid, branch, docs_written, blocks_written, target_dir,
    )
    return ProjectionStats(
        documents_written=docs_written,
        blocks_written=blocks_written,
        orphans_skipped=orphans,
    )
