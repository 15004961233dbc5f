"""Materialize documents and blocks from a directory tree (the inverse of projection)."""

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from repotree.core.fs.projector import README, sanitize_name
from repotree.core.tree.repository import edit_repository
from repotree.core.tree.store import add_child, add_root, create_block

# Version-control metadata is never imported.
IGNORED_DIRECTORIES = frozenset({".git", ".hg", ".svn"})


@dataclass(frozen=True)
class ImportStats:
    """Summary of a directory import."""

    documents_imported: int
    blocks_imported: int


def read_markdown(path: Path) -> str:
    """Read a file's text exactly, line endings included.

    Bytes that are not UTF-8 are replaced with U+FFFD rather than failing
    the whole import.
    """
    data = path.read_bytes()
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.warning("{} is not valid UTF-8 ({}), replacing undecodable bytes", path, e.reason)
        return data.decode("utf-8", errors="replace")


def _read_readme(directory: Path) -> str:
    readme = directory / README
    if readme.is_file():
        return read_markdown(readme)
    return ""


def _is_block_file(path: Path) -> bool:
    name = path.name.lower()
    return path.is_file() and name.endswith(".md") and name != README.lower()


def import_directory(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    branch: str,
    source_dir: Path,
    owner: int,
    ip: str | None = None,
) -> ImportStats:
    """Create documents and blocks in (rpid, branch) from source_dir.

    Only creates: the caller clears the branch first when the directory is
    meant to replace it. Siblings are ordered by name, since no order is
    stored on disk.

    Args:
        conn: Database connection.
        rpid: Repository receiving the tree; its content is replaced by the
            root README.md when one exists.
        branch: Branch receiving the tree.
        source_dir: Directory to import.
        owner: User id recorded as owner of every new node.
        ip: Client address recorded on every new node.

    Returns:
        ImportStats with counts of created documents and blocks.
    """
    root_readme = source_dir / README
    if root_readme.is_file():
        edit_repository(conn, rpid=rpid, content=read_markdown(root_readme))

    docs_imported = 0
    blocks_imported = 0
    todo: list[tuple[Path, int | None]] = [(source_dir, None)]
    while todo:
        directory, did = todo.pop(0)
        entries = sorted(directory.iterdir(), key=lambda p: p.name)

        if did is not None:
            block_files = [p for p in entries if _is_block_file(p)]
            for index, path in enumerate(block_files):
                create_block(
                    conn, rpid=rpid, branch=branch, did=did, owner=owner,
                    title=sanitize_name(path.name[:-3]),
                    content=read_markdown(path),
                    sort_order=index, ip=ip,
                )
                blocks_imported += 1
        else:
            skipped = [p.name for p in entries if p.is_file() and p.name != README]
            if skipped:
                logger.debug("Ignoring top-level files without a document: {}", skipped)

        subdirs = [p for p in entries if p.is_dir() and p.name not in IGNORED_DIRECTORIES]
        for index, subdir in enumerate(subdirs):
            title = sanitize_name(subdir.name)
            content = _read_readme(subdir)
            if did is None:
                child = add_root(
                    conn, rpid=rpid, branch=branch, owner=owner, title=title,
                    content=content, sort_order=index, ip=ip,
                )
            else:
                child = add_child(
                    conn, rpid=rpid, branch=branch, parent_did=did, owner=owner,
                    title=title, content=content, sort_order=index, ip=ip,
                )
            docs_imported += 1
            todo.append((subdir, child))

    logger.info(
        "Imported {} documents, {} blocks into repository {} branch {!r}",
        docs_imported, blocks_imported, rpid, branch,
    )
    return ImportStats(documents_imported=docs_imported, blocks_imported=blocks_imported)
