"""Branch lifecycle: create, switch, list and deep-copy branch data."""

import re
import sqlite3

from loguru import logger

from repotree.config import DEFAULT_BRANCH
from repotree.core.tree.repository import get_repository, set_branch_state
from repotree.core.tree.store import (
    add_child,
    add_root,
    clear_branch,
    create_block,
    list_blocks_of_doc,
    list_documents,
)
from repotree.errors import RepoTreeError, ValidationError
from repotree.models.node import Repository

# Branch names end up on git command lines.
_INVALID_BRANCH = re.compile(r"[\s~^:?*\[\\]|\.\.|^[-/]|/$|\.lock$|@\{")


def normalize_branch_name(name: str | None) -> str:
    """Trim a branch name, defaulting to main; reject names git would refuse."""
    branch = (name or "").strip() or DEFAULT_BRANCH
    if _INVALID_BRANCH.search(branch):
        msg = f"Invalid branch name: {branch!r}"
        raise ValidationError(msg)
    return branch


def list_branches(conn: sqlite3.Connection, *, rpid: int) -> tuple[str, ...]:
    return get_repository(conn, rpid=rpid).branches


def create_branch(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    name: str | None,
    owner: int,
) -> Repository:
    """Add a branch, make it current, and copy the previous current branch into it.

    The copy is best effort: a failure is logged and the branch is kept.
    """
    branch = normalize_branch_name(name)
    repo = get_repository(conn, rpid=rpid)
    source = repo.current_branch

    branches = repo.branches if branch in repo.branches else (*repo.branches, branch)
    repo = set_branch_state(conn, rpid=rpid, current_branch=branch, branches=branches)
    logger.info("Repository {}: created branch {!r} from {!r}", rpid, branch, source)

    try:
        clone_branch_data(conn, rpid=rpid, source=source, target=branch, owner=owner)
    except (RepoTreeError, sqlite3.Error):
        logger.opt(exception=True).warning(
            "Copying branch {!r} into {!r} failed, keeping the branch", source, branch
        )
    return repo


def switch_branch(conn: sqlite3.Connection, *, rpid: int, name: str | None) -> Repository:
    """Point the repository at another branch.

    The name does not have to be in the branch list; an unknown branch simply
    has an empty tree.
    """
    branch = normalize_branch_name(name)
    return set_branch_state(conn, rpid=rpid, current_branch=branch)


def clone_branch_data(
    conn: sqlite3.Connection,
    *,
    rpid: int,
    source: str,
    target: str,
    owner: int,
) -> dict[int, int]:
    """Replace target's tree with a deep copy of every document and block of source.

    New ids are allocated in the target scope. Documents are created parents
    first; a document whose parent copy is missing is skipped. Returns the
    mapping of source did -> target did.
    """
    if source == target:
        return {}

    clear_branch(conn, rpid=rpid, branch=target)

    id_map: dict[int, int] = {}
    skipped = 0
    # list_documents returns shallowest first, so parents precede children.
    for doc in list_documents(conn, rpid=rpid, branch=source):
        if doc.parent_id is None:
            new_did = add_root(
                conn, rpid=rpid, branch=target, owner=owner, title=doc.title,
                content=doc.content, sort_order=doc.sort_order or 0,
            )
        elif doc.parent_id in id_map:
            new_did = add_child(
                conn, rpid=rpid, branch=target, parent_did=id_map[doc.parent_id], owner=owner,
                title=doc.title, content=doc.content, sort_order=doc.sort_order or 0,
            )
        else:
            skipped += 1
            continue
        id_map[doc.did] = new_did

        for block in list_blocks_of_doc(conn, rpid=rpid, branch=source, did=doc.did):
            create_block(
                conn, rpid=rpid, branch=target, did=new_did, owner=owner,
                title=block.title, content=block.content, sort_order=block.sort_order or 0,
            )

    if skipped:
        logger.warning("Skipped {} orphaned document(s) while copying {!r}", skipped, source)
    logger.info("Copied {} document(s) from {!r} to {!r}", len(id_map), source, target)
    return id_map
