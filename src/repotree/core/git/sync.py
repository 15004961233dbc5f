"""Push a branch to its git remote, or replace it with the remote's tree."""

import sqlite3
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from repotree.config import DOMAIN_ID, resolve_github_token
from repotree.core.fs.importer import import_directory
from repotree.core.fs.projector import project_branch
from repotree.core.git.driver import GitSyncDriver
from repotree.core.git.remote import build_authenticated_url
from repotree.core.tree.branches import normalize_branch_name
from repotree.core.tree.repository import get_repository
from repotree.core.tree.store import clear_branch
from repotree.errors import ConfigurationError, ExternalToolError
from repotree.models.node import Repository
from repotree.protocols import GitProtocol

REMOTE_MISSING = (
    "GitHub repository not configured. "
    "Set it with `repotree remote set` (repository settings)."
)
TOKEN_MISSING = (
    "GitHub token not configured. "
    "Set REPOTREE_GITHUB_TOKEN or run `repotree settings set-token` (system settings)."
)


@dataclass(frozen=True)
class Actor:
    """The user on whose behalf a sync runs."""

    uid: int
    uname: str
    ip: str = "127.0.0.1"


@dataclass(frozen=True)
class SyncResult:
    ok: bool
    branch: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        rv: dict[str, Any] = {"ok": self.ok, "branch": self.branch}
        if self.error is not None:
            rv["error"] = self.error
        return rv


def compose_commit_message(actor: Actor, note: str | None = None) -> str:
    return f"{DOMAIN_ID}/{actor.uid}/{actor.uname}: {(note or '').strip() or 'Update repository'}"


def _authenticated_remote(conn: sqlite3.Connection, repo: Repository) -> str:
    """Return the token-bearing remote URL, or raise ConfigurationError."""
    if not repo.remote_url:
        raise ConfigurationError(REMOTE_MISSING)
    token = resolve_github_token(conn)
    if not token:
        raise ConfigurationError(TOKEN_MISSING)
    return build_authenticated_url(repo.remote_url, token)


def push_branch(
    conn: sqlite3.Connection,
    git: GitProtocol,
    *,
    rpid: int,
    actor: Actor,
    branch: str | None = None,
    note: str | None = None,
) -> SyncResult:
    """Project (rpid, branch) to files and push them to the repository's remote.

    The branch defaults to the repository's current branch. Missing settings
    and git failures are reported in the result; an unknown repository raises
    NotFoundError.
    """
    repo = get_repository(conn, rpid=rpid)
    target = normalize_branch_name(branch or repo.current_branch)
    try:
        remote_url = _authenticated_remote(conn, repo)
        with (
            tempfile.TemporaryDirectory(prefix="repotree-project-") as content_dir,
            tempfile.TemporaryDirectory(prefix="repotree-push-") as work_dir,
        ):
            project_branch(conn, rpid=rpid, branch=target, target_dir=Path(content_dir))
            GitSyncDriver(git).push(
                remote_url=remote_url,
                branch=target,
                content_dir=Path(content_dir),
                work_dir=Path(work_dir),
                message=compose_commit_message(actor, note),
            )
    except (ConfigurationError, ExternalToolError) as e:
        logger.error("Push of repository {} branch {!r} failed: {}", rpid, target, e)
        return SyncResult(ok=False, branch=target, error=str(e))
    return SyncResult(ok=True, branch=target)


def pull_branch(
    conn: sqlite3.Connection,
    git: GitProtocol,
    *,
    rpid: int,
    actor: Actor,
    branch: str | None = None,
) -> SyncResult:
    """Replace the local (rpid, branch) tree with the remote's tree for that branch.

    Local data is cleared only after the remote branch has been checked out,
    so a failed fetch leaves it untouched. A failure during the import itself
    is not rolled back.
    """
    repo = get_repository(conn, rpid=rpid)
    target = normalize_branch_name(branch or repo.current_branch)
    try:
        remote_url = _authenticated_remote(conn, repo)
        with tempfile.TemporaryDirectory(prefix="repotree-pull-") as work_dir:
            GitSyncDriver(git).fetch_branch(
                remote_url=remote_url, branch=target, work_dir=Path(work_dir)
            )
            clear_branch(conn, rpid=rpid, branch=target)
            stats = import_directory(
                conn, rpid=rpid, branch=target, source_dir=Path(work_dir),
                owner=actor.uid, ip=actor.ip,
            )
    except (ConfigurationError, ExternalToolError, OSError) as e:
        logger.error("Pull of repository {} branch {!r} failed: {}", rpid, target, e)
        return SyncResult(ok=False, branch=target, error=str(e))
    logger.info(
        "Pulled repository {} branch {!r}: {} documents, {} blocks",
        rpid, target, stats.documents_imported, stats.blocks_imported,
    )
    return SyncResult(ok=True, branch=target)
