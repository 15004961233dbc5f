"""CLI for repotree: repositories, branches, tree editing and git sync."""

import json
import re
import sqlite3
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any

import typer
from loguru import logger

from repotree.config import DATABASE_FILENAME, TOKEN_METADATA_KEY, resolve_data_directory, resolve_github_token
from repotree.core.batch.mutator import apply_batch
from repotree.core.database.schema import get_schema_version, migrate_schema, set_metadata
from repotree.core.fs.importer import import_directory
from repotree.core.fs.projector import project_branch
from repotree.core.git.driver import GitRunner
from repotree.core.git.github import GitHubClient
from repotree.core.git.sync import TOKEN_MISSING, Actor, pull_branch, push_branch
from repotree.core.tree.branches import create_branch, list_branches, normalize_branch_name, switch_branch
from repotree.core.tree.repository import (
    create_repository,
    delete_repository,
    edit_repository,
    get_repository,
    increment_views,
    list_repositories,
)
from repotree.core.tree.store import (
    add_child,
    add_root,
    clear_branch,
    create_block,
    delete_blocks_of_documents,
    delete_subtree,
    get_children,
    list_blocks_of_doc,
    move_document,
)
from repotree.errors import ConfigurationError, RepoTreeError
from repotree.logging_config import configure_logging

app = typer.Typer(help="repotree: branchable document trees synced with git.")
settings_app = typer.Typer(help="Domain-level settings.")
repo_app = typer.Typer(help="Create, inspect and edit repositories.")
remote_app = typer.Typer(help="Configure the git remote of a repository.")
doc_app = typer.Typer(help="Edit the document tree of a branch.")
block_app = typer.Typer(help="Edit the blocks of a document.")
branch_app = typer.Typer(help="Create, switch and list branches.")
app.add_typer(settings_app, name="settings")
app.add_typer(repo_app, name="repo")
app.add_typer(remote_app, name="remote")
app.add_typer(doc_app, name="doc")
app.add_typer(block_app, name="block")
app.add_typer(branch_app, name="branch")

BranchOption = Annotated[
    str | None,
    typer.Option("--branch", "-b", help="Branch (default: the repository's current branch)"),
]


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", "-d", help="Directory holding repotree.db"),
    ] = None,
    user_id: int = typer.Option(1, "--user-id", "-u", help="Acting user id"),
    user_name: str = typer.Option("repotree", "--user-name", help="Acting user name"),
) -> None:
    configure_logging(verbose=verbose)
    ctx.obj = {
        "data_dir": data_dir or resolve_data_directory(),
        "actor": Actor(uid=user_id, uname=user_name),
    }


def _actor(ctx: typer.Context) -> Actor:
    actor: Actor = ctx.obj["actor"]
    return actor


@contextmanager
def _database(ctx: typer.Context) -> Iterator[sqlite3.Connection]:
    """Open (creating or migrating) the domain database; report errors and exit 1."""
    data_dir: Path = ctx.obj["data_dir"]
    data_dir.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(data_dir / DATABASE_FILENAME))
    try:
        migrate_schema(conn)
        yield conn
    except RepoTreeError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e
    finally:
        conn.close()


def _branch(conn: sqlite3.Connection, rpid: int, branch: str | None) -> str:
    if branch is None:
        return get_repository(conn, rpid=rpid).current_branch
    return normalize_branch_name(branch)


# --- Database ---


@app.command()
def init(ctx: typer.Context) -> None:
    """Create the database (or bring it up to date)."""
    with _database(ctx):
        typer.echo(f"Database ready: {ctx.obj['data_dir'] / DATABASE_FILENAME}")


@app.command()
def migrate(ctx: typer.Context) -> None:
    """Migrate the database schema, ordering legacy documents and blocks."""
    with _database(ctx) as conn:
        typer.echo(f"Schema version {get_schema_version(conn)}")


@settings_app.command("set-token")
def set_token(
    ctx: typer.Context,
    token: str = typer.Argument(..., help="GitHub personal access token"),
) -> None:
    """Store a domain-level GitHub token (overrides the system-level one)."""
    with _database(ctx) as conn:
        set_metadata(conn, TOKEN_METADATA_KEY, token.strip())
        typer.echo("GitHub token saved.")


# --- Repositories ---


@repo_app.command("create")
def repo_create(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Repository title"),
    content: str = typer.Option("", "--content", "-c", help="Repository README content"),
    mode: str = typer.Option("file", "--mode", "-m", help="file or manuscript"),
    remote: Annotated[str | None, typer.Option("--remote", "-r", help="Git remote URL")] = None,
) -> None:
    """Create a repository."""
    with _database(ctx) as conn:
        rpid = create_repository(
            conn, title=title, owner=_actor(ctx).uid, content=content, mode=mode, remote_url=remote
        )
        typer.echo(f"Created repository {rpid}")


@repo_app.command("list")
def repo_list(ctx: typer.Context) -> None:
    """List repositories, newest first."""
    with _database(ctx) as conn:
        repos = list_repositories(conn)
        typer.echo(f"{len(repos)} repositories:\n")
        for repo in repos:
            typer.echo(f"  [{repo.rpid}] {repo.title} ({repo.mode}) on {repo.current_branch}")


@repo_app.command("show")
def repo_show(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
) -> None:
    """Show a repository."""
    with _database(ctx) as conn:
        increment_views(conn, rpid=rpid)
        repo = get_repository(conn, rpid=rpid)
        typer.echo(f"[{repo.rpid}] {repo.title}")
        typer.echo(f"  mode: {repo.mode}")
        typer.echo(f"  branch: {repo.current_branch} (of {', '.join(repo.branches)})")
        typer.echo(f"  remote: {repo.remote_url or '-'}")
        typer.echo(f"  views: {repo.views}")
        if repo.content:
            typer.echo()
            typer.echo(repo.content)


@repo_app.command("edit")
def repo_edit(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    title: Annotated[str | None, typer.Option("--title", "-t")] = None,
    content: Annotated[str | None, typer.Option("--content", "-c")] = None,
    mode: Annotated[str | None, typer.Option("--mode", "-m")] = None,
) -> None:
    """Edit the title, content or mode of a repository."""
    with _database(ctx) as conn:
        repo = edit_repository(conn, rpid=rpid, title=title, content=content, mode=mode)
        typer.echo(f"Updated repository {repo.rpid}")


@repo_app.command("delete")
def repo_delete(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a repository with all its branches."""
    with _database(ctx) as conn:
        repo = get_repository(conn, rpid=rpid)
        if not yes:
            typer.confirm(f"Delete repository {rpid} ({repo.title!r}) and all its branches?", abort=True)
        delete_repository(conn, rpid=rpid)
        typer.echo(f"Deleted repository {rpid}")


# --- Remotes ---


@remote_app.command("set")
def remote_set(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    url: str = typer.Argument(..., help="Remote URL, or '' to clear it"),
) -> None:
    """Set the git remote a repository pushes to and pulls from."""
    with _database(ctx) as conn:
        repo = edit_repository(conn, rpid=rpid, remote_url=url)
        typer.echo(f"Remote of repository {rpid}: {repo.remote_url or '-'}")


@remote_app.command("create")
def remote_create(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="GitHub repository name (default: from the title)"),
    ] = None,
    org: Annotated[str | None, typer.Option("--org", help="Create under this organization")] = None,
    public: bool = typer.Option(False, "--public", help="Create a public repository"),
) -> None:
    """Create a GitHub repository and use it as the remote."""
    with _database(ctx) as conn:
        repo = get_repository(conn, rpid=rpid)
        token = resolve_github_token(conn)
        if not token:
            raise ConfigurationError(TOKEN_MISSING)
        repo_name = name or re.sub(r"[^\w.-]+", "-", repo.title).strip("-") or f"repotree-{rpid}"
        clone_url = GitHubClient(token).create_repository(
            repo_name, org=org, private=not public, description=repo.title
        )
        edit_repository(conn, rpid=rpid, remote_url=clone_url)
        typer.echo(f"Remote of repository {rpid}: {clone_url}")


# --- Documents and blocks ---


@doc_app.command("add")
def doc_add(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    title: str = typer.Argument(..., help="Document title"),
    parent: Annotated[int | None, typer.Option("--parent", "-p", help="Parent document id")] = None,
    content: str = typer.Option("", "--content", "-c", help="Document content"),
    order: int = typer.Option(0, "--order", "-o", help="Position among siblings"),
    branch: BranchOption = None,
) -> None:
    """Add a document (a root unless --parent is given)."""
    with _database(ctx) as conn:
        target = _branch(conn, rpid, branch)
        owner = _actor(ctx).uid
        if parent is None:
            did = add_root(
                conn, rpid=rpid, branch=target, owner=owner, title=title,
                content=content, sort_order=order,
            )
        else:
            did = add_child(
                conn, rpid=rpid, branch=target, parent_did=parent, owner=owner,
                title=title, content=content, sort_order=order,
            )
        typer.echo(f"Created document {did} on {target!r}")


def _echo_tree(conn: sqlite3.Connection, rpid: int, branch: str, parent: int | None, depth: int) -> None:
    for doc in get_children(conn, rpid=rpid, branch=branch, parent_did=parent):
        indent = "  " * depth
        typer.echo(f"{indent}{doc.title}  [did={doc.did}]")
        for block in list_blocks_of_doc(conn, rpid=rpid, branch=branch, did=doc.did):
            typer.echo(f"{indent}  - {block.title}  [bid={block.bid}]")
        _echo_tree(conn, rpid, branch, doc.did, depth + 1)


@doc_app.command("tree")
def doc_tree(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    branch: BranchOption = None,
) -> None:
    """Print the document tree of a branch with its blocks."""
    with _database(ctx) as conn:
        target = _branch(conn, rpid, branch)
        repo = get_repository(conn, rpid=rpid)
        typer.echo(f"{repo.title} ({target})")
        _echo_tree(conn, rpid, target, None, 1)


@doc_app.command("move")
def doc_move(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    did: int = typer.Argument(..., help="Document id"),
    parent: Annotated[
        int | None,
        typer.Option("--parent", "-p", help="New parent document id (omit to make it a root)"),
    ] = None,
    branch: BranchOption = None,
) -> None:
    """Move a document under another parent."""
    with _database(ctx) as conn:
        target = _branch(conn, rpid, branch)
        doc = move_document(conn, rpid=rpid, branch=target, did=did, new_parent=parent)
        typer.echo(f"Moved document {did} to {doc.path}")


@doc_app.command("delete")
def doc_delete(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    did: int = typer.Argument(..., help="Document id"),
    branch: BranchOption = None,
) -> None:
    """Delete a document, its descendants and their blocks."""
    with _database(ctx) as conn:
        target = _branch(conn, rpid, branch)
        dids = delete_subtree(conn, rpid=rpid, branch=target, did=did)
        blocks = delete_blocks_of_documents(conn, rpid=rpid, branch=target, dids=dids)
        typer.echo(f"Deleted {len(dids)} documents and {blocks} blocks")


@block_app.command("add")
def block_add(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    did: int = typer.Argument(..., help="Document id"),
    title: str = typer.Argument(..., help="Block title"),
    content: str = typer.Option("", "--content", "-c", help="Block content"),
    order: int = typer.Option(0, "--order", "-o", help="Position among the document's blocks"),
    branch: BranchOption = None,
) -> None:
    """Add a block to a document."""
    with _database(ctx) as conn:
        target = _branch(conn, rpid, branch)
        bid = create_block(
            conn, rpid=rpid, branch=target, did=did, owner=_actor(ctx).uid,
            title=title, content=content, sort_order=order,
        )
        typer.echo(f"Created block {bid} on {target!r}")


@block_app.command("list")
def block_list(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    did: int = typer.Argument(..., help="Document id"),
    branch: BranchOption = None,
) -> None:
    """List the blocks of a document."""
    with _database(ctx) as conn:
        target = _branch(conn, rpid, branch)
        for block in list_blocks_of_doc(conn, rpid=rpid, branch=target, did=did):
            typer.echo(f"  [{block.bid}] {block.title}")


# --- Branches ---


@branch_app.command("create")
def branch_create(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    name: str = typer.Argument(..., help="Branch name"),
) -> None:
    """Create a branch from the current one and switch to it."""
    with _database(ctx) as conn:
        repo = create_branch(conn, rpid=rpid, name=name, owner=_actor(ctx).uid)
        typer.echo(f"Switched to new branch {repo.current_branch!r}")


@branch_app.command("switch")
def branch_switch(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    name: str = typer.Argument(..., help="Branch name"),
) -> None:
    """Switch the current branch."""
    with _database(ctx) as conn:
        repo = switch_branch(conn, rpid=rpid, name=name)
        typer.echo(f"Switched to branch {repo.current_branch!r}")


@branch_app.command("list")
def branch_list(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
) -> None:
    """List branches; the current one is starred."""
    with _database(ctx) as conn:
        current = get_repository(conn, rpid=rpid).current_branch
        for name in list_branches(conn, rpid=rpid):
            typer.echo(f"{'*' if name == current else ' '} {name}")


# --- Batch, projection, import ---


@app.command()
def batch(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    request_file: Path = typer.Argument(..., help="JSON request file, or - for stdin"),
    branch: BranchOption = None,
) -> None:
    """Apply a batch save request and print the JSON response."""
    if str(request_file) == "-":
        raw = sys.stdin.read()
    elif request_file.is_file():
        raw = request_file.read_text(encoding="utf-8")
    else:
        logger.error("Request file not found: {}", request_file)
        raise typer.Exit(1)
    try:
        body: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        typer.secho(f"Error: invalid JSON request: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from e

    with _database(ctx) as conn:
        target = _branch(conn, rpid, branch)
        result = apply_batch(conn, rpid=rpid, branch=target, owner=_actor(ctx).uid, body=body)
        typer.echo(json.dumps(result.to_response(), indent=2))
        result.raise_for_errors()


@app.command()
def project(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    output_dir: Path = typer.Argument(..., help="Directory to write"),
    branch: BranchOption = None,
) -> None:
    """Write a branch as directories and markdown files."""
    with _database(ctx) as conn:
        target = _branch(conn, rpid, branch)
        stats = project_branch(conn, rpid=rpid, branch=target, target_dir=output_dir)
        typer.echo(
            f"Wrote {stats.documents_written} documents and {stats.blocks_written} blocks "
            f"to {output_dir}"
        )


@app.command(name="import")
def import_cmd(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    source_dir: Path = typer.Argument(..., help="Directory to read"),
    branch: BranchOption = None,
    replace: bool = typer.Option(False, "--replace", help="Clear the branch before importing"),
) -> None:
    """Create documents and blocks from a directory tree."""
    if not source_dir.is_dir():
        logger.error("Source directory not found: {}", source_dir)
        raise typer.Exit(1)

    with _database(ctx) as conn:
        target = _branch(conn, rpid, branch)
        if replace:
            clear_branch(conn, rpid=rpid, branch=target)
        actor = _actor(ctx)
        stats = import_directory(
            conn, rpid=rpid, branch=target, source_dir=source_dir, owner=actor.uid, ip=actor.ip
        )
        typer.echo(f"Imported {stats.documents_imported} documents and {stats.blocks_imported} blocks")


# --- Sync ---


@app.command()
def push(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    branch: BranchOption = None,
    note: Annotated[str | None, typer.Option("--note", "-n", help="Commit message note")] = None,
) -> None:
    """Push a branch to the repository's git remote."""
    with _database(ctx) as conn:
        result = push_branch(conn, GitRunner(), rpid=rpid, actor=_actor(ctx), branch=branch, note=note)
    typer.echo(json.dumps(result.to_dict()))
    if not result.ok:
        raise typer.Exit(1)


@app.command()
def pull(
    ctx: typer.Context,
    rpid: int = typer.Argument(..., help="Repository id"),
    branch: BranchOption = None,
) -> None:
    """Replace a branch with the tree of the same branch on the git remote."""
    with _database(ctx) as conn:
        result = pull_branch(conn, GitRunner(), rpid=rpid, actor=_actor(ctx), branch=branch)
    typer.echo(json.dumps(result.to_dict()))
    if not result.ok:
        raise typer.Exit(1)
