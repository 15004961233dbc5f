"""Configuration constants for repotree."""

import os
import sqlite3
from pathlib import Path

# Directory holding repotree.db. First directory which is found is used.
DATA_DIRECTORIES: list[Path] = [
    Path("~/.local/share/repotree").expanduser(),
    Path("~/.repotree").expanduser(),
]

DATABASE_FILENAME = "repotree.db"

# System-level GitHub token. Environment first, then the first file found.
TOKEN_ENV_VAR = "REPOTREE_GITHUB_TOKEN"
TOKEN_FILES: list[Path] = [
    Path("~/.config/repotree-github-token.txt").expanduser(),
    Path("~/.config/secret/repotree-github-token.txt").expanduser(),
]

# Domain-level token, stored in the metadata table of the domain database.
TOKEN_METADATA_KEY = "github_token"

# The domain served by one database; used in commit messages.
DOMAIN_ID = os.environ.get("REPOTREE_DOMAIN", "system")

# Identity used for commits made by push.
BOT_NAME = "repotree-bot"
BOT_EMAIL = "bot@repotree.local"

DEFAULT_BRANCH = "main"

# Placeholder resolution passes in a batch save before giving up.
BATCH_ROUND_CAP = 10

GITHUB_API_URL = "https://api.github.com"


def resolve_data_directory() -> Path:
    """Return the first existing data directory, or the first candidate."""
    for candidate in DATA_DIRECTORIES:
        if candidate.is_dir():
            return candidate
    return DATA_DIRECTORIES[0]


def resolve_system_token() -> str | None:
    """Return the system-level token from the environment or a token file."""
    token = os.environ.get(TOKEN_ENV_VAR, "").strip()
    if token:
        return token
    for token_path in TOKEN_FILES:
        try:
            token = token_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            continue
        if token:
            return token
    return None


def resolve_github_token(conn: sqlite3.Connection) -> str | None:
    """Return the domain-level token if set, else the system-level one."""
    from repotree.core.database.schema import get_metadata

    return get_metadata(conn, TOKEN_METADATA_KEY) or resolve_system_token()
