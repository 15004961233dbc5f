"""Remote URL handling: token embedding and masking."""

import re

_HTTPS = re.compile(r"^https?://(?:[^@/]+@)?(?P<host>[^/]+)/(?P<path>.+)$")
_SCP = re.compile(r"^[\w.-]+@(?P<host>[^:/]+):(?P<path>.+)$")
_SSH = re.compile(r"^ssh://(?:[^@/]+@)?(?P<host>[^/:]+)(?::\d+)?/(?P<path>.+)$")
_SHORTHAND = re.compile(r"^[\w.-]+/[\w.-]+$")
_USERINFO = re.compile(r"(https?://)[^@/\s]+@")


def _with_git_suffix(path: str) -> str:
    return path if path.endswith(".git") else f"{path}.git"


def build_authenticated_url(remote: str, token: str) -> str:
    """Return an HTTPS remote URL carrying token.

    `git@host:o/r.git` and `ssh://git@host/o/r.git` are rewritten to HTTPS,
    an HTTPS URL has any old credentials replaced, and an `o/r` shorthand
    means GitHub. Anything else (file URLs, local paths) is returned as is.
    """
    remote = remote.strip()
    for pattern in (_SSH, _SCP):
        match = pattern.match(remote)
        if match:
            return f"https://{token}@{match['host']}/{_with_git_suffix(match['path'])}"
    match = _HTTPS.match(remote)
    if match:
        return f"https://{token}@{match['host']}/{match['path']}"
    if _SHORTHAND.match(remote):
        return f"https://{token}@github.com/{_with_git_suffix(remote)}"
    return remote


def mask_credentials(text: str) -> str:
    """Hide credentials embedded in URLs."""
    return _USERINFO.sub(r"\1***@", text)
