"""Protocols for dependency injection in the sync engine."""

from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class GitProtocol(Protocol):
    """Protocol for git command runners."""

    def run(self, args: list[str], *, cwd: Path) -> str:
        """Run `git <args>` in cwd and return stdout; raise ExternalToolError on failure."""
        ...
