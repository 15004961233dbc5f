"""Exception types raised by the repotree core."""


class RepoTreeError(Exception):
    """Base class for all repotree errors."""


class NotFoundError(RepoTreeError):
    """A repository, document, block or parent does not exist in the addressed scope."""


class ValidationError(RepoTreeError):
    """A request carries a missing or malformed field."""


class ConfigurationError(RepoTreeError):
    """A setting required before a git operation is missing."""


class ExternalToolError(RepoTreeError):
    """An external command (git, the GitHub API) failed."""

    def __init__(self, command: str, returncode: int, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr.strip()
        msg = f"{command!r} failed with exit code {returncode}"
        if self.stderr:
            msg += f": {self.stderr}"
        super().__init__(msg)


class PartialBatchError(RepoTreeError):
    """Some items of a batch save failed while the rest were committed."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"{len(self.errors)} batch item(s) failed: " + "; ".join(self.errors))
