"""Git subprocess calls for pushing a projected tree and fetching a branch."""

import os
import shlex
import shutil
import subprocess
from pathlib import Path

from loguru import logger

from repotree.config import BOT_EMAIL, BOT_NAME
from repotree.core.git.remote import mask_credentials
from repotree.errors import ExternalToolError
from repotree.protocols import GitProtocol

GIT_DIR = ".git"


class GitRunner:
    """Run git as a blocking subprocess."""

    def __init__(self, executable: str = "git") -> None:
        self.executable = executable
        # Never wait for a credential prompt.
        self.env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}

    def run(self, args: list[str], *, cwd: Path) -> str:
        cmd = [self.executable, *args]
        shown = mask_credentials(shlex.join(cmd))
        logger.debug("Running: {}", shown)
        try:
            proc = subprocess.run(
                cmd, cwd=cwd, env=self.env, capture_output=True, text=True, check=False
            )
        except OSError as e:
            raise ExternalToolError(shown, -1, str(e)) from e
        if proc.returncode != 0:
            raise ExternalToolError(shown, proc.returncode, mask_credentials(proc.stderr))
        return proc.stdout


def mirror_tree(source: Path, target: Path) -> None:
    """Make target hold exactly the files of source, leaving target/.git alone.

    Files present in both are overwritten; files and directories of target
    that source does not have are removed.
    """
    made: set[Path] = set()
    for path in sorted(source.rglob("*")):
        rel = path.relative_to(source)
        if rel.parts[0] == GIT_DIR:
            continue
        dest = target / rel
        if path.is_dir():
            if dest.exists() and not dest.is_dir():
                dest.unlink()
            dest.mkdir(parents=True, exist_ok=True)
        else:
            if dest.is_dir():
                shutil.rmtree(dest)
            shutil.copyfile(path, dest)
        made.add(rel)

    stale_files: list[Path] = []
    stale_dirs: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(target):
        if Path(dirpath) == target and GIT_DIR in dirnames:
            dirnames.remove(GIT_DIR)
        rel_dir = Path(dirpath).relative_to(target)
        stale_dirs.extend(target / rel_dir / d for d in dirnames if rel_dir / d not in made)
        stale_files.extend(target / rel_dir / f for f in filenames if rel_dir / f not in made)

    for path in stale_files:
        logger.debug("Removing file: {}", path)
        path.unlink()
    # Deepest first, so children go before their parents.
    for path in sorted(stale_dirs, key=lambda p: -len(p.parts)):
        logger.debug("Removing dir: {}", path)
        shutil.rmtree(path, ignore_errors=True)


class GitSyncDriver:
    """Push a directory to a remote branch, or fetch a remote branch into a directory.

    Every method works in a directory the caller provides and owns.
    """

    def __init__(
        self,
        git: GitProtocol,
        *,
        bot_name: str = BOT_NAME,
        bot_email: str = BOT_EMAIL,
    ) -> None:
        self.git = git
        self.bot_name = bot_name
        self.bot_email = bot_email

    def push(
        self,
        *,
        remote_url: str,
        branch: str,
        content_dir: Path,
        work_dir: Path,
        message: str,
    ) -> bool:
        """Commit content_dir onto branch of remote_url and push it.

        Returns True if a commit was made, False if the remote already had
        exactly this content.
        """
        fresh = self._checkout_for_push(work_dir, remote_url=remote_url, branch=branch)

        mirror_tree(content_dir, work_dir)
        self.git.run(["add", "--all", "."], cwd=work_dir)
        changes = self.git.run(["status", "--porcelain"], cwd=work_dir).splitlines()
        committed = bool(changes)
        if committed:
            logger.debug("git status returned {} lines", len(changes))
            self.git.run(["commit", "-m", message, "--quiet"], cwd=work_dir)
            logger.info("Made a git commit: {}", message)
        else:
            logger.info("Branch {!r} is up to date, not committing", branch)

        if fresh:
            self.git.run(["remote", "add", "origin", remote_url], cwd=work_dir)
            self.git.run(["push", "-u", "origin", branch], cwd=work_dir)
        else:
            self.git.run(["remote", "set-url", "origin", remote_url], cwd=work_dir)
            try:
                self.git.run(["push", "origin", branch], cwd=work_dir)
            except ExternalToolError:
                logger.debug("Plain push failed, retrying with upstream for {!r}", branch)
                self.git.run(["push", "-u", "origin", branch], cwd=work_dir)
        logger.info("Pushed branch {!r}", branch)
        return committed

    def _checkout_for_push(self, work_dir: Path, *, remote_url: str, branch: str) -> bool:
        """Clone the remote and check out branch; return True for a brand-new repository."""
        try:
            self.git.run(["clone", remote_url, "."], cwd=work_dir)
        except ExternalToolError as e:
            logger.info("Clone failed ({}), starting a new repository", e.stderr or e.returncode)
            self.git.run(["init"], cwd=work_dir)
            self._point_head(work_dir, branch)
            self._configure_identity(work_dir)
            return True

        self.git.run(["fetch", "origin"], cwd=work_dir)
        self._checkout_branch(work_dir, branch)
        self._configure_identity(work_dir)
        try:
            self.git.run(["pull", "origin", branch], cwd=work_dir)
        except ExternalToolError:
            logger.debug("Nothing to pull for {!r}, branch may be new", branch)
        return False

    def _checkout_branch(self, work_dir: Path, branch: str) -> None:
        for args in (["checkout", branch], ["checkout", "-b", branch, f"origin/{branch}"]):
            try:
                self.git.run(args, cwd=work_dir)
                return
            except ExternalToolError:
                continue

        base = self._default_branch(work_dir)
        if base and base != branch:
            try:
                self.git.run(["checkout", "-b", branch, base], cwd=work_dir)
                return
            except ExternalToolError:
                logger.debug("Cannot branch {!r} off {!r}", branch, base)
        # Empty remote: nothing to branch off, start the branch unborn.
        self._point_head(work_dir, branch)

    def _default_branch(self, work_dir: Path) -> str | None:
        """Return the clone's default branch, or None for an empty clone."""
        try:
            ref = self.git.run(["symbolic-ref", "--short", "refs/remotes/origin/HEAD"], cwd=work_dir)
            return ref.strip().removeprefix("origin/") or None
        except ExternalToolError:
            pass
        try:
            ref = self.git.run(["rev-parse", "--abbrev-ref", "HEAD"], cwd=work_dir).strip()
        except ExternalToolError:
            return None
        return ref if ref and ref != "HEAD" else None

    def _point_head(self, work_dir: Path, branch: str) -> None:
        self.git.run(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], cwd=work_dir)

    def _configure_identity(self, work_dir: Path) -> None:
        self.git.run(["config", "user.name", self.bot_name], cwd=work_dir)
        self.git.run(["config", "user.email", self.bot_email], cwd=work_dir)

    def fetch_branch(self, *, remote_url: str, branch: str, work_dir: Path) -> None:
        """Check out the tip of branch from remote_url into the empty work_dir."""
        self.git.run(["init"], cwd=work_dir)
        self.git.run(["remote", "add", "origin", remote_url], cwd=work_dir)
        self.git.run(["fetch", "--depth=1", "origin", branch], cwd=work_dir)
        self.git.run(["checkout", "-B", branch, f"origin/{branch}"], cwd=work_dir)
        logger.info("Fetched branch {!r}", branch)
