"""Disposable per-repository workspaces.

A Workspace is an async context manager around one clone. Entering it deletes
any leftover directory of the same name and clones fresh; leaving it removes
the directory whether the block completed or raised, so no state carries
over from one repository (or one run) to the next.

Example:
    >>> async with Workspace(reference, clone_url, path) as ws:
    ...     await ws.start_branch("opencode/agents-md-20250101-120000")
    ...     if await ws.has_changes():
    ...         await ws.commit_all("docs: update")
"""

import asyncio
import re
import shutil
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, TypeVar

import git
import structlog

from repo_improver.exceptions import CloneError, GitOperationError
from repo_improver.models.domain import RepositoryReference

log = structlog.get_logger(__name__)

T = TypeVar("T")

CREDENTIALS_IN_URL = re.compile(r"(https?://)[^@/\s]+@")


def redact(text: str) -> str:
    """Strip credentials embedded in URLs."""
    return CREDENTIALS_IN_URL.sub(r"\1***@", text)


async def _run_sync(func: Callable[[], T]) -> T:
    """Run a blocking GitPython call in a thread pool."""
    return await asyncio.to_thread(func)


class Workspace:
    """One repository clone with guaranteed cleanup.

    Attributes:
        reference: Repository being processed
        path: Clone directory
        branch: Currently checked-out branch, once set up
    """

    def __init__(
        self,
        reference: RepositoryReference,
        clone_url: str,
        path: Path,
        author_name: str = "OpenCode Bot",
        author_email: str = "opencode-bot@example.com",
    ):
        self.reference = reference
        self.clone_url = clone_url
        self.path = path
        self.author_name = author_name
        self.author_email = author_email
        self.branch: str | None = None
        self._repo: git.Repo | None = None

    @staticmethod
    def directory_for(root: Path, reference: RepositoryReference, suffix: str | None = None) -> Path:
        """Deterministic clone directory for a reference."""
        name = reference.slug
        if suffix:
            name = f"{name}_{suffix}"
        return root / name

    @property
    def repo(self) -> git.Repo:
        if self._repo is None:
            raise GitOperationError(f"Workspace for {self.reference} has not been cloned")
        return self._repo

    async def __aenter__(self) -> "Workspace":
        await self.clone()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.cleanup()

    async def clone(self) -> None:
        """Remove any previous directory and clone the repository.

        Raises:
            CloneError: If the remote is unreachable or the clone fails
        """
        if self.path.exists():
            log.info("workspace_removing_stale", path=str(self.path))
            await _run_sync(lambda: shutil.rmtree(self.path))
        self.path.parent.mkdir(parents=True, exist_ok=True)

        log.info("workspace_cloning", repo=self.reference.raw, path=str(self.path))
        try:
            self._repo = await _run_sync(lambda: git.Repo.clone_from(self.clone_url, self.path))
        except git.GitCommandError as e:
            # A failed clone may leave a partial directory behind
            await _run_sync(lambda: shutil.rmtree(self.path, ignore_errors=True))
            raise CloneError(self.reference.raw, redact(str(e.stderr or e).strip())) from e

        def _set_identity() -> None:
            with self.repo.config_writer() as config:
                config.set_value("user", "name", self.author_name)
                config.set_value("user", "email", self.author_email)

        await _run_sync(_set_identity)

    async def cleanup(self) -> None:
        """Remove the clone directory."""
        if self._repo is not None:
            self._repo.close()
            self._repo = None
        if not self.path.exists():
            return
        try:
            await _run_sync(lambda: shutil.rmtree(self.path))
        except OSError as e:
            log.error("workspace_cleanup_failed", path=str(self.path), error=str(e))
            raise GitOperationError(f"Failed to remove workspace {self.path}: {e}") from e
        log.debug("workspace_removed", path=str(self.path))

    async def _git(self, *args: str) -> str:
        try:
            return await _run_sync(lambda: self.repo.git.execute(["git", *args]))
        except git.GitCommandError as e:
            raise GitOperationError(f"git {args[0]} failed: {redact(str(e.stderr or e).strip())}") from e

    async def start_branch(self, name: str) -> None:
        """Create and check out a new local branch."""
        await self._git("checkout", "-b", name)
        self.branch = name
        log.info("branch_created", branch=name)

    async def remote_branch_exists(self, name: str) -> bool:
        heads = await self._git("ls-remote", "--heads", "origin", name)
        return bool(heads.strip())

    async def checkout_work_branch(self, name: str) -> bool:
        """Check out the long-lived work branch.

        If the branch exists on the remote it is checked out tracking the
        remote and pulled, preserving its history; otherwise it is created
        from the current HEAD.

        Returns:
            True if the branch was newly created.
        """
        await self._git("fetch", "origin")
        if await self.remote_branch_exists(name):
            await self._git("checkout", "-B", name, "--track", f"origin/{name}")
            await self._git("pull", "origin", name)
            self.branch = name
            log.info("work_branch_checked_out", branch=name)
            return False

        await self._git("checkout", "-b", name)
        self.branch = name
        log.info("work_branch_created", branch=name)
        return True

    def file(self, relative: str) -> Path:
        return self.path / relative

    async def has_changes(self) -> bool:
        """Whether tracked files differ from HEAD or untracked files exist."""
        return await _run_sync(lambda: self.repo.is_dirty(untracked_files=True))

    async def snapshot(self) -> dict[str, bytes]:
        """Contents of every tracked and untracked (non-ignored) file."""

        def _snapshot() -> dict[str, bytes]:
            listing = self.repo.git.ls_files("--cached", "--others", "--exclude-standard", "-z")
            files: dict[str, bytes] = {}
            for name in filter(None, listing.split("\0")):
                target = self.path / name
                if target.is_file():
                    files[name] = target.read_bytes()
            return files

        return await _run_sync(_snapshot)

    async def revert(self) -> None:
        """Discard every working-tree change, staged or not, and untracked files."""
        await self._git("reset", "--hard", "HEAD")
        await self._git("clean", "-fd")
        log.info("workspace_reverted", branch=self.branch)

    async def commit_all(self, message: str) -> str:
        """Stage everything and commit. Returns the new commit SHA."""
        await self._git("add", "-A")
        await self._git("commit", "-m", message)
        return self.repo.head.commit.hexsha

    async def commit_paths(self, paths: Iterable[str], message: str) -> str:
        """Stage only the given paths and commit. Returns the new commit SHA."""
        await self._git("add", "--", *paths)
        await self._git("commit", "-m", message)
        return self.repo.head.commit.hexsha

    async def push(self, branch: str | None = None, set_upstream: bool = False) -> None:
        """Push a branch (default: the current one) to origin."""
        target = branch or self.branch
        if not target:
            raise GitOperationError("No branch to push")
        args = ["push"]
        if set_upstream:
            args.append("-u")
        await self._git(*args, "origin", target)
        log.info("branch_pushed", branch=target)
