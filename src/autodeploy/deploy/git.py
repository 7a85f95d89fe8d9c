"""Git-based revision tracking.

Wraps the ``git`` CLI around a local mirror of the remote repository. The
mirror lives in ``<project_dir>/repo``; its tracked branch is only ever moved
to the remote tip, never merged.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from autodeploy.core.exceptions import GitCommandError, RepositoryError

logger = structlog.get_logger()

REMOTE_NAME = "origin"


@dataclass(frozen=True)
class UpdateCheck:
    """Outcome of one update check."""

    updated: bool
    revision: str


class GitRepository:
    """Local mirror of a remote repository tracking one branch."""

    def __init__(self, local_dir: Path, remote_url: str, branch: str, git_binary: str = "git"):
        self.local_dir = Path(local_dir)
        self.remote_url = remote_url
        self.branch = branch
        self.git_binary = git_binary

    @classmethod
    def open_or_init(cls, local_dir: Path, remote_url: str, branch: str, git_binary: str = "git") -> "GitRepository":
        """Open the mirror if it exists, otherwise create it with an origin remote."""
        repo = cls(local_dir, remote_url, branch, git_binary)
        if repo.local_dir.exists():
            repo.run(["rev-parse", "--git-dir"])
            logger.info("Opened repository", path=str(repo.local_dir))
            return repo

        repo.local_dir.parent.mkdir(parents=True, exist_ok=True)
        repo.run(["init", "--quiet", str(repo.local_dir)], cwd=repo.local_dir.parent)
        repo.run(["remote", "add", REMOTE_NAME, remote_url])
        logger.info("Initialized repository", path=str(repo.local_dir), remote=remote_url)
        return repo

    @property
    def git_dir(self) -> Path:
        return self.local_dir / ".git"

    @property
    def local_ref(self) -> str:
        return f"refs/heads/{self.branch}"

    @property
    def remote_ref(self) -> str:
        return f"refs/remotes/{REMOTE_NAME}/{self.branch}"

    def fetch(self) -> None:
        """Fetch the tracked branch into its remote-tracking ref."""
        self.run(["fetch", "--quiet", REMOTE_NAME, f"+{self.local_ref}:{self.remote_ref}"])

    def resolve(self, ref: str) -> Optional[str]:
        """Commit id a ref points at, or None if the ref does not exist."""
        result = self._exec(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"])
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        result = self._exec(["merge-base", "--is-ancestor", ancestor, descendant])
        if result.returncode not in (0, 1):
            raise GitCommandError(self._command(["merge-base", "--is-ancestor", ancestor, descendant]),
                                  result.returncode, result.stderr.strip())
        return result.returncode == 0

    def update_branch(self, target: str, expected: Optional[str] = None) -> None:
        """Point the tracked branch at ``target``.

        With ``expected`` the update is a compare-and-swap against the current
        tip; without it the branch must not exist yet.
        """
        old = expected if expected is not None else "0" * 40
        self.run(["update-ref", "-m", f"autodeploy: move to {target}", self.local_ref, target, old])

    def set_upstream(self) -> None:
        self.run(["branch", f"--set-upstream-to={REMOTE_NAME}/{self.branch}", self.branch])

    def run(self, args: List[str], cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> str:
        """Run a git command, raising GitCommandError on a non-zero exit."""
        result = self._exec(args, cwd=cwd, env=env)
        if result.returncode != 0:
            raise GitCommandError(self._command(args), result.returncode, result.stderr.strip())
        return result.stdout

    def _command(self, args: List[str]) -> List[str]:
        return [self.git_binary] + args

    def _exec(self, args: List[str], cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None):
        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)
        try:
            return subprocess.run(
                self._command(args),
                cwd=str(cwd or self.local_dir),
                env=full_env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise RepositoryError(f"Cannot run {self.git_binary}: {e}", code="git_unavailable") from e


class RevisionTracker:
    """Detects whether the tracked branch moved on the remote and follows it."""

    def __init__(self, repository: GitRepository):
        self.repository = repository

    def check_for_update(self) -> UpdateCheck:
        """Fetch, compare local and remote tips, fast-forward the local branch.

        Raises RepositoryError if fetching or resolving fails; the local branch
        is left untouched in that case.
        """
        repo = self.repository
        repo.fetch()

        remote_tip = repo.resolve(repo.remote_ref)
        if remote_tip is None:
            raise RepositoryError(
                f"Branch {repo.branch} not found on {REMOTE_NAME}",
                code="branch_not_found",
            )

        local_tip = repo.resolve(repo.local_ref)
        if local_tip is None:
            repo.update_branch(remote_tip)
            repo.set_upstream()
            logger.info("Created local branch", branch=repo.branch, revision=remote_tip)
            return UpdateCheck(updated=True, revision=remote_tip)

        if local_tip == remote_tip:
            return UpdateCheck(updated=False, revision=local_tip)

        if not repo.is_ancestor(local_tip, remote_tip):
            logger.warning(
                "Remote history was rewritten, moving branch anyway",
                branch=repo.branch,
                local=local_tip,
                remote=remote_tip,
            )
        repo.update_branch(remote_tip, expected=local_tip)
        logger.info("Fast-forwarded branch", branch=repo.branch, previous=local_tip, revision=remote_tip)
        return UpdateCheck(updated=True, revision=remote_tip)
