"""
Pytest configuration and fixtures for autodeploy tests.
"""

import asyncio
import os
import shutil
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from autodeploy.supervisor.models import LaunchRequest


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")
requires_posix = pytest.mark.skipif(os.name != "posix", reason="process groups require POSIX")

_GIT_IDENTITY = [
    "-c", "user.name=autodeploy-tests",
    "-c", "user.email=tests@example.invalid",
    "-c", "commit.gpgsign=false",
]


class RemoteRepo:
    """A throwaway git repository standing in for the remote."""

    def __init__(self, path: Path, branch: str = "master"):
        self.path = path
        self.branch = branch
        path.mkdir(parents=True)
        self.git("init", "--quiet")
        self.git("symbolic-ref", "HEAD", f"refs/heads/{branch}")

    @property
    def url(self) -> str:
        return str(self.path)

    def git(self, *args: str) -> str:
        result = subprocess.run(
            ["git", *_GIT_IDENTITY, *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    def commit(self, files: Dict[str, str], message: str = "update", remove: Iterable[str] = ()) -> str:
        """Write ``files``, delete ``remove``, commit, and return the new head."""
        for name, content in files.items():
            target = self.path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        for name in remove:
            (self.path / name).unlink()
        self.git("add", "-A")
        self.git("commit", "--quiet", "--allow-empty", "-m", message)
        return self.head()

    def head(self) -> str:
        return self.git("rev-parse", "HEAD")

    def rewrite_last_commit(self, files: Dict[str, str]) -> str:
        """Replace the last commit with a new one (history rewrite)."""
        self.git("reset", "--quiet", "--hard", "HEAD~1")
        return self.commit(files, message="rewritten")


@pytest.fixture
def remote_repo(tmp_path) -> RemoteRepo:
    """Remote repository with one commit carrying a Procfile."""
    repo = RemoteRepo(tmp_path / "remote")
    repo.commit({"Procfile": "web: run-server\n", "app.py": "print('v1')\n"}, message="initial")
    return repo


def make_request(working_dir: Path, script: str, port: int = 5005, revision: Optional[str] = None) -> LaunchRequest:
    """Launch request running ``script`` through ``sh -c``."""
    return LaunchRequest(
        working_dir=str(working_dir),
        argv=("sh", "-c", script),
        env={"PORT": str(port)},
        revision=revision,
    )


def is_pid_alive(pid: int) -> bool:
    """True if ``pid`` exists and is not a zombie."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    stat = Path(f"/proc/{pid}/stat")
    if stat.exists():
        try:
            # Field 3 is the state; the command name in field 2 may contain spaces.
            state = stat.read_text().rsplit(")", 1)[1].split()[0]
        except (OSError, IndexError):
            return False
        return state not in ("Z", "X")
    return True


async def wait_for(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.05) -> None:
    """Poll ``predicate`` until it holds, failing the test on timeout."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() >= deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)
