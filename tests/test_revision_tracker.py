"""Tests for the git mirror and revision tracker."""

import pytest

from autodeploy.core.exceptions import GitCommandError, RepositoryError
from autodeploy.deploy.git import GitRepository, RevisionTracker

from conftest import RemoteRepo, requires_git

pytestmark = requires_git


@pytest.fixture
def mirror(tmp_path, remote_repo):
    return GitRepository.open_or_init(tmp_path / "project" / "repo", remote_repo.url, "master")


class TestGitRepository:
    """Test opening and initializing the local mirror."""

    def test_init_creates_repo_with_origin(self, mirror, remote_repo):
        """A fresh mirror is a git repository whose origin is the remote."""
        assert mirror.git_dir.is_dir()
        assert mirror.run(["remote", "get-url", "origin"]).strip() == remote_repo.url

    def test_reopen_existing_mirror(self, tmp_path, mirror, remote_repo):
        """Opening an existing directory reuses it instead of re-initializing."""
        RevisionTracker(mirror).check_for_update()

        reopened = GitRepository.open_or_init(mirror.local_dir, remote_repo.url, "master")

        assert reopened.resolve(reopened.local_ref) == remote_repo.head()

    def test_resolve_missing_ref_returns_none(self, mirror):
        """Unknown refs resolve to None rather than raising."""
        assert mirror.resolve("refs/heads/does-not-exist") is None

    def test_failed_command_raises_git_command_error(self, mirror):
        """A non-zero git exit surfaces command, code and stderr."""
        with pytest.raises(GitCommandError) as exc_info:
            mirror.run(["rev-parse", "--verify", "no-such-thing"])

        assert exc_info.value.exit_code != 0
        assert exc_info.value.command[0] == "git"
        assert isinstance(exc_info.value, RepositoryError)

    def test_missing_git_binary_raises_repository_error(self, tmp_path):
        """A git executable that cannot be run is a repository error."""
        repo = GitRepository(tmp_path, "unused", "master", git_binary="definitely-not-git-xyz")

        with pytest.raises(RepositoryError):
            repo.run(["status"])


class TestRevisionTracker:
    """Test update detection and fast-forward behavior."""

    def test_first_check_creates_local_branch(self, mirror, remote_repo):
        """Without a local branch the tracker creates it and reports an update."""
        check = RevisionTracker(mirror).check_for_update()

        assert check.updated is True
        assert check.revision == remote_repo.head()
        assert mirror.resolve(mirror.local_ref) == remote_repo.head()
        upstream = mirror.run(["rev-parse", "--abbrev-ref", "master@{upstream}"]).strip()
        assert upstream == "origin/master"

    def test_unchanged_remote_reports_no_update(self, mirror, remote_repo):
        """Equal local and remote tips mean no update and no mutation."""
        tracker = RevisionTracker(mirror)
        first = tracker.check_for_update()
        reflog_before = mirror.run(["reflog", "show", "--format=%H", "refs/heads/master"])

        second = tracker.check_for_update()

        assert second.updated is False
        assert second.revision == first.revision
        assert mirror.run(["reflog", "show", "--format=%H", "refs/heads/master"]) == reflog_before

    def test_new_remote_commit_fast_forwards(self, mirror, remote_repo):
        """A new remote commit moves the local branch to it without a merge."""
        tracker = RevisionTracker(mirror)
        first = tracker.check_for_update()
        new_head = remote_repo.commit({"app.py": "print('v2')\n"}, message="v2")

        check = tracker.check_for_update()

        assert check.updated is True
        assert check.revision == new_head
        assert mirror.resolve(mirror.local_ref) == new_head
        # Fast-forward: the new tip's parent is the previous tip, no merge commit.
        assert mirror.run(["rev-parse", f"{new_head}^"]).strip() == first.revision
        assert mirror.run(["rev-list", "--merges", "--count", new_head]).strip() == "0"

    def test_multiple_commits_are_followed_to_the_tip(self, mirror, remote_repo):
        """Several commits between polls land on the newest one."""
        tracker = RevisionTracker(mirror)
        tracker.check_for_update()
        remote_repo.commit({"a.txt": "a"}, message="a")
        tip = remote_repo.commit({"b.txt": "b"}, message="b")

        check = tracker.check_for_update()

        assert check.updated is True
        assert check.revision == tip

    def test_rewritten_history_moves_branch(self, mirror, remote_repo):
        """A force-pushed remote still becomes the deployed revision."""
        tracker = RevisionTracker(mirror)
        remote_repo.commit({"app.py": "print('v2')\n"}, message="v2")
        tracker.check_for_update()
        rewritten = remote_repo.rewrite_last_commit({"app.py": "print('v2b')\n"})

        check = tracker.check_for_update()

        assert check.updated is True
        assert check.revision == rewritten
        assert mirror.resolve(mirror.local_ref) == rewritten

    def test_fetch_failure_leaves_local_branch_untouched(self, mirror, remote_repo, tmp_path):
        """A failing fetch raises and does not move the local branch."""
        tracker = RevisionTracker(mirror)
        first = tracker.check_for_update()
        remote_repo.commit({"app.py": "print('v2')\n"}, message="v2")
        mirror.run(["remote", "set-url", "origin", str(tmp_path / "gone")])

        with pytest.raises(RepositoryError):
            tracker.check_for_update()

        assert mirror.resolve(mirror.local_ref) == first.revision

    def test_missing_remote_branch_raises(self, tmp_path, remote_repo):
        """Tracking a branch the remote does not have is an error."""
        repo = GitRepository.open_or_init(tmp_path / "other" / "repo", remote_repo.url, "release")

        with pytest.raises(RepositoryError):
            RevisionTracker(repo).check_for_update()

        assert repo.resolve(repo.local_ref) is None

    def test_tracks_non_default_branch(self, tmp_path):
        """Only the configured branch is followed."""
        remote = RemoteRepo(tmp_path / "remote2", branch="deploy")
        head = remote.commit({"Procfile": "web: serve\n"})
        repo = GitRepository.open_or_init(tmp_path / "p2" / "repo", remote.url, "deploy")

        check = RevisionTracker(repo).check_for_update()

        assert check.updated is True
        assert check.revision == head
