"""Materialize a revision's tree into the application directory."""

from __future__ import annotations

from pathlib import Path

import structlog

from autodeploy.core.exceptions import CheckoutError, GitCommandError
from autodeploy.deploy.git import GitRepository

logger = structlog.get_logger()


class WorkingTreeMaterializer:
    """Replaces a directory's contents with the tree of a given revision.

    The directory gets its own index file inside the mirror's git dir, so the
    mirror's index is never touched and files dropped between revisions are
    removed on the next checkout.
    """

    def __init__(self, repository: GitRepository):
        self.repository = repository

    def index_file(self, target_dir: Path) -> Path:
        return self.repository.git_dir.resolve() / f"autodeploy-{Path(target_dir).name}.index"

    def materialize_at(self, revision: str, target_dir: Path) -> None:
        """Force-checkout ``revision`` into ``target_dir``.

        Local modifications are discarded and untracked files in the way are
        overwritten. Checking out the same revision twice is a no-op.
        """
        target_dir = Path(target_dir).resolve()
        target_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.repository.run(
                [
                    f"--work-tree={target_dir}",
                    "read-tree",
                    "--reset",
                    "-u",
                    revision,
                ],
                env={"GIT_INDEX_FILE": str(self.index_file(target_dir))},
            )
        except GitCommandError as e:
            raise CheckoutError(f"Failed to check out {revision} into {target_dir}: {e.stderr}",
                                code="checkout_failed") from e

        logger.info("Checked out revision", revision=revision, target=str(target_dir))
