"""Deployment orchestration.

On every trigger the orchestrator asks the revision tracker whether the
tracked branch moved. When it did (or when forced) it checks the revision out,
prepares the runtime environment, resolves the Procfile command and hands a
fresh launch request to the process supervisor.
"""

from __future__ import annotations

import asyncio
import shlex
from pathlib import Path
from typing import Optional

import structlog

from autodeploy.deploy.checkout import WorkingTreeMaterializer
from autodeploy.deploy.environment import EnvironmentProvisioner
from autodeploy.deploy.git import RevisionTracker
from autodeploy.deploy.models import ReloadResult
from autodeploy.deploy.procfile import LaunchPlan, LaunchPlanResolver
from autodeploy.supervisor import LaunchRequest, ProcessSupervisor
from autodeploy.utils import metrics
from autodeploy.utils.logging import bind_deploy_context

logger = structlog.get_logger()


class DeploymentOrchestrator:
    """Drives tracker -> checkout -> environment -> Procfile -> supervisor."""

    def __init__(
        self,
        tracker: RevisionTracker,
        materializer: WorkingTreeMaterializer,
        resolver: LaunchPlanResolver,
        supervisor: ProcessSupervisor,
        app_dir: Path,
        port: int,
        provisioner: Optional[EnvironmentProvisioner] = None,
        install_requirements: bool = True,
        shell: str = "bash",
    ):
        self.tracker = tracker
        self.materializer = materializer
        self.resolver = resolver
        self.supervisor = supervisor
        self.app_dir = Path(app_dir).resolve()
        self.port = port
        self.provisioner = provisioner
        self.install_requirements = install_requirements
        self.shell = shell

        # The tracker's repository is not safe for concurrent mutation.
        self._lock = asyncio.Lock()
        # The tracker moves the local branch before the deploy runs, so a revision
        # whose deploy failed must be remembered or later checks report no update.
        self._pending_revision: Optional[str] = None
        self.deployed_revision: Optional[str] = None

    async def reload(self, force: bool = False) -> ReloadResult:
        """Deploy the tracked branch if it moved (or unconditionally if forced).

        Errors from any step propagate to the caller; nothing is handed to the
        supervisor in that case, so the running process keeps running. The
        failed revision stays pending and the next call deploys it even though
        the tracker no longer reports it as an update.
        """
        async with self._lock:
            loop = asyncio.get_running_loop()
            try:
                check = await loop.run_in_executor(None, self.tracker.check_for_update)
            except Exception:
                metrics.RELOAD_COUNT.labels(result="error").inc()
                raise
            logger.debug("Checked for update", updated=check.updated, revision=check.revision)

            retry = self._pending_revision is not None and not (check.updated or force)
            if not (check.updated or force or retry):
                metrics.RELOAD_COUNT.labels(result="unchanged").inc()
                return ReloadResult(updated=False, deployed=False, revision=check.revision)

            self._pending_revision = check.revision
            bind_deploy_context(revision=check.revision)
            try:
                logger.info("Reload application", forced=force, updated=check.updated, retry=retry)
                request = await self._prepare(check.revision)
                await self.supervisor.launch(request)
            except Exception:
                metrics.RELOAD_COUNT.labels(result="error").inc()
                logger.exception("Deployment failed")
                raise
            finally:
                bind_deploy_context(revision=None)

            self._pending_revision = None
            self.deployed_revision = check.revision
            metrics.RELOAD_COUNT.labels(result="deployed").inc()
            metrics.DEPLOY_COUNT.inc()
            return ReloadResult(updated=check.updated, deployed=True, forced=force, revision=check.revision)

    async def _prepare(self, revision: str) -> LaunchRequest:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.materializer.materialize_at, revision, self.app_dir)
        if self.provisioner is not None:
            await loop.run_in_executor(None, self.provisioner.ensure)
        plan = await loop.run_in_executor(None, self.resolver.resolve, self.app_dir)
        return self.build_launch_request(plan, revision)

    def build_launch_request(self, plan: LaunchPlan, revision: Optional[str] = None) -> LaunchRequest:
        """Wrap the Procfile command in a shell script that prepares its environment."""
        lines = []
        if self.provisioner is not None:
            lines.append(f". {shlex.quote(str(self.provisioner.activate_script.resolve()))}")
        lines.append(f"cd {shlex.quote(str(self.app_dir))}")
        if self.install_requirements:
            lines.append("if [ -f requirements.txt ]; then pip install -r requirements.txt; fi")
        lines.append(f"export PORT={self.port}")
        lines.append(plan.command)
        script = "\n".join(lines) + "\n"

        logger.info("Starting server command", command=plan.command, port=self.port)
        return LaunchRequest(
            working_dir=str(self.app_dir),
            argv=(self.shell, "-c", script),
            env={"PORT": str(self.port)},
            revision=revision,
        )
