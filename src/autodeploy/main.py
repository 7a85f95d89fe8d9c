"""Main entry point for the autodeploy daemon."""

import asyncio
import signal
import sys
from typing import Optional

import structlog

from autodeploy import __version__
from autodeploy.core.config import Settings
from autodeploy.core.exceptions import AutodeployError, ConfigurationError, SupervisorFatalError
from autodeploy.deploy.checkout import WorkingTreeMaterializer
from autodeploy.deploy.environment import EnvironmentProvisioner
from autodeploy.deploy.git import GitRepository, RevisionTracker
from autodeploy.deploy.orchestrator import DeploymentOrchestrator
from autodeploy.deploy.procfile import LaunchPlanResolver
from autodeploy.supervisor import ProcessSupervisor
from autodeploy.utils.logging import setup_logging
from autodeploy.utils.metrics import start_metrics_server
from autodeploy.utils.scheduler import PeriodicTrigger

logger = structlog.get_logger()


class Daemon:
    """Wires the tracker, orchestrator, supervisor and periodic trigger together."""

    def __init__(self, settings: Settings):
        if not settings.git_repo:
            raise ConfigurationError("A remote git repository is required (--git_repo)", code="git_repo_missing")

        self.settings = settings
        settings.project_dir.mkdir(parents=True, exist_ok=True)

        repository = GitRepository.open_or_init(
            settings.repo_dir, settings.git_repo, settings.branch_name, settings.git_binary
        )
        self.supervisor = ProcessSupervisor(
            max_restarts=settings.max_restarts,
            group_reap_timeout=settings.group_reap_timeout,
            forward_output=settings.forward_output,
        )
        provisioner = EnvironmentProvisioner(settings.env_dir) if settings.use_virtualenv else None
        self.orchestrator = DeploymentOrchestrator(
            tracker=RevisionTracker(repository),
            materializer=WorkingTreeMaterializer(repository),
            resolver=LaunchPlanResolver(settings.process_type, settings.procfile_name),
            supervisor=self.supervisor,
            app_dir=settings.app_dir,
            port=settings.port,
            provisioner=provisioner,
            install_requirements=settings.install_requirements,
            shell=settings.shell,
        )
        self.trigger = PeriodicTrigger(
            lambda: self.orchestrator.reload(force=False),
            interval=settings.poll_interval,
            name="reload-trigger",
        )
        self._shutdown_event: Optional[asyncio.Event] = None

    def request_shutdown(self) -> None:
        """Handle shutdown signals."""
        logger.info("Killed, shutting down")
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def run(self) -> None:
        """Deploy once, then poll until a signal arrives or the supervisor gives up.

        Raises SupervisorFatalError when the service crash-loops and any
        AutodeployError from the initial forced deploy.
        """
        self._shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)

        supervisor_task = self.supervisor.start()
        try:
            await self.orchestrator.reload(force=True)
            self.trigger.start()

            shutdown_task = asyncio.create_task(self._shutdown_event.wait())
            done, _ = await asyncio.wait({supervisor_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
            if shutdown_task not in done:
                shutdown_task.cancel()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            await self.trigger.stop()
            await self.supervisor.stop()

        # Surfaces SupervisorFatalError if that is what woke us up.
        if supervisor_task.done():
            await self.supervisor.wait()


async def serve(settings: Settings) -> None:
    """Build the daemon and run it until shutdown."""
    daemon = Daemon(settings)
    await daemon.run()


def run(settings: Optional[Settings] = None) -> None:
    """Run the daemon; exits non-zero on fatal failures."""
    if settings is None:
        settings = Settings()

    setup_logging(settings.log_level, settings.log_format)
    logger.info(
        "Starting autodeploy",
        version=__version__,
        repo=settings.git_repo,
        branch=settings.branch_name,
        project_dir=str(settings.project_dir),
        port=settings.port,
    )

    if settings.metrics_enabled:
        start_metrics_server(settings.metrics_port)

    try:
        asyncio.run(serve(settings))
    except SupervisorFatalError as e:
        logger.error("Service could not be kept alive, exiting", error=str(e), code=e.code)
        sys.exit(1)
    except AutodeployError as e:
        logger.error("Deployment daemon failed", error=str(e), code=e.code)
        sys.exit(1)

    logger.info("autodeploy stopped")


if __name__ == "__main__":
    run()
