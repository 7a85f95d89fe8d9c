"""Process supervisor for the deployed service.

The supervisor is a single asyncio task that owns the one managed process.
Launch and Stop commands and the exit notifications of spawned processes all
arrive on the same inbox and are handled strictly in arrival order, so a new
deploy and a crash report can never race each other.
"""

import asyncio
import signal
from datetime import datetime
from typing import Any, Dict, Optional, Union

import structlog

from autodeploy.core.exceptions import (
    SupervisorError,
    SupervisorFatalError,
    SupervisorStoppedError,
)
from autodeploy.utils import metrics

from .models import (
    Launch,
    LaunchRequest,
    ManagedProcess,
    ProcessExited,
    Stop,
    SupervisorState,
)
from .process_group import (
    kill_group,
    spawn_group,
    start_output_forwarding,
    terminate_group,
    wait_group_gone,
)

logger = structlog.get_logger()

Message = Union[Launch, Stop, ProcessExited]


class ProcessSupervisor:
    """Owns the lifecycle of the single supervised service process."""

    def __init__(
        self,
        max_restarts: int = 3,
        group_reap_timeout: float = 5.0,
        forward_output: bool = True,
    ):
        self.max_restarts = max_restarts
        self.group_reap_timeout = group_reap_timeout
        self.forward_output = forward_output

        self._inbox: "asyncio.Queue[Message]" = asyncio.Queue()
        self._state = SupervisorState.IDLE
        self._current: Optional[ManagedProcess] = None
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._watcher: Optional[asyncio.Task] = None
        self._stopping = False
        self._set_state(SupervisorState.IDLE)

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def current(self) -> Optional[ManagedProcess]:
        return self._current

    @property
    def is_alive(self) -> bool:
        """True while the actor loop accepts commands."""
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the actor loop."""
        if self._task is not None:
            raise SupervisorError("Supervisor already started")
        self._task = asyncio.create_task(self._run(), name="process-supervisor")
        logger.info("Process supervisor started", max_restarts=self.max_restarts)
        return self._task

    async def launch(self, request: LaunchRequest) -> None:
        """Hand a launch request to the actor. Returns once it is queued."""
        if self._stopping or not self.is_alive:
            raise SupervisorStoppedError("Supervisor is not accepting launch requests")
        await self._inbox.put(Launch(request))

    async def stop(self) -> None:
        """Tear down the managed process and end the actor loop.

        Blocks until the actor has acknowledged the shutdown. Calling it on a
        supervisor that already ended (stopped or fatally failed) only makes
        sure no process group is left behind.
        """
        self._stopping = True
        if not self.is_alive:
            await self._teardown()
            self._set_state(SupervisorState.STOPPED)
            return

        ack: "asyncio.Future[None]" = asyncio.get_running_loop().create_future()
        await self._inbox.put(Stop(ack))
        # The actor may die of a fatal error before it reaches the Stop.
        await asyncio.wait({ack, self._task}, return_when=asyncio.FIRST_COMPLETED)
        if not ack.done():
            await self._teardown()
            self._set_state(SupervisorState.STOPPED)

    async def wait(self) -> None:
        """Wait for the actor loop to end; raises SupervisorFatalError on a crash loop."""
        if self._task is None:
            return
        await self._task

    async def drain(self) -> None:
        """Wait until every message queued so far has been handled."""
        if not self.is_alive:
            return
        joiner = asyncio.ensure_future(self._inbox.join())
        try:
            await asyncio.wait({joiner, self._task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            joiner.cancel()

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of the supervisor for logs and diagnostics."""
        current = self._current
        return {
            "state": self._state.value,
            "pid": current.pid if current else None,
            "revision": current.request.revision if current else None,
            "failure_count": current.failure_count if current else 0,
            "uptime": current.uptime if current else None,
            "exit_code": current.exit_code if current else None,
        }

    # Actor loop

    async def _run(self) -> None:
        try:
            while True:
                message = await self._inbox.get()
                try:
                    if isinstance(message, Launch):
                        await self._handle_launch(message.request)
                    elif isinstance(message, ProcessExited):
                        await self._handle_exit(message)
                    elif isinstance(message, Stop):
                        await self._handle_stop(message)
                        return
                finally:
                    self._inbox.task_done()
        except SupervisorFatalError as e:
            logger.error("Supervisor failed", error=str(e), code=e.code)
            await self._teardown()
            self._set_state(SupervisorState.STOPPED)
            raise
        except Exception as e:
            logger.exception("Supervisor loop crashed")
            await self._teardown()
            self._set_state(SupervisorState.STOPPED)
            raise SupervisorFatalError(f"Supervisor loop crashed: {e}", code="internal") from e
        except asyncio.CancelledError:
            await self._teardown()
            self._set_state(SupervisorState.STOPPED)
            raise

    async def _handle_launch(self, request: LaunchRequest) -> None:
        if self._current is not None and self._current.is_alive:
            logger.info("Replacing running process", pid=self._current.pid, revision=request.revision)
        await self._teardown()

        self._current = ManagedProcess(request=request)
        await self._spawn(self._current)

    async def _handle_exit(self, message: ProcessExited) -> None:
        current = self._current
        if current is None or message.generation != current.generation:
            logger.debug("Ignoring exit of replaced process", generation=message.generation)
            return

        if message.error is not None:
            raise SupervisorFatalError(
                f"Failed to wait for process {current.pid}: {message.error}",
                code="wait_failed",
            )

        returncode = message.returncode
        current.exit_code = returncode
        self._watcher = None

        # The leader is gone; sweep anything it left in its group.
        if kill_group(current.pid):
            await wait_group_gone(current.pid, self.group_reap_timeout)
        await self._collect_output(current)

        if returncode == 0:
            logger.info("Process exited cleanly", pid=current.pid)
            metrics.PROCESS_EXITS.labels(outcome="clean").inc()
            current.process = None
            self._set_state(SupervisorState.IDLE)
            return

        metrics.PROCESS_EXITS.labels(outcome="failure").inc()
        if current.failure_count >= self.max_restarts:
            current.process = None
            raise SupervisorFatalError(
                f"Process failed {current.failure_count + 1} times in a row "
                f"(last exit code {returncode}), giving up",
                code="crash_loop",
            )

        current.failure_count += 1
        metrics.PROCESS_RESTARTS.inc()
        logger.warning(
            "Process failed, restarting",
            pid=current.pid,
            exit_code=returncode,
            attempt=current.failure_count,
            max_restarts=self.max_restarts,
        )
        await self._spawn(current)

    async def _handle_stop(self, message: Stop) -> None:
        logger.info("Supervisor stopping, closing all subprocesses")
        self._set_state(SupervisorState.STOPPING)
        await self._teardown()
        self._set_state(SupervisorState.STOPPED)
        if not message.ack.done():
            message.ack.set_result(None)

    # Helpers

    async def _spawn(self, managed: ManagedProcess) -> None:
        request = managed.request
        self._generation += 1
        managed.generation = self._generation
        managed.exit_code = None
        try:
            managed.process = await spawn_group(request, forward_output=self.forward_output)
        except OSError as e:
            managed.process = None
            raise SupervisorFatalError(
                f"Failed to start {' '.join(request.argv)}: {e}",
                code="spawn_failed",
            ) from e

        if self.forward_output:
            managed.output_tasks = start_output_forwarding(managed.process)
        managed.started_at = datetime.utcnow()
        self._watcher = asyncio.create_task(self._watch(managed.generation, managed.process))
        self._set_state(SupervisorState.RUNNING)
        logger.info(
            "Process started",
            pid=managed.pid,
            revision=request.revision,
            port=request.port,
            attempt=managed.failure_count,
        )

    async def _watch(self, generation: int, proc: asyncio.subprocess.Process) -> None:
        """Wait for one spawned process and report its exit to the actor."""
        try:
            returncode = await proc.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._inbox.put(ProcessExited(generation=generation, error=e))
            return
        await self._inbox.put(ProcessExited(generation=generation, returncode=returncode))

    async def _teardown(self) -> None:
        """Kill the current process group, if any, and forget its watcher."""
        if self._watcher is not None:
            self._watcher.cancel()
            self._watcher = None
        current = self._current
        if current is None:
            return
        if current.process is not None:
            if current.is_alive:
                await terminate_group(current.process, self.group_reap_timeout)
            elif kill_group(current.pid, signal.SIGKILL):
                await wait_group_gone(current.pid, self.group_reap_timeout)
            current.process = None
        await self._collect_output(current)

    async def _collect_output(self, managed: ManagedProcess) -> None:
        """Let the output relays drain to EOF, cancelling any that outlive the group."""
        tasks, managed.output_tasks = managed.output_tasks, []
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=self.group_reap_timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _set_state(self, state: SupervisorState) -> None:
        if state != self._state:
            logger.debug("Supervisor state change", previous=self._state.value, state=state.value)
        self._state = state
        metrics.record_supervisor_state(state.value, SupervisorState)
