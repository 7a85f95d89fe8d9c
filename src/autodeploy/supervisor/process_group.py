"""Process-group primitives used by the supervisor.

The launch command runs inside a wrapping shell, so the supervisor's direct
child is rarely the real server. Every launch therefore starts a new session
(the child becomes leader of its own process group, pgid == pid) and every
kill targets the whole group.
"""

import asyncio
import os
import signal
import subprocess
import time
from typing import List, Optional

import structlog

from .models import LaunchRequest

logger = structlog.get_logger()


async def spawn_group(request: LaunchRequest, forward_output: bool = True) -> asyncio.subprocess.Process:
    """Start ``request`` as the leader of a new process group."""
    env = os.environ.copy()
    env.update(request.env)

    stream = subprocess.PIPE if forward_output else None
    proc = await asyncio.create_subprocess_exec(
        *request.argv,
        cwd=request.working_dir,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=stream,
        stderr=stream,
        start_new_session=True,
    )
    return proc


def start_output_forwarding(proc: asyncio.subprocess.Process) -> List[asyncio.Task]:
    """Relay the piped stdout and stderr of ``proc``; the caller owns the tasks."""
    return [
        asyncio.create_task(_forward_output("stdout", proc.stdout, proc.pid)),
        asyncio.create_task(_forward_output("stderr", proc.stderr, proc.pid)),
    ]


def kill_group(pgid: int, sig: int = signal.SIGKILL) -> bool:
    """Signal every member of the group. Returns False if the group is gone."""
    try:
        os.killpg(pgid, sig)
        return True
    except ProcessLookupError:
        return False


def group_exists(pgid: int) -> bool:
    try:
        os.killpg(pgid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Member exists but belongs to someone else; pgid was reused.
        return False
    return True


async def wait_group_gone(pgid: int, timeout: float, interval: float = 0.05) -> bool:
    """Poll until no process of the group remains or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while group_exists(pgid):
        if time.monotonic() >= deadline:
            logger.warning("Process group still alive after kill", pgid=pgid, timeout=timeout)
            return False
        await asyncio.sleep(interval)
    return True


async def terminate_group(proc: asyncio.subprocess.Process, timeout: float) -> Optional[int]:
    """SIGKILL the group led by ``proc``, reap the leader, wait for stragglers."""
    pgid = proc.pid
    logger.info("Killing process group", pgid=pgid)
    kill_group(pgid)
    returncode = await proc.wait()
    await wait_group_gone(pgid, timeout)
    return returncode


async def _forward_output(stream_name: str, stream: Optional[asyncio.StreamReader], pid: int) -> None:
    """Relay service output lines through the daemon's logger."""
    if stream is None:
        return
    try:
        while True:
            line = await stream.readline()
            if not line:  # EOF
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.info(f"Service {stream_name}", pid=pid, log=text)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error("Error forwarding service output", stream=stream_name, pid=pid, error=str(e))
