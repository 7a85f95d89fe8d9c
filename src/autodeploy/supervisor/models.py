"""Data models for the process supervisor."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple


class SupervisorState(Enum):
    """State of the process supervisor."""
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class LaunchRequest:
    """How to start the service: built fresh for every deploy, never mutated."""

    working_dir: str
    argv: Tuple[str, ...]
    env: Dict[str, str] = field(default_factory=dict)
    revision: Optional[str] = None

    @property
    def port(self) -> Optional[int]:
        value = self.env.get("PORT")
        return int(value) if value else None


@dataclass
class ManagedProcess:
    """The supervisor's record of the one managed process."""

    request: LaunchRequest
    process: Optional[asyncio.subprocess.Process] = None
    generation: int = 0
    failure_count: int = 0
    started_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    output_tasks: List[asyncio.Task] = field(default_factory=list)

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def is_alive(self) -> bool:
        """True while the group leader has not been reaped."""
        return self.process is not None and self.process.returncode is None

    @property
    def uptime(self) -> Optional[float]:
        """Get process uptime in seconds."""
        if self.started_at and self.is_alive:
            return (datetime.utcnow() - self.started_at).total_seconds()
        return None


# Supervisor inbox messages


@dataclass(frozen=True)
class Launch:
    request: LaunchRequest


@dataclass(frozen=True)
class Stop:
    ack: "asyncio.Future[None]"


@dataclass(frozen=True)
class ProcessExited:
    """Posted by the exit watcher of one spawned generation."""

    generation: int
    returncode: Optional[int] = None
    error: Optional[BaseException] = None
