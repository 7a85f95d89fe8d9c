"""Process supervision for the deployed service."""

from .models import LaunchRequest, ManagedProcess, SupervisorState
from .supervisor import ProcessSupervisor

__all__ = ["ProcessSupervisor", "LaunchRequest", "ManagedProcess", "SupervisorState"]
