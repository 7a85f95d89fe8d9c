"""Revision tracking, checkout and deployment orchestration."""

from .checkout import WorkingTreeMaterializer
from .environment import EnvironmentProvisioner
from .git import GitRepository, RevisionTracker, UpdateCheck
from .models import ReloadResult
from .orchestrator import DeploymentOrchestrator
from .procfile import LaunchPlan, LaunchPlanResolver, parse_procfile

__all__ = [
    "DeploymentOrchestrator",
    "EnvironmentProvisioner",
    "GitRepository",
    "LaunchPlan",
    "LaunchPlanResolver",
    "ReloadResult",
    "RevisionTracker",
    "UpdateCheck",
    "WorkingTreeMaterializer",
    "parse_procfile",
]
