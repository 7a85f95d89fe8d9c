"""Custom exceptions for autodeploy."""

from typing import List, Optional


class AutodeployError(Exception):
    """Base exception for all autodeploy errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class RepositoryError(AutodeployError):
    """Fetching or inspecting the tracked repository failed."""
    pass


class GitCommandError(RepositoryError):
    """Raised when a git command fails."""

    def __init__(self, command: List[str], exit_code: int, stderr: str):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(
            f"Git command {' '.join(command)} failed with code {exit_code}: {stderr}",
            code="git_command_failed",
        )


class CheckoutError(RepositoryError):
    """Materializing a revision into the application directory failed."""
    pass


class ConfigurationError(AutodeployError):
    """Configuration error."""
    pass


class ManifestError(ConfigurationError):
    """The Procfile is missing, malformed or lacks the requested process type."""
    pass


class ProvisioningError(AutodeployError):
    """The isolated runtime environment could not be created."""
    pass


class SupervisorError(AutodeployError):
    """Supervisor-related errors."""
    pass


class SupervisorStoppedError(SupervisorError):
    """The supervisor no longer accepts commands."""
    pass


class SupervisorFatalError(SupervisorError):
    """The supervised service cannot be kept alive; the daemon must exit."""
    pass
