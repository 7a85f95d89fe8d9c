"""autodeploy - Continuously deploy one service from a git branch."""

__version__ = "0.1.0"

from autodeploy.core.config import Settings

__all__ = ["Settings", "__version__"]
