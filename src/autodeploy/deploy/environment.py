"""Isolated runtime environment for the deployed service."""

from __future__ import annotations

import shutil
import venv
from pathlib import Path

import structlog

from autodeploy.core.exceptions import ProvisioningError

logger = structlog.get_logger()


class EnvironmentProvisioner:
    """Creates the virtual environment the service runs in, once."""

    def __init__(self, env_dir: Path, with_pip: bool = True):
        self.env_dir = Path(env_dir)
        self.with_pip = with_pip

    @property
    def activate_script(self) -> Path:
        return self.env_dir / "bin" / "activate"

    def is_valid(self) -> bool:
        """A usable venv has both its interpreter and its activate script."""
        python_path = self.env_dir / "bin" / "python"
        if not python_path.exists():
            logger.warning("Venv missing python executable", venv=str(self.env_dir))
            return False
        if not self.activate_script.exists():
            logger.warning("Venv missing activate script", venv=str(self.env_dir))
            return False
        return True

    def ensure(self) -> Path:
        """Create the venv if it does not exist yet; reuse it otherwise.

        Raises:
            ProvisioningError: If venv creation fails
        """
        if self.env_dir.exists():
            if self.is_valid():
                return self.env_dir
            logger.info("Existing venv invalid or incomplete, recreating", venv=str(self.env_dir))
            shutil.rmtree(self.env_dir)

        logger.info("Creating virtual environment", venv=str(self.env_dir))
        try:
            venv.create(self.env_dir, with_pip=self.with_pip, clear=True)
        except Exception as e:
            logger.error("Failed to create venv", venv=str(self.env_dir), error=str(e))
            if self.env_dir.exists():
                shutil.rmtree(self.env_dir, ignore_errors=True)
            raise ProvisioningError(f"Error while creating virtual env: {e}", code="venv_failed") from e

        logger.info("Virtual environment ready", venv=str(self.env_dir))
        return self.env_dir
