"""Configuration management for autodeploy."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Daemon configuration settings.

    Every field can be set from the environment with the ``AUTODEPLOY_`` prefix
    (for example ``AUTODEPLOY_GIT_REPO``) or from a ``.env`` file. Command-line
    flags override both.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTODEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Source repository
    git_repo: str = Field("", description="Remote git repository to monitor")
    branch_name: str = Field("master", description="Git branch to monitor")
    git_binary: str = Field("git", description="git executable")

    # Layout
    project_dir: Path = Field(Path("."), description="Directory holding repo/, app/ and env/")

    # Service
    port: int = Field(5005, ge=1, le=65535, description="Port for the service to listen on")
    process_type: str = Field("web", description="Procfile entry to run")
    procfile_name: str = Field("Procfile", description="Manifest file name")
    shell: str = Field("bash", description="Shell wrapping the launch command")
    use_virtualenv: bool = Field(True, description="Provision and activate a virtualenv")
    install_requirements: bool = Field(True, description="pip install requirements.txt before launch")
    forward_output: bool = Field(True, description="Relay service output through the logger")

    # Polling and supervision
    poll_interval: float = Field(5.0, gt=0, description="Seconds between update checks")
    max_restarts: int = Field(3, ge=0, description="Crash restarts before giving up")
    group_reap_timeout: float = Field(5.0, gt=0, description="Seconds to wait for a killed process group")

    # Observability
    log_level: str = Field("INFO")
    log_format: str = Field("json")
    metrics_enabled: bool = Field(False)
    metrics_port: int = Field(9090, ge=1, le=65535)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept log levels in any case."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in {"json", "console"}:
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @property
    def repo_dir(self) -> Path:
        """Local mirror of the remote repository."""
        return self.project_dir / "repo"

    @property
    def app_dir(self) -> Path:
        """Checked-out tree of the deployed revision."""
        return self.project_dir / "app"

    @property
    def env_dir(self) -> Path:
        """Virtual environment the service runs in."""
        return self.project_dir / "env"
