"""Procfile parsing and launch plan resolution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Union

import structlog
import yaml

from autodeploy.core.exceptions import ManifestError

logger = structlog.get_logger()


@dataclass(frozen=True)
class LaunchPlan:
    """The command line a Procfile declares for one process type."""

    process_type: str
    command: str


def parse_procfile(data: Union[bytes, str]) -> Dict[str, str]:
    """Parse a Procfile into a process type -> command mapping.

    Procfiles are read as YAML mappings, so ``web: gunicorn app:app`` and
    quoted commands both work.
    """
    try:
        parsed = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise ManifestError(f"Malformed Procfile: {e}", code="manifest_malformed") from e

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ManifestError("Procfile must map process types to commands", code="manifest_malformed")

    commands = {}
    for name, command in parsed.items():
        if not isinstance(command, (str, int, float)) or isinstance(command, bool):
            raise ManifestError(f"Command for {name!r} must be a string", code="manifest_malformed")
        commands[str(name)] = str(command)
    return commands


class LaunchPlanResolver:
    """Reads the Procfile of a checked-out tree and picks one process type."""

    def __init__(self, process_type: str = "web", procfile_name: str = "Procfile"):
        self.process_type = process_type
        self.procfile_name = procfile_name

    def resolve(self, app_dir: Path) -> LaunchPlan:
        procfile = Path(app_dir) / self.procfile_name
        try:
            data = procfile.read_bytes()
        except FileNotFoundError as e:
            raise ManifestError(f"No {self.procfile_name} in {app_dir}", code="manifest_missing") from e

        commands = parse_procfile(data)
        command = commands.get(self.process_type)
        if not command or not command.strip():
            raise ManifestError(
                f"Cannot find command named {self.process_type}",
                code="process_type_missing",
            )

        logger.info("Resolved launch plan", process_type=self.process_type, command=command)
        return LaunchPlan(process_type=self.process_type, command=command)
