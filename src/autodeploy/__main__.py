"""CLI entrypoint: ``autodeploy --git_repo URL [--project_dir DIR] ...``."""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from pydantic import ValidationError

from autodeploy.core.config import Settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autodeploy",
        description="Continuously deploy the 'web' process of a git branch and keep it running",
    )
    parser.add_argument("--git_repo", "--git-repo", dest="git_repo", help="Remote git repo to monitor")
    parser.add_argument("--project_dir", "--project-dir", dest="project_dir",
                        help="Path to store all project related files")
    parser.add_argument("--branch_name", "--branch-name", dest="branch_name", help="Git branch to monitor")
    parser.add_argument("--port", type=int, help="Port for server to listen on")
    parser.add_argument("--poll-interval", dest="poll_interval", type=float, help="Seconds between update checks")
    parser.add_argument("--process-type", dest="process_type", help="Procfile entry to run")
    parser.add_argument("--max-restarts", dest="max_restarts", type=int, help="Crash restarts before giving up")
    parser.add_argument("--no-virtualenv", dest="use_virtualenv", action="store_false", default=None,
                        help="Run the command without provisioning a virtualenv")
    parser.add_argument("--log-level", dest="log_level")
    parser.add_argument("--log-format", dest="log_format", choices=["json", "console"])
    return parser


def load_settings(argv: Optional[List[str]] = None) -> Settings:
    """Settings from the environment, overridden by any flags given."""
    args = build_parser().parse_args(argv)
    overrides = {key: value for key, value in vars(args).items() if value is not None}
    return Settings(**overrides)


def main(argv: Optional[List[str]] = None) -> None:
    try:
        settings = load_settings(argv)
    except ValidationError as e:
        print(f"ERROR: invalid configuration\n{e}", file=sys.stderr)
        sys.exit(2)

    from autodeploy.main import run

    run(settings)


if __name__ == "__main__":
    main()
