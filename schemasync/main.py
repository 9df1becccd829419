"""
SchemaSync - Main entry point.

Usage:
    schemasync diff --desired schema.yaml --live live.yaml
    schemasync plan --desired schema.yaml --live live.yaml -o plan.json
    schemasync status
    schemasync validate
    schemasync rollback --entry latest

Configuration is via SCHEMASYNC_* environment variables.
See config.py for all available settings.
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter

from .config import Settings
from .tools.cli import run_cli

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure logging based on configuration.

    Args:
        settings: SchemaSync settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Logs go to stderr so command output on stdout stays parseable
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    settings = Settings()
    try:
        settings.validate_config()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    setup_logging(settings)
    settings.log_config()
    return run_cli(argv, settings)


if __name__ == "__main__":
    sys.exit(main())
