"""Command line tools."""

from .cli import SchemaSyncCLI, build_parser, run_cli

__all__ = ["SchemaSyncCLI", "build_parser", "run_cli"]
