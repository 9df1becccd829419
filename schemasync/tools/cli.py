"""
Command line interface for SchemaSync.

Commands:
- diff: Show the changes between a desired and a live schema file
- plan: Show (or write) the migration plan between two schema files
- normalize: Print the normalized form of a schema file
- status: Show the ledger state of a target
- validate: Verify ledger checksums (optionally against a saved plan)
- rollback: Print the down statements of an applied migration

Usage:
    schemasync diff --desired schema.yaml --live live.yaml --format json
    schemasync plan --desired schema.yaml --live live.yaml -o plan.json
    schemasync validate --plan plan.json --entry 20260101120000000-3f2a9c1b7d0e

Invariants:
    - diff exits 1 when the changes include a destructive REMOVE
    - validate exits 1 on any checksum mismatch
    - JSON output is deterministic (sorted keys)

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from ..config import Settings
from ..diff.changes import ChangeSet
from ..errors import SchemaSyncError
from ..ledger.store import LedgerStatus, MigrationLedger
from ..migrator import Migrator
from ..plan.planner import MigrationPlan
from ..schema.loader import dump_yaml, load_document
from ..schema.normalize import normalize

logger = logging.getLogger(__name__)


class SchemaSyncCLI:
    """CLI operations, separated from argument parsing for testing.

    Example:
        >>> cli = SchemaSyncCLI(Settings(ledger_path="/tmp/ledger.db"))
        >>> changes = cli.diff("schema.yaml", "live.yaml")
        >>> len(changes)
        1
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.migrator = Migrator(MigrationLedger(settings.ledger_path), settings)

    def diff(self, desired_path: str, live_path: str) -> ChangeSet:
        return self.migrator.diff(load_document(desired_path), load_document(live_path))

    def plan(self, desired_path: str, live_path: str) -> MigrationPlan:
        return self.migrator.reconcile(load_document(desired_path), load_document(live_path))

    def normalize(self, path: str) -> str:
        return dump_yaml(normalize(load_document(path)))

    async def status(self, target: str | None = None) -> LedgerStatus:
        await self.migrator.initialize()
        return await self.migrator.status(target)

    async def validate(self, target: str | None = None, plan_path: str | None = None,
                       entry_id: str | None = None) -> int:
        """Validate the ledger, and a saved plan file against an entry.

        Returns:
            Number of ledger entries validated
        """
        await self.migrator.initialize()
        count = await self.migrator.validate(target)
        if plan_path and entry_id:
            plan = MigrationPlan.from_dict(json.loads(Path(plan_path).read_text(encoding="utf-8")))
            await self.migrator.ledger.verify_regenerated(entry_id, plan.up_statements)
        return count

    async def rollback(self, entry_id: str, target: str | None = None) -> MigrationPlan:
        await self.migrator.initialize()
        return await self.migrator.rollback(entry_id, target=target)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _print_statements(plan: MigrationPlan) -> None:
    for statement in plan.up_statements:
        print(statement)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="schemasync", description="Schema reconciliation tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("diff", "Show schema changes"), ("plan", "Show the migration plan")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--desired", "-d", required=True, help="Desired schema file (YAML or JSON)")
        sub.add_argument("--live", "-l", required=True, help="Live schema snapshot file (YAML or JSON)")
        sub.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
        if name == "plan":
            sub.add_argument("--output", "-o", help="Write the plan as JSON to this file")

    normalize_parser = subparsers.add_parser("normalize", help="Print a normalized schema file")
    normalize_parser.add_argument("file", help="Schema file (YAML or JSON)")

    status_parser = subparsers.add_parser("status", help="Show ledger status")
    status_parser.add_argument("--target", help="Target name (default: SCHEMASYNC_TARGET)")
    status_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")

    validate_parser = subparsers.add_parser("validate", help="Verify ledger checksums")
    validate_parser.add_argument("--target", help="Only validate this target")
    validate_parser.add_argument("--plan", help="Saved plan JSON to compare against --entry")
    validate_parser.add_argument("--entry", help="Ledger entry id for --plan")

    rollback_parser = subparsers.add_parser("rollback", help="Print rollback statements")
    rollback_parser.add_argument("--entry", default="latest", help="Entry id or 'latest'")
    rollback_parser.add_argument("--target", help="Target name for 'latest'")

    return parser


def run_cli(argv: list[str] | None, settings: Settings) -> int:
    """Parse arguments and run one command.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    cli = SchemaSyncCLI(settings)

    try:
        if args.command == "diff":
            changes = cli.diff(args.desired, args.live)
            if args.format == "json":
                _print_json(changes.to_dict())
            elif changes.is_empty:
                print("No changes detected")
            else:
                print(f"Found {len(changes)} change(s):")
                for change in changes:
                    marker = "DESTRUCTIVE" if change.change_kind.is_destructive else "OK"
                    print(f"  [{marker}] {change}")
            destructive = [c for c in changes if c.change_kind.is_destructive]
            return 1 if destructive else 0

        if args.command == "plan":
            plan = cli.plan(args.desired, args.live)
            if args.output:
                Path(args.output).write_text(json.dumps(plan.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
                print(f"Plan {plan.id} written to {args.output}", file=sys.stderr)
            if args.format == "json":
                _print_json(plan.to_dict())
            elif plan.is_empty:
                print("-- nothing to do")
            else:
                print(f"-- plan {plan.id} ({plan.checksum})")
                _print_statements(plan)
            return 0

        if args.command == "normalize":
            print(cli.normalize(args.file), end="")
            return 0

        if args.command == "status":
            status = asyncio.run(cli.status(args.target))
            if args.format == "json":
                _print_json(status.to_dict())
                return 0
            print(f"Target: {status.target}")
            if status.pending:
                print(
                    f"Pending: {status.pending.id} "
                    f"({status.pending.statements_applied}/{len(status.pending.up_statements)} applied)"
                )
            for entry in status.history:
                print(f"  {entry.id}  {entry.status.value:<11}  {entry.statements_applied} statement(s)")
            return 0

        if args.command == "validate":
            count = asyncio.run(cli.validate(args.target, args.plan, args.entry))
            print(f"Ledger is valid ({count} entries checked)")
            return 0

        if args.command == "rollback":
            plan = asyncio.run(cli.rollback(args.entry, args.target))
            print(f"-- rollback plan {plan.id}")
            _print_statements(plan)
            return 0

    except SchemaSyncError as e:
        logger.error(e.message, extra={"code": e.code, "details": e.details})
        print(f"{e.code}: {e.message}", file=sys.stderr)
        return 1

    return 2
