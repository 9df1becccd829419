"""
Reconciliation orchestrator.

Migrator ties the pipeline together:

    desired ─┐
             ├─ normalize ─> diff ─> plan ─> ledger.record ─> execute (retry)
    live ────┘                                     │
                                                   └─> ledger.mark_applied

Recovery never resumes a plan part-way: after a failure the next run()
introspects again, diffs again and plans again, so statements that already
took effect drop out of the fresh plan.

Invariants:
    - Statements run strictly sequentially
    - Every executed statement is confirmed in the ledger before the next runs
    - Semantic failures are never retried and mark the entry failed
    - Cancellation leaves the entry pending with the confirmed count
    - A target has at most one pending entry (enforced by the ledger)

How to change safely:
    - Keep normalize/diff/plan synchronous and free of I/O
    - Never swallow executor errors; surface them through ApplyResult or raise
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .config import Settings
from .diff.changes import ChangeSet
from .diff.comparator import Comparator
from .errors import ConnectivityError, LedgerBusyError, LedgerError, PartialApplyError
from .ledger.checksum import checksum_statements
from .ledger.store import EntryStatus, LedgerEntry, LedgerStatus, MigrationLedger, Outcome
from .plan.planner import MigrationPlan, Planner, plan_id
from .runtime.base import DesiredStateProvider, LiveStateProvider, StatementExecutor
from .runtime.retry import RetryPolicy, call_with_retry
from .schema.document import SchemaDocument
from .schema.normalize import Normalizer

logger = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """Outcome of applying a plan.

    Attributes:
        plan_id: Id of the applied plan
        applied_count: Statements confirmed in the ledger
        total: Statements in the plan
        failed_at: Index of the failing statement
        error: Failure details when failed_at is set
    """

    plan_id: str
    applied_count: int
    total: int
    failed_at: int | None = None
    error: PartialApplyError | None = None

    @property
    def succeeded(self) -> bool:
        return self.failed_at is None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "plan_id": self.plan_id,
            "applied_count": self.applied_count,
            "total": self.total,
        }
        if self.failed_at is not None:
            result["failed_at"] = self.failed_at
            result["error"] = self.error.message if self.error else None
        return result


class Migrator:
    """Reconciles live databases with a desired schema.

    Example:
        >>> ledger = MigrationLedger(settings.ledger_path)
        >>> migrator = Migrator(ledger, settings)
        >>> await migrator.initialize()
        >>> result = await migrator.run(FileStateProvider("schema.yaml"), db, db)
        >>> result.succeeded
        True
    """

    def __init__(
        self,
        ledger: MigrationLedger,
        settings: Settings | None = None,
        planner: Planner | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the migrator.

        Args:
            ledger: Migration ledger
            settings: Configuration (loaded from env if not provided)
            planner: Planner (built from settings if not provided)
            retry_policy: Retry policy (built from settings if not provided)
            sleep: Sleep function used between retries
            clock: Returns the current time in Unix ms
        """
        self.settings = settings or Settings()
        self.ledger = ledger
        self._clock = clock or (lambda: int(time.time() * 1000))
        self.planner = planner or Planner(threshold=self.settings.redefinition_threshold, clock=self._clock)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.normalizer = Normalizer()
        self.comparator = Comparator()
        self._sleep = sleep

    async def initialize(self) -> None:
        await self.ledger.initialize()

    def diff(self, desired: SchemaDocument, live: SchemaDocument) -> ChangeSet:
        """Normalize both documents and compute their ChangeSet."""
        return self.comparator.diff(self.normalizer.normalize(desired), self.normalizer.normalize(live))

    def reconcile(self, desired: SchemaDocument, live: SchemaDocument) -> MigrationPlan:
        """Plan the statements turning live into desired.

        Raises:
            NormalizationError: If an expression cannot be canonicalized
            DiffAmbiguityError: If rename history is ambiguous
            PlannerInvariantError: If the changes cannot be ordered
        """
        return self.planner.plan(self.diff(desired, live))

    async def apply(
        self,
        plan: MigrationPlan,
        executor: StatementExecutor,
        target: str | None = None,
    ) -> ApplyResult:
        """Record a plan and execute its statements in order.

        Returns:
            ApplyResult; a semantic failure is reported through failed_at and
            error rather than raised

        Raises:
            LedgerBusyError: If the target already has a pending entry
            ConnectivityError: If retries are exhausted (the entry is marked failed)
            asyncio.CancelledError: If cancelled (the entry stays pending)
        """
        target = target or self.settings.target
        if plan.is_empty:
            logger.info(f"Plan {plan.id} is empty, nothing to apply")
            return ApplyResult(plan_id=plan.id, applied_count=0, total=0)

        entry = await self.ledger.record(plan, target)
        return await self._execute(entry, plan.up_statements, executor)

    async def _execute(
        self,
        entry: LedgerEntry,
        statements: tuple[str, ...] | list[str],
        executor: StatementExecutor,
    ) -> ApplyResult:
        applied = 0
        for index, statement in enumerate(statements):
            try:
                await call_with_retry(
                    lambda s=statement: executor.execute(s),
                    self.retry_policy,
                    description=f"statement {index} of {entry.id}",
                    sleep=self._sleep,
                )
            except asyncio.CancelledError:
                logger.warning(
                    f"Migration {entry.id} cancelled after {applied} statement(s), entry left pending"
                )
                raise
            except ConnectivityError as e:
                await self.ledger.mark_applied(entry.id, index, Outcome.FAILURE, error=e.message)
                raise
            except Exception as e:
                await self.ledger.mark_applied(entry.id, index, Outcome.FAILURE, error=str(e))
                error = PartialApplyError(
                    f"Statement {index} of migration {entry.id} failed: {e}",
                    statement=statement,
                    index=index,
                    applied_count=applied,
                )
                logger.error(error.message, extra={"statement": statement, "index": index})
                return ApplyResult(
                    plan_id=entry.id,
                    applied_count=applied,
                    total=len(statements),
                    failed_at=index,
                    error=error,
                )
            await self.ledger.mark_applied(entry.id, index, Outcome.SUCCESS)
            applied += 1

        return ApplyResult(plan_id=entry.id, applied_count=applied, total=len(statements))

    async def status(self, target: str | None = None) -> LedgerStatus:
        return await self.ledger.status(target or self.settings.target)

    async def validate(self, target: str | None = None) -> int:
        """Verify every stored checksum, for one target or the whole ledger.

        Raises:
            ChecksumMismatchError: On the first mismatching entry
        """
        return await self.ledger.validate(target)

    async def rollback(
        self,
        entry_id: str = "latest",
        executor: StatementExecutor | None = None,
        target: str | None = None,
    ) -> MigrationPlan:
        """Build (and optionally apply) the rollback of an applied migration.

        Args:
            entry_id: Ledger entry id, or "latest" for the newest applied entry
            executor: When given, the rollback is applied and recorded, and the
                original entry is marked rolled back
            target: Target for "latest" lookups

        Returns:
            Plan running the stored down statements

        Raises:
            MigrationNotFoundError: If the entry does not exist
            ChecksumMismatchError: If the stored statements were altered
            LedgerError: If the entry is not applied or has nothing to undo
            PartialApplyError: If applying the rollback failed
        """
        target = target or self.settings.target
        if entry_id == "latest":
            entry = await self.ledger.latest(target, EntryStatus.APPLIED)
            if entry is None:
                raise LedgerError(f"No applied migration to roll back for target '{target}'")
        else:
            entry = await self.ledger.get(entry_id)
        if entry.status != EntryStatus.APPLIED:
            raise LedgerError(
                f"Migration {entry.id} is {entry.status.value}, only applied migrations roll back",
                migration_id=entry.id,
            )
        self.ledger.verify_entry(entry)
        if not entry.down_statements:
            raise LedgerError(f"Migration {entry.id} has no down statements", migration_id=entry.id)

        created_at = self._clock()
        checksum = checksum_statements(entry.down_statements)
        plan = MigrationPlan(
            id=plan_id(created_at, checksum),
            checksum=checksum,
            down_checksum=entry.checksum,
            up_statements=tuple(entry.down_statements),
            down_statements=tuple(entry.up_statements),
            created_at=created_at,
            changes=(f"ROLLBACK {entry.id}",),
        )
        if executor is None:
            return plan

        result = await self.apply(plan, executor, target=entry.target)
        if result.error is not None:
            raise result.error
        await self.ledger.mark_rolled_back(entry.id)
        return plan

    async def _resolve_pending(self, target: str) -> None:
        status = await self.ledger.status(target)
        pending = status.pending
        if pending is None:
            return
        age_ms = self._clock() - pending.recorded_at
        stale_ms = self.settings.stale_pending_seconds * 1000
        if stale_ms <= 0 or age_ms < stale_ms:
            raise LedgerBusyError(target, pending.id)
        await self.ledger.supersede(
            pending.id,
            f"stale for {age_ms // 1000}s after {pending.statements_applied} statement(s)",
        )

    async def run(
        self,
        desired_provider: DesiredStateProvider,
        live_provider: LiveStateProvider,
        executor: StatementExecutor,
        target: str | None = None,
    ) -> ApplyResult | None:
        """Run one full reconciliation.

        Returns:
            ApplyResult, or None when the live schema already matches

        Raises:
            LedgerBusyError: If a pending entry exists that is not yet stale
            ConnectivityError: If introspection or execution exhausts retries
        """
        target = target or self.settings.target
        await self._resolve_pending(target)

        desired = desired_provider.load()
        live = await call_with_retry(
            live_provider.introspect,
            self.retry_policy,
            description="introspection",
            sleep=self._sleep,
        )
        plan = self.reconcile(desired, live)
        if plan.is_empty:
            logger.info(f"Target '{target}' is up to date")
            return None
        logger.info(f"Applying migration {plan.id} to '{target}'", extra={"changes": list(plan.changes)})
        return await self.apply(plan, executor, target=target)
