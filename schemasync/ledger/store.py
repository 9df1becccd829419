"""
SQLite migration ledger.

The ledger records every plan applied to a target database together with
the checksums of its up and down statements, how many statements were
confirmed, and its outcome. It is also the cross-run mutual exclusion
point: a target has at most one pending entry at any time.

Invariants:
    - At most one pending entry per target (unique partial index)
    - statements_applied only grows, one confirmed statement at a time
    - Entries are never deleted; stale pending entries are superseded
    - Stored checksums always match the stored statement texts

How to change safely:
    - Schema changes must keep existing ledger files readable
    - Use BEGIN IMMEDIATE for every read-then-write sequence

Table schema:
    _migrations:
        - seq INTEGER PRIMARY KEY AUTOINCREMENT (record order)
        - id TEXT UNIQUE (plan id)
        - target TEXT
        - checksum TEXT, down_checksum TEXT
        - up_json TEXT, down_json TEXT, changes_json TEXT (JSON lists)
        - status TEXT (pending, applied, failed, rolled_back)
        - created_at INTEGER (plan creation, Unix ms)
        - recorded_at INTEGER, applied_at INTEGER, rolled_back_at INTEGER
        - statements_applied INTEGER
        - error TEXT
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Sequence

from ..errors import ChecksumMismatchError, LedgerBusyError, LedgerError, MigrationNotFoundError
from .checksum import verify_statements

if TYPE_CHECKING:
    from ..plan.planner import MigrationPlan

logger = logging.getLogger(__name__)


class EntryStatus(Enum):
    """Lifecycle state of a ledger entry."""

    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class Outcome(Enum):
    """Result of executing one statement."""

    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class LedgerEntry:
    """One recorded migration.

    Attributes:
        id: Plan id
        target: Name of the live database the plan was applied to
        checksum: Checksum of up_statements
        down_checksum: Checksum of down_statements
        up_statements: Statements of the plan
        down_statements: Inverse statements
        status: Lifecycle state
        created_at: Plan creation time (Unix ms)
        recorded_at: Time the entry was recorded (Unix ms)
        statements_applied: Number of confirmed up statements
        applied_at: Completion time (Unix ms)
        rolled_back_at: Rollback time (Unix ms)
        error: Failure or supersede reason
        changes: Human-readable change descriptions
    """

    id: str
    target: str
    checksum: str
    down_checksum: str
    up_statements: list[str]
    down_statements: list[str]
    status: EntryStatus
    created_at: int
    recorded_at: int
    statements_applied: int = 0
    applied_at: int | None = None
    rolled_back_at: int | None = None
    error: str | None = None
    changes: list[str] = field(default_factory=list)

    @property
    def is_pending(self) -> bool:
        return self.status == EntryStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "target": self.target,
            "status": self.status.value,
            "checksum": self.checksum,
            "down_checksum": self.down_checksum,
            "statements": len(self.up_statements),
            "statements_applied": self.statements_applied,
            "created_at": self.created_at,
            "recorded_at": self.recorded_at,
            "applied_at": self.applied_at,
            "rolled_back_at": self.rolled_back_at,
            "error": self.error,
            "changes": list(self.changes),
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> LedgerEntry:
        return cls(
            id=row["id"],
            target=row["target"],
            checksum=row["checksum"],
            down_checksum=row["down_checksum"],
            up_statements=json.loads(row["up_json"]),
            down_statements=json.loads(row["down_json"]),
            status=EntryStatus(row["status"]),
            created_at=row["created_at"],
            recorded_at=row["recorded_at"],
            statements_applied=row["statements_applied"],
            applied_at=row["applied_at"],
            rolled_back_at=row["rolled_back_at"],
            error=row["error"],
            changes=json.loads(row["changes_json"]),
        )


@dataclass
class LedgerStatus:
    """Ledger view of one target.

    Attributes:
        target: Target name
        pending: The unresolved pending entry, if any
        history: All entries in record order
    """

    target: str
    pending: LedgerEntry | None = None
    history: list[LedgerEntry] = field(default_factory=list)

    @property
    def latest(self) -> LedgerEntry | None:
        return self.history[-1] if self.history else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "pending": self.pending.to_dict() if self.pending else None,
            "history": [e.to_dict() for e in self.history],
        }


class MigrationLedger:
    """SQLite store of applied migrations.

    Example:
        >>> ledger = MigrationLedger("/var/lib/schemasync/ledger.db")
        >>> await ledger.initialize()
        >>> entry = await ledger.record(plan, target="main")
        >>> await ledger.mark_applied(entry.id, 0, Outcome.SUCCESS)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """Initialize the ledger.

        Args:
            path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            clock: Returns the current time in Unix ms
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS _migrations (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                target TEXT NOT NULL,
                checksum TEXT NOT NULL,
                down_checksum TEXT NOT NULL,
                up_json TEXT NOT NULL DEFAULT '[]',
                down_json TEXT NOT NULL DEFAULT '[]',
                changes_json TEXT NOT NULL DEFAULT '[]',
                status TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                recorded_at INTEGER NOT NULL,
                applied_at INTEGER,
                rolled_back_at INTEGER,
                statements_applied INTEGER NOT NULL DEFAULT 0,
                error TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_migrations_target ON _migrations(target, seq);

            -- One unresolved run per target
            CREATE UNIQUE INDEX IF NOT EXISTS idx_migrations_pending
                ON _migrations(target) WHERE status = 'pending';

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the ledger file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
        logger.info(f"Initialized migration ledger: {self.path}")

    def _fetch(self, conn: sqlite3.Connection, entry_id: str) -> LedgerEntry:
        row = conn.execute("SELECT * FROM _migrations WHERE id = ?", (entry_id,)).fetchone()
        if row is None:
            raise MigrationNotFoundError(entry_id)
        return LedgerEntry.from_row(row)

    def _pending(self, conn: sqlite3.Connection, target: str) -> LedgerEntry | None:
        row = conn.execute(
            "SELECT * FROM _migrations WHERE target = ? AND status = ?",
            (target, EntryStatus.PENDING.value),
        ).fetchone()
        return LedgerEntry.from_row(row) if row is not None else None

    async def record(self, plan: MigrationPlan, target: str) -> LedgerEntry:
        """Record a plan as pending for a target.

        Args:
            plan: Plan about to be applied
            target: Target database name

        Returns:
            The new pending entry

        Raises:
            LedgerBusyError: If the target already has a pending entry
            LedgerError: If an entry with the same id exists
        """
        now = self._clock()
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    pending = self._pending(conn, target)
                    if pending is not None:
                        raise LedgerBusyError(target, pending.id)
                    conn.execute(
                        """
                        INSERT INTO _migrations (id, target, checksum, down_checksum, up_json,
                                                 down_json, changes_json, status, created_at,
                                                 recorded_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            plan.id,
                            target,
                            plan.checksum,
                            plan.down_checksum,
                            json.dumps(list(plan.up_statements)),
                            json.dumps(list(plan.down_statements)),
                            json.dumps(list(plan.changes)),
                            EntryStatus.PENDING.value,
                            plan.created_at,
                            now,
                        ),
                    )
                    entry = self._fetch(conn, plan.id)
                    conn.execute("COMMIT")
                except sqlite3.IntegrityError as e:
                    conn.execute("ROLLBACK")
                    raise LedgerError(f"Could not record migration {plan.id}: {e}", migration_id=plan.id) from e
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        logger.info(
            f"Recorded migration {plan.id}",
            extra={"target": target, "statements": len(plan.up_statements)},
        )
        return entry

    async def mark_applied(
        self,
        entry_id: str,
        statement_index: int,
        outcome: Outcome = Outcome.SUCCESS,
        error: str | None = None,
    ) -> LedgerEntry:
        """Record the outcome of one statement of a pending entry.

        A success must confirm the next unconfirmed statement; once every
        statement is confirmed the entry becomes applied. A failure marks
        the entry failed with the error text.

        Raises:
            MigrationNotFoundError: If the entry does not exist
            LedgerError: If the entry is not pending or the index is out of order
        """
        now = self._clock()
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    entry = self._fetch(conn, entry_id)
                    if not entry.is_pending:
                        raise LedgerError(
                            f"Migration {entry_id} is {entry.status.value}, not pending",
                            migration_id=entry_id,
                        )
                    if outcome == Outcome.FAILURE:
                        conn.execute(
                            "UPDATE _migrations SET status = ?, error = ? WHERE id = ?",
                            (EntryStatus.FAILED.value, error or f"statement {statement_index} failed", entry_id),
                        )
                    else:
                        if statement_index != entry.statements_applied:
                            raise LedgerError(
                                f"Migration {entry_id} expected statement {entry.statements_applied}, "
                                f"got {statement_index}",
                                migration_id=entry_id,
                            )
                        applied = statement_index + 1
                        done = applied >= len(entry.up_statements)
                        conn.execute(
                            """
                            UPDATE _migrations
                            SET statements_applied = ?, status = ?, applied_at = ?
                            WHERE id = ?
                            """,
                            (
                                applied,
                                EntryStatus.APPLIED.value if done else EntryStatus.PENDING.value,
                                now if done else None,
                                entry_id,
                            ),
                        )
                    entry = self._fetch(conn, entry_id)
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        if entry.status == EntryStatus.FAILED:
            logger.warning(f"Migration {entry_id} failed at statement {statement_index}: {entry.error}")
        elif entry.status == EntryStatus.APPLIED:
            logger.info(f"Migration {entry_id} applied ({entry.statements_applied} statement(s))")
        return entry

    async def get(self, entry_id: str) -> LedgerEntry:
        """Fetch one entry.

        Raises:
            MigrationNotFoundError: If no entry has this id
        """
        with self._get_connection() as conn:
            return self._fetch(conn, entry_id)

    async def entries(self, target: str | None = None) -> list[LedgerEntry]:
        """All entries in record order, optionally for one target."""
        with self._get_connection() as conn:
            if target is None:
                rows = conn.execute("SELECT * FROM _migrations ORDER BY seq").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM _migrations WHERE target = ? ORDER BY seq", (target,)
                ).fetchall()
            return [LedgerEntry.from_row(row) for row in rows]

    async def status(self, target: str) -> LedgerStatus:
        """Pending entry and history of a target."""
        history = await self.entries(target)
        pending = next((e for e in history if e.is_pending), None)
        return LedgerStatus(target=target, pending=pending, history=history)

    async def latest(self, target: str, status: EntryStatus | None = None) -> LedgerEntry | None:
        """Most recently recorded entry of a target, optionally with a given status."""
        for entry in reversed(await self.entries(target)):
            if status is None or entry.status == status:
                return entry
        return None

    async def supersede(self, entry_id: str, reason: str) -> LedgerEntry:
        """Resolve a stale pending entry by marking it failed.

        Raises:
            LedgerError: If the entry is not pending
        """
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    entry = self._fetch(conn, entry_id)
                    if not entry.is_pending:
                        raise LedgerError(
                            f"Only pending migrations can be superseded, {entry_id} is {entry.status.value}",
                            migration_id=entry_id,
                        )
                    conn.execute(
                        "UPDATE _migrations SET status = ?, error = ? WHERE id = ?",
                        (EntryStatus.FAILED.value, f"superseded: {reason}", entry_id),
                    )
                    entry = self._fetch(conn, entry_id)
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
        logger.warning(f"Superseded pending migration {entry_id}: {reason}")
        return entry

    async def mark_rolled_back(self, entry_id: str) -> LedgerEntry:
        """Mark an applied entry as rolled back.

        Raises:
            LedgerError: If the entry is not applied
        """
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    entry = self._fetch(conn, entry_id)
                    if entry.status != EntryStatus.APPLIED:
                        raise LedgerError(
                            f"Only applied migrations can be rolled back, {entry_id} is {entry.status.value}",
                            migration_id=entry_id,
                        )
                    conn.execute(
                        "UPDATE _migrations SET status = ?, rolled_back_at = ? WHERE id = ?",
                        (EntryStatus.ROLLED_BACK.value, self._clock(), entry_id),
                    )
                    entry = self._fetch(conn, entry_id)
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
        logger.info(f"Migration {entry_id} rolled back")
        return entry

    @staticmethod
    def verify_entry(entry: LedgerEntry) -> None:
        """Recompute both checksums of one entry.

        Raises:
            ChecksumMismatchError: If either stored checksum does not match
        """
        for statements, expected in (
            (entry.up_statements, entry.checksum),
            (entry.down_statements, entry.down_checksum),
        ):
            if not verify_statements(statements, expected):
                raise ChecksumMismatchError(
                    f"Stored statements of migration {entry.id} do not match checksum {expected}",
                    migration_id=entry.id,
                    expected=expected,
                )

    async def validate(self, target: str | None = None) -> int:
        """Recompute every stored checksum.

        Returns:
            Number of entries validated

        Raises:
            ChecksumMismatchError: On the first mismatching entry
        """
        entries = await self.entries(target)
        for entry in entries:
            self.verify_entry(entry)
        logger.debug(f"Validated {len(entries)} ledger entries")
        return len(entries)

    async def verify_regenerated(self, entry_id: str, statements: Sequence[str]) -> None:
        """Check regenerated up statements against an entry's stored checksum.

        Raises:
            ChecksumMismatchError: If the statements differ from the recorded ones
        """
        entry = await self.get(entry_id)
        if not verify_statements(statements, entry.checksum):
            raise ChecksumMismatchError(
                f"Regenerated statements for migration {entry_id} differ from the recorded plan",
                migration_id=entry_id,
                expected=entry.checksum,
            )
