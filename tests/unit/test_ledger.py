"""
Unit tests for the migration ledger.

Tests cover:
- Checksum helpers
- Recording and the one-pending-entry rule
- Statement confirmation and status transitions
- Supersede and rollback bookkeeping
- Checksum validation and tamper detection
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from schemasync.errors import ChecksumMismatchError, LedgerBusyError, LedgerError, MigrationNotFoundError
from schemasync.ledger.checksum import (
    calculate_checksum,
    checksum_statements,
    parse_checksum,
    verify_checksum,
    verify_statements,
)
from schemasync.ledger.store import EntryStatus, MigrationLedger, Outcome
from schemasync.plan.planner import MigrationPlan, plan_id

UP = (
    "DEFINE TABLE user TYPE NORMAL SCHEMAFULL;",
    "DEFINE FIELD email ON TABLE user TYPE string;",
)
DOWN = (
    "REMOVE FIELD email ON TABLE user;",
    "REMOVE TABLE user;",
)


def make_plan(up=UP, down=DOWN, created_at=1767225600000):
    checksum = checksum_statements(up)
    return MigrationPlan(
        id=plan_id(created_at, checksum),
        checksum=checksum,
        down_checksum=checksum_statements(down),
        up_statements=tuple(up),
        down_statements=tuple(down),
        created_at=created_at,
        changes=("ADD table:user",),
    )


class TestChecksum:
    """Tests for checksum helpers."""

    def test_prefixed_sha256(self):
        """Checksums carry their algorithm."""
        value = calculate_checksum("DEFINE TABLE user;")
        algorithm, digest = parse_checksum(value)
        assert algorithm == "sha256"
        assert len(digest) == 64

    def test_statements_encoded_as_json_array(self):
        """Statement lists are checksummed over their JSON array encoding."""
        assert checksum_statements(["a;", "b;"]) == calculate_checksum('["a;","b;"]')
        assert checksum_statements(["a;", "b;"]) != checksum_statements(["b;", "a;"])

    def test_statement_boundaries_are_unambiguous(self):
        """Embedded newlines cannot pass for a statement boundary."""
        assert checksum_statements(["a;\nb;"]) != checksum_statements(["a;", "b;"])
        assert checksum_statements([]) != checksum_statements([""])

    def test_verify_statements_accepts_newline_join(self):
        """Checksums recorded over the older newline join still verify."""
        legacy = calculate_checksum("a;\nb;")
        assert verify_statements(["a;", "b;"], legacy)
        assert verify_statements(["a;", "b;"], checksum_statements(["a;", "b;"]))
        assert not verify_statements(["b;", "a;"], legacy)

    def test_verify(self):
        """verify_checksum accepts matching content only."""
        value = calculate_checksum("content")
        assert verify_checksum("content", value)
        assert not verify_checksum("other", value)

    def test_unprefixed_treated_as_sha256(self):
        """Bare digests are read as sha256."""
        digest = calculate_checksum("content").split(":", 1)[1]
        assert parse_checksum(digest) == ("sha256", digest)
        assert verify_checksum("content", digest)


class TestMigrationLedger:
    """Tests for MigrationLedger."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def clock(self):
        """Controllable clock in Unix ms."""

        class Clock:
            now = 1767225600000

            def __call__(self):
                return self.now

        return Clock()

    @pytest.fixture
    def ledger(self, data_dir, clock):
        """Create ledger in the temporary directory."""
        return MigrationLedger(str(Path(data_dir) / "ledger.db"), wal_mode=False, clock=clock)

    @pytest.mark.asyncio
    async def test_initialize_idempotent(self, ledger):
        """initialize() can run repeatedly."""
        await ledger.initialize()
        await ledger.initialize()
        assert await ledger.entries() == []

    @pytest.mark.asyncio
    async def test_record(self, ledger, clock):
        """A recorded plan is pending with nothing confirmed."""
        await ledger.initialize()
        plan = make_plan()

        entry = await ledger.record(plan, target="main")

        assert entry.id == plan.id
        assert entry.target == "main"
        assert entry.status == EntryStatus.PENDING
        assert entry.statements_applied == 0
        assert entry.up_statements == list(UP)
        assert entry.down_statements == list(DOWN)
        assert entry.checksum == plan.checksum
        assert entry.recorded_at == clock.now
        assert entry.changes == ["ADD table:user"]

    @pytest.mark.asyncio
    async def test_one_pending_per_target(self, ledger):
        """A second record for a busy target is rejected."""
        await ledger.initialize()
        first = await ledger.record(make_plan(created_at=1), target="main")

        with pytest.raises(LedgerBusyError) as exc_info:
            await ledger.record(make_plan(created_at=2), target="main")
        assert exc_info.value.code == "LEDGER_BUSY"
        assert exc_info.value.target == "main"
        assert first.id in exc_info.value.message

        # Other targets are independent
        other = await ledger.record(make_plan(created_at=3), target="replica")
        assert other.is_pending

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, ledger):
        """Plan ids are unique across the ledger."""
        await ledger.initialize()
        plan = make_plan()
        await ledger.record(plan, target="a")

        with pytest.raises(LedgerError, match="Could not record"):
            await ledger.record(plan, target="b")

    @pytest.mark.asyncio
    async def test_mark_applied_in_order(self, ledger, clock):
        """Statements are confirmed one at a time; the last one completes the entry."""
        await ledger.initialize()
        entry = await ledger.record(make_plan(), target="main")

        entry = await ledger.mark_applied(entry.id, 0, Outcome.SUCCESS)
        assert entry.statements_applied == 1
        assert entry.status == EntryStatus.PENDING
        assert entry.applied_at is None

        clock.now += 50
        entry = await ledger.mark_applied(entry.id, 1)
        assert entry.statements_applied == 2
        assert entry.status == EntryStatus.APPLIED
        assert entry.applied_at == clock.now

    @pytest.mark.asyncio
    async def test_mark_applied_out_of_order(self, ledger):
        """Skipping a statement is rejected and changes nothing."""
        await ledger.initialize()
        entry = await ledger.record(make_plan(), target="main")

        with pytest.raises(LedgerError, match="expected statement 0, got 1"):
            await ledger.mark_applied(entry.id, 1)

        assert (await ledger.get(entry.id)).statements_applied == 0

    @pytest.mark.asyncio
    async def test_mark_failure(self, ledger):
        """A failure marks the entry failed and frees the target."""
        await ledger.initialize()
        entry = await ledger.record(make_plan(), target="main")
        await ledger.mark_applied(entry.id, 0)

        entry = await ledger.mark_applied(entry.id, 1, Outcome.FAILURE, error="field exists")

        assert entry.status == EntryStatus.FAILED
        assert entry.statements_applied == 1
        assert entry.error == "field exists"
        assert (await ledger.status("main")).pending is None

        with pytest.raises(LedgerError, match="not pending"):
            await ledger.mark_applied(entry.id, 1)

    @pytest.mark.asyncio
    async def test_get_missing(self, ledger):
        """Unknown ids raise MigrationNotFoundError."""
        await ledger.initialize()
        with pytest.raises(MigrationNotFoundError) as exc_info:
            await ledger.get("nope")
        assert exc_info.value.code == "MIGRATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_status_and_latest(self, ledger):
        """Status lists history in record order and exposes the pending entry."""
        await ledger.initialize()
        first = await ledger.record(make_plan(created_at=1), target="main")
        await ledger.mark_applied(first.id, 0)
        await ledger.mark_applied(first.id, 1)
        second = await ledger.record(make_plan(created_at=2), target="main")

        status = await ledger.status("main")

        assert [e.id for e in status.history] == [first.id, second.id]
        assert status.pending.id == second.id
        assert status.latest.id == second.id
        assert (await ledger.latest("main", EntryStatus.APPLIED)).id == first.id
        assert await ledger.latest("other") is None
        assert status.to_dict()["pending"]["id"] == second.id

    @pytest.mark.asyncio
    async def test_supersede(self, ledger):
        """Superseding resolves a pending entry as failed with a reason."""
        await ledger.initialize()
        entry = await ledger.record(make_plan(created_at=1), target="main")

        entry = await ledger.supersede(entry.id, "stale")

        assert entry.status == EntryStatus.FAILED
        assert entry.error == "superseded: stale"
        assert (await ledger.record(make_plan(created_at=2), target="main")).is_pending

        with pytest.raises(LedgerError, match="Only pending"):
            await ledger.supersede(entry.id, "again")

    @pytest.mark.asyncio
    async def test_mark_rolled_back(self, ledger, clock):
        """Only applied entries can be rolled back."""
        await ledger.initialize()
        entry = await ledger.record(make_plan(), target="main")

        with pytest.raises(LedgerError, match="Only applied"):
            await ledger.mark_rolled_back(entry.id)

        await ledger.mark_applied(entry.id, 0)
        await ledger.mark_applied(entry.id, 1)
        entry = await ledger.mark_rolled_back(entry.id)

        assert entry.status == EntryStatus.ROLLED_BACK
        assert entry.rolled_back_at == clock.now

    @pytest.mark.asyncio
    async def test_validate(self, ledger):
        """Untouched entries validate."""
        await ledger.initialize()
        await ledger.record(make_plan(created_at=1), target="a")
        await ledger.record(make_plan(created_at=2), target="b")

        assert await ledger.validate() == 2
        assert await ledger.validate("a") == 1

    @pytest.mark.asyncio
    async def test_validate_detects_tampering(self, ledger):
        """Editing stored statements is caught by validation."""
        await ledger.initialize()
        entry = await ledger.record(make_plan(), target="main")

        conn = sqlite3.connect(str(ledger.path))
        conn.execute(
            "UPDATE _migrations SET up_json = ? WHERE id = ?",
            ('["REMOVE TABLE user;"]', entry.id),
        )
        conn.commit()
        conn.close()

        with pytest.raises(ChecksumMismatchError) as exc_info:
            await ledger.validate()
        assert exc_info.value.migration_id == entry.id
        assert exc_info.value.expected == entry.checksum

    @pytest.mark.asyncio
    async def test_verify_regenerated(self, ledger):
        """Regenerated statements must match the recorded checksum."""
        await ledger.initialize()
        entry = await ledger.record(make_plan(), target="main")

        await ledger.verify_regenerated(entry.id, list(UP))
        with pytest.raises(ChecksumMismatchError):
            await ledger.verify_regenerated(entry.id, list(reversed(UP)))

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, data_dir):
        """A new ledger object sees earlier records."""
        path = str(Path(data_dir) / "ledger.db")
        first = MigrationLedger(path, wal_mode=False)
        await first.initialize()
        entry = await first.record(make_plan(), target="main")

        second = MigrationLedger(path, wal_mode=False)
        await second.initialize()
        assert (await second.status("main")).pending.id == entry.id
