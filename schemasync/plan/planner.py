"""
Migration planner.

Turns a ChangeSet into an ordered MigrationPlan of dialect statements with
exact inverses.

Statement policy for a MODIFY (and for the structural part of a RENAME):

    distinct ALTER clauses < threshold and every property alterable in place
        -> one targeted ALTER per changed clause
    otherwise
        -> one DEFINE ... OVERWRITE redefinition

The threshold is a single policy constant for every entity kind.

A kept relation whose endpoint table is renamed, and a user moving to a
different level, are planned as a drop followed by a fresh definition.

Invariants:
    - down_statements are the inverses of up_statements in reverse order
    - The checksum depends only on the up statement texts
    - Equal ChangeSets give equal statements and checksums

How to change safely:
    - New statement shapes must come with an inverse
    - Keep ordering rules in ordering.py, not here
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from ..diff.changes import Change, ChangeKind, ChangeSet, EntityKind, PropertyDiff
from ..errors import PlannerInvariantError
from ..ledger.checksum import checksum_statements
from ..surql.render import ALTER_CLAUSES, alter, define, remove, rename
from .ordering import Action, PlannedStep, order_steps, references, verify_ordering

logger = logging.getLogger(__name__)

REDEFINITION_THRESHOLD = 4

_CHILDREN = (
    (EntityKind.FIELD, "fields"),
    (EntityKind.INDEX, "indexes"),
    (EntityKind.TRIGGER, "triggers"),
)

_ACTIONS = {
    ChangeKind.ADD: Action.CREATE,
    ChangeKind.REMOVE: Action.DROP,
    ChangeKind.MODIFY: Action.ALTER,
    ChangeKind.RENAME: Action.RENAME,
}


@dataclass(frozen=True)
class MigrationPlan:
    """Ordered statements realizing a ChangeSet.

    Attributes:
        id: Unique plan id (creation time plus checksum prefix)
        checksum: Checksum of the up statements
        down_checksum: Checksum of the down statements
        up_statements: Statements to apply, in order
        down_statements: Statements undoing up_statements, in order
        created_at: Creation time (Unix ms)
        changes: Human-readable change descriptions
    """

    id: str
    checksum: str
    down_checksum: str
    up_statements: tuple[str, ...] = ()
    down_statements: tuple[str, ...] = ()
    created_at: int = 0
    changes: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.up_statements

    def __len__(self) -> int:
        return len(self.up_statements)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "checksum": self.checksum,
            "down_checksum": self.down_checksum,
            "up_statements": list(self.up_statements),
            "down_statements": list(self.down_statements),
            "created_at": self.created_at,
            "changes": list(self.changes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationPlan:
        return cls(
            id=data["id"],
            checksum=data["checksum"],
            down_checksum=data["down_checksum"],
            up_statements=tuple(data.get("up_statements", ())),
            down_statements=tuple(data.get("down_statements", ())),
            created_at=data.get("created_at", 0),
            changes=tuple(data.get("changes", ())),
        )


def plan_id(created_at: int, checksum: str) -> str:
    """Build a sortable plan id like ``20260101120000123-3f2a9c1b7d0e``."""
    stamp = time.strftime("%Y%m%d%H%M%S", time.gmtime(created_at // 1000))
    return f"{stamp}{created_at % 1000:03d}-{checksum.split(':', 1)[-1][:12]}"


def _endpoints(entity: Any) -> tuple[str, ...]:
    return tuple(getattr(entity, "endpoints", ())) if entity is not None else ()


def _level(entity: Any) -> Any:
    return getattr(entity, "level", None)


def _moves_level(change: Change) -> bool:
    """Whether a user changes level, which makes it a different user."""
    return (
        change.entity_kind == EntityKind.USER
        and change.before is not None
        and change.after is not None
        and change.before.level != change.after.level
    )


def _recreated_relations(changes: ChangeSet) -> set[str]:
    """Names of kept relations whose live endpoint tables are renamed.

    Renaming an endpoint table moves its name away while the relation still
    points at it, so such relations are dropped before the rename and defined
    again afterwards.
    """
    renamed = {
        c.old_name for c in changes if c.entity_kind.is_container and c.change_kind == ChangeKind.RENAME
    }
    return {
        c.name
        for c in changes
        if c.entity_kind.is_container
        and c.change_kind in (ChangeKind.MODIFY, ChangeKind.RENAME)
        and renamed.intersection(_endpoints(c.before))
    }


class Planner:
    """Builds MigrationPlans from ChangeSets.

    Example:
        >>> plan = Planner(threshold=4).plan(changes)
        >>> plan.up_statements
        ('DEFINE FIELD name ON TABLE user TYPE string;',)
    """

    def __init__(
        self,
        threshold: int = REDEFINITION_THRESHOLD,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if threshold < 1:
            raise ValueError("redefinition threshold must be at least 1")
        self.threshold = threshold
        self._clock = clock or (lambda: int(time.time() * 1000))

    def plan(self, changes: ChangeSet) -> MigrationPlan:
        """Plan the statements for a ChangeSet.

        Raises:
            PlannerInvariantError: On a dependency cycle or dangling relation
                endpoint
        """
        self._check_endpoints(changes)
        recreated = _recreated_relations(changes)
        steps: list[PlannedStep] = []
        for change in changes:
            if change.entity_kind.is_child and change.container in recreated:
                continue
            if (change.entity_kind.is_container and change.name in recreated) or _moves_level(change):
                steps.extend(self._recreate(change))
            else:
                steps.append(self._step(change))
        ordered = order_steps([s for s in steps if s.statements])
        verify_ordering(ordered)

        up = tuple(stmt for step in ordered for stmt, _ in step.statements)
        down = tuple(inverse for step in reversed(ordered) for _, inverse in reversed(step.statements))
        checksum = checksum_statements(up)
        created_at = self._clock()
        plan = MigrationPlan(
            id=plan_id(created_at, checksum),
            checksum=checksum,
            down_checksum=checksum_statements(down),
            up_statements=up,
            down_statements=down,
            created_at=created_at,
            changes=tuple(str(c) for c in changes),
        )
        if up:
            logger.info(
                f"Planned {len(up)} statement(s) for {len(changes)} change(s)",
                extra={"plan_id": plan.id, "checksum": plan.checksum},
            )
        return plan

    def _check_endpoints(self, changes: ChangeSet) -> None:
        known = changes.desired.container_names() | changes.live.container_names()
        for change in changes:
            if not change.entity_kind.is_container or change.after is None:
                continue
            for endpoint in _endpoints(change.after):
                if endpoint not in known:
                    raise PlannerInvariantError(
                        f"Relation '{change.name}' references table '{endpoint}' "
                        f"which exists in neither schema",
                        entity_path=change.entity_path,
                    )

    def _step(self, change: Change) -> PlannedStep:
        kind = change.entity_kind
        if change.change_kind == ChangeKind.ADD:
            statements = self._create(kind, change.after, change.container)
        elif change.change_kind == ChangeKind.REMOVE:
            statements = self._drop(kind, change.before, change.container)
        elif change.change_kind == ChangeKind.MODIFY:
            statements = self._modify(kind, change.before, change.after, change.field_diffs, change.container)
        else:
            before = dataclasses.replace(change.before, name=change.name, rename_history=())
            statements = [
                (
                    rename(kind, change.old_name, change.name, change.container, _level(change.before)),
                    rename(kind, change.name, change.old_name, change.container, _level(change.before)),
                )
            ]
            statements += self._modify(kind, before, change.after, change.field_diffs, change.container)

        return PlannedStep(
            entity_path=change.entity_path,
            kind=kind,
            action=_ACTIONS[change.change_kind],
            name=change.name,
            container=change.container,
            statements=tuple(statements),
            old_name=change.old_name,
            endpoints_after=_endpoints(change.after),
            endpoints_before=_endpoints(change.before),
            refs_after=references(kind, change.after),
            refs_before=references(kind, change.before),
        )

    def _recreate(self, change: Change) -> list[PlannedStep]:
        """Drop an entity (with its children) and define it again from the desired state."""
        kind, before, after = change.entity_kind, change.before, change.after
        logger.debug(f"Recreating {kind.value} '{change.name}'")
        return [
            PlannedStep(
                entity_path=change.entity_path,
                kind=kind,
                action=Action.DROP,
                name=before.name,
                statements=tuple(self._drop(kind, before, None)),
                endpoints_before=_endpoints(before),
                refs_before=references(kind, before),
            ),
            PlannedStep(
                entity_path=change.entity_path,
                kind=kind,
                action=Action.CREATE,
                name=after.name,
                statements=tuple(self._create(kind, after, None)),
                endpoints_after=_endpoints(after),
                refs_after=references(kind, after),
            ),
        ]

    def _create(self, kind: EntityKind, entity: Any, container: str | None) -> list[tuple[str, str]]:
        statements = [(define(kind, entity, container), remove(kind, entity.name, container, _level(entity)))]
        if kind.is_container:
            for child_kind, attr in _CHILDREN:
                for child in getattr(entity, attr):
                    statements.append(
                        (define(child_kind, child, entity.name), remove(child_kind, child.name, entity.name))
                    )
        return statements

    def _drop(self, kind: EntityKind, entity: Any, container: str | None) -> list[tuple[str, str]]:
        statements = []
        if kind.is_container:
            for child_kind, attr in reversed(_CHILDREN):
                for child in getattr(entity, attr):
                    statements.append(
                        (remove(child_kind, child.name, entity.name), define(child_kind, child, entity.name))
                    )
        statements.append((remove(kind, entity.name, container, _level(entity)), define(kind, entity, container)))
        return statements

    def _modify(
        self,
        kind: EntityKind,
        before: Any,
        after: Any,
        diffs: tuple[PropertyDiff, ...],
        container: str | None,
    ) -> list[tuple[str, str]]:
        if not diffs:
            return []
        alterable = ALTER_CLAUSES[kind]
        properties = [d.name for d in diffs]
        clauses: list[str] = []
        for prop in properties:
            clause = alterable.get(prop)
            if clause is None:
                clauses = []
                break
            if clause not in clauses:
                clauses.append(clause)
        # Properties sharing one clause count once
        if not clauses or len(clauses) >= self.threshold:
            logger.debug(f"Redefining {kind.value} '{after.name}' ({', '.join(properties)})")
            return [(define(kind, after, container, overwrite=True), define(kind, before, container, overwrite=True))]
        return [(alter(kind, after, clause, container), alter(kind, before, clause, container)) for clause in clauses]


def plan(changes: ChangeSet, threshold: int = REDEFINITION_THRESHOLD) -> MigrationPlan:
    """Plan a ChangeSet with a default Planner."""
    return Planner(threshold=threshold).plan(changes)
