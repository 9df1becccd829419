"""
Dependency ordering of planned steps.

The planner turns each Change into one PlannedStep (a group of statements
with their inverses). Steps are then ordered with a stable topological sort
under these rules, where "a -> b" means a runs before b:

1. Container create/rename -> any step on a child of that container
2. Any step on a child of a container -> the container's drop
3. Endpoint table create/rename -> relation create/modify using it
4. Relation drop/modify -> drop or rename away of a table it used as an
   endpoint
5. Function/analyzer create/modify/rename -> steps referencing it
6. Drops of referencing entities -> the referenced function/analyzer's drop
7. A drop (or rename away) of a name -> a create (or rename onto) that name

Ties keep Change Set order, so equal inputs always give equal plans.

Invariants:
    - order_steps() output satisfies every rule above
    - Cycles raise PlannerInvariantError instead of being broken arbitrarily

How to change safely:
    - Add a rule to _must_precede and a test exercising it together
    - Never make the sort depend on set or dict iteration order
"""

from __future__ import annotations

import heapq
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from ..diff.changes import EntityKind
from ..errors import PlannerInvariantError

logger = logging.getLogger(__name__)

_FUNCTION_REF_RE = re.compile(r"fn::([A-Za-z_]\w*(?:::[A-Za-z_]\w*)*)")


class Action(Enum):
    """What a step does to its entity."""

    CREATE = "create"
    DROP = "drop"
    ALTER = "alter"
    RENAME = "rename"


@dataclass(frozen=True)
class PlannedStep:
    """A group of statements realizing one Change.

    Attributes:
        entity_path: Path of the changed entity
        kind: Entity kind
        action: What the step does
        name: Entity name after the step (current name for drops)
        container: Owning container for child entities
        statements: (up, inverse) statement pairs in execution order
        old_name: Name before a rename
        endpoints_after: Relation endpoints once the step has run
        endpoints_before: Relation endpoints before the step runs
        refs_after: Functions/analyzers referenced once the step has run
        refs_before: Functions/analyzers referenced before the step runs
    """

    entity_path: str
    kind: EntityKind
    action: Action
    name: str
    container: str | None = None
    statements: tuple[tuple[str, str], ...] = ()
    old_name: str | None = None
    endpoints_after: tuple[str, ...] = ()
    endpoints_before: tuple[str, ...] = ()
    refs_after: frozenset[str] = field(default_factory=frozenset)
    refs_before: frozenset[str] = field(default_factory=frozenset)

    @property
    def namespace(self) -> str:
        if self.kind.is_container:
            return "container"
        if self.kind.is_child:
            return f"{self.kind.value}@{self.container}"
        return self.kind.value

    @property
    def ref_key(self) -> str | None:
        """Key other steps use to reference this entity."""
        if self.kind in (EntityKind.FUNCTION, EntityKind.ANALYZER):
            return f"{self.kind.value}:{self.name}"
        return None

    def __str__(self) -> str:
        return f"{self.action.value} {self.entity_path}"


def references(kind: EntityKind, entity: Any) -> frozenset[str]:
    """Collect function/analyzer names an entity refers to.

    Returns:
        Keys like ``function:greet`` and ``analyzer:english``
    """
    if entity is None:
        return frozenset()
    texts: list[str] = []
    refs: set[str] = set()
    if kind == EntityKind.FIELD:
        texts += [entity.default_expr or "", entity.computed_expr or "", entity.permissions or ""]
        texts += list(entity.assertions)
    elif kind == EntityKind.INDEX:
        analyzer = getattr(entity.params, "analyzer", None)
        if analyzer:
            refs.add(f"analyzer:{analyzer}")
    elif kind == EntityKind.TRIGGER:
        texts += [entity.when_expr or ""] + list(entity.then_statements)
    elif kind.is_container:
        texts += [entity.permissions or "", getattr(entity, "view_query", None) or ""]
        for child_kind, attr in (
            (EntityKind.FIELD, "fields"),
            (EntityKind.INDEX, "indexes"),
            (EntityKind.TRIGGER, "triggers"),
        ):
            for child in getattr(entity, attr):
                refs |= references(child_kind, child)
    elif kind == EntityKind.FUNCTION:
        texts += [entity.body, entity.permissions or ""]
    elif kind == EntityKind.ANALYZER:
        if entity.function:
            refs.add(f"function:{entity.function}")
    elif kind == EntityKind.ACCESS:
        texts += [entity.signup or "", entity.signin or "", entity.authenticate or ""]
    elif kind == EntityKind.PARAM:
        texts += [entity.value, entity.permissions or ""]
    for text in texts:
        refs.update(f"function:{name}" for name in _FUNCTION_REF_RE.findall(text))
    if kind == EntityKind.FUNCTION:
        refs.discard(f"function:{entity.name}")
    return frozenset(refs)


def _creates(step: PlannedStep) -> bool:
    return step.action in (Action.CREATE, Action.RENAME)


def _must_precede(a: PlannedStep, b: PlannedStep) -> bool:
    """Whether step a has to run before step b."""
    # 1. container before its children
    if a.kind.is_container and _creates(a) and b.kind.is_child and b.container == a.name:
        return True
    # 2. children before their container's drop
    if b.kind.is_container and b.action == Action.DROP and a.kind.is_child and a.container == b.name:
        return True
    # 3. endpoints before relations
    if (
        a.kind.is_container
        and _creates(a)
        and b.kind.is_container
        and b.action != Action.DROP
        and a.name in b.endpoints_after
        and a is not b
    ):
        return True
    # 4. relations dropped (or moved off an endpoint) before the endpoint is dropped or renamed
    if a.kind.is_container and b.kind.is_container and a is not b:
        if b.action == Action.DROP and b.name in a.endpoints_before:
            return True
        if b.action == Action.RENAME and b.old_name in a.endpoints_before:
            return True
    # 5. referenced functions/analyzers before their users
    if a.ref_key and a.action != Action.DROP and b.action != Action.DROP and a.ref_key in b.refs_after:
        return True
    # 6. users dropped before the function/analyzer they reference
    if b.ref_key and b.action == Action.DROP and b.ref_key in a.refs_before and a is not b:
        if a.action == Action.DROP or a.ref_key != b.ref_key:
            return True
    # 7. free a name before reusing it
    if a.namespace == b.namespace and a is not b:
        freed = a.name if a.action == Action.DROP else a.old_name if a.action == Action.RENAME else None
        if freed is not None and _creates(b) and b.name == freed:
            return True
    return False


def dependency_edges(steps: list[PlannedStep]) -> list[tuple[int, int]]:
    """All (a, b) index pairs where steps[a] must run before steps[b]."""
    edges = []
    for i, a in enumerate(steps):
        for j, b in enumerate(steps):
            if i != j and _must_precede(a, b):
                edges.append((i, j))
    return edges


def order_steps(steps: list[PlannedStep]) -> list[PlannedStep]:
    """Stable topological sort of steps.

    Raises:
        PlannerInvariantError: If the dependency rules form a cycle
    """
    edges = dependency_edges(steps)
    successors: dict[int, list[int]] = {i: [] for i in range(len(steps))}
    indegree = [0] * len(steps)
    for a, b in edges:
        successors[a].append(b)
        indegree[b] += 1

    ready = [i for i in range(len(steps)) if indegree[i] == 0]
    heapq.heapify(ready)
    ordered: list[int] = []
    while ready:
        i = heapq.heappop(ready)
        ordered.append(i)
        for j in successors[i]:
            indegree[j] -= 1
            if indegree[j] == 0:
                heapq.heappush(ready, j)

    if len(ordered) != len(steps):
        done = set(ordered)
        stuck = [steps[i] for i in range(len(steps)) if i not in done]
        raise PlannerInvariantError(
            f"Dependency cycle between planned steps: {', '.join(str(s) for s in stuck)}",
            entity_path=stuck[0].entity_path,
        )
    return [steps[i] for i in ordered]


def verify_ordering(steps: Iterable[PlannedStep]) -> None:
    """Check that a step sequence satisfies every dependency rule.

    Raises:
        PlannerInvariantError: On the first violated rule
    """
    steps = list(steps)
    for a, b in dependency_edges(steps):
        if a > b:
            raise PlannerInvariantError(
                f"{steps[a]} must run before {steps[b]}",
                entity_path=steps[b].entity_path,
            )
