"""
Change Set types.

A ChangeSet is the ordered list of entity-level differences between a
desired and a live document. It is produced by the comparator and consumed
by the planner.

Invariants:
    - A RENAME replaces the REMOVE+ADD pair it stands for; both never appear
    - Changes are ordered by entity kind (EntityKind order), then by
      declaration order within the kind
    - to_dict() of two ChangeSets built from equal inputs is identical

How to change safely:
    - Append new EntityKind members at the position they must sort in
    - Keep to_dict() free of timestamps and object ids
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Iterator

from ..schema.document import SchemaDocument


class EntityKind(Enum):
    """Kinds of schema entities, in canonical change order."""

    TABLE = "table"
    RELATION = "relation"
    FIELD = "field"
    INDEX = "index"
    TRIGGER = "trigger"
    ANALYZER = "analyzer"
    FUNCTION = "function"
    ACCESS = "access"
    PARAM = "param"
    SEQUENCE = "sequence"
    USER = "user"

    @property
    def order(self) -> int:
        """Position of this kind in the canonical change order."""
        return list(EntityKind).index(self)

    @property
    def is_container(self) -> bool:
        return self in (EntityKind.TABLE, EntityKind.RELATION)

    @property
    def is_child(self) -> bool:
        return self in (EntityKind.FIELD, EntityKind.INDEX, EntityKind.TRIGGER)


class ChangeKind(Enum):
    """Types of entity changes."""

    ADD = auto()
    REMOVE = auto()
    MODIFY = auto()
    RENAME = auto()

    @property
    def is_destructive(self) -> bool:
        """Whether applying the change can lose data."""
        return self == ChangeKind.REMOVE


def plain(value: Any) -> Any:
    """Convert a property value into JSON-compatible data."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (tuple, list)):
        return [plain(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


@dataclass(frozen=True)
class PropertyDiff:
    """One differing property of a modified entity.

    Attributes:
        name: Property name (e.g. "type", "assertions")
        before: Live value
        after: Desired value
    """

    name: str
    before: Any
    after: Any

    def to_dict(self) -> dict[str, Any]:
        return {"property": self.name, "before": plain(self.before), "after": plain(self.after)}


@dataclass(frozen=True)
class Change:
    """A single entity-level change.

    Attributes:
        entity_kind: What kind of entity changed
        change_kind: ADD, REMOVE, MODIFY or RENAME
        entity_path: Path to the entity (e.g. "table:user.field:email")
        name: Current name (desired name, or live name for REMOVE)
        before: Live entity snapshot (None for ADD)
        after: Desired entity snapshot (None for REMOVE)
        field_diffs: Itemized property differences
        container: Owning table/relation name for child entities
        container_kind: Kind of the owning container
        old_name: Previous name (RENAME only)
    """

    entity_kind: EntityKind
    change_kind: ChangeKind
    entity_path: str
    name: str
    before: Any = None
    after: Any = None
    field_diffs: tuple[PropertyDiff, ...] = ()
    container: str | None = None
    container_kind: EntityKind | None = None
    old_name: str | None = None

    def __post_init__(self) -> None:
        if self.change_kind == ChangeKind.ADD and self.after is None:
            raise ValueError(f"ADD {self.entity_path} requires an 'after' snapshot")
        if self.change_kind == ChangeKind.REMOVE and self.before is None:
            raise ValueError(f"REMOVE {self.entity_path} requires a 'before' snapshot")
        if self.change_kind == ChangeKind.RENAME and not self.old_name:
            raise ValueError(f"RENAME {self.entity_path} requires old_name")

    @property
    def changed_properties(self) -> tuple[str, ...]:
        return tuple(d.name for d in self.field_diffs)

    def __str__(self) -> str:
        text = f"{self.change_kind.name} {self.entity_path}"
        if self.old_name:
            text += f" (was {self.old_name})"
        if self.field_diffs:
            text += f" [{', '.join(self.changed_properties)}]"
        return text

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "kind": self.entity_kind.value,
            "change": self.change_kind.name,
            "path": self.entity_path,
        }
        if self.old_name:
            result["old_name"] = self.old_name
        if self.field_diffs:
            result["diffs"] = [d.to_dict() for d in self.field_diffs]
        if self.before is not None:
            result["before"] = plain(self.before)
        if self.after is not None:
            result["after"] = plain(self.after)
        return result


@dataclass(frozen=True)
class ChangeSet:
    """Ordered differences between a desired and a live document.

    Attributes:
        changes: Changes in canonical order
        desired: Normalized desired document the changes were computed from
        live: Normalized live document the changes were computed from
    """

    changes: tuple[Change, ...]
    desired: SchemaDocument = field(default_factory=SchemaDocument)
    live: SchemaDocument = field(default_factory=SchemaDocument)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self) -> Iterator[Change]:
        return iter(self.changes)

    def by_kind(self, kind: EntityKind) -> list[Change]:
        return [c for c in self.changes if c.entity_kind == kind]

    def summary(self) -> dict[str, int]:
        """Count changes per change kind."""
        counts = {kind.name.lower(): 0 for kind in ChangeKind}
        for change in self.changes:
            counts[change.change_kind.name.lower()] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {"changes": [c.to_dict() for c in self.changes], "summary": self.summary()}
