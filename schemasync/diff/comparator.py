"""
Schema comparison (diff engine).

Computes the ChangeSet that turns a live document into a desired one:

- Name-keyed set difference per entity kind: only-desired entities are
  candidate ADDs, only-live entities are candidate REMOVEs, entities on both
  sides are compared property by property (MODIFY)
- A candidate ADD whose rename_history names a candidate REMOVE collapses
  into one RENAME. History is scanned oldest first; the earliest-declared
  match wins. Two ADDs claiming the same REMOVE raise DiffAmbiguityError
- Children of a matched or renamed container are compared against the live
  container; children of added or removed containers travel with the
  container snapshot

Invariants:
    - diff(X, X) is empty for every document X
    - Output order is canonical (EntityKind order, then declaration order)
    - Renames are never inferred from similarity

How to change safely:
    - Add new properties to PROPERTY_GETTERS and to the renderer together
    - Never iterate over sets or dicts built from unordered sources
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from ..errors import DiffAmbiguityError
from ..schema.document import SchemaDocument
from .changes import Change, ChangeKind, ChangeSet, EntityKind, PropertyDiff

logger = logging.getLogger(__name__)

Getter = Callable[[Any], Any]


def _enum(attr: str) -> Getter:
    return lambda e: getattr(e, attr).value


def _attr(attr: str) -> Getter:
    return lambda e: getattr(e, attr)


PROPERTY_GETTERS: dict[EntityKind, tuple[tuple[str, Getter], ...]] = {
    EntityKind.TABLE: (
        ("schema_mode", _enum("schema_mode")),
        ("kind", _enum("kind")),
        ("endpoints", _attr("endpoints")),
        ("view_query", _attr("view_query")),
        ("retention_policy", _attr("retention_policy")),
        ("permissions", _attr("permissions")),
        ("comment", _attr("comment")),
    ),
    EntityKind.RELATION: (
        ("from_table", _attr("from_table")),
        ("to_table", _attr("to_table")),
        ("enforced", _attr("enforced")),
        ("schema_mode", _enum("schema_mode")),
        ("permissions", _attr("permissions")),
        ("comment", _attr("comment")),
    ),
    EntityKind.FIELD: (
        ("type", _attr("effective_type")),
        ("readonly", _attr("readonly")),
        ("default", _attr("default_expr")),
        ("computed", _attr("computed_expr")),
        ("assertions", _attr("assertions")),
        ("permissions", _attr("permissions")),
        ("comment", _attr("comment")),
    ),
    EntityKind.INDEX: (
        ("columns", _attr("columns")),
        ("kind", _enum("kind")),
        ("params", lambda i: i.params.to_dict() if i.params is not None else None),
        ("comment", _attr("comment")),
    ),
    EntityKind.TRIGGER: (
        ("operation", _enum("operation")),
        ("when", _attr("when_expr")),
        ("then", _attr("then_statements")),
        ("comment", _attr("comment")),
    ),
    EntityKind.ANALYZER: (
        ("function", _attr("function")),
        ("tokenizers", _attr("tokenizers")),
        ("filters", _attr("filters")),
        ("comment", _attr("comment")),
    ),
    EntityKind.FUNCTION: (
        ("params", lambda f: tuple((p.name, p.type_signature) for p in f.params)),
        ("body", _attr("body")),
        ("return_type", _attr("return_type")),
        ("permissions", _attr("permissions")),
        ("comment", _attr("comment")),
    ),
    EntityKind.ACCESS: (
        ("access_type", _enum("access_type")),
        ("signup", _attr("signup")),
        ("signin", _attr("signin")),
        ("authenticate", _attr("authenticate")),
        ("session_duration", _attr("session_duration")),
        ("token_duration", _attr("token_duration")),
        ("comment", _attr("comment")),
    ),
    EntityKind.PARAM: (
        ("value", _attr("value")),
        ("permissions", _attr("permissions")),
        ("comment", _attr("comment")),
    ),
    EntityKind.SEQUENCE: (
        ("start", _attr("start")),
        ("batch", _attr("batch")),
        ("timeout", _attr("timeout")),
        ("comment", _attr("comment")),
    ),
    EntityKind.USER: (
        ("level", _enum("level")),
        ("roles", _attr("roles")),
        ("passhash", _attr("passhash")),
        ("session_duration", _attr("session_duration")),
        ("token_duration", _attr("token_duration")),
        ("comment", _attr("comment")),
    ),
}


def property_diffs(kind: EntityKind, before: Any, after: Any) -> tuple[PropertyDiff, ...]:
    """Compare two entities of the same kind property by property.

    Args:
        kind: Entity kind of both snapshots
        before: Live entity
        after: Desired entity

    Returns:
        Differing properties in declaration order
    """
    diffs = []
    for name, getter in PROPERTY_GETTERS[kind]:
        old, new = getter(before), getter(after)
        if old != new:
            diffs.append(PropertyDiff(name=name, before=old, after=new))
    return tuple(diffs)


def entity_path(kind: EntityKind, name: str, container: str | None = None,
                container_kind: EntityKind | None = None) -> str:
    """Build the path of an entity (e.g. ``table:user.field:email``)."""
    if container is None:
        return f"{kind.value}:{name}"
    prefix = (container_kind or EntityKind.TABLE).value
    return f"{prefix}:{container}.{kind.value}:{name}"


class Comparator:
    """Computes ChangeSets between normalized documents.

    Example:
        >>> changes = Comparator().diff(desired, live)
        >>> for change in changes:
        ...     print(change)
        ADD table:user.field:name
    """

    def diff(self, desired: SchemaDocument, live: SchemaDocument) -> ChangeSet:
        """Compute the changes turning ``live`` into ``desired``.

        Raises:
            DiffAmbiguityError: If rename history matches ambiguously
        """
        buckets: dict[EntityKind, list[Change]] = {kind: [] for kind in EntityKind}

        for kind, desired_items, live_items in (
            (EntityKind.TABLE, desired.tables, live.tables),
            (EntityKind.RELATION, desired.relations, live.relations),
        ):
            changes, pairs = self._match(kind, desired_items, live_items)
            buckets[kind].extend(changes)
            for new, old in pairs:
                self._diff_children(kind, new, old, buckets)

        for kind, desired_items, live_items in (
            (EntityKind.ANALYZER, desired.analyzers, live.analyzers),
            (EntityKind.FUNCTION, desired.functions, live.functions),
            (EntityKind.ACCESS, desired.accesses, live.accesses),
            (EntityKind.PARAM, desired.params, live.params),
            (EntityKind.SEQUENCE, desired.sequences, live.sequences),
            (EntityKind.USER, desired.users, live.users),
        ):
            changes, _ = self._match(kind, desired_items, live_items)
            buckets[kind].extend(changes)

        ordered = tuple(change for kind in EntityKind for change in buckets[kind])
        if ordered:
            logger.info(f"Computed {len(ordered)} schema change(s)")
        return ChangeSet(changes=ordered, desired=desired, live=live)

    def _diff_children(
        self,
        container_kind: EntityKind,
        new: Any,
        old: Any,
        buckets: dict[EntityKind, list[Change]],
    ) -> None:
        for kind, attr in (
            (EntityKind.FIELD, "fields"),
            (EntityKind.INDEX, "indexes"),
            (EntityKind.TRIGGER, "triggers"),
        ):
            changes, _ = self._match(
                kind,
                getattr(new, attr),
                getattr(old, attr),
                container=new.name,
                container_kind=container_kind,
            )
            buckets[kind].extend(changes)

    def _match(
        self,
        kind: EntityKind,
        desired_items: Sequence[Any],
        live_items: Sequence[Any],
        container: str | None = None,
        container_kind: EntityKind | None = None,
    ) -> tuple[list[Change], list[tuple[Any, Any]]]:
        """Match one entity collection by name.

        Returns:
            Tuple of (changes, matched (desired, live) pairs including renames)
        """
        desired_names = {e.name for e in desired_items}
        live_by_name = {e.name: e for e in live_items}
        removed = [e for e in live_items if e.name not in desired_names]
        removed_names = {e.name for e in removed}

        renamed_from: dict[str, str] = {}
        claimed_by: dict[str, str] = {}
        for entity in desired_items:
            if entity.name in live_by_name:
                continue
            for old_name in entity.rename_history:
                if old_name not in removed_names:
                    continue
                if old_name in claimed_by:
                    raise DiffAmbiguityError(
                        f"{kind.value} '{old_name}' is claimed by both "
                        f"'{claimed_by[old_name]}' and '{entity.name}' via rename history",
                        removed_name=old_name,
                        claimants=[claimed_by[old_name], entity.name],
                    )
                claimed_by[old_name] = entity.name
                renamed_from[entity.name] = old_name
                break

        def path(name: str) -> str:
            return entity_path(kind, name, container, container_kind)

        changes: list[Change] = []
        pairs: list[tuple[Any, Any]] = []
        for entity in desired_items:
            if entity.name in live_by_name:
                before = live_by_name[entity.name]
                pairs.append((entity, before))
                diffs = property_diffs(kind, before, entity)
                if diffs:
                    changes.append(self._change(kind, ChangeKind.MODIFY, path(entity.name),
                                                entity.name, before, entity, diffs,
                                                container, container_kind))
            elif entity.name in renamed_from:
                old_name = renamed_from[entity.name]
                before = live_by_name[old_name]
                pairs.append((entity, before))
                logger.debug(f"Rename detected: {path(old_name)} -> {path(entity.name)}")
                changes.append(self._change(kind, ChangeKind.RENAME, path(entity.name),
                                            entity.name, before, entity,
                                            property_diffs(kind, before, entity),
                                            container, container_kind, old_name))
            else:
                changes.append(self._change(kind, ChangeKind.ADD, path(entity.name),
                                            entity.name, None, entity, (),
                                            container, container_kind))
        for entity in removed:
            if entity.name in claimed_by:
                continue
            changes.append(self._change(kind, ChangeKind.REMOVE, path(entity.name),
                                        entity.name, entity, None, (),
                                        container, container_kind))
        return changes, pairs

    @staticmethod
    def _change(
        kind: EntityKind,
        change_kind: ChangeKind,
        path: str,
        name: str,
        before: Any,
        after: Any,
        diffs: tuple[PropertyDiff, ...],
        container: str | None,
        container_kind: EntityKind | None,
        old_name: str | None = None,
    ) -> Change:
        return Change(
            entity_kind=kind,
            change_kind=change_kind,
            entity_path=path,
            name=name,
            before=before,
            after=after,
            field_diffs=diffs,
            container=container,
            container_kind=container_kind,
            old_name=old_name,
        )


def diff(desired: SchemaDocument, live: SchemaDocument) -> ChangeSet:
    """Compute the ChangeSet between two normalized documents."""
    return Comparator().diff(desired, live)
