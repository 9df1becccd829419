"""
In-memory database for testing.

InMemoryDatabase holds a SchemaDocument and implements both
LiveStateProvider and StatementExecutor: every executed statement is parsed
and applied to the document, so a reconcile/apply cycle can be checked by
introspecting again.

It is stricter than a real server:
- Defining an existing entity without OVERWRITE is rejected
- Children need an existing container
- Relations need existing endpoint tables, and an endpoint table cannot be
  removed or renamed while a relation uses it

Failure injection:
- fail_on(fragment, error): statements containing fragment raise error
- fail_connectivity(times): the next calls raise ConnectivityError

Invariants:
    - A rejected statement leaves the document unchanged
    - executed lists statements in the order they took effect

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep it compatible with the LiveStateProvider/StatementExecutor protocols
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any

from ..diff.changes import EntityKind
from ..errors import ConnectivityError, StatementError
from ..schema.document import SchemaDocument
from ..schema.normalize import normalize_type
from ..surql.parser import (
    AlterStatement,
    DefineStatement,
    RemoveStatement,
    RenameStatement,
    Statement,
    parse_statement,
)

logger = logging.getLogger(__name__)

_COLLECTIONS = {
    EntityKind.TABLE: "tables",
    EntityKind.RELATION: "relations",
    EntityKind.FUNCTION: "functions",
    EntityKind.ANALYZER: "analyzers",
    EntityKind.ACCESS: "accesses",
    EntityKind.PARAM: "params",
    EntityKind.SEQUENCE: "sequences",
    EntityKind.USER: "users",
    EntityKind.FIELD: "fields",
    EntityKind.INDEX: "indexes",
    EntityKind.TRIGGER: "triggers",
}

# ALTER clause -> attribute, for clauses that set one attribute directly
_CLAUSE_ATTRS = {
    "schema_mode": "schema_mode",
    "changefeed": "retention_policy",
    "permissions": "permissions",
    "comment": "comment",
    "readonly": "readonly",
    "default": "default_expr",
    "then": "then_statements",
    "roles": "roles",
    "authenticate": "authenticate",
    "batch": "batch",
    "timeout": "timeout",
}


@dataclass
class _Failure:
    fragment: str
    error: BaseException | None
    remaining: int | None


def _replace_named(items: tuple[Any, ...], name: str, new: Any) -> tuple[Any, ...]:
    return tuple(new if item.name == name else item for item in items)


def _without(items: tuple[Any, ...], name: str) -> tuple[Any, ...]:
    return tuple(item for item in items if item.name != name)


def _named(items: tuple[Any, ...], name: str) -> Any:
    return next((item for item in items if item.name == name), None)


class InMemoryDatabase:
    """Live database simulation backed by a SchemaDocument.

    Example:
        >>> db = InMemoryDatabase()
        >>> await db.execute("DEFINE TABLE user TYPE NORMAL SCHEMAFULL;")
        >>> (await db.introspect()).get_table("user").name
        'user'
    """

    def __init__(self, document: SchemaDocument | None = None, strict: bool = True) -> None:
        """Initialize the database.

        Args:
            document: Initial schema (empty by default)
            strict: Enforce relation endpoint existence
        """
        self._document = document or SchemaDocument()
        self.strict = strict
        self.executed: list[str] = []
        self._failures: list[_Failure] = []
        self._connectivity_failures = 0
        self._lock = asyncio.Lock()

    @property
    def document(self) -> SchemaDocument:
        return self._document

    def fail_on(self, fragment: str, error: BaseException | None = None, times: int | None = 1) -> None:
        """Make statements containing fragment fail.

        Args:
            fragment: Substring to match against statement text
            error: Exception to raise (StatementError by default)
            times: Number of failures, None for every match
        """
        self._failures.append(_Failure(fragment, error, times))

    def fail_connectivity(self, times: int) -> None:
        """Make the next `times` calls raise ConnectivityError."""
        self._connectivity_failures = times

    def clear_failures(self) -> None:
        self._failures.clear()
        self._connectivity_failures = 0

    def _check_connectivity(self) -> None:
        if self._connectivity_failures > 0:
            self._connectivity_failures -= 1
            raise ConnectivityError("connection reset by peer")

    def _check_injected(self, statement: str) -> None:
        for failure in self._failures:
            if failure.fragment not in statement or failure.remaining == 0:
                continue
            if failure.remaining is not None:
                failure.remaining -= 1
            raise failure.error or StatementError(f"Injected failure for '{failure.fragment}'", statement)

    async def introspect(self) -> SchemaDocument:
        """Return the current schema."""
        async with self._lock:
            self._check_connectivity()
            return self._document

    async def execute(self, statement: str) -> None:
        """Parse and apply one statement.

        Raises:
            ConnectivityError: While injected connectivity failures remain
            StatementError: If the statement is malformed or conflicts with
                the current schema
        """
        async with self._lock:
            self._check_connectivity()
            self._check_injected(statement)
            parsed = parse_statement(statement)
            self._document = self._apply(parsed, statement)
            self.executed.append(statement)
            logger.debug(f"Executed: {statement}")

    def _apply(self, parsed: Statement, statement: str) -> SchemaDocument:
        try:
            if isinstance(parsed, DefineStatement):
                return self._define(parsed, statement)
            if isinstance(parsed, RemoveStatement):
                return self._remove(parsed, statement)
            if isinstance(parsed, RenameStatement):
                return self._rename(parsed, statement)
            return self._alter(parsed, statement)
        except ValueError as e:
            raise StatementError(str(e), statement) from e

    # Containers -------------------------------------------------------

    def _container(self, name: str, statement: str) -> tuple[EntityKind, Any]:
        table = self._document.get_table(name)
        if table is not None:
            return EntityKind.TABLE, table
        relation = self._document.get_relation(name)
        if relation is not None:
            return EntityKind.RELATION, relation
        raise StatementError(f"Table '{name}' does not exist", statement)

    def _check_endpoints(self, entity: Any, statement: str) -> None:
        if not self.strict:
            return
        for endpoint in getattr(entity, "endpoints", ()):
            if endpoint not in self._document.container_names():
                raise StatementError(f"Endpoint table '{endpoint}' does not exist", statement)

    def _check_unused(self, name: str, statement: str) -> None:
        if not self.strict:
            return
        for relation, endpoints in self._document.relation_endpoints().items():
            if relation != name and name in endpoints:
                raise StatementError(f"Table '{name}' is used by relation '{relation}'", statement)

    def _set_container(self, old_kind: EntityKind | None, old_name: str | None, kind: EntityKind,
                       entity: Any) -> SchemaDocument:
        doc = self._document
        if old_kind is not None and old_kind != kind:
            attr = _COLLECTIONS[old_kind]
            doc = dataclasses.replace(doc, **{attr: _without(getattr(doc, attr), old_name)})
        attr = _COLLECTIONS[kind]
        items = getattr(doc, attr)
        if old_kind == kind:
            items = _replace_named(items, old_name, entity)
        else:
            items = items + (entity,)
        return dataclasses.replace(doc, **{attr: items})

    def _update(self, kind: EntityKind, name: str, container: str | None, new: Any,
                statement: str) -> SchemaDocument:
        if kind.is_child:
            container_kind, owner = self._container(container, statement)
            attr = _COLLECTIONS[kind]
            owner = dataclasses.replace(owner, **{attr: _replace_named(getattr(owner, attr), name, new)})
            return self._set_container(container_kind, owner.name, container_kind, owner)
        if kind.is_container:
            container_kind, _ = self._container(name, statement)
            return self._set_container(container_kind, name, container_kind, new)
        attr = _COLLECTIONS[kind]
        return dataclasses.replace(self._document, **{attr: _replace_named(getattr(self._document, attr), name, new)})

    def _lookup(self, kind: EntityKind, name: str, container: str | None, statement: str) -> Any:
        if kind.is_container:
            return self._container(name, statement)[1]
        if kind.is_child:
            items = getattr(self._container(container, statement)[1], _COLLECTIONS[kind])
        else:
            items = getattr(self._document, _COLLECTIONS[kind])
        entity = _named(items, name)
        if entity is None:
            raise StatementError(f"{kind.value} '{name}' does not exist", statement)
        return entity

    # Statements -------------------------------------------------------

    def _define(self, parsed: DefineStatement, statement: str) -> SchemaDocument:
        kind, entity = parsed.kind, parsed.entity
        if kind.is_container:
            self._check_endpoints(entity, statement)
            if entity.name not in self._document.container_names():
                return self._set_container(None, None, kind, entity)
            if not parsed.overwrite:
                raise StatementError(f"Table '{entity.name}' already exists", statement)
            old_kind, old = self._container(entity.name, statement)
            entity = dataclasses.replace(entity, fields=old.fields, indexes=old.indexes, triggers=old.triggers)
            return self._set_container(old_kind, old.name, kind, entity)

        if kind.is_child:
            container_kind, owner = self._container(parsed.container, statement)
            items = getattr(owner, _COLLECTIONS[kind])
        else:
            items = getattr(self._document, _COLLECTIONS[kind])
        if _named(items, entity.name) is not None:
            if not parsed.overwrite:
                raise StatementError(f"{kind.value} '{entity.name}' already exists", statement)
            return self._update(kind, entity.name, parsed.container, entity, statement)
        if kind.is_child:
            owner = dataclasses.replace(owner, **{_COLLECTIONS[kind]: items + (entity,)})
            return self._set_container(container_kind, owner.name, container_kind, owner)
        return dataclasses.replace(self._document, **{_COLLECTIONS[kind]: items + (entity,)})

    def _remove(self, parsed: RemoveStatement, statement: str) -> SchemaDocument:
        kind, name = parsed.kind, parsed.name
        self._lookup(kind, name, parsed.container, statement)
        if kind.is_container:
            container_kind, _ = self._container(name, statement)
            self._check_unused(name, statement)
            attr = _COLLECTIONS[container_kind]
            return dataclasses.replace(self._document, **{attr: _without(getattr(self._document, attr), name)})
        if kind.is_child:
            container_kind, owner = self._container(parsed.container, statement)
            attr = _COLLECTIONS[kind]
            owner = dataclasses.replace(owner, **{attr: _without(getattr(owner, attr), name)})
            return self._set_container(container_kind, owner.name, container_kind, owner)
        attr = _COLLECTIONS[kind]
        return dataclasses.replace(self._document, **{attr: _without(getattr(self._document, attr), name)})

    def _rename(self, parsed: RenameStatement, statement: str) -> SchemaDocument:
        kind = parsed.kind
        entity = self._lookup(kind, parsed.old_name, parsed.container, statement)
        if kind.is_container:
            self._check_unused(parsed.old_name, statement)
        try:
            self._lookup(kind, parsed.new_name, parsed.container, statement)
        except StatementError:
            renamed = dataclasses.replace(entity, name=parsed.new_name, rename_history=())
            return self._update(kind, parsed.old_name, parsed.container, renamed, statement)
        raise StatementError(f"{kind.value} '{parsed.new_name}' already exists", statement)

    def _alter(self, parsed: AlterStatement, statement: str) -> SchemaDocument:
        kind, clause, value = parsed.kind, parsed.clause, parsed.value
        entity = self._lookup(kind, parsed.name, parsed.container, statement)
        if clause == "type":
            type_signature, optional = normalize_type(value)
            changes: dict[str, Any] = {"type_signature": type_signature, "optional": optional}
        elif clause == "value":
            changes = {"computed_expr" if kind == EntityKind.FIELD else "value": value}
        elif clause == "assert":
            changes = {"assertions": tuple(value or ())}
        elif clause == "when":
            operation, when_expr = value
            changes = {"operation": operation, "when_expr": when_expr}
        elif clause == "duration":
            changes = {"token_duration": value.get("token"), "session_duration": value.get("session")}
        elif clause in _CLAUSE_ATTRS:
            changes = {_CLAUSE_ATTRS[clause]: value}
        else:
            raise StatementError(f"Unsupported ALTER clause '{clause}'", statement)
        return self._update(kind, parsed.name, parsed.container, dataclasses.replace(entity, **changes), statement)
