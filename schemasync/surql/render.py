"""
Statement rendering for the SurrealQL-flavoured DDL dialect.

Every statement the planner emits is produced here, from IR snapshots:

    DEFINE TABLE [OVERWRITE] user TYPE NORMAL SCHEMAFULL PERMISSIONS ...;
    DEFINE FIELD [OVERWRITE] email ON TABLE user TYPE string ASSERT ...;
    ALTER FIELD email ON TABLE user DROP DEFAULT;
    ALTER TABLE person RENAME TO user;
    REMOVE INDEX user_email ON TABLE user;
    ALTER USER reporter ON DATABASE ROLES EDITOR, VIEWER;

Clauses always appear in one fixed order so that schemasync.surql.parser can
read statements back without a full grammar.

Relations declared in the relation collection render ``TYPE RELATION FROM a
TO b``; relation-kind tables render ``TYPE RELATION IN a OUT b``.

Invariants:
    - Rendering is deterministic for equal snapshots
    - Assertion lists are joined into one ASSERT clause only here
    - Every ALTER clause has a rendering for "value absent" (DROP ... or FULL)

How to change safely:
    - Change render.py and parser.py together and keep clause order fixed
    - New alterable properties need an entry in ALTER_CLAUSES
"""

from __future__ import annotations

import json
from typing import Any, Callable

from ..diff.changes import EntityKind
from ..schema.expressions import join_conjuncts
from ..schema.types import (
    AccessDefinition,
    FieldDefinition,
    FulltextIndexParams,
    FunctionDefinition,
    IndexAnalyzerDefinition,
    IndexDefinition,
    IndexKind,
    ParamDefinition,
    RelationDefinition,
    SchemaMode,
    SequenceDefinition,
    TableDefinition,
    TableKind,
    TriggerDefinition,
    TriggerOperation,
    UserDefinition,
    UserLevel,
    VectorIndexParams,
)

# Property -> ALTER clause, per entity kind. Properties missing here can only
# change through a full redefinition.
ALTER_CLAUSES: dict[EntityKind, dict[str, str]] = {
    EntityKind.TABLE: {
        "schema_mode": "schema_mode",
        "retention_policy": "changefeed",
        "permissions": "permissions",
        "comment": "comment",
    },
    EntityKind.RELATION: {
        "schema_mode": "schema_mode",
        "permissions": "permissions",
        "comment": "comment",
    },
    EntityKind.FIELD: {
        "type": "type",
        "readonly": "readonly",
        "default": "default",
        "computed": "value",
        "assertions": "assert",
        "permissions": "permissions",
        "comment": "comment",
    },
    EntityKind.INDEX: {"comment": "comment"},
    EntityKind.TRIGGER: {
        "operation": "when",
        "when": "when",
        "then": "then",
        "comment": "comment",
    },
    EntityKind.ANALYZER: {"comment": "comment"},
    EntityKind.FUNCTION: {"permissions": "permissions", "comment": "comment"},
    EntityKind.ACCESS: {
        "authenticate": "authenticate",
        "session_duration": "duration",
        "token_duration": "duration",
        "comment": "comment",
    },
    EntityKind.PARAM: {"value": "value", "permissions": "permissions", "comment": "comment"},
    EntityKind.SEQUENCE: {"batch": "batch", "timeout": "timeout", "comment": "comment"},
    EntityKind.USER: {
        "roles": "roles",
        "session_duration": "duration",
        "token_duration": "duration",
        "comment": "comment",
    },
}

_KEYWORDS = {
    EntityKind.TABLE: "TABLE",
    EntityKind.RELATION: "TABLE",
    EntityKind.FIELD: "FIELD",
    EntityKind.INDEX: "INDEX",
    EntityKind.TRIGGER: "EVENT",
    EntityKind.ANALYZER: "ANALYZER",
    EntityKind.FUNCTION: "FUNCTION",
    EntityKind.ACCESS: "ACCESS",
    EntityKind.PARAM: "PARAM",
    EntityKind.SEQUENCE: "SEQUENCE",
    EntityKind.USER: "USER",
}


def quote_comment(comment: str) -> str:
    return json.dumps(comment, ensure_ascii=False)


def _overwrite(overwrite: bool) -> str:
    return " OVERWRITE" if overwrite else ""


def _comment(comment: str | None) -> str:
    return f" COMMENT {quote_comment(comment)}" if comment is not None else ""


def _permissions(permissions: str | None) -> str:
    return f" PERMISSIONS {permissions}" if permissions is not None else ""


def _schema_mode(mode: SchemaMode) -> str:
    return "SCHEMAFULL" if mode == SchemaMode.STRICT else "SCHEMALESS"


def entity_ref(kind: EntityKind, name: str, container: str | None = None,
               level: UserLevel | None = None) -> str:
    """Render how a statement refers to an entity (``email ON TABLE user``).

    Users are addressed together with their level (``admin ON DATABASE``).
    """
    if kind == EntityKind.FUNCTION:
        return f"fn::{name}"
    if kind == EntityKind.PARAM:
        return f"${name}"
    if kind == EntityKind.ACCESS:
        return f"{name} ON DATABASE"
    if kind == EntityKind.USER:
        return f"{name} ON {(level or UserLevel.DATABASE).value.upper()}"
    if kind.is_child:
        return f"{name} ON TABLE {container}"
    return name


def define_table(table: TableDefinition, overwrite: bool = False) -> str:
    if table.kind == TableKind.RELATION:
        table_type = f"RELATION IN {table.endpoints[0]} OUT {table.endpoints[1]}"
    else:
        table_type = table.kind.value.upper()
    statement = (
        f"DEFINE TABLE{_overwrite(overwrite)} {table.name} TYPE {table_type} "
        f"{_schema_mode(table.schema_mode)}"
    )
    if table.view_query is not None:
        statement += f" AS {table.view_query}"
    if table.retention_policy is not None:
        statement += f" CHANGEFEED {table.retention_policy}"
    return statement + _permissions(table.permissions) + _comment(table.comment) + ";"


def define_relation(relation: RelationDefinition, overwrite: bool = False) -> str:
    statement = (
        f"DEFINE TABLE{_overwrite(overwrite)} {relation.name} TYPE RELATION "
        f"FROM {relation.from_table} TO {relation.to_table}"
    )
    if relation.enforced:
        statement += " ENFORCED"
    statement += f" {_schema_mode(relation.schema_mode)}"
    return statement + _permissions(relation.permissions) + _comment(relation.comment) + ";"


def define_field(container: str, f: FieldDefinition, overwrite: bool = False) -> str:
    statement = f"DEFINE FIELD{_overwrite(overwrite)} {f.name} ON TABLE {container} TYPE {f.effective_type}"
    if f.readonly:
        statement += " READONLY"
    if f.default_expr is not None:
        statement += f" DEFAULT {f.default_expr}"
    if f.computed_expr is not None:
        statement += f" VALUE {f.computed_expr}"
    if f.assertions:
        statement += f" ASSERT {join_conjuncts(f.assertions)}"
    return statement + _permissions(f.permissions) + _comment(f.comment) + ";"


def _index_options(index: IndexDefinition) -> str:
    if index.kind == IndexKind.UNIQUE:
        return " UNIQUE"
    if index.kind == IndexKind.HASH:
        return " HASH"
    if index.kind == IndexKind.FULLTEXT and isinstance(index.params, FulltextIndexParams):
        options = f" FULLTEXT ANALYZER {index.params.analyzer}"
        if index.params.bm25_k1 is not None:
            options += f" BM25({index.params.bm25_k1},{index.params.bm25_b})"
        if index.params.highlights:
            options += " HIGHLIGHTS"
        return options
    if index.kind == IndexKind.VECTOR and isinstance(index.params, VectorIndexParams):
        options = f" HNSW DIMENSION {index.params.dimension} DIST {index.params.distance.upper()}"
        if index.params.efc is not None:
            options += f" EFC {index.params.efc}"
        if index.params.m is not None:
            options += f" M {index.params.m}"
        return options
    return ""


def define_index(container: str, index: IndexDefinition, overwrite: bool = False) -> str:
    return (
        f"DEFINE INDEX{_overwrite(overwrite)} {index.name} ON TABLE {container} "
        f"FIELDS {', '.join(index.columns)}{_index_options(index)}{_comment(index.comment)};"
    )


def event_condition(trigger: TriggerDefinition) -> str:
    """Render the WHEN condition encoding operation and extra condition."""
    parts = []
    if trigger.operation != TriggerOperation.ANY:
        parts.append(f"$event = '{trigger.operation.value.upper()}'")
    if trigger.when_expr is not None:
        parts.append(trigger.when_expr)
    if not parts:
        return "true"
    return join_conjuncts(parts)


def event_block(trigger: TriggerDefinition) -> str:
    return "{ " + "; ".join(trigger.then_statements) + " }"


def define_event(container: str, trigger: TriggerDefinition, overwrite: bool = False) -> str:
    return (
        f"DEFINE EVENT{_overwrite(overwrite)} {trigger.name} ON TABLE {container} "
        f"WHEN {event_condition(trigger)} THEN {event_block(trigger)}{_comment(trigger.comment)};"
    )


def define_function(fn: FunctionDefinition, overwrite: bool = False) -> str:
    params = ", ".join(f"${p.name}: {p.type_signature}" for p in fn.params)
    statement = f"DEFINE FUNCTION{_overwrite(overwrite)} fn::{fn.name}({params})"
    if fn.return_type is not None:
        statement += f" -> {fn.return_type}"
    statement += " { " + fn.body + " }"
    return statement + _permissions(fn.permissions) + _comment(fn.comment) + ";"


def define_analyzer(analyzer: IndexAnalyzerDefinition, overwrite: bool = False) -> str:
    statement = f"DEFINE ANALYZER{_overwrite(overwrite)} {analyzer.name}"
    if analyzer.function is not None:
        statement += f" FUNCTION fn::{analyzer.function}"
    if analyzer.tokenizers:
        statement += f" TOKENIZERS {','.join(analyzer.tokenizers)}"
    if analyzer.filters:
        statement += f" FILTERS {','.join(analyzer.filters)}"
    return statement + _comment(analyzer.comment) + ";"


def _duration_clause(entity: AccessDefinition | UserDefinition) -> str:
    parts = []
    if entity.token_duration is not None:
        parts.append(f"FOR TOKEN {entity.token_duration}")
    if entity.session_duration is not None:
        parts.append(f"FOR SESSION {entity.session_duration}")
    return f"DURATION {', '.join(parts)}" if parts else ""


def define_access(access: AccessDefinition, overwrite: bool = False) -> str:
    statement = (
        f"DEFINE ACCESS{_overwrite(overwrite)} {access.name} ON DATABASE "
        f"TYPE {access.access_type.value.upper()}"
    )
    if access.signup is not None:
        statement += f" SIGNUP ({access.signup})"
    if access.signin is not None:
        statement += f" SIGNIN ({access.signin})"
    if access.authenticate is not None:
        statement += f" AUTHENTICATE ({access.authenticate})"
    duration = _duration_clause(access)
    if duration:
        statement += f" {duration}"
    return statement + _comment(access.comment) + ";"


def define_user(user: UserDefinition, overwrite: bool = False) -> str:
    statement = f"DEFINE USER{_overwrite(overwrite)} {entity_ref(EntityKind.USER, user.name, level=user.level)}"
    if user.passhash is not None:
        statement += f" PASSHASH {quote_comment(user.passhash)}"
    statement += f" ROLES {', '.join(user.roles)}"
    duration = _duration_clause(user)
    if duration:
        statement += f" {duration}"
    return statement + _comment(user.comment) + ";"


def define_param(param: ParamDefinition, overwrite: bool = False) -> str:
    return (
        f"DEFINE PARAM{_overwrite(overwrite)} ${param.name} VALUE {param.value}"
        f"{_permissions(param.permissions)}{_comment(param.comment)};"
    )


def define_sequence(sequence: SequenceDefinition, overwrite: bool = False) -> str:
    statement = f"DEFINE SEQUENCE{_overwrite(overwrite)} {sequence.name}"
    if sequence.batch is not None:
        statement += f" BATCH {sequence.batch}"
    statement += f" START {sequence.start}"
    if sequence.timeout is not None:
        statement += f" TIMEOUT {sequence.timeout}"
    return statement + _comment(sequence.comment) + ";"


def define(kind: EntityKind, entity: Any, container: str | None = None, overwrite: bool = False) -> str:
    """Render the DEFINE statement of any entity."""
    if kind == EntityKind.TABLE:
        return define_table(entity, overwrite)
    if kind == EntityKind.RELATION:
        return define_relation(entity, overwrite)
    if kind == EntityKind.FIELD:
        return define_field(container or "", entity, overwrite)
    if kind == EntityKind.INDEX:
        return define_index(container or "", entity, overwrite)
    if kind == EntityKind.TRIGGER:
        return define_event(container or "", entity, overwrite)
    definers: dict[EntityKind, Callable[[Any, bool], str]] = {
        EntityKind.FUNCTION: define_function,
        EntityKind.ANALYZER: define_analyzer,
        EntityKind.ACCESS: define_access,
        EntityKind.PARAM: define_param,
        EntityKind.SEQUENCE: define_sequence,
        EntityKind.USER: define_user,
    }
    return definers[kind](entity, overwrite)


def remove(kind: EntityKind, name: str, container: str | None = None, level: UserLevel | None = None) -> str:
    """Render the REMOVE statement of any entity."""
    return f"REMOVE {_KEYWORDS[kind]} {entity_ref(kind, name, container, level)};"


def rename(kind: EntityKind, old_name: str, new_name: str, container: str | None = None,
           level: UserLevel | None = None) -> str:
    """Render an in-place rename."""
    target = entity_ref(kind, new_name).split(" ON ")[0]
    return f"ALTER {_KEYWORDS[kind]} {entity_ref(kind, old_name, container, level)} RENAME TO {target};"


def _set_or_drop(keyword: str, value: Any) -> str:
    return f"{keyword} {value}" if value is not None else f"DROP {keyword}"


def alter(kind: EntityKind, entity: Any, clause: str, container: str | None = None) -> str:
    """Render a targeted ALTER that sets one clause to the entity's value.

    Args:
        kind: Entity kind
        entity: Snapshot holding the value to set
        clause: Clause name from ALTER_CLAUSES
        container: Owning table for child entities

    Raises:
        ValueError: If the clause cannot be altered in place for this kind
    """
    if clause not in ALTER_CLAUSES[kind].values():
        raise ValueError(f"Clause '{clause}' of {kind.value} cannot be altered in place")
    if clause == "comment":
        body = _set_or_drop("COMMENT", quote_comment(entity.comment) if entity.comment is not None else None)
    elif clause == "permissions":
        body = f"PERMISSIONS {entity.permissions if entity.permissions is not None else 'FULL'}"
    elif clause == "schema_mode":
        body = _schema_mode(entity.schema_mode)
    elif clause == "changefeed":
        body = _set_or_drop("CHANGEFEED", entity.retention_policy)
    elif clause == "type":
        body = f"TYPE {entity.effective_type}"
    elif clause == "readonly":
        body = "READONLY" if entity.readonly else "DROP READONLY"
    elif clause == "default":
        body = _set_or_drop("DEFAULT", entity.default_expr)
    elif clause == "value" and kind == EntityKind.FIELD:
        body = _set_or_drop("VALUE", entity.computed_expr)
    elif clause == "assert":
        body = _set_or_drop("ASSERT", join_conjuncts(entity.assertions) if entity.assertions else None)
    elif clause == "when":
        body = f"WHEN {event_condition(entity)}"
    elif clause == "then":
        body = f"THEN {event_block(entity)}"
    elif clause == "authenticate":
        value = f"({entity.authenticate})" if entity.authenticate is not None else None
        body = _set_or_drop("AUTHENTICATE", value)
    elif clause == "duration":
        body = _duration_clause(entity) or "DROP DURATION"
    elif clause == "roles":
        body = f"ROLES {', '.join(entity.roles)}"
    elif clause == "value":
        body = f"VALUE {entity.value}"
    elif clause == "batch":
        body = _set_or_drop("BATCH", entity.batch)
    elif clause == "timeout":
        body = _set_or_drop("TIMEOUT", entity.timeout)
    else:
        raise ValueError(f"Unknown clause '{clause}'")
    level = getattr(entity, "level", None)
    return f"ALTER {_KEYWORDS[kind]} {entity_ref(kind, entity.name, container, level)} {body};"
