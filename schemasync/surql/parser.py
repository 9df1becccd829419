"""
Statement parsing for the SurrealQL-flavoured DDL dialect.

Reads statements produced by schemasync.surql.render (or echoed back by a
database's INFO output) into structured operations:

- DefineStatement: an entity snapshot to create or overwrite
- RemoveStatement: an entity to drop
- RenameStatement: an in-place rename
- AlterStatement: one clause set to a value (None meaning "drop")

Clauses are located by scanning for their upper-case keywords at bracket
depth 0 outside string literals, in the fixed order the renderer uses.

Invariants:
    - parse(render(x)) reproduces x for every renderable entity
    - Unrecognized statements raise StatementError

How to change safely:
    - Keep clause keyword lists in the renderer's clause order
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Union

from ..diff.changes import EntityKind
from ..errors import NormalizationError, StatementError
from ..schema.expressions import (
    depth_map,
    find_top_level,
    join_conjuncts,
    matching_close,
    split_conjuncts,
    split_top_level,
)
from ..schema.types import (
    AccessDefinition,
    AccessType,
    FieldDefinition,
    FulltextIndexParams,
    FunctionDefinition,
    FunctionParam,
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

_KINDS = {
    "TABLE": EntityKind.TABLE,
    "FIELD": EntityKind.FIELD,
    "INDEX": EntityKind.INDEX,
    "EVENT": EntityKind.TRIGGER,
    "FUNCTION": EntityKind.FUNCTION,
    "ANALYZER": EntityKind.ANALYZER,
    "ACCESS": EntityKind.ACCESS,
    "PARAM": EntityKind.PARAM,
    "SEQUENCE": EntityKind.SEQUENCE,
    "USER": EntityKind.USER,
}

_EVENT_RE = re.compile(r"^\$event = '(CREATE|UPDATE|DELETE)'$")
_USER_REF_RE = re.compile(r"^(\S+) ON (ROOT|NAMESPACE|DATABASE)$")


@dataclass(frozen=True)
class DefineStatement:
    kind: EntityKind
    entity: Any
    container: str | None = None
    overwrite: bool = False


@dataclass(frozen=True)
class RemoveStatement:
    kind: EntityKind
    name: str
    container: str | None = None


@dataclass(frozen=True)
class RenameStatement:
    kind: EntityKind
    old_name: str
    new_name: str
    container: str | None = None


@dataclass(frozen=True)
class AlterStatement:
    kind: EntityKind
    name: str
    clause: str
    value: Any
    container: str | None = None


Statement = Union[DefineStatement, RemoveStatement, RenameStatement, AlterStatement]


def _clauses(text: str, keywords: list[str]) -> tuple[str, dict[str, str]]:
    """Split text into a prefix and keyword -> value clauses."""
    depths = depth_map(text)
    found: list[tuple[int, str]] = []
    pos = 0
    remaining = list(keywords)
    while remaining:
        best: tuple[int, str] | None = None
        for keyword in remaining:
            index = find_top_level(text, keyword, pos, depths)
            if index != -1 and (best is None or index < best[0]):
                best = (index, keyword)
        if best is None:
            break
        found.append(best)
        remaining = remaining[remaining.index(best[1]) + 1 :]
        pos = best[0] + len(best[1])
    values: dict[str, str] = {}
    for i, (index, keyword) in enumerate(found):
        end = found[i + 1][0] if i + 1 < len(found) else len(text)
        values[keyword] = text[index + len(keyword) : end].strip()
    prefix = text[: found[0][0]] if found else text
    return prefix.strip(), values


def _comment(values: dict[str, str]) -> str | None:
    raw = values.get("COMMENT")
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw.strip("'\"")


def _permissions(raw: str | None) -> str | None:
    if raw is None or raw.upper() == "FULL":
        return None
    return raw


def _unwrap(text: str) -> str:
    text = text.strip()
    if text.startswith("(") and matching_close(text, 0) == len(text) - 1:
        return text[1:-1].strip()
    return text


def _child_prefix(prefix: str, statement: str) -> tuple[str, str]:
    match = re.match(r"^(\S+) ON TABLE (\S+)$", prefix)
    if not match:
        raise StatementError(f"Expected '<name> ON TABLE <table>' in: {prefix}", statement)
    return match.group(1), match.group(2)


def _split_overwrite(text: str) -> tuple[str, bool]:
    if text.startswith("OVERWRITE "):
        return text[len("OVERWRITE ") :], True
    return text, False


def _table(text: str, statement: str) -> DefineStatement:
    prefix, values = _clauses(
        text, ["TYPE", "SCHEMAFULL", "SCHEMALESS", "AS", "CHANGEFEED", "PERMISSIONS", "COMMENT"]
    )
    name = prefix
    table_type = values.get("TYPE", "NORMAL")
    mode = SchemaMode.FLEXIBLE if "SCHEMALESS" in values else SchemaMode.STRICT
    permissions = _permissions(values.get("PERMISSIONS"))
    comment = _comment(values)

    relation = re.match(r"^RELATION FROM (\S+) TO (\S+)( ENFORCED)?$", table_type)
    if relation:
        return DefineStatement(
            EntityKind.RELATION,
            RelationDefinition(
                name=name,
                from_table=relation.group(1),
                to_table=relation.group(2),
                enforced=bool(relation.group(3)),
                schema_mode=mode,
                permissions=permissions,
                comment=comment,
            ),
        )
    endpoints: tuple[str, ...] = ()
    tagged = re.match(r"^RELATION IN (\S+) OUT (\S+)$", table_type)
    if tagged:
        kind = TableKind.RELATION
        endpoints = (tagged.group(1), tagged.group(2))
    else:
        try:
            kind = TableKind(table_type.lower())
        except ValueError:
            raise StatementError(f"Unknown table type '{table_type}'", statement)
    return DefineStatement(
        EntityKind.TABLE,
        TableDefinition(
            name=name,
            schema_mode=mode,
            kind=kind,
            permissions=permissions,
            view_query=values.get("AS"),
            retention_policy=values.get("CHANGEFEED"),
            comment=comment,
            endpoints=endpoints,
        ),
    )


def _field(text: str, statement: str) -> DefineStatement:
    prefix, values = _clauses(
        text, ["TYPE", "READONLY", "DEFAULT", "VALUE", "ASSERT", "PERMISSIONS", "COMMENT"]
    )
    name, container = _child_prefix(prefix, statement)
    raw_assert = values.get("ASSERT")
    return DefineStatement(
        EntityKind.FIELD,
        FieldDefinition(
            name=name,
            type_signature=values.get("TYPE", "any"),
            readonly="READONLY" in values,
            default_expr=values.get("DEFAULT"),
            computed_expr=values.get("VALUE"),
            assertions=tuple(split_conjuncts(raw_assert)) if raw_assert else (),
            permissions=_permissions(values.get("PERMISSIONS")),
            comment=_comment(values),
        ),
        container=container,
    )


def _index(text: str, statement: str) -> DefineStatement:
    prefix, values = _clauses(text, ["FIELDS", "UNIQUE", "HASH", "FULLTEXT", "HNSW", "COMMENT"])
    name, container = _child_prefix(prefix, statement)
    columns = tuple(c.strip() for c in values.get("FIELDS", "").split(",") if c.strip())
    kind = IndexKind.STANDARD
    params: Any = None
    if "UNIQUE" in values:
        kind = IndexKind.UNIQUE
    elif "HASH" in values:
        kind = IndexKind.HASH
    elif "FULLTEXT" in values:
        kind = IndexKind.FULLTEXT
        options = values["FULLTEXT"]
        analyzer = re.search(r"ANALYZER (\S+)", options)
        bm25 = re.search(r"BM25\(([\d.]+),\s*([\d.]+)\)", options)
        params = FulltextIndexParams(
            analyzer=analyzer.group(1) if analyzer else "",
            bm25_k1=float(bm25.group(1)) if bm25 else None,
            bm25_b=float(bm25.group(2)) if bm25 else None,
            highlights="HIGHLIGHTS" in options,
        )
    elif "HNSW" in values:
        kind = IndexKind.VECTOR
        options = values["HNSW"]
        dimension = re.search(r"DIMENSION (\d+)", options)
        distance = re.search(r"DIST (\w+)", options)
        efc = re.search(r"EFC (\d+)", options)
        m = re.search(r"\bM (\d+)", options)
        if not dimension:
            raise StatementError("HNSW index requires DIMENSION", statement)
        params = VectorIndexParams(
            dimension=int(dimension.group(1)),
            distance=distance.group(1).lower() if distance else "cosine",
            efc=int(efc.group(1)) if efc else None,
            m=int(m.group(1)) if m else None,
        )
    return DefineStatement(
        EntityKind.INDEX,
        IndexDefinition(
            name=name,
            columns=columns,
            kind=kind,
            params=params,
            comment=_comment(values),
        ),
        container=container,
    )


def parse_event_condition(condition: str) -> tuple[TriggerOperation, str | None]:
    """Split a WHEN condition into (operation, extra condition)."""
    if condition.strip().lower() == "true":
        return TriggerOperation.ANY, None
    conjuncts = split_conjuncts(condition)
    match = _EVENT_RE.match(conjuncts[0])
    if not match:
        return TriggerOperation.ANY, join_conjuncts(conjuncts)
    rest = conjuncts[1:]
    return TriggerOperation(match.group(1).lower()), join_conjuncts(rest) if rest else None


def parse_event_block(block: str) -> tuple[str, ...]:
    """Split a ``{ a; b }`` THEN block into statements."""
    block = block.strip()
    if block.startswith("{") and block.endswith("}"):
        block = block[1:-1]
    elif block.startswith("("):
        block = _unwrap(block)
    return tuple(part.strip() for part in split_top_level(block, ";") if part.strip())


def _event(text: str, statement: str) -> DefineStatement:
    prefix, values = _clauses(text, ["WHEN", "THEN", "COMMENT"])
    name, container = _child_prefix(prefix, statement)
    operation, when = parse_event_condition(values.get("WHEN", "true"))
    return DefineStatement(
        EntityKind.TRIGGER,
        TriggerDefinition(
            name=name,
            then_statements=parse_event_block(values.get("THEN", "")),
            operation=operation,
            when_expr=when,
            comment=_comment(values),
        ),
        container=container,
    )


def _function(text: str, statement: str) -> DefineStatement:
    match = re.match(r"^fn::([\w:]+)\s*\(", text)
    if not match:
        raise StatementError("Expected 'fn::<name>(' in function definition", statement)
    open_paren = match.end() - 1
    close_paren = matching_close(text, open_paren)
    params: list[FunctionParam] = []
    for raw in split_top_level(text[open_paren + 1 : close_paren], ","):
        if not raw.strip():
            continue
        param_name, _, param_type = raw.partition(":")
        params.append(FunctionParam(param_name.strip().lstrip("$"), param_type.strip() or "any"))
    rest = text[close_paren + 1 :]
    open_brace = rest.find("{")
    if open_brace == -1:
        raise StatementError("Function definition has no body", statement)
    head = rest[:open_brace].strip()
    return_type = head[2:].strip() if head.startswith("->") else None
    close_brace = matching_close(rest, open_brace)
    body = rest[open_brace + 1 : close_brace].strip()
    _, values = _clauses(rest[close_brace + 1 :], ["PERMISSIONS", "COMMENT"])
    return DefineStatement(
        EntityKind.FUNCTION,
        FunctionDefinition(
            name=match.group(1),
            body=body,
            params=tuple(params),
            return_type=return_type or None,
            permissions=_permissions(values.get("PERMISSIONS")),
            comment=_comment(values),
        ),
    )


def _analyzer(text: str, statement: str) -> DefineStatement:
    prefix, values = _clauses(text, ["FUNCTION", "TOKENIZERS", "FILTERS", "COMMENT"])
    function = values.get("FUNCTION")
    if function and function.startswith("fn::"):
        function = function[len("fn::") :]
    return DefineStatement(
        EntityKind.ANALYZER,
        IndexAnalyzerDefinition(
            name=prefix,
            tokenizers=tuple(t.strip() for t in split_top_level(values.get("TOKENIZERS", ""), ",") if t.strip()),
            filters=tuple(f.strip() for f in split_top_level(values.get("FILTERS", ""), ",") if f.strip()),
            function=function or None,
            comment=_comment(values),
        ),
    )


def parse_durations(raw: str) -> dict[str, str | None]:
    """Read ``FOR TOKEN x, FOR SESSION y`` into {"token": x, "session": y}."""
    token = re.search(r"FOR TOKEN (\S+?)(?:,|$)", raw)
    session = re.search(r"FOR SESSION (\S+?)(?:,|$)", raw)
    return {
        "token": token.group(1) if token else None,
        "session": session.group(1) if session else None,
    }


def _access(text: str, statement: str) -> DefineStatement:
    prefix, values = _clauses(
        text, ["TYPE", "SIGNUP", "SIGNIN", "AUTHENTICATE", "DURATION", "COMMENT"]
    )
    name = prefix.replace(" ON DATABASE", "").strip()
    durations = parse_durations(values.get("DURATION", ""))
    return DefineStatement(
        EntityKind.ACCESS,
        AccessDefinition(
            name=name,
            access_type=AccessType(values.get("TYPE", "RECORD").lower()),
            signup=_unwrap(values["SIGNUP"]) if "SIGNUP" in values else None,
            signin=_unwrap(values["SIGNIN"]) if "SIGNIN" in values else None,
            authenticate=_unwrap(values["AUTHENTICATE"]) if "AUTHENTICATE" in values else None,
            session_duration=durations["session"],
            token_duration=durations["token"],
            comment=_comment(values),
        ),
    )


def _param(text: str, statement: str) -> DefineStatement:
    prefix, values = _clauses(text, ["VALUE", "PERMISSIONS", "COMMENT"])
    if "VALUE" not in values:
        raise StatementError("Param definition requires VALUE", statement)
    return DefineStatement(
        EntityKind.PARAM,
        ParamDefinition(
            name=prefix.lstrip("$"),
            value=values["VALUE"],
            permissions=_permissions(values.get("PERMISSIONS")),
            comment=_comment(values),
        ),
    )


def _sequence(text: str, statement: str) -> DefineStatement:
    prefix, values = _clauses(text, ["BATCH", "START", "TIMEOUT", "COMMENT"])
    return DefineStatement(
        EntityKind.SEQUENCE,
        SequenceDefinition(
            name=prefix,
            start=int(values.get("START", "0")),
            batch=int(values["BATCH"]) if "BATCH" in values else None,
            timeout=values.get("TIMEOUT"),
            comment=_comment(values),
        ),
    )


def _roles(raw: str) -> tuple[str, ...]:
    return tuple(role.strip() for role in raw.split(",") if role.strip())


def _user(text: str, statement: str) -> DefineStatement:
    prefix, values = _clauses(text, ["PASSHASH", "ROLES", "DURATION", "COMMENT"])
    match = _USER_REF_RE.match(prefix)
    if not match:
        raise StatementError(f"Expected '<name> ON ROOT|NAMESPACE|DATABASE' in: {prefix}", statement)
    durations = parse_durations(values.get("DURATION", ""))
    passhash = values.get("PASSHASH")
    return DefineStatement(
        EntityKind.USER,
        UserDefinition(
            name=match.group(1),
            level=UserLevel(match.group(2).lower()),
            roles=_roles(values["ROLES"]) if "ROLES" in values else ("VIEWER",),
            passhash=json.loads(passhash) if passhash is not None else None,
            session_duration=durations["session"],
            token_duration=durations["token"],
            comment=_comment(values),
        ),
    )


_DEFINERS = {
    EntityKind.TABLE: _table,
    EntityKind.FIELD: _field,
    EntityKind.INDEX: _index,
    EntityKind.TRIGGER: _event,
    EntityKind.FUNCTION: _function,
    EntityKind.ANALYZER: _analyzer,
    EntityKind.ACCESS: _access,
    EntityKind.PARAM: _param,
    EntityKind.SEQUENCE: _sequence,
    EntityKind.USER: _user,
}


def _parse_ref(kind: EntityKind, text: str, statement: str) -> tuple[str, str | None, str]:
    """Split ``<ref> <rest>`` into (name, container, rest)."""
    if kind.is_child:
        match = re.match(r"^(\S+) ON TABLE (\S+)\s*(.*)$", text, re.DOTALL)
        if not match:
            raise StatementError(f"Expected '<name> ON TABLE <table>' in: {text}", statement)
        return match.group(1), match.group(2), match.group(3)
    if kind == EntityKind.ACCESS:
        match = re.match(r"^(\S+) ON DATABASE\s*(.*)$", text, re.DOTALL)
    elif kind == EntityKind.USER:
        match = re.match(r"^(\S+) ON (?:ROOT|NAMESPACE|DATABASE)\s*(.*)$", text, re.DOTALL)
    else:
        match = re.match(r"^(\S+)\s*(.*)$", text, re.DOTALL)
    if not match:
        raise StatementError(f"Missing entity name in: {text}", statement)
    name = match.group(1)
    if kind == EntityKind.FUNCTION and name.startswith("fn::"):
        name = name[len("fn::") :]
    if kind == EntityKind.PARAM:
        name = name.lstrip("$")
    return name, None, match.group(2)


def _drop_or(keyword: str, body: str) -> tuple[bool, str]:
    if body == f"DROP {keyword}":
        return True, ""
    return False, body[len(keyword) :].strip()


def parse_alter_body(kind: EntityKind, body: str, statement: str = "") -> tuple[str, Any]:
    """Read an ALTER clause into (clause, value); None values mean "drop"."""
    body = body.strip()
    head = body.split(" ", 1)[0] if not body.startswith("DROP ") else body.split(" ", 2)[1]
    if head in ("SCHEMAFULL", "SCHEMALESS"):
        return "schema_mode", SchemaMode.STRICT if head == "SCHEMAFULL" else SchemaMode.FLEXIBLE
    if head == "READONLY":
        return "readonly", not body.startswith("DROP ")
    if head == "PERMISSIONS":
        return "permissions", _permissions(body[len("PERMISSIONS") :].strip())
    if head == "COMMENT":
        dropped, raw = _drop_or("COMMENT", body)
        return "comment", None if dropped else _comment({"COMMENT": raw})
    if head == "TYPE":
        return "type", body[len("TYPE") :].strip()
    if head == "WHEN":
        return "when", parse_event_condition(body[len("WHEN") :].strip())
    if head == "THEN":
        return "then", parse_event_block(body[len("THEN") :].strip())
    if head == "DURATION":
        dropped, raw = _drop_or("DURATION", body)
        return "duration", parse_durations("" if dropped else raw)
    if head == "ROLES":
        return "roles", _roles(body[len("ROLES") :])
    clause_names = {
        "DEFAULT": "default",
        "VALUE": "value",
        "ASSERT": "assert",
        "CHANGEFEED": "changefeed",
        "AUTHENTICATE": "authenticate",
        "BATCH": "batch",
        "TIMEOUT": "timeout",
    }
    if head in clause_names:
        dropped, raw = _drop_or(head, body)
        if dropped:
            return clause_names[head], None
        if head == "ASSERT":
            return "assert", tuple(split_conjuncts(raw))
        if head == "AUTHENTICATE":
            return "authenticate", _unwrap(raw)
        if head == "BATCH":
            return "batch", int(raw)
        return clause_names[head], raw
    raise StatementError(f"Unknown ALTER clause for {kind.value}: {body}", statement)


def parse_statement(statement: str) -> Statement:
    """Parse one DDL statement.

    Raises:
        StatementError: If the statement is not part of the dialect
    """
    text = statement.strip().rstrip(";").strip()
    match = re.match(r"^(DEFINE|REMOVE|ALTER)\s+(\w+)\s+(.*)$", text, re.DOTALL)
    if not match or match.group(2) not in _KINDS:
        raise StatementError(f"Unrecognized statement: {statement}", statement)
    verb, keyword, rest = match.groups()
    kind = _KINDS[keyword]
    try:
        if verb == "DEFINE":
            body, overwrite = _split_overwrite(rest)
            parsed = _DEFINERS[kind](body, statement)
            return DefineStatement(parsed.kind, parsed.entity, parsed.container, overwrite)
        name, container, tail = _parse_ref(kind, rest, statement)
        if verb == "REMOVE":
            return RemoveStatement(kind, name, container)
        if tail.startswith("RENAME TO "):
            new_name = tail[len("RENAME TO ") :].strip()
            if kind == EntityKind.FUNCTION and new_name.startswith("fn::"):
                new_name = new_name[len("fn::") :]
            return RenameStatement(kind, name, new_name.lstrip("$"), container)
        clause, value = parse_alter_body(kind, tail, statement)
        return AlterStatement(kind, name, clause, value, container)
    except (NormalizationError, ValueError) as e:
        raise StatementError(f"Malformed statement: {e}", statement) from e
