"""
Schema normalization.

Rewrites a SchemaDocument into canonical form so that the comparator sees
semantic differences only. Both desired and live documents pass through the
same rules:

- Type signatures: lower-cased, whitespace removed, aliases collapsed
  (``boolean`` -> ``bool``, ``integer`` -> ``int``) and every nullable
  spelling (``option<T>``, ``T?``, ``none | T``) lifted into ``optional=True``
- Durations: one canonical unit (see expressions.normalize_duration)
- Expressions: canonical whitespace, quoting and boolean structure
- Assertion lists: split into top-level conjuncts, order preserved
- Permissions: FULL / empty collapse to None
- User roles: upper-cased, deduplicated and sorted (roles are a set)
- Synthetic entries dropped: array element placeholders (``tags.*``,
  ``tags[*]``) and the implicit ``in``/``out`` fields of relations

Invariants:
    - normalize() is pure and deterministic
    - normalize(normalize(doc)) == normalize(doc)
    - Errors name the entity path they occurred at

How to change safely:
    - Every new rule must hold for text echoed back by the database
    - Keep rules in expressions.py when they apply to free-form text
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace

from ..errors import NormalizationError
from .document import SchemaDocument
from .expressions import (
    canonical_condition,
    canonical_permissions,
    canonical_text,
    normalize_duration,
    split_conjuncts,
    split_top_level,
)
from .types import (
    AccessDefinition,
    FieldDefinition,
    FunctionDefinition,
    FunctionParam,
    IndexAnalyzerDefinition,
    IndexDefinition,
    ParamDefinition,
    RelationDefinition,
    SequenceDefinition,
    TableDefinition,
    TableKind,
    TriggerDefinition,
    UserDefinition,
)

logger = logging.getLogger(__name__)

TYPE_ALIASES = {
    "boolean": "bool",
    "integer": "int",
}

RELATION_IMPLICIT_FIELDS = ("in", "out")


def _split_union(signature: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(signature):
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth -= 1
        elif ch == "|" and depth == 0:
            parts.append(signature[start:i])
            start = i + 1
    parts.append(signature[start:])
    return parts


def normalize_type(signature: str | None) -> tuple[str, bool]:
    """Canonicalize a type signature.

    Args:
        signature: Raw type signature

    Returns:
        Tuple of (canonical inner type, optional flag)

    Example:
        >>> normalize_type("none | String")
        ('string', True)
        >>> normalize_type("array< boolean >")
        ('array<bool>', False)
    """
    if not signature:
        return "any", False
    text = re.sub(r"\s+", "", signature.lower())
    optional = False
    while True:
        if text.endswith("?"):
            text, optional = text[:-1], True
            continue
        if text.startswith("option<") and text.endswith(">"):
            text, optional = text[len("option<") : -1], True
            continue
        parts = _split_union(text)
        if len(parts) > 1 and "none" in parts:
            text = "|".join(p for p in parts if p != "none")
            optional = True
            continue
        break
    for alias, canonical in TYPE_ALIASES.items():
        text = re.sub(rf"\b{alias}\b", canonical, text)
    return text or "any", optional


def _optional_type(signature: str | None) -> str | None:
    if signature is None:
        return None
    inner, optional = normalize_type(signature)
    return f"option<{inner}>" if optional else inner


def _comment(value: str | None) -> str | None:
    if value is None or value in ("", "null", "undefined"):
        return None
    return value


def _condition(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return canonical_condition(value)


def _text(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return canonical_text(value)


def _duration(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return normalize_duration(value)


def is_synthetic_field(name: str, relation: bool) -> bool:
    """Whether a field is generated by the database rather than declared."""
    if name.endswith(".*") or name.endswith("[*]"):
        return True
    return relation and name in RELATION_IMPLICIT_FIELDS


class Normalizer:
    """Applies canonicalization rules to every entity of a document.

    Example:
        >>> canonical = Normalizer().normalize(document)
    """

    def normalize(self, doc: SchemaDocument) -> SchemaDocument:
        """Return the canonical form of a document.

        Raises:
            NormalizationError: If an expression cannot be canonicalized
        """
        return SchemaDocument(
            tables=tuple(self._table(t) for t in doc.tables),
            relations=tuple(self._relation(r) for r in doc.relations),
            functions=tuple(self._function(f) for f in doc.functions),
            analyzers=tuple(self._analyzer(a) for a in doc.analyzers),
            accesses=tuple(self._access(a) for a in doc.accesses),
            params=tuple(self._param(p) for p in doc.params),
            sequences=tuple(self._sequence(s) for s in doc.sequences),
            users=tuple(self._user(u) for u in doc.users),
        )

    def _guard(self, path: str, fn, *args):
        try:
            return fn(*args)
        except NormalizationError as e:
            if e.entity_path:
                raise
            raise NormalizationError(
                f"{path}: {e.message}", expression=e.expression, entity_path=path
            ) from e

    def _fields(self, container: str, fields: tuple[FieldDefinition, ...], relation: bool):
        result = []
        for f in fields:
            if is_synthetic_field(f.name, relation):
                logger.debug(f"Dropping synthetic field {container}.{f.name}")
                continue
            result.append(self._guard(f"table:{container}.field:{f.name}", self._field, f))
        return tuple(result)

    def _field(self, f: FieldDefinition) -> FieldDefinition:
        type_signature, optional = normalize_type(f.type_signature)
        assertions: list[str] = []
        for assertion in f.assertions:
            if assertion and assertion.strip():
                assertions.extend(split_conjuncts(assertion))
        return replace(
            f,
            type_signature=type_signature,
            optional=f.optional or optional,
            default_expr=_condition(f.default_expr),
            computed_expr=_condition(f.computed_expr),
            assertions=tuple(assertions),
            permissions=canonical_permissions(f.permissions),
            comment=_comment(f.comment),
        )

    def _index(self, index: IndexDefinition) -> IndexDefinition:
        return replace(
            index,
            columns=tuple(c.strip() for c in index.columns),
            comment=_comment(index.comment),
        )

    def _trigger(self, trigger: TriggerDefinition) -> TriggerDefinition:
        statements: list[str] = []
        for statement in trigger.then_statements:
            for part in split_top_level(canonical_text(statement), ";"):
                if part.strip():
                    statements.append(canonical_text(part))
        when = _condition(trigger.when_expr)
        if when is not None and when.lower() == "true":
            when = None
        return replace(
            trigger,
            when_expr=when,
            then_statements=tuple(statements),
            comment=_comment(trigger.comment),
        )

    def _children(self, container, relation: bool) -> dict:
        name = container.name
        return {
            "fields": self._fields(name, container.fields, relation),
            "indexes": tuple(
                self._guard(f"table:{name}.index:{i.name}", self._index, i)
                for i in container.indexes
            ),
            "triggers": tuple(
                self._guard(f"table:{name}.trigger:{t.name}", self._trigger, t)
                for t in container.triggers
            ),
        }

    def _table(self, table: TableDefinition) -> TableDefinition:
        path = f"table:{table.name}"
        return replace(
            table,
            **self._children(table, table.kind == TableKind.RELATION),
            permissions=self._guard(path, canonical_permissions, table.permissions),
            view_query=self._guard(path, _text, table.view_query),
            retention_policy=_duration(table.retention_policy),
            comment=_comment(table.comment),
        )

    def _relation(self, relation: RelationDefinition) -> RelationDefinition:
        path = f"relation:{relation.name}"
        return replace(
            relation,
            **self._children(relation, True),
            permissions=self._guard(path, canonical_permissions, relation.permissions),
            comment=_comment(relation.comment),
        )

    def _function(self, fn: FunctionDefinition) -> FunctionDefinition:
        path = f"function:{fn.name}"
        return replace(
            fn,
            body=self._guard(path, canonical_text, fn.body),
            params=tuple(
                FunctionParam(p.name, _optional_type(p.type_signature) or "any") for p in fn.params
            ),
            return_type=_optional_type(fn.return_type),
            permissions=self._guard(path, canonical_permissions, fn.permissions),
            comment=_comment(fn.comment),
        )

    def _analyzer(self, analyzer: IndexAnalyzerDefinition) -> IndexAnalyzerDefinition:
        function = analyzer.function
        if function and function.startswith("fn::"):
            function = function[len("fn::"):]
        return replace(
            analyzer,
            tokenizers=tuple(t.strip().lower() for t in analyzer.tokenizers),
            filters=tuple(re.sub(r"\s+", "", f).lower() for f in analyzer.filters),
            function=function or None,
            comment=_comment(analyzer.comment),
        )

    def _access(self, access: AccessDefinition) -> AccessDefinition:
        path = f"access:{access.name}"
        return replace(
            access,
            signup=self._guard(path, _text, access.signup),
            signin=self._guard(path, _text, access.signin),
            authenticate=self._guard(path, _text, access.authenticate),
            session_duration=_duration(access.session_duration),
            token_duration=_duration(access.token_duration),
            comment=_comment(access.comment),
        )

    def _param(self, param: ParamDefinition) -> ParamDefinition:
        path = f"param:{param.name}"
        return replace(
            param,
            value=self._guard(path, canonical_condition, param.value),
            permissions=self._guard(path, canonical_permissions, param.permissions),
            comment=_comment(param.comment),
        )

    def _sequence(self, sequence: SequenceDefinition) -> SequenceDefinition:
        return replace(
            sequence,
            timeout=_duration(sequence.timeout),
            comment=_comment(sequence.comment),
        )

    def _user(self, user: UserDefinition) -> UserDefinition:
        return replace(
            user,
            roles=tuple(sorted({r.strip().upper() for r in user.roles})),
            session_duration=_duration(user.session_duration),
            token_duration=_duration(user.token_duration),
            comment=_comment(user.comment),
        )


def normalize(doc: SchemaDocument) -> SchemaDocument:
    """Normalize a document with the default rules."""
    return Normalizer().normalize(doc)
