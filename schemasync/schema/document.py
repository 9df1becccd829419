"""
Schema document: the root container of the intermediate representation.

A SchemaDocument holds every entity collection for one database. Desired
documents come from schema files; live documents come from introspection.
Both are compared only after normalization.

Invariants:
    - Entity names are unique within their kind
    - Collections preserve declaration order
    - fingerprint() is stable for equal documents

How to change safely:
    - New entity kinds need a collection here, in to_dict/from_dict and in
      the comparator's kind order
    - Never include volatile data (timestamps, ids) in the fingerprint
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

from .types import (
    AccessDefinition,
    FunctionDefinition,
    IndexAnalyzerDefinition,
    ParamDefinition,
    RelationDefinition,
    SequenceDefinition,
    TableDefinition,
    TableKind,
    UserDefinition,
)

DOCUMENT_FORMAT_VERSION = 1


@dataclass(frozen=True)
class SchemaDocument:
    """Complete schema of one database.

    Attributes:
        tables: Ordered table definitions
        relations: Ordered relation definitions
        functions: Ordered function definitions
        analyzers: Ordered analyzer definitions
        accesses: Ordered access definitions
        params: Ordered param definitions
        sequences: Ordered sequence definitions
        users: Ordered system user definitions

    Example:
        >>> doc = SchemaDocument(tables=(TableDefinition(name="user"),))
        >>> doc.get_table("user").name
        'user'
    """

    tables: tuple[TableDefinition, ...] = ()
    relations: tuple[RelationDefinition, ...] = ()
    functions: tuple[FunctionDefinition, ...] = ()
    analyzers: tuple[IndexAnalyzerDefinition, ...] = ()
    accesses: tuple[AccessDefinition, ...] = ()
    params: tuple[ParamDefinition, ...] = ()
    sequences: tuple[SequenceDefinition, ...] = ()
    users: tuple[UserDefinition, ...] = ()

    def __post_init__(self) -> None:
        """Validate name uniqueness per kind."""
        # Tables and relations share one namespace in the database
        container_names = [t.name for t in self.tables] + [r.name for r in self.relations]
        self._check_unique("table/relation", container_names)
        self._check_unique("function", [f.name for f in self.functions])
        self._check_unique("analyzer", [a.name for a in self.analyzers])
        self._check_unique("access", [a.name for a in self.accesses])
        self._check_unique("param", [p.name for p in self.params])
        self._check_unique("sequence", [s.name for s in self.sequences])
        self._check_unique("user", [u.name for u in self.users])

    @staticmethod
    def _check_unique(kind: str, names: list[str]) -> None:
        seen: set[str] = set()
        for name in names:
            if name in seen:
                raise ValueError(f"Duplicate {kind} name '{name}'")
            seen.add(name)

    def get_table(self, name: str) -> TableDefinition | None:
        return next((t for t in self.tables if t.name == name), None)

    def get_relation(self, name: str) -> RelationDefinition | None:
        return next((r for r in self.relations if r.name == name), None)

    def get_container(self, name: str) -> TableDefinition | RelationDefinition | None:
        """Get a table or relation by name."""
        return self.get_table(name) or self.get_relation(name)

    def get_function(self, name: str) -> FunctionDefinition | None:
        return next((f for f in self.functions if f.name == name), None)

    def get_analyzer(self, name: str) -> IndexAnalyzerDefinition | None:
        return next((a for a in self.analyzers if a.name == name), None)

    def container_names(self) -> set[str]:
        """Names of every table and relation."""
        return {t.name for t in self.tables} | {r.name for r in self.relations}

    def relation_endpoints(self) -> dict[str, tuple[str, ...]]:
        """Map every relation-kind container to its endpoint tables."""
        endpoints: dict[str, tuple[str, ...]] = {}
        for table in self.tables:
            if table.kind == TableKind.RELATION:
                endpoints[table.name] = table.endpoints
        for relation in self.relations:
            endpoints[relation.name] = relation.endpoints
        return endpoints

    @property
    def is_empty(self) -> bool:
        return not any(
            (
                self.tables,
                self.relations,
                self.functions,
                self.analyzers,
                self.accesses,
                self.params,
                self.sequences,
                self.users,
            )
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        return {
            "version": DOCUMENT_FORMAT_VERSION,
            "tables": [t.to_dict() for t in self.tables],
            "relations": [r.to_dict() for r in self.relations],
            "functions": [f.to_dict() for f in self.functions],
            "analyzers": [a.to_dict() for a in self.analyzers],
            "accesses": [a.to_dict() for a in self.accesses],
            "params": [p.to_dict() for p in self.params],
            "sequences": [s.to_dict() for s in self.sequences],
            "users": [u.to_dict() for u in self.users],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaDocument:
        """Create from dictionary representation."""
        return cls(
            tables=tuple(TableDefinition.from_dict(t) for t in data.get("tables", ())),
            relations=tuple(RelationDefinition.from_dict(r) for r in data.get("relations", ())),
            functions=tuple(FunctionDefinition.from_dict(f) for f in data.get("functions", ())),
            analyzers=tuple(
                IndexAnalyzerDefinition.from_dict(a) for a in data.get("analyzers", ())
            ),
            accesses=tuple(AccessDefinition.from_dict(a) for a in data.get("accesses", ())),
            params=tuple(ParamDefinition.from_dict(p) for p in data.get("params", ())),
            sequences=tuple(SequenceDefinition.from_dict(s) for s in data.get("sequences", ())),
            users=tuple(UserDefinition.from_dict(u) for u in data.get("users", ())),
        )

    def to_json(self) -> str:
        """Serialize to deterministic JSON."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_json(cls, json_str: str) -> SchemaDocument:
        return cls.from_dict(json.loads(json_str))

    def fingerprint(self) -> str:
        """Compute a stable SHA-256 fingerprint of the document.

        Returns:
            ``sha256:<hex>`` over the canonical JSON form
        """
        digest = hashlib.sha256(self.to_json().encode("utf-8")).hexdigest()
        return f"sha256:{digest}"
