"""
Core type definitions for the SchemaSync intermediate representation.

This module defines the entities a schema document is made of:
- FieldDefinition: A (possibly nested, dot-path) field on a table
- IndexDefinition: An index with kind-specific parameters
- TriggerDefinition: An event fired on record changes
- TableDefinition / RelationDefinition: Containers of the above
- FunctionDefinition, IndexAnalyzerDefinition, AccessDefinition,
  ParamDefinition, SequenceDefinition, UserDefinition: Database-level entities

Every entity carries an ordered ``rename_history`` (oldest first) listing the
names it was previously known by. Rename detection reads only this list.

Invariants:
    - Entities are immutable (frozen dataclasses holding tuples)
    - Names are unique within their kind and container
    - default_expr and computed_expr are mutually exclusive
    - A relation-kind table has exactly two endpoints
    - Index params always match the index kind

How to change safely:
    - Add new optional attributes with defaults
    - Extend to_dict/from_dict and the comparator property list together
    - Never reorder tuple attributes when serializing

Example:
    >>> from schemasync.schema.types import TableDefinition, field
    >>> user = TableDefinition(
    ...     name="user",
    ...     fields=(
    ...         field("email", "string", assertions=("string::is::email($value)",)),
    ...         field("age", "int", rename_history=("yearsOld",)),
    ...     ),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class SchemaMode(Enum):
    """Whether a table rejects undeclared fields."""

    STRICT = "strict"  # SCHEMAFULL
    FLEXIBLE = "flexible"  # SCHEMALESS


class TableKind(Enum):
    """What records a table may hold."""

    NORMAL = "normal"
    RELATION = "relation"
    ANY = "any"


class IndexKind(Enum):
    """Supported index kinds."""

    STANDARD = "standard"
    UNIQUE = "unique"
    HASH = "hash"
    FULLTEXT = "fulltext"
    VECTOR = "vector"


class TriggerOperation(Enum):
    """Record operation a trigger fires on."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ANY = "any"


class AccessType(Enum):
    """Authentication method of an access definition."""

    RECORD = "record"
    JWT = "jwt"
    BEARER = "bearer"


VECTOR_DISTANCES = (
    "cosine",
    "euclidean",
    "manhattan",
    "minkowski",
    "chebyshev",
    "hamming",
    "jaccard",
    "pearson",
)


def _check_name(kind: str, name: str) -> None:
    if not name or not name.strip():
        raise ValueError(f"{kind} name cannot be empty")


def _check_history(kind: str, name: str, history: tuple[str, ...]) -> None:
    if name in history:
        raise ValueError(f"{kind} '{name}' lists its own name in rename_history")
    if len(set(history)) != len(history):
        raise ValueError(f"{kind} '{name}' has duplicate rename_history entries")


def _check_unique(kind: str, owner: str, names: list[str]) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValueError(f"Duplicate {kind} '{name}' on '{owner}'")
        seen.add(name)


def _put_optional(result: dict[str, Any], key: str, value: Any) -> None:
    if value is not None and value != () and value != "":
        result[key] = list(value) if isinstance(value, tuple) else value


@dataclass(frozen=True)
class FieldDefinition:
    """Definition of a single field on a table or relation.

    Attributes:
        name: Dot-path name (``address.city`` for nested fields)
        type_signature: Type expression, e.g. ``string``, ``array<record<user>>``
        optional: Whether the field may be absent (``option<T>``)
        readonly: Whether the value is fixed after creation
        default_expr: Expression evaluated when no value is given
        computed_expr: Expression evaluated on every write (VALUE clause)
        assertions: Conditions combined with logical AND, order preserved
        permissions: Permission expression (None means full access)
        comment: Free-form comment
        rename_history: Previous names, oldest first

    Invariants:
        - default_expr and computed_expr are mutually exclusive
    """

    name: str
    type_signature: str = "any"
    optional: bool = False
    readonly: bool = False
    default_expr: str | None = None
    computed_expr: str | None = None
    assertions: tuple[str, ...] = ()
    permissions: str | None = None
    comment: str | None = None
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate field definition."""
        _check_name("Field", self.name)
        if not self.type_signature:
            raise ValueError(f"Field '{self.name}' must have a type signature")
        if self.default_expr is not None and self.computed_expr is not None:
            raise ValueError(
                f"Field '{self.name}' cannot have both a default and a computed expression"
            )
        _check_history("Field", self.name, self.rename_history)

    @property
    def effective_type(self) -> str:
        """Type signature including the optional wrapper."""
        if self.optional:
            return f"option<{self.type_signature}>"
        return self.type_signature

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"name": self.name, "type": self.type_signature}
        if self.optional:
            result["optional"] = True
        if self.readonly:
            result["readonly"] = True
        _put_optional(result, "default", self.default_expr)
        _put_optional(result, "value", self.computed_expr)
        _put_optional(result, "assert", self.assertions)
        _put_optional(result, "permissions", self.permissions)
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDefinition:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            type_signature=data.get("type", "any"),
            optional=data.get("optional", False),
            readonly=data.get("readonly", False),
            default_expr=data.get("default"),
            computed_expr=data.get("value"),
            assertions=tuple(data.get("assert", ())),
            permissions=data.get("permissions"),
            comment=data.get("comment"),
            rename_history=tuple(data.get("was", ())),
        )


@dataclass(frozen=True)
class VectorIndexParams:
    """Parameters of a vector (HNSW) index."""

    dimension: int
    distance: str = "cosine"
    efc: int | None = None
    m: int | None = None

    def __post_init__(self) -> None:
        if self.dimension <= 0:
            raise ValueError(f"Vector dimension must be positive, got {self.dimension}")
        if self.distance not in VECTOR_DISTANCES:
            raise ValueError(
                f"Invalid vector distance '{self.distance}'. Valid: {list(VECTOR_DISTANCES)}"
            )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "type": "vector",
            "dimension": self.dimension,
            "distance": self.distance,
        }
        _put_optional(result, "efc", self.efc)
        _put_optional(result, "m", self.m)
        return result


@dataclass(frozen=True)
class FulltextIndexParams:
    """Parameters of a full-text search index."""

    analyzer: str
    bm25_k1: float | None = None
    bm25_b: float | None = None
    highlights: bool = False

    def __post_init__(self) -> None:
        if not self.analyzer:
            raise ValueError("Fulltext index requires an analyzer")
        if (self.bm25_k1 is None) != (self.bm25_b is None):
            raise ValueError("BM25 requires both k1 and b")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": "fulltext", "analyzer": self.analyzer}
        _put_optional(result, "bm25_k1", self.bm25_k1)
        _put_optional(result, "bm25_b", self.bm25_b)
        if self.highlights:
            result["highlights"] = True
        return result


IndexParams = Union[VectorIndexParams, FulltextIndexParams]


def index_params_from_dict(data: dict[str, Any] | None) -> IndexParams | None:
    """Rebuild the tagged index-params variant from its dict form."""
    if not data:
        return None
    tag = data.get("type")
    if tag == "vector":
        return VectorIndexParams(
            dimension=data["dimension"],
            distance=data.get("distance", "cosine"),
            efc=data.get("efc"),
            m=data.get("m"),
        )
    if tag == "fulltext":
        return FulltextIndexParams(
            analyzer=data["analyzer"],
            bm25_k1=data.get("bm25_k1"),
            bm25_b=data.get("bm25_b"),
            highlights=data.get("highlights", False),
        )
    raise ValueError(f"Unknown index params type '{tag}'")


@dataclass(frozen=True)
class IndexDefinition:
    """Definition of an index on a table.

    Attributes:
        name: Index name, unique within the table
        columns: Ordered column list
        kind: Index kind
        params: Kind-specific parameters (vector and fulltext only)
        comment: Free-form comment
        rename_history: Previous names, oldest first
    """

    name: str
    columns: tuple[str, ...]
    kind: IndexKind = IndexKind.STANDARD
    params: IndexParams | None = None
    comment: str | None = None
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate index definition."""
        _check_name("Index", self.name)
        if not self.columns:
            raise ValueError(f"Index '{self.name}' must have at least one column")
        if self.kind == IndexKind.VECTOR:
            if not isinstance(self.params, VectorIndexParams):
                raise ValueError(f"Vector index '{self.name}' requires VectorIndexParams")
            if len(self.columns) != 1:
                raise ValueError(f"Vector index '{self.name}' must cover exactly one column")
        elif self.kind == IndexKind.FULLTEXT:
            if not isinstance(self.params, FulltextIndexParams):
                raise ValueError(f"Fulltext index '{self.name}' requires FulltextIndexParams")
        elif self.params is not None:
            raise ValueError(f"Index '{self.name}' of kind {self.kind.value} takes no params")
        _check_history("Index", self.name, self.rename_history)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "columns": list(self.columns),
            "kind": self.kind.value,
        }
        if self.params is not None:
            result["params"] = self.params.to_dict()
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexDefinition:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            columns=tuple(data["columns"]),
            kind=IndexKind(data.get("kind", "standard")),
            params=index_params_from_dict(data.get("params")),
            comment=data.get("comment"),
            rename_history=tuple(data.get("was", ())),
        )


@dataclass(frozen=True)
class TriggerDefinition:
    """Definition of an event trigger on a table.

    Attributes:
        name: Trigger name, unique within the table
        then_statements: Statements executed when the trigger fires
        operation: Record operation the trigger fires on
        when_expr: Extra condition (None means always)
        comment: Free-form comment
        rename_history: Previous names, oldest first
    """

    name: str
    then_statements: tuple[str, ...]
    operation: TriggerOperation = TriggerOperation.ANY
    when_expr: str | None = None
    comment: str | None = None
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate trigger definition."""
        _check_name("Trigger", self.name)
        if not self.then_statements:
            raise ValueError(f"Trigger '{self.name}' must have at least one statement")
        _check_history("Trigger", self.name, self.rename_history)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "operation": self.operation.value,
            "then": list(self.then_statements),
        }
        _put_optional(result, "when", self.when_expr)
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TriggerDefinition:
        """Create from dictionary representation."""
        then = data["then"]
        return cls(
            name=data["name"],
            then_statements=(then,) if isinstance(then, str) else tuple(then),
            operation=TriggerOperation(data.get("operation", "any")),
            when_expr=data.get("when"),
            comment=data.get("comment"),
            rename_history=tuple(data.get("was", ())),
        )


class _ContainerMixin:
    """Child lookup shared by tables and relations."""

    fields: tuple[FieldDefinition, ...]
    indexes: tuple[IndexDefinition, ...]
    triggers: tuple[TriggerDefinition, ...]

    def get_field(self, name: str) -> FieldDefinition | None:
        return next((f for f in self.fields if f.name == name), None)

    def get_index(self, name: str) -> IndexDefinition | None:
        return next((i for i in self.indexes if i.name == name), None)

    def get_trigger(self, name: str) -> TriggerDefinition | None:
        return next((t for t in self.triggers if t.name == name), None)

    def _validate_children(self, owner: str) -> None:
        _check_unique("field", owner, [f.name for f in self.fields])
        _check_unique("index", owner, [i.name for i in self.indexes])
        _check_unique("trigger", owner, [t.name for t in self.triggers])


@dataclass(frozen=True)
class TableDefinition(_ContainerMixin):
    """Definition of a table.

    Attributes:
        name: Table name
        schema_mode: Strict (schemafull) or flexible (schemaless)
        kind: Normal, relation or any
        fields: Ordered field definitions
        indexes: Ordered index definitions
        triggers: Ordered trigger definitions
        permissions: Permission expression (None means full access)
        view_query: Query the table is a projection of
        retention_policy: Change-feed retention duration
        comment: Free-form comment
        endpoints: (in, out) table names for relation-kind tables
        rename_history: Previous names, oldest first

    Invariants:
        - kind == RELATION exactly when endpoints holds two names
    """

    name: str
    schema_mode: SchemaMode = SchemaMode.STRICT
    kind: TableKind = TableKind.NORMAL
    fields: tuple[FieldDefinition, ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()
    triggers: tuple[TriggerDefinition, ...] = ()
    permissions: str | None = None
    view_query: str | None = None
    retention_policy: str | None = None
    comment: str | None = None
    endpoints: tuple[str, ...] = ()
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate table definition."""
        _check_name("Table", self.name)
        if self.kind == TableKind.RELATION and len(self.endpoints) != 2:
            raise ValueError(f"Relation table '{self.name}' must have exactly two endpoints")
        if self.kind != TableKind.RELATION and self.endpoints:
            raise ValueError(f"Only relation tables have endpoints, '{self.name}' is {self.kind.value}")
        self._validate_children(self.name)
        _check_history("Table", self.name, self.rename_history)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "schema_mode": self.schema_mode.value,
            "kind": self.kind.value,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.indexes:
            result["indexes"] = [i.to_dict() for i in self.indexes]
        if self.triggers:
            result["triggers"] = [t.to_dict() for t in self.triggers]
        _put_optional(result, "permissions", self.permissions)
        _put_optional(result, "view", self.view_query)
        _put_optional(result, "changefeed", self.retention_policy)
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "endpoints", self.endpoints)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TableDefinition:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            schema_mode=SchemaMode(data.get("schema_mode", "strict")),
            kind=TableKind(data.get("kind", "normal")),
            fields=tuple(FieldDefinition.from_dict(f) for f in data.get("fields", ())),
            indexes=tuple(IndexDefinition.from_dict(i) for i in data.get("indexes", ())),
            triggers=tuple(TriggerDefinition.from_dict(t) for t in data.get("triggers", ())),
            permissions=data.get("permissions"),
            view_query=data.get("view"),
            retention_policy=data.get("changefeed"),
            comment=data.get("comment"),
            endpoints=tuple(data.get("endpoints", ())),
            rename_history=tuple(data.get("was", ())),
        )


@dataclass(frozen=True)
class RelationDefinition(_ContainerMixin):
    """Definition of a relation (edge table) between two tables.

    Attributes:
        name: Relation table name
        from_table: Table records point from (``in``)
        to_table: Table records point to (``out``)
        enforced: Whether endpoints must exist when relating
        schema_mode: Strict or flexible
        fields: Ordered field definitions (excluding implicit in/out)
        indexes: Ordered index definitions
        triggers: Ordered trigger definitions
        permissions: Permission expression (None means full access)
        comment: Free-form comment
        rename_history: Previous names, oldest first
    """

    name: str
    from_table: str
    to_table: str
    enforced: bool = False
    schema_mode: SchemaMode = SchemaMode.STRICT
    fields: tuple[FieldDefinition, ...] = ()
    indexes: tuple[IndexDefinition, ...] = ()
    triggers: tuple[TriggerDefinition, ...] = ()
    permissions: str | None = None
    comment: str | None = None
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate relation definition."""
        _check_name("Relation", self.name)
        if not self.from_table or not self.to_table:
            raise ValueError(f"Relation '{self.name}' must name both endpoints")
        self._validate_children(self.name)
        _check_history("Relation", self.name, self.rename_history)

    @property
    def endpoints(self) -> tuple[str, str]:
        return (self.from_table, self.to_table)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "from": self.from_table,
            "to": self.to_table,
            "schema_mode": self.schema_mode.value,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.enforced:
            result["enforced"] = True
        if self.indexes:
            result["indexes"] = [i.to_dict() for i in self.indexes]
        if self.triggers:
            result["triggers"] = [t.to_dict() for t in self.triggers]
        _put_optional(result, "permissions", self.permissions)
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelationDefinition:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            from_table=data["from"],
            to_table=data["to"],
            enforced=data.get("enforced", False),
            schema_mode=SchemaMode(data.get("schema_mode", "strict")),
            fields=tuple(FieldDefinition.from_dict(f) for f in data.get("fields", ())),
            indexes=tuple(IndexDefinition.from_dict(i) for i in data.get("indexes", ())),
            triggers=tuple(TriggerDefinition.from_dict(t) for t in data.get("triggers", ())),
            permissions=data.get("permissions"),
            comment=data.get("comment"),
            rename_history=tuple(data.get("was", ())),
        )


@dataclass(frozen=True)
class FunctionParam:
    """A named, typed function parameter (name without ``$``)."""

    name: str
    type_signature: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.type_signature}


@dataclass(frozen=True)
class FunctionDefinition:
    """Definition of a stored function (``fn::name``).

    Attributes:
        name: Function name without the ``fn::`` prefix
        body: Function body without the enclosing braces
        params: Ordered parameters
        return_type: Declared return type
        permissions: Permission expression (None means full access)
        comment: Free-form comment
        rename_history: Previous names, oldest first
    """

    name: str
    body: str
    params: tuple[FunctionParam, ...] = ()
    return_type: str | None = None
    permissions: str | None = None
    comment: str | None = None
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate function definition."""
        _check_name("Function", self.name)
        if self.name.startswith("fn::"):
            raise ValueError(f"Function name '{self.name}' must not include the fn:: prefix")
        if not self.body.strip():
            raise ValueError(f"Function '{self.name}' must have a body")
        _check_unique("parameter", self.name, [p.name for p in self.params])
        _check_history("Function", self.name, self.rename_history)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"name": self.name, "body": self.body}
        if self.params:
            result["params"] = [p.to_dict() for p in self.params]
        _put_optional(result, "returns", self.return_type)
        _put_optional(result, "permissions", self.permissions)
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FunctionDefinition:
        """Create from dictionary representation."""
        name = data["name"]
        if name.startswith("fn::"):
            name = name[len("fn::"):]
        return cls(
            name=name,
            body=data["body"],
            params=tuple(FunctionParam(p["name"].lstrip("$"), p["type"]) for p in data.get("params", ())),
            return_type=data.get("returns"),
            permissions=data.get("permissions"),
            comment=data.get("comment"),
            rename_history=tuple(data.get("was", ())),
        )


@dataclass(frozen=True)
class IndexAnalyzerDefinition:
    """Definition of a full-text analyzer.

    Attributes:
        name: Analyzer name
        tokenizers: Ordered tokenizer names
        filters: Ordered filter specs (``lowercase``, ``snowball(english)``)
        function: Function (without ``fn::``) applied before tokenizing
        comment: Free-form comment
        rename_history: Previous names, oldest first
    """

    name: str
    tokenizers: tuple[str, ...] = ()
    filters: tuple[str, ...] = ()
    function: str | None = None
    comment: str | None = None
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _check_name("Analyzer", self.name)
        _check_history("Analyzer", self.name, self.rename_history)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"name": self.name}
        _put_optional(result, "tokenizers", self.tokenizers)
        _put_optional(result, "filters", self.filters)
        _put_optional(result, "function", self.function)
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexAnalyzerDefinition:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            tokenizers=tuple(data.get("tokenizers", ())),
            filters=tuple(data.get("filters", ())),
            function=data.get("function"),
            comment=data.get("comment"),
            rename_history=tuple(data.get("was", ())),
        )


@dataclass(frozen=True)
class AccessDefinition:
    """Definition of a database access method.

    Attributes:
        name: Access name
        access_type: Record, JWT or bearer access
        signup: Sign-up expression (record access)
        signin: Sign-in expression (record access)
        authenticate: Expression run on every authentication
        session_duration: Session lifetime
        token_duration: Token lifetime
        comment: Free-form comment
        rename_history: Previous names, oldest first
    """

    name: str
    access_type: AccessType = AccessType.RECORD
    signup: str | None = None
    signin: str | None = None
    authenticate: str | None = None
    session_duration: str | None = None
    token_duration: str | None = None
    comment: str | None = None
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _check_name("Access", self.name)
        if self.access_type != AccessType.RECORD and (self.signup or self.signin):
            raise ValueError(f"Access '{self.name}': signup/signin only apply to record access")
        _check_history("Access", self.name, self.rename_history)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"name": self.name, "type": self.access_type.value}
        _put_optional(result, "signup", self.signup)
        _put_optional(result, "signin", self.signin)
        _put_optional(result, "authenticate", self.authenticate)
        _put_optional(result, "session", self.session_duration)
        _put_optional(result, "token", self.token_duration)
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccessDefinition:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            access_type=AccessType(data.get("type", "record")),
            signup=data.get("signup"),
            signin=data.get("signin"),
            authenticate=data.get("authenticate"),
            session_duration=data.get("session"),
            token_duration=data.get("token"),
            comment=data.get("comment"),
            rename_history=tuple(data.get("was", ())),
        )


@dataclass(frozen=True)
class ParamDefinition:
    """Definition of a database-wide parameter (``$name``)."""

    name: str
    value: str
    permissions: str | None = None
    comment: str | None = None
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _check_name("Param", self.name)
        if self.name.startswith("$"):
            raise ValueError(f"Param name '{self.name}' must not include the $ prefix")
        _check_history("Param", self.name, self.rename_history)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "value": self.value}
        _put_optional(result, "permissions", self.permissions)
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParamDefinition:
        return cls(
            name=data["name"].lstrip("$"),
            value=str(data["value"]),
            permissions=data.get("permissions"),
            comment=data.get("comment"),
            rename_history=tuple(data.get("was", ())),
        )


@dataclass(frozen=True)
class SequenceDefinition:
    """Definition of a named sequence."""

    name: str
    start: int = 0
    batch: int | None = None
    timeout: str | None = None
    comment: str | None = None
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _check_name("Sequence", self.name)
        if self.batch is not None and self.batch <= 0:
            raise ValueError(f"Sequence '{self.name}' batch must be positive, got {self.batch}")
        _check_history("Sequence", self.name, self.rename_history)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "start": self.start}
        _put_optional(result, "batch", self.batch)
        _put_optional(result, "timeout", self.timeout)
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SequenceDefinition:
        return cls(
            name=data["name"],
            start=data.get("start", 0),
            batch=data.get("batch"),
            timeout=data.get("timeout"),
            comment=data.get("comment"),
            rename_history=tuple(data.get("was", ())),
        )


class UserLevel(Enum):
    """Scope a system user is defined on."""

    ROOT = "root"
    NAMESPACE = "namespace"
    DATABASE = "database"


USER_ROLES = ("OWNER", "EDITOR", "VIEWER")


@dataclass(frozen=True)
class UserDefinition:
    """Definition of a system user.

    Users authenticate against the server itself, unlike access methods which
    authenticate application records. Plaintext passwords are never stored;
    a user carries the password hash the server reports back.

    Attributes:
        name: User name, unique across levels within a document
        level: Root, namespace or database scope
        roles: Granted roles (OWNER, EDITOR, VIEWER)
        passhash: Password hash
        session_duration: Session lifetime
        token_duration: Token lifetime
        comment: Free-form comment
        rename_history: Previous names, oldest first
    """

    name: str
    level: UserLevel = UserLevel.DATABASE
    roles: tuple[str, ...] = ("VIEWER",)
    passhash: str | None = None
    session_duration: str | None = None
    token_duration: str | None = None
    comment: str | None = None
    rename_history: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _check_name("User", self.name)
        if not self.roles:
            raise ValueError(f"User '{self.name}' needs at least one role")
        for role in self.roles:
            if role.upper() not in USER_ROLES:
                raise ValueError(f"User '{self.name}' has unknown role '{role}'")
        _check_history("User", self.name, self.rename_history)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {"name": self.name, "level": self.level.value, "roles": list(self.roles)}
        _put_optional(result, "passhash", self.passhash)
        _put_optional(result, "session", self.session_duration)
        _put_optional(result, "token", self.token_duration)
        _put_optional(result, "comment", self.comment)
        _put_optional(result, "was", self.rename_history)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserDefinition:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            level=UserLevel(str(data.get("level", "database")).lower()),
            roles=tuple(data.get("roles", ("VIEWER",))),
            passhash=data.get("passhash"),
            session_duration=data.get("session"),
            token_duration=data.get("token"),
            comment=data.get("comment"),
            rename_history=tuple(data.get("was", ())),
        )


def field(
    name: str,
    type_signature: str = "any",
    *,
    optional: bool = False,
    readonly: bool = False,
    default: str | None = None,
    value: str | None = None,
    assertions: tuple[str, ...] = (),
    permissions: str | None = None,
    comment: str | None = None,
    rename_history: tuple[str, ...] = (),
) -> FieldDefinition:
    """Convenience function to create a FieldDefinition.

    Args:
        name: Dot-path field name
        type_signature: Type expression
        optional: Whether the field may be absent
        readonly: Whether the value is fixed after creation
        default: Default expression
        value: Computed expression
        assertions: AND-combined assertion expressions
        permissions: Permission expression
        comment: Free-form comment
        rename_history: Previous names, oldest first

    Returns:
        FieldDefinition instance

    Example:
        >>> email = field("email", "string", assertions=("string::is::email($value)",))
        >>> age = field("age", "int", rename_history=("yearsOld",))
    """
    return FieldDefinition(
        name=name,
        type_signature=type_signature,
        optional=optional,
        readonly=readonly,
        default_expr=default,
        computed_expr=value,
        assertions=tuple(assertions),
        permissions=permissions,
        comment=comment,
        rename_history=tuple(rename_history),
    )
