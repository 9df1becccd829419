"""
YAML/JSON schema document format.

Desired schemas are authored as YAML (or JSON) files. Each file is validated
against pydantic models before it is turned into the frozen IR, so authoring
mistakes surface as DocumentLoadError with one message per problem.

Example document:
    tables:
      - name: user
        fields:
          - name: email
            type: string
            assert: string::is::email($value)
          - name: age
            type: option<int>
            was: [yearsOld]
        indexes:
          - name: user_email
            columns: [email]
            kind: unique

    relations:
      - name: follows
        from: user
        to: user

    functions:
      - name: greet
        params: [{name: who, type: string}]
        body: RETURN 'Hello ' + $who;

    users:
      - name: reporter
        roles: [viewer]
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import DocumentLoadError
from .document import SchemaDocument

logger = logging.getLogger(__name__)


def _as_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return value


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    was: list[str] = Field(default_factory=list)
    comment: Optional[str] = None

    @field_validator("was", mode="before")
    @classmethod
    def _history_list(cls, value: Any) -> Any:
        return _as_list(value)


class FieldModel(_Model):
    name: str
    type: str = "any"
    optional: bool = False
    readonly: bool = False
    default: Optional[Union[str, int, float, bool]] = None
    value: Optional[str] = None
    assertions: list[str] = Field(default_factory=list, alias="assert")
    permissions: Optional[str] = None

    @field_validator("assertions", mode="before")
    @classmethod
    def _assert_list(cls, value: Any) -> Any:
        return _as_list(value)

    @field_validator("default", mode="after")
    @classmethod
    def _default_text(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return "true" if value else "false"
        return None if value is None else str(value)


class IndexParamsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    dimension: Optional[int] = None
    distance: Optional[str] = None
    efc: Optional[int] = None
    m: Optional[int] = None
    analyzer: Optional[str] = None
    bm25_k1: Optional[float] = None
    bm25_b: Optional[float] = None
    highlights: bool = False


class IndexModel(_Model):
    name: str
    columns: list[str]
    kind: str = "standard"
    params: Optional[IndexParamsModel] = None

    @field_validator("columns", mode="before")
    @classmethod
    def _column_list(cls, value: Any) -> Any:
        return _as_list(value)


class TriggerModel(_Model):
    name: str
    operation: str = "any"
    when: Optional[str] = None
    then: list[str]

    @field_validator("then", mode="before")
    @classmethod
    def _then_list(cls, value: Any) -> Any:
        return _as_list(value)


class TableModel(_Model):
    name: str
    schema_mode: str = "strict"
    kind: str = "normal"
    fields: list[FieldModel] = Field(default_factory=list)
    indexes: list[IndexModel] = Field(default_factory=list)
    triggers: list[TriggerModel] = Field(default_factory=list)
    permissions: Optional[str] = None
    view: Optional[str] = None
    changefeed: Optional[str] = None
    endpoints: list[str] = Field(default_factory=list)


class RelationModel(_Model):
    name: str
    from_table: str = Field(alias="from")
    to_table: str = Field(alias="to")
    enforced: bool = False
    schema_mode: str = "strict"
    fields: list[FieldModel] = Field(default_factory=list)
    indexes: list[IndexModel] = Field(default_factory=list)
    triggers: list[TriggerModel] = Field(default_factory=list)
    permissions: Optional[str] = None


class ParamSpecModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    type: str = "any"


class FunctionModel(_Model):
    name: str
    body: str
    params: list[ParamSpecModel] = Field(default_factory=list)
    returns: Optional[str] = None
    permissions: Optional[str] = None


class AnalyzerModel(_Model):
    name: str
    tokenizers: list[str] = Field(default_factory=list)
    filters: list[str] = Field(default_factory=list)
    function: Optional[str] = None


class AccessModel(_Model):
    name: str
    type: str = "record"
    signup: Optional[str] = None
    signin: Optional[str] = None
    authenticate: Optional[str] = None
    session: Optional[str] = None
    token: Optional[str] = None


class ParamModel(_Model):
    name: str
    value: Union[str, int, float, bool]
    permissions: Optional[str] = None

    @field_validator("value", mode="after")
    @classmethod
    def _value_text(cls, value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)


class SequenceModel(_Model):
    name: str
    start: int = 0
    batch: Optional[int] = None
    timeout: Optional[str] = None


class UserModel(_Model):
    name: str
    level: str = "database"
    roles: list[str] = Field(default_factory=lambda: ["VIEWER"])
    passhash: Optional[str] = None
    session: Optional[str] = None
    token: Optional[str] = None

    @field_validator("roles", mode="before")
    @classmethod
    def _role_list(cls, value: Any) -> Any:
        return _as_list(value)


class DocumentModel(BaseModel):
    """Top-level schema file layout."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    tables: list[TableModel] = Field(default_factory=list)
    relations: list[RelationModel] = Field(default_factory=list)
    functions: list[FunctionModel] = Field(default_factory=list)
    analyzers: list[AnalyzerModel] = Field(default_factory=list)
    accesses: list[AccessModel] = Field(default_factory=list)
    params: list[ParamModel] = Field(default_factory=list)
    sequences: list[SequenceModel] = Field(default_factory=list)
    users: list[UserModel] = Field(default_factory=list)


def _format_errors(error: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
        for item in error.errors()
    ]


def parse_document(data: dict[str, Any], source: str | None = None) -> SchemaDocument:
    """Validate a raw mapping and build a SchemaDocument.

    Accepts both the bare layout and one wrapped in a ``schema`` key.

    Raises:
        DocumentLoadError: If validation fails
    """
    if not isinstance(data, dict):
        raise DocumentLoadError("Schema document must be a mapping", path=source)
    data = data.get("schema", data)
    try:
        model = DocumentModel.model_validate(data)
    except ValidationError as e:
        errors = _format_errors(e)
        raise DocumentLoadError(
            f"Invalid schema document: {len(errors)} error(s)", path=source, errors=errors
        ) from e
    try:
        return SchemaDocument.from_dict(model.model_dump(by_alias=True, exclude_none=True))
    except ValueError as e:
        raise DocumentLoadError(f"Invalid schema document: {e}", path=source, errors=[str(e)]) from e


def parse_yaml(yaml_str: str, source: str | None = None) -> SchemaDocument:
    """Parse a schema document from YAML."""
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise DocumentLoadError(f"Invalid YAML: {e}", path=source) from e
    return parse_document(data or {}, source)


def parse_json(json_str: str, source: str | None = None) -> SchemaDocument:
    """Parse a schema document from JSON."""
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise DocumentLoadError(f"Invalid JSON: {e}", path=source) from e
    return parse_document(data, source)


def load_document(path: str | Path) -> SchemaDocument:
    """Load a schema document from a ``.yaml``/``.yml`` or ``.json`` file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DocumentLoadError(f"Cannot read schema file: {e}", path=str(path)) from e
    logger.debug(f"Loading schema document from {path}")
    if path.suffix.lower() == ".json":
        return parse_json(text, str(path))
    return parse_yaml(text, str(path))


def dump_yaml(doc: SchemaDocument) -> str:
    """Serialize a document to YAML in the file layout."""
    return yaml.safe_dump(doc.to_dict(), default_flow_style=False, sort_keys=False)
