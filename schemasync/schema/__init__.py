"""
Schema module for SchemaSync.

This module provides the intermediate representation and its normalization:
- Entity definitions (TableDefinition, FieldDefinition, IndexDefinition, ...)
- SchemaDocument, the root container
- Normalizer, which canonicalizes documents before comparison
- Loader for YAML/JSON schema files

Invariants:
    - Documents are immutable; normalization returns a new document
    - Names are unique within their kind
    - Rename history is the only source of rename information

How to change safely:
    - Add new entity attributes with defaults
    - Keep normalization symmetric for desired and live documents
"""

from .document import SchemaDocument
from .loader import dump_yaml, load_document, parse_document, parse_json, parse_yaml
from .normalize import Normalizer, normalize, normalize_type
from .types import (
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
    field,
)

__all__ = [
    # Types
    "AccessDefinition",
    "AccessType",
    "FieldDefinition",
    "FulltextIndexParams",
    "FunctionDefinition",
    "FunctionParam",
    "IndexAnalyzerDefinition",
    "IndexDefinition",
    "IndexKind",
    "ParamDefinition",
    "RelationDefinition",
    "SchemaMode",
    "SequenceDefinition",
    "TableDefinition",
    "TableKind",
    "TriggerDefinition",
    "TriggerOperation",
    "UserDefinition",
    "UserLevel",
    "VectorIndexParams",
    "field",
    # Document
    "SchemaDocument",
    # Normalization
    "Normalizer",
    "normalize",
    "normalize_type",
    # Files
    "load_document",
    "parse_document",
    "parse_yaml",
    "parse_json",
    "dump_yaml",
]
