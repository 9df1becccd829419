"""
SurrealQL-flavoured DDL dialect.

- render: IR snapshots -> DEFINE / REMOVE / ALTER statements
- parser: statements -> structured operations (used by the in-memory database)
"""

from .parser import (
    AlterStatement,
    DefineStatement,
    RemoveStatement,
    RenameStatement,
    parse_statement,
)
from .render import ALTER_CLAUSES, alter, define, remove, rename

__all__ = [
    "ALTER_CLAUSES",
    "alter",
    "define",
    "remove",
    "rename",
    "AlterStatement",
    "DefineStatement",
    "RemoveStatement",
    "RenameStatement",
    "parse_statement",
]
