"""
SchemaSync - declarative schema reconciliation for document/graph databases.

This package turns a declared ("desired") schema and the schema reported by
a live database into an ordered, reversible batch of DDL statements, and
keeps a durable ledger of what was applied.

Architecture:
    ┌───────────┐   ┌───────────┐
    │  desired  │   │   live    │
    │ (files)   │   │(introspect│
    └─────┬─────┘   └─────┬─────┘
          └───────┬───────┘
                  ▼
           ┌────────────┐     ┌────────────┐     ┌────────────┐
           │ Normalizer │────▶│ Comparator │────▶│  Planner   │
           └────────────┘     └────────────┘     └─────┬──────┘
                                                       │ MigrationPlan
                                                       ▼
                                   ┌──────────┐   ┌────────────┐
                                   │  Ledger  │◀──│  Migrator  │──▶ executor
                                   │ (SQLite) │   └────────────┘
                                   └──────────┘

Invariants:
    - diff(X, X) is always empty
    - Plans are deterministic for identical inputs
    - A plan is recorded in the ledger before its first statement runs
    - Recovery re-diffs against live state; it never resumes mid-plan

How to change safely:
    - Keep normalization rules symmetric for desired and live documents
    - Add new entity kinds to the model, comparator, renderer and parser together
    - Never change the checksum input format without a ledger migration
"""

from ._version import __version__
from .config import Settings
from .diff import ChangeSet
from .ledger import MigrationLedger
from .migrator import ApplyResult, Migrator
from .plan import MigrationPlan, Planner
from .schema import SchemaDocument

__all__ = [
    "__version__",
    "ApplyResult",
    "ChangeSet",
    "MigrationLedger",
    "MigrationPlan",
    "Migrator",
    "Planner",
    "SchemaDocument",
    "Settings",
]
