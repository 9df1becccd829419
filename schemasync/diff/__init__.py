"""
Diff module for SchemaSync.

Compares normalized desired and live documents and produces a ChangeSet.

Invariants:
    - diff(X, X) is empty
    - Renames come only from declared rename history
    - Output order is canonical and deterministic
"""

from .changes import Change, ChangeKind, ChangeSet, EntityKind, PropertyDiff
from .comparator import Comparator, diff, entity_path, property_diffs

__all__ = [
    "Change",
    "ChangeKind",
    "ChangeSet",
    "EntityKind",
    "PropertyDiff",
    "Comparator",
    "diff",
    "entity_path",
    "property_diffs",
]
