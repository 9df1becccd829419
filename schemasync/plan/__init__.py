"""
Migration planning: ChangeSet -> ordered, reversible MigrationPlan.
"""

from .ordering import Action, PlannedStep, order_steps, references, verify_ordering
from .planner import REDEFINITION_THRESHOLD, MigrationPlan, Planner, plan, plan_id

__all__ = [
    "Action",
    "MigrationPlan",
    "PlannedStep",
    "Planner",
    "REDEFINITION_THRESHOLD",
    "order_steps",
    "plan",
    "plan_id",
    "references",
    "verify_ordering",
]
