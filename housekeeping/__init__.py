"""
Active Directory housekeeping built on an idempotent desired-state engine.

query -> classify -> diff -> reconcile -> mutate
"""

from .classifier import ClassificationRule, build_tier_rules, classify, classify_all
from .config import HousekeepingConfig, get_ldap_config
from .differ import DiffPolicy, diff
from .exclusions import ExclusionList, build_exclusion_list, resolve_protected_groups
from .models import (
    ActionSet,
    AddToGroup,
    Classification,
    ClearAttribute,
    CorrectiveAction,
    Delete,
    Disable,
    RecordError,
    RemoveFromGroup,
    RunResult,
)
from .reconciler import Reconciler, plan
from .routines import ROUTINES, HousekeepingRoutine, RoutineSetup, get_routine

__version__ = "0.1.0"

__all__ = [
    "ActionSet",
    "AddToGroup",
    "Classification",
    "ClassificationRule",
    "ClearAttribute",
    "CorrectiveAction",
    "Delete",
    "DiffPolicy",
    "Disable",
    "ExclusionList",
    "HousekeepingConfig",
    "HousekeepingRoutine",
    "ROUTINES",
    "Reconciler",
    "RecordError",
    "RemoveFromGroup",
    "RoutineSetup",
    "RunResult",
    "build_exclusion_list",
    "build_tier_rules",
    "classify",
    "classify_all",
    "diff",
    "get_ldap_config",
    "get_routine",
    "plan",
    "resolve_protected_groups",
]
