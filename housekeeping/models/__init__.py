from .actions import (
    ActionSet,
    AddToGroup,
    ClearAttribute,
    CorrectiveAction,
    Delete,
    Disable,
    RemoveFromGroup,
)
from .classification import TIERS, Classification
from .run_result import PlannedAction, RecordError, RunResult, RunTally

__all__ = [
    "ActionSet",
    "AddToGroup",
    "Classification",
    "ClearAttribute",
    "CorrectiveAction",
    "Delete",
    "Disable",
    "PlannedAction",
    "RecordError",
    "RemoveFromGroup",
    "RunResult",
    "RunTally",
    "TIERS",
]
