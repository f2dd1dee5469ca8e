"""
Corrective actions produced by the differ.

Each action knows which adapter verb carries it out. Actions are values:
two AddToGroup("X") instances are equal, and applying one to an object
already in group X is reported by the adapter as unchanged.
"""

from dataclasses import dataclass
from typing import Tuple

from directory.adapters.base_directory_adapter import BaseDirectoryAdapter
from directory.models.mutation_result import MutationResult

from .classification import Classification


class CorrectiveAction:
    """Base for the corrective action variants."""

    kind = "action"
    # failures on a group-scoped action concern that group only
    group_scoped = False

    def apply(self, adapter: BaseDirectoryAdapter, identifier: str) -> MutationResult:
        raise NotImplementedError

    def describe(self) -> str:
        return self.kind


@dataclass(frozen=True)
class AddToGroup(CorrectiveAction):
    group_id: str
    kind = "AddToGroup"
    group_scoped = True

    def apply(self, adapter, identifier):
        return adapter.add_to_group(identifier, self.group_id)

    def describe(self) -> str:
        return f"AddToGroup({self.group_id})"


@dataclass(frozen=True)
class RemoveFromGroup(CorrectiveAction):
    group_id: str
    kind = "RemoveFromGroup"
    group_scoped = True

    def apply(self, adapter, identifier):
        return adapter.remove_from_group(identifier, self.group_id)

    def describe(self) -> str:
        return f"RemoveFromGroup({self.group_id})"


@dataclass(frozen=True)
class ClearAttribute(CorrectiveAction):
    name: str
    kind = "ClearAttribute"

    def apply(self, adapter, identifier):
        return adapter.clear_attribute(identifier, self.name)

    def describe(self) -> str:
        return f"ClearAttribute({self.name})"


@dataclass(frozen=True)
class Disable(CorrectiveAction):
    kind = "Disable"

    def apply(self, adapter, identifier):
        return adapter.disable(identifier)


@dataclass(frozen=True)
class Delete(CorrectiveAction):
    kind = "Delete"

    def apply(self, adapter, identifier):
        return adapter.delete(identifier)


@dataclass(frozen=True)
class ActionSet:
    """Ordered corrective actions for one record."""

    identifier: str
    distinguished_path: str
    classification: Classification
    actions: Tuple[CorrectiveAction, ...] = ()
    skipped_reason: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def __iter__(self):
        return iter(self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    def describe(self) -> str:
        if self.skipped_reason:
            return f"{self.identifier}: skipped ({self.skipped_reason})"
        steps = ", ".join(action.describe() for action in self.actions) or "no changes"
        return f"{self.identifier} [{self.classification}]: {steps}"
