import logging
from dataclasses import dataclass, field
from typing import Collection, FrozenSet, Iterable, List, Mapping, Optional

from directory.exceptions import ValidationFailedError
from directory.models.object_record import ObjectRecord

from .exclusions import DEFAULT_PROTECTED_GROUPS, ExclusionList
from .models.actions import (
    ActionSet,
    AddToGroup,
    ClearAttribute,
    CorrectiveAction,
    Delete,
    Disable,
    RemoveFromGroup,
)
from .models.classification import Classification

logger = logging.getLogger(__name__)

NON_COMPLIANT_ACTIONS = ("disable", "delete")


@dataclass(frozen=True)
class DiffPolicy:
    """
    Flags that shape the corrective actions the differ emits.

    Attributes:
        strict_mode: Remove memberships that are not desired for the classification
        disable_non_compliant: Act on records in ``non_compliant_classifications``
        non_compliant_action: 'disable' or 'delete'
        non_compliant_classifications: Tags treated as non-compliant
        protected_groups: Groups strict mode never removes anyone from
        attributes_to_clear: Attributes cleared per classification
    """

    strict_mode: bool = False
    disable_non_compliant: bool = False
    non_compliant_action: str = "disable"
    non_compliant_classifications: FrozenSet[Classification] = frozenset(
        {Classification.UNCLASSIFIED, Classification.NON_COMPLIANT}
    )
    protected_groups: FrozenSet[str] = DEFAULT_PROTECTED_GROUPS
    attributes_to_clear: Mapping[Classification, FrozenSet[str]] = field(default_factory=dict)

    def __post_init__(self):
        if self.non_compliant_action not in NON_COMPLIANT_ACTIONS:
            raise ValidationFailedError(
                f"non_compliant_action must be one of {NON_COMPLIANT_ACTIONS}, "
                f"got {self.non_compliant_action!r}"
            )
        object.__setattr__(
            self, "non_compliant_classifications", frozenset(self.non_compliant_classifications)
        )
        object.__setattr__(
            self, "protected_groups", frozenset(g.lower() for g in self.protected_groups)
        )
        object.__setattr__(
            self,
            "attributes_to_clear",
            {tag: frozenset(names) for tag, names in dict(self.attributes_to_clear).items()},
        )


def diff(
    record: ObjectRecord,
    classification: Classification,
    desired_groups_by_classification: Mapping[Classification, Collection[str]],
    exclusions: Iterable[str] = (),
    policy: Optional[DiffPolicy] = None,
) -> ActionSet:
    """
    Compute the minimal corrective actions that bring ``record`` into compliance.

    Membership comparisons are case-insensitive, as directory names are. Only
    differences visible in the snapshot produce actions, so a record that was
    reconciled and then re-queried yields an empty ActionSet.
    """
    policy = policy or DiffPolicy()
    if not isinstance(exclusions, ExclusionList):
        exclusions = ExclusionList(exclusions)

    if record.identifier in exclusions:
        logger.debug(f"{record.identifier}: excluded, skipping")
        return ActionSet(
            identifier=record.identifier,
            distinguished_path=record.distinguished_path,
            classification=Classification.EXCLUDED,
            skipped_reason="excluded",
        )

    actions: List[CorrectiveAction] = []

    if classification in policy.non_compliant_classifications:
        if policy.disable_non_compliant:
            if policy.non_compliant_action == "delete":
                actions.append(Delete())
            elif not record.is_disabled:
                actions.append(Disable())
        return _action_set(record, classification, actions)

    desired = {g.lower(): g for g in desired_groups_by_classification.get(classification, ())}
    # a tier container group is never nested into itself
    desired.pop(record.identifier.lower(), None)
    current = {g.lower(): g for g in record.current_memberships}

    for key in sorted(set(desired) - set(current)):
        actions.append(AddToGroup(desired[key]))

    if policy.strict_mode:
        for key in sorted(set(current) - set(desired)):
            if key in policy.protected_groups:
                continue
            actions.append(RemoveFromGroup(current[key]))

    for name in sorted(policy.attributes_to_clear.get(classification, ())):
        if record.has_value(name):
            actions.append(ClearAttribute(name))

    return _action_set(record, classification, actions)


def _action_set(record: ObjectRecord, classification: Classification, actions: List[CorrectiveAction]) -> ActionSet:
    return ActionSet(
        identifier=record.identifier,
        distinguished_path=record.distinguished_path,
        classification=classification,
        actions=tuple(actions),
    )
