"""
Housekeeping routines.

Each routine is a recipe for the shared engine: which objects to query,
how to classify them, and which policy the differ applies. The engine
itself (classify, diff, reconcile) is the same for all of them.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Tuple

from directory.adapters.base_directory_adapter import BaseDirectoryAdapter
from directory.exceptions import ValidationFailedError
from directory.models.object_record import ACCOUNTDISABLE
from directory.models.query_filter import QueryFilter, at_least, equals, flag_clear

from .classifier import ClassificationRule, all_of, build_tier_rules, lacks_membership, older_than
from .config import HousekeepingConfig
from .differ import DiffPolicy
from .exclusions import DEFAULT_PROTECTED_GROUPS, resolve_protected_groups
from .models.classification import Classification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutineSetup:
    """Everything the engine needs for one run of a routine."""

    query_filter: QueryFilter
    rules: Tuple[ClassificationRule, ...]
    policy: DiffPolicy
    desired_groups: Mapping[Classification, FrozenSet[str]] = field(default_factory=dict)


class HousekeepingRoutine(ABC):
    """Base class for routines run by the Reconciler."""

    name = ""
    description = ""

    @abstractmethod
    def prepare(self, config: HousekeepingConfig, adapter: BaseDirectoryAdapter) -> RoutineSetup:
        """Build the query, rules and policy for this run."""
        pass

    def _protected_groups(self, config: HousekeepingConfig) -> FrozenSet[str]:
        return DEFAULT_PROTECTED_GROUPS | frozenset(config.protected_groups)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"


def user_filter() -> QueryFilter:
    return QueryFilter.where(equals("objectCategory", "person"), equals("objectClass", "user"))


class PrivilegedUsersRoutine(HousekeepingRoutine):
    """
    Keep semi-privileged accounts in the groups of their tier.

    Accounts are tiered by the tier attribute first and the _T0/_T1/_T2 name
    suffix second. Point the search base at the OU holding the administrative
    accounts: with disable_non_compliant set, accounts there that carry no
    tier designation are disabled.
    """

    name = "privileged-users"
    description = "Reconcile semi-privileged accounts with their tier groups"

    def prepare(self, config, adapter):
        return RoutineSetup(
            query_filter=user_filter(),
            rules=tuple(build_tier_rules(attribute=config.tier_attribute)),
            policy=DiffPolicy(
                strict_mode=config.strict_mode,
                disable_non_compliant=config.disable_non_compliant,
                non_compliant_action=config.non_compliant_action,
                protected_groups=self._protected_groups(config),
            ),
            desired_groups=config.desired_groups_by_classification,
        )


class PrivilegedGroupsRoutine(HousekeepingRoutine):
    """
    Nest tiered groups into their tier's container group.

    Groups cannot be disabled, so untiered groups are reported as
    Unclassified and left alone. Strict mode removes nesting into groups
    that belong to another tier.
    """

    name = "privileged-groups"
    description = "Reconcile tiered groups with their tier container groups"

    def prepare(self, config, adapter):
        return RoutineSetup(
            query_filter=QueryFilter.where(equals("objectClass", "group")),
            rules=tuple(build_tier_rules(attribute=config.tier_attribute)),
            policy=DiffPolicy(
                strict_mode=config.strict_mode,
                disable_non_compliant=False,
                protected_groups=self._protected_groups(config),
            ),
            desired_groups=config.desired_groups_by_classification,
        )


class AdminCountRoutine(HousekeepingRoutine):
    """
    Clear adminCount on objects that left every protected group.

    AdminSDHolder stamps adminCount=1 on members of protected groups but
    never removes it. Objects still carrying the flag without a direct
    protected membership are Orphaned and get the attribute cleared.
    Protected groups themselves keep the flag.
    """

    name = "admin-count"
    description = "Clear stale adminCount flags"

    def prepare(self, config, adapter):
        protected = resolve_protected_groups(adapter, config.protected_groups)
        protected_names = {group.lower() for group in protected}
        logger.debug(f"Protected groups: {sorted(protected_names)}")
        # TODO: follow nested membership with LDAP_MATCHING_RULE_IN_CHAIN (1.2.840.113556.1.4.1941)
        orphaned = all_of(
            lacks_membership(protected, Classification.ORPHANED),
            ClassificationRule(
                lambda record: record.identifier.lower() not in protected_names,
                Classification.ORPHANED,
                "not a protected group",
            ),
        )
        return RoutineSetup(
            query_filter=QueryFilter.where(at_least("adminCount", 1)),
            rules=(orphaned,),
            policy=DiffPolicy(
                non_compliant_classifications=frozenset(),
                protected_groups=protected,
                attributes_to_clear={Classification.ORPHANED: frozenset({"adminCount"})},
            ),
        )


class StaleAccountsRoutine(HousekeepingRoutine):
    """
    Disable (or delete) enabled accounts that stopped logging on.

    An account is Stale when both its lastLogonTimestamp and its creation
    date are older than stale_days, so freshly created accounts that have
    not logged on yet are left alone.
    """

    name = "stale-accounts"
    description = "Disable or delete accounts inactive for stale_days"
    object_filter = staticmethod(user_filter)

    def prepare(self, config, adapter):
        stale = all_of(
            older_than("lastLogonTimestamp", config.stale_days),
            older_than("whenCreated", config.stale_days, missing_is_old=False),
            classification=Classification.STALE,
        )
        return RoutineSetup(
            query_filter=self.object_filter().and_(flag_clear("userAccountControl", ACCOUNTDISABLE)),
            rules=(stale,),
            policy=DiffPolicy(
                disable_non_compliant=True,
                non_compliant_action=config.non_compliant_action,
                non_compliant_classifications=frozenset({Classification.STALE}),
                protected_groups=self._protected_groups(config),
            ),
        )


class StaleComputersRoutine(StaleAccountsRoutine):
    """Stale-account rules applied to computer objects."""

    name = "stale-computers"
    description = "Disable or delete computers inactive for stale_days"
    object_filter = staticmethod(lambda: QueryFilter.where(equals("objectClass", "computer")))


ROUTINES: Dict[str, HousekeepingRoutine] = {
    routine.name: routine
    for routine in (
        PrivilegedUsersRoutine(),
        PrivilegedGroupsRoutine(),
        AdminCountRoutine(),
        StaleAccountsRoutine(),
        StaleComputersRoutine(),
    )
}


def get_routine(name: str) -> HousekeepingRoutine:
    try:
        return ROUTINES[name]
    except KeyError:
        raise ValidationFailedError(f"Unknown routine '{name}'. Available: {sorted(ROUTINES)}")
