"""
Rule-based classification of directory records.

A rule is a (predicate, classification) pair. Rules are evaluated in order
and the first match wins; records no rule claims are UNCLASSIFIED. Rule
builders capture everything they need (including the reference time for
age checks) when they are built, so classify() stays a pure function of
the record and the rule list.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from directory.models.object_record import ObjectRecord

from .models.classification import Classification

logger = logging.getLogger(__name__)

# Active Directory reports "never" as the FILETIME epoch
AD_NEVER = datetime(1601, 1, 1, tzinfo=timezone.utc)
FILETIME_EPOCH_OFFSET = 116444736000000000

DEFAULT_TIER_SUFFIXES = {
    Classification.TIER0: "_T0",
    Classification.TIER1: "_T1",
    Classification.TIER2: "_T2",
}

DEFAULT_TIER_ATTRIBUTE_VALUES = {
    Classification.TIER0: "T0",
    Classification.TIER1: "T1",
    Classification.TIER2: "T2",
}


@dataclass(frozen=True)
class ClassificationRule:
    """Predicate plus the tag it assigns. ``name`` shows up in debug logs."""

    predicate: Callable[[ObjectRecord], bool]
    classification: Classification
    name: str = ""

    def matches(self, record: ObjectRecord) -> bool:
        return bool(self.predicate(record))


def classify(record: ObjectRecord, rules: Sequence[ClassificationRule]) -> Classification:
    """Return the classification of the first matching rule, or UNCLASSIFIED."""
    for rule in rules:
        if rule.matches(record):
            logger.debug(f"{record.identifier}: matched rule '{rule.name}' -> {rule.classification}")
            return rule.classification
    return Classification.UNCLASSIFIED


def classify_all(records: Iterable[ObjectRecord], rules: Sequence[ClassificationRule]) -> Dict[str, Classification]:
    return {record.identifier: classify(record, rules) for record in records}


# Rule builders


def attribute_equals(attribute: str, value: Any, classification: Classification) -> ClassificationRule:
    """Match when any value of ``attribute`` equals ``value`` (case-insensitive)."""
    wanted = str(value).lower()

    def predicate(record: ObjectRecord) -> bool:
        current = record.get(attribute)
        if current is None:
            return False
        values = current if isinstance(current, (list, tuple, set, frozenset)) else [current]
        return any(str(item).lower() == wanted for item in values)

    return ClassificationRule(predicate, classification, f"{attribute}={value}")


def name_suffix(suffix: str, classification: Classification) -> ClassificationRule:
    """Match identifiers ending with a naming-convention suffix such as ``_T1``."""
    wanted = suffix.lower()
    return ClassificationRule(
        lambda record: record.identifier.lower().endswith(wanted),
        classification,
        f"suffix {suffix}",
    )


def older_than(
    attribute: str,
    days: int,
    classification: Classification = Classification.STALE,
    now: Optional[datetime] = None,
    missing_is_old: bool = True,
) -> ClassificationRule:
    """
    Match records whose timestamp attribute is older than ``days``.

    Args:
        attribute: Timestamp attribute, e.g. lastLogonTimestamp
        days: Age threshold in days
        classification: Tag to assign
        now: Reference time; captured once so repeated classification agrees
        missing_is_old: Treat a missing or "never" timestamp as old
    """
    reference = now or datetime.now(timezone.utc)
    cutoff = reference - timedelta(days=days)

    def predicate(record: ObjectRecord) -> bool:
        moment = to_datetime(record.get(attribute))
        if moment is None or moment <= AD_NEVER:
            return missing_is_old
        return moment < cutoff

    return ClassificationRule(predicate, classification, f"{attribute} older than {days}d")


def lacks_membership(groups: Iterable[str], classification: Classification) -> ClassificationRule:
    """Match records that belong to none of ``groups``."""
    wanted = {group.lower() for group in groups}
    return ClassificationRule(
        lambda record: not ({g.lower() for g in record.current_memberships} & wanted),
        classification,
        f"not in {sorted(wanted)}",
    )


def all_of(*rules: ClassificationRule, classification: Optional[Classification] = None) -> ClassificationRule:
    """Combine rules with AND; the tag defaults to that of the first rule."""
    tag = classification or rules[0].classification
    return ClassificationRule(
        lambda record: all(rule.matches(record) for rule in rules),
        tag,
        " and ".join(rule.name for rule in rules),
    )


def build_tier_rules(
    attribute: Optional[str] = "employeeType",
    attribute_values: Optional[Dict[Classification, str]] = None,
    suffixes: Optional[Dict[Classification, str]] = None,
) -> List[ClassificationRule]:
    """
    Tier rules with explicit attribute checks ahead of naming suffixes.

    An account whose attribute says T1 but whose name ends in _T0 is Tier1.
    Pass ``attribute=None`` to classify by naming convention only.
    """
    rules: List[ClassificationRule] = []
    if attribute:
        for tier, value in (attribute_values or DEFAULT_TIER_ATTRIBUTE_VALUES).items():
            rules.append(attribute_equals(attribute, value, tier))
    for tier, suffix in (suffixes or DEFAULT_TIER_SUFFIXES).items():
        rules.append(name_suffix(suffix, tier))
    return rules


def to_datetime(value: Any) -> Optional[datetime]:
    """Normalize AD timestamps (datetime, FILETIME int, or ISO text) to aware datetimes."""
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, (list, tuple)):
        value = value[0]
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        ticks = int(value)
        if ticks <= FILETIME_EPOCH_OFFSET:
            return AD_NEVER
        try:
            return datetime.fromtimestamp((ticks - FILETIME_EPOCH_OFFSET) / 10_000_000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            # 0x7FFFFFFFFFFFFFFF means "never expires"
            return datetime.max.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unrecognized timestamp value: {value!r}")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
