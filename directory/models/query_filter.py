"""
Declarative directory query filters.

Filters are plain attribute predicates joined with AND. They render to an
RFC 4515 string for LDAP servers and can be evaluated directly against an
ObjectRecord by in-memory backends, so the same filter works everywhere.
"""

import re
from dataclasses import dataclass
from typing import Any, Iterable, Tuple

from ldap3.utils.conv import escape_filter_chars

from ..exceptions import ValidationFailedError
from .object_record import ObjectRecord

ATTRIBUTE_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")

# Active Directory bitwise AND matching rule
LDAP_MATCHING_RULE_BIT_AND = "1.2.840.113556.1.4.803"

VALUE_OPERATORS = {"eq", "ge", "le", "endswith", "bit_set", "bit_clear"}
PRESENCE_OPERATORS = {"present", "absent"}


@dataclass(frozen=True)
class Predicate:
    """One attribute predicate such as ``adminCount >= 1``."""

    attribute: str
    operator: str
    value: Any = None

    def __post_init__(self):
        if not self.attribute or not ATTRIBUTE_NAME.match(self.attribute):
            raise ValidationFailedError(f"Invalid attribute name: {self.attribute!r}")
        if self.operator not in VALUE_OPERATORS | PRESENCE_OPERATORS:
            raise ValidationFailedError(f"Unsupported filter operator: {self.operator!r}")
        if self.operator in VALUE_OPERATORS and self.value in (None, ""):
            raise ValidationFailedError(
                f"Operator '{self.operator}' on '{self.attribute}' requires a value"
            )
        if self.operator in ("bit_set", "bit_clear"):
            try:
                int(self.value)
            except (TypeError, ValueError):
                raise ValidationFailedError(
                    f"Bit flag for '{self.attribute}' must be an integer, got {self.value!r}"
                )

    def to_ldap(self) -> str:
        attr = self.attribute
        if self.operator == "present":
            return f"({attr}=*)"
        if self.operator == "absent":
            return f"(!({attr}=*))"
        if self.operator == "bit_set":
            return f"({attr}:{LDAP_MATCHING_RULE_BIT_AND}:={int(self.value)})"
        if self.operator == "bit_clear":
            return f"(!({attr}:{LDAP_MATCHING_RULE_BIT_AND}:={int(self.value)}))"

        value = escape_filter_chars(str(self.value))
        if self.operator == "eq":
            return f"({attr}={value})"
        if self.operator == "ge":
            return f"({attr}>={value})"
        if self.operator == "le":
            return f"({attr}<={value})"
        return f"({attr}=*{value})"

    def matches(self, record: ObjectRecord) -> bool:
        current = record.get(self.attribute)
        if self.operator == "present":
            return record.has_value(self.attribute)
        if self.operator == "absent":
            return not record.has_value(self.attribute)
        if current is None:
            # an object without the attribute has no flags set
            return self.operator == "bit_clear"

        values = current if isinstance(current, (list, tuple, set, frozenset)) else [current]
        for item in values:
            if self._matches_value(item):
                return True
        return False

    def _matches_value(self, item: Any) -> bool:
        if self.operator in ("bit_set", "bit_clear"):
            try:
                is_set = bool(int(item) & int(self.value))
            except (TypeError, ValueError):
                return False
            return is_set if self.operator == "bit_set" else not is_set
        if self.operator == "eq":
            return str(item).lower() == str(self.value).lower()
        if self.operator == "endswith":
            return str(item).lower().endswith(str(self.value).lower())
        try:
            left, right = _comparable(item, self.value)
        except (TypeError, ValueError):
            return False
        return left >= right if self.operator == "ge" else left <= right


def _comparable(left: Any, right: Any) -> Tuple[Any, Any]:
    if isinstance(left, (int, float)) or isinstance(right, (int, float)):
        return float(left), float(right)
    return left, right


class QueryFilter:
    """AND-combination of attribute predicates."""

    def __init__(self, predicates: Iterable[Predicate]):
        self.predicates = tuple(predicates)
        if not self.predicates:
            raise ValidationFailedError("A query filter needs at least one predicate")

    @classmethod
    def where(cls, *predicates: Predicate) -> "QueryFilter":
        return cls(predicates)

    def and_(self, *predicates: Predicate) -> "QueryFilter":
        return QueryFilter(self.predicates + tuple(predicates))

    def to_ldap(self) -> str:
        if len(self.predicates) == 1:
            return self.predicates[0].to_ldap()
        return "(&" + "".join(p.to_ldap() for p in self.predicates) + ")"

    def matches(self, record: ObjectRecord) -> bool:
        return all(p.matches(record) for p in self.predicates)

    def __eq__(self, other) -> bool:
        return isinstance(other, QueryFilter) and self.predicates == other.predicates

    def __repr__(self) -> str:
        return f"QueryFilter({self.to_ldap()})"


def equals(attribute: str, value: Any) -> Predicate:
    return Predicate(attribute, "eq", value)


def at_least(attribute: str, value: Any) -> Predicate:
    return Predicate(attribute, "ge", value)


def at_most(attribute: str, value: Any) -> Predicate:
    return Predicate(attribute, "le", value)


def present(attribute: str) -> Predicate:
    return Predicate(attribute, "present")


def absent(attribute: str) -> Predicate:
    return Predicate(attribute, "absent")


def ends_with(attribute: str, suffix: str) -> Predicate:
    return Predicate(attribute, "endswith", suffix)


def flag_set(attribute: str, flag: int) -> Predicate:
    return Predicate(attribute, "bit_set", flag)


def flag_clear(attribute: str, flag: int) -> Predicate:
    return Predicate(attribute, "bit_clear", flag)
