from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from ..exceptions import ValidationFailedError

# userAccountControl flag for a disabled account
ACCOUNTDISABLE = 0x0002


class SearchScope(str, Enum):
    """Search scopes understood by every directory adapter."""

    SUBTREE = "subtree"
    SINGLE_LEVEL = "level"
    WHOLE_DOMAIN = "domain"

    @classmethod
    def parse(cls, value: Any) -> "SearchScope":
        """Accept an enum member, its value, or its name in any case."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower().replace("-", "_")
        for scope in cls:
            if text in (scope.value, scope.name.lower()):
                return scope
        raise ValidationFailedError(
            f"search scope must be one of {[s.name.lower() for s in cls]}, got {value!r}"
        )


@dataclass(frozen=True)
class ObjectRecord:
    """
    Read-only snapshot of one directory object taken at query time.

    Records are never updated after a query. Corrective work is expressed
    as an ActionSet against the snapshot, and a fresh query produces new
    records.
    """

    identifier: str
    distinguished_path: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    current_memberships: FrozenSet[str] = frozenset()

    def __post_init__(self):
        object.__setattr__(
            self, "attributes", MappingProxyType(dict(self.attributes))
        )
        object.__setattr__(
            self, "current_memberships", frozenset(self.current_memberships)
        )

    @classmethod
    def build(
        cls,
        identifier: str,
        distinguished_path: str,
        attributes: Optional[Dict[str, Any]] = None,
        memberships: Optional[Iterable[str]] = None,
    ) -> "ObjectRecord":
        return cls(
            identifier=identifier,
            distinguished_path=distinguished_path,
            attributes=attributes or {},
            current_memberships=frozenset(memberships or ()),
        )

    def get(self, name: str, default: Any = None) -> Any:
        """Case-insensitive attribute lookup, as directory attribute names are."""
        if name in self.attributes:
            return self.attributes[name]
        lowered = name.lower()
        for key, value in self.attributes.items():
            if key.lower() == lowered:
                return value
        return default

    def has_value(self, name: str) -> bool:
        """True when the attribute is present and not empty."""
        value = self.get(name)
        if value is None:
            return False
        if isinstance(value, (str, bytes, list, tuple, set, frozenset)):
            return len(value) > 0
        return True

    @property
    def is_disabled(self) -> bool:
        uac = self.get("userAccountControl")
        if uac in (None, "", []):
            return False
        try:
            return bool(int(uac) & ACCOUNTDISABLE)
        except (TypeError, ValueError):
            return False

    def __str__(self) -> str:
        return f"{self.identifier} ({self.distinguished_path})"
