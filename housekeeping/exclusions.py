"""
Exclusion lists and protected groups.

Built-in accounts are looked up by their well-known relative identifier
rather than by name, so a renamed Administrator or a localized krbtgt is
still excluded.
"""

import logging
import re
from typing import Dict, FrozenSet, Iterable, Iterator, Optional

from directory.adapters.base_directory_adapter import BaseDirectoryAdapter
from directory.exceptions import ValidationFailedError

logger = logging.getLogger(__name__)

# Domain-relative identifiers of built-in accounts
WELL_KNOWN_ACCOUNT_RIDS: Dict[int, str] = {
    500: "Administrator",
    501: "Guest",
    502: "krbtgt",
    503: "DefaultAccount",
    504: "WDAGUtilityAccount",
}

# Domain-relative identifiers of groups protected by AdminSDHolder
PROTECTED_GROUP_RIDS: Dict[int, str] = {
    512: "Domain Admins",
    516: "Domain Controllers",
    517: "Cert Publishers",
    518: "Schema Admins",
    519: "Enterprise Admins",
    521: "Read-only Domain Controllers",
    526: "Key Admins",
    527: "Enterprise Key Admins",
}

# Builtin-domain groups (S-1-5-32-*) carry fixed names in the directory
BUILTIN_PROTECTED_GROUPS = frozenset(
    {
        "Administrators",
        "Account Operators",
        "Backup Operators",
        "Print Operators",
        "Replicator",
        "Server Operators",
    }
)

# Primary groups; strict mode must never strip these
PRIMARY_GROUPS = frozenset({"Domain Users", "Domain Computers", "Domain Guests"})

DEFAULT_PROTECTED_GROUPS: FrozenSet[str] = (
    frozenset(PROTECTED_GROUP_RIDS.values()) | BUILTIN_PROTECTED_GROUPS | PRIMARY_GROUPS
)

INVALID_ENTRY = re.compile(r"[\x00-\x1f*()\\]")


def validate_identifier(entry) -> str:
    """Return the stripped entry or raise ValidationFailedError."""
    if not isinstance(entry, str) or not entry.strip():
        raise ValidationFailedError(f"Exclusion entries must be non-empty strings, got {entry!r}")
    entry = entry.strip()
    if INVALID_ENTRY.search(entry):
        raise ValidationFailedError(f"Exclusion entry contains invalid characters: {entry!r}")
    return entry


class ExclusionList:
    """Case-insensitive set of identifiers that never receive corrective actions."""

    def __init__(self, identifiers: Iterable[str] = ()):
        self._entries: Dict[str, str] = {}
        for identifier in identifiers:
            entry = validate_identifier(identifier)
            self._entries[entry.lower()] = entry

    def __contains__(self, identifier) -> bool:
        return isinstance(identifier, str) and identifier.lower() in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries.values(), key=str.lower))

    def __len__(self) -> int:
        return len(self._entries)

    def union(self, identifiers: Iterable[str]) -> "ExclusionList":
        return ExclusionList(list(self._entries.values()) + list(identifiers))

    def __repr__(self) -> str:
        return f"ExclusionList({list(self)})"


def build_exclusion_list(
    adapter: BaseDirectoryAdapter,
    configured: Iterable[str] = (),
    rids: Optional[Iterable[int]] = None,
) -> ExclusionList:
    """
    Seed an exclusion list with built-in accounts resolved by SID, plus configured names.

    Raises:
        ValidationFailedError: If a configured entry is malformed
        QueryFailedError: If the directory cannot resolve the well-known accounts
    """
    configured = ExclusionList(configured)
    resolved = adapter.resolve_well_known_rids(rids if rids is not None else WELL_KNOWN_ACCOUNT_RIDS)
    for rid, name in sorted(resolved.items()):
        logger.debug(f"Excluding built-in account RID {rid}: {name}")
    missing = set(rids if rids is not None else WELL_KNOWN_ACCOUNT_RIDS) - set(resolved)
    if missing:
        logger.debug(f"Well-known RIDs not present in this domain: {sorted(missing)}")
    exclusions = configured.union(resolved.values())
    logger.info(f"Exclusion list built: {len(exclusions)} identifiers")
    return exclusions


def resolve_protected_groups(adapter: BaseDirectoryAdapter, extra: Iterable[str] = ()) -> FrozenSet[str]:
    """Protected group names as this domain spells them, plus the defaults and ``extra``."""
    resolved = adapter.resolve_well_known_rids(PROTECTED_GROUP_RIDS)
    return DEFAULT_PROTECTED_GROUPS | frozenset(resolved.values()) | frozenset(extra)
