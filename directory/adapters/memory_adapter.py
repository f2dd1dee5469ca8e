"""
Dictionary-backed directory for tests, demos and offline rehearsals.

Behaves like the LDAP adapter from the engine's point of view: queries
return fresh snapshots, mutations are idempotent and report failures as
MutationResult error kinds. Failures can be forced per identifier to
rehearse partial-failure handling.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Set

from ldap3.utils.dn import to_dn

from ..exceptions import ErrorKind, QueryFailedError
from ..models.mutation_result import MutationResult
from ..models.object_record import ACCOUNTDISABLE, ObjectRecord, SearchScope
from ..models.query_filter import QueryFilter
from .base_directory_adapter import BaseDirectoryAdapter

logger = logging.getLogger(__name__)


class InMemoryDirectoryAdapter(BaseDirectoryAdapter):
    """In-process directory keyed by identifier (case-insensitive)."""

    def __init__(self, search_base: str = "DC=example,DC=com", domain_sid: str = "S-1-5-21-1000-2000-3000"):
        self.search_base = search_base
        self.domain_sid = domain_sid
        self.reachable = True
        self.calls: List[tuple] = []
        self._objects: Dict[str, Dict[str, Any]] = {}
        self._failures: Dict[str, List[Optional[ErrorKind]]] = {}
        self._persistent_failures: Dict[str, ErrorKind] = {}
        self._lock = threading.Lock()

    def add_object(
        self,
        identifier: str,
        distinguished_path: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None,
        memberships: Iterable[str] = (),
        rid: Optional[int] = None,
    ) -> None:
        attributes = dict(attributes or {})
        attributes.setdefault("sAMAccountName", identifier)
        attributes.setdefault("objectClass", ["top", "person", "user"])
        attributes.setdefault("objectCategory", "person")
        if rid is not None:
            attributes["objectSid"] = f"{self.domain_sid}-{rid}"
        self._objects[identifier.lower()] = {
            "identifier": identifier,
            "dn": distinguished_path or f"CN={identifier},CN=Users,{self.search_base}",
            "attributes": attributes,
            "memberships": set(memberships),
        }

    def add_group(self, name: str, distinguished_path: Optional[str] = None, memberships: Iterable[str] = ()) -> None:
        self.add_object(
            name,
            distinguished_path or f"CN={name},OU=Groups,{self.search_base}",
            {"objectClass": ["top", "group"], "objectCategory": "group", "cn": name},
            memberships,
        )

    def fail_on(self, identifier: str, kind: ErrorKind, times: Optional[int] = 1) -> None:
        """Force the next ``times`` mutations on ``identifier`` to fail. ``None`` means always."""
        if times is None:
            self._persistent_failures[identifier.lower()] = kind
        else:
            self._failures.setdefault(identifier.lower(), []).extend([kind] * times)

    def memberships_of(self, identifier: str) -> Set[str]:
        return set(self._objects[identifier.lower()]["memberships"])

    def attributes_of(self, identifier: str) -> Dict[str, Any]:
        return dict(self._objects[identifier.lower()]["attributes"])

    def exists(self, identifier: str) -> bool:
        return identifier.lower() in self._objects

    # Query side

    def query(
        self,
        query_filter: QueryFilter,
        search_scope: SearchScope = SearchScope.SUBTREE,
        search_base: Optional[str] = None,
    ) -> List[ObjectRecord]:
        if not self.reachable:
            raise QueryFailedError("In-memory directory marked unreachable")
        search_scope = SearchScope.parse(search_scope)
        base = (search_base or self.search_base).lower()

        with self._lock:
            snapshot = [self._snapshot(obj) for obj in self._objects.values()]

        records = [
            record
            for record in snapshot
            if _in_scope(record.distinguished_path, base, search_scope) and query_filter.matches(record)
        ]
        logger.debug(f"In-memory query {query_filter} returned {len(records)} records")
        return records

    @staticmethod
    def _snapshot(obj: Dict[str, Any]) -> ObjectRecord:
        attributes = dict(obj["attributes"])
        attributes["distinguishedName"] = obj["dn"]
        return ObjectRecord.build(obj["identifier"], obj["dn"], attributes, obj["memberships"])

    def test_connection(self) -> bool:
        return self.reachable

    def resolve_well_known_rids(self, rids: Iterable[int]) -> Dict[int, str]:
        if not self.reachable:
            raise QueryFailedError("In-memory directory marked unreachable")
        wanted = {f"{self.domain_sid}-{rid}": rid for rid in rids}
        return {
            wanted[obj["attributes"]["objectSid"]]: obj["identifier"]
            for obj in self._objects.values()
            if obj["attributes"].get("objectSid") in wanted
        }

    # Mutation side

    def _begin(self, verb: str, identifier: str, *args) -> Optional[MutationResult]:
        self.calls.append((verb, identifier) + args)
        key = identifier.lower()
        kind = self._persistent_failures.get(key)
        if kind is None and self._failures.get(key):
            kind = self._failures[key].pop(0)
        if kind is not None:
            return MutationResult.failed(kind, f"{verb} {identifier}: forced {kind.value}")
        if key not in self._objects:
            return MutationResult.failed(ErrorKind.OBJECT_NOT_FOUND, f"{identifier} not found")
        return None

    def add_to_group(self, identifier: str, group_id: str) -> MutationResult:
        with self._lock:
            failure = self._begin("add_to_group", identifier, group_id)
            if failure:
                return failure
            if group_id.lower() not in self._objects:
                return MutationResult.failed(ErrorKind.OBJECT_NOT_FOUND, f"group {group_id} not found")
            memberships = self._objects[identifier.lower()]["memberships"]
            if group_id.lower() in {name.lower() for name in memberships}:
                return MutationResult.unchanged(f"{identifier} already in {group_id}")
            memberships.add(group_id)
            return MutationResult.applied(f"add {identifier} to {group_id}")

    def remove_from_group(self, identifier: str, group_id: str) -> MutationResult:
        with self._lock:
            failure = self._begin("remove_from_group", identifier, group_id)
            if failure:
                return failure
            memberships = self._objects[identifier.lower()]["memberships"]
            matching = {name for name in memberships if name.lower() == group_id.lower()}
            if not matching:
                return MutationResult.unchanged(f"{identifier} not in {group_id}")
            memberships.difference_update(matching)
            return MutationResult.applied(f"remove {identifier} from {group_id}")

    def clear_attribute(self, identifier: str, attribute: str) -> MutationResult:
        with self._lock:
            failure = self._begin("clear_attribute", identifier, attribute)
            if failure:
                return failure
            attributes = self._objects[identifier.lower()]["attributes"]
            matching = [name for name in attributes if name.lower() == attribute.lower()]
            if not matching:
                return MutationResult.unchanged(f"{attribute} already clear on {identifier}")
            for name in matching:
                del attributes[name]
            return MutationResult.applied(f"clear {attribute} on {identifier}")

    def disable(self, identifier: str) -> MutationResult:
        with self._lock:
            failure = self._begin("disable", identifier)
            if failure:
                return failure
            attributes = self._objects[identifier.lower()]["attributes"]
            current = int(attributes.get("userAccountControl") or 0)
            if current & ACCOUNTDISABLE:
                return MutationResult.unchanged(f"{identifier} already disabled")
            attributes["userAccountControl"] = current | ACCOUNTDISABLE
            return MutationResult.applied(f"disable {identifier}")

    def delete(self, identifier: str) -> MutationResult:
        with self._lock:
            failure = self._begin("delete", identifier)
            if failure:
                return failure
            del self._objects[identifier.lower()]
            return MutationResult.applied(f"delete {identifier}")


def _in_scope(dn: str, base: str, scope: SearchScope) -> bool:
    if scope == SearchScope.WHOLE_DOMAIN:
        return True
    dn = dn.lower()
    if scope == SearchScope.SUBTREE:
        return dn == base or dn.endswith("," + base)
    parent = ",".join(to_dn(dn)[1:]).lower()
    return parent == base
