import getpass
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

import keyring
from ldap3 import (
    ALL,
    BASE,
    LEVEL,
    MODIFY_ADD,
    MODIFY_DELETE,
    MODIFY_REPLACE,
    SUBTREE,
    Connection,
    Server,
)
from ldap3.core.exceptions import (
    LDAPCommunicationError,
    LDAPException,
    LDAPNoSuchObjectResult,
    LDAPResponseTimeoutError,
)
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import parse_dn, to_dn

from ..exceptions import (
    DirectoryError,
    DirectoryTimeoutError,
    ErrorKind,
    ObjectNotFoundError,
    QueryFailedError,
    ValidationFailedError,
)
from ..models.mutation_result import MutationResult
from ..models.object_record import ACCOUNTDISABLE, ObjectRecord, SearchScope
from ..models.query_filter import QueryFilter
from .base_directory_adapter import BaseDirectoryAdapter

logger = logging.getLogger(__name__)

# LDAP result codes (RFC 4511) that matter for reconciliation
RESULT_SUCCESS = 0
RESULT_TIME_LIMIT_EXCEEDED = 3
RESULT_NO_SUCH_ATTRIBUTE = 16
RESULT_ATTRIBUTE_OR_VALUE_EXISTS = 20
RESULT_NO_SUCH_OBJECT = 32
RESULT_INSUFFICIENT_ACCESS_RIGHTS = 50
RESULT_BUSY = 51
RESULT_UNAVAILABLE = 52
RESULT_UNWILLING_TO_PERFORM = 53
RESULT_ENTRY_ALREADY_EXISTS = 68

# Active Directory tree delete control, removes leaf objects under computers
TREE_DELETE_CONTROL = ("1.2.840.113556.1.4.805", True, None)

DEFAULT_ATTRIBUTES = [
    "sAMAccountName",
    "distinguishedName",
    "memberOf",
    "userAccountControl",
    "employeeType",
    "adminCount",
    "lastLogonTimestamp",
    "whenCreated",
    "objectClass",
]


class LDAPDirectoryAdapter(BaseDirectoryAdapter):
    """
    Active Directory adapter built on ldap3.

    This class handles the LDAP connection, authentication, paged queries
    and the handful of modify/delete operations housekeeping needs. A single
    connection is opened on first use and reused for the whole run, read-only
    for queries and read-write for mutations. Call close() (or use the adapter
    as a context manager) when the run is finished.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize LDAP adapter with configuration settings.

        Args:
            config: Dictionary containing LDAP connection settings.
                   Required keys:
                   - 'server': LDAP server hostname
                   - 'search_base': Base DN for searches
                   - 'user': Username for authentication
                   - 'keyring_service': Keyring service name for password

                   Optional keys with defaults:
                   - 'password': Password (skips keyring lookup when set)
                   - 'port': LDAP port (default: 636 for SSL, 389 for non-SSL)
                   - 'use_ssl': Enable SSL/TLS (default: True)
                   - 'timeout': Connect/receive timeout in seconds (default: 60)
                   - 'default_page_size': Page size for paged searches (default: 1000)
                   - 'identifier_attribute': Attribute used as the record
                     identifier (default: sAMAccountName)
                   - 'attributes': Attributes captured in each record snapshot

        Raises:
            ValidationFailedError: If configuration is not a dictionary or
                required keys are missing
        """
        if not isinstance(config, dict):
            raise ValidationFailedError("Configuration must be a dictionary")

        required_keys = ["server", "search_base", "user", "keyring_service"]
        missing_keys = [key for key in required_keys if not config.get(key)]
        if missing_keys:
            raise ValidationFailedError(
                f"Missing required configuration keys: {missing_keys}"
            )

        self.server_hostname = config["server"]
        self.search_base = config["search_base"]
        self.user = config["user"]
        self.keyring_service = config["keyring_service"]

        self.use_ssl = config.get("use_ssl", True)
        self.port = config.get("port", 636 if self.use_ssl else 389)
        self.timeout = config.get("timeout", 60)
        self.default_page_size = config.get("default_page_size", 1000)
        self.identifier_attribute = config.get("identifier_attribute", "sAMAccountName")

        attributes = list(config.get("attributes") or DEFAULT_ATTRIBUTES)
        for required in (self.identifier_attribute, "memberOf", "userAccountControl"):
            if required not in attributes:
                attributes.append(required)
        self.attributes = attributes

        self._password = config.get("password")
        self._server = None
        self._connection = None
        self._dn_cache: Dict[str, str] = {}
        # ldap3 sync connections are not thread-safe; one operation at a time
        self._lock = threading.RLock()

        logger.debug(f"LDAP adapter initialized for server: {self.server_hostname}")

    def _get_password(self) -> str:
        """
        Retrieve password from configuration, keyring, or prompt user.

        Returns:
            str: The password for LDAP authentication

        Raises:
            KeyboardInterrupt: If user cancels password prompt
        """
        if self._password:
            return self._password

        try:
            password = keyring.get_password(self.keyring_service, self.user)
            if password:
                logger.debug("Using password from keyring")
                self._password = password
                return password
        except Exception as e:
            logger.warning(f"Could not retrieve password from keyring: {e}")

        try:
            password = getpass.getpass(f"Enter LDAP password for {self.user}: ")
            self._password = password

            try:
                save_password = (
                    input("Save password to keyring? (y/n): ").lower().strip()
                )
                if save_password == "y":
                    keyring.set_password(self.keyring_service, self.user, password)
                    logger.info("Password saved to keyring")
            except Exception as e:
                logger.warning(f"Could not save password to keyring: {e}")

            return password

        except KeyboardInterrupt:
            logger.info("Password prompt cancelled by user")
            raise

    def _create_server(self) -> Server:
        if not self._server:
            self._server = Server(
                self.server_hostname,
                use_ssl=self.use_ssl,
                port=self.port,
                get_info=ALL,
                connect_timeout=self.timeout,
            )
            logger.debug(
                f"LDAP server object created: {self.server_hostname}:{self.port}"
            )
        return self._server

    @property
    def connection(self) -> Connection:
        """
        Bound connection shared by every call in this run.

        Raises:
            QueryFailedError: If the server is unreachable or the bind fails
        """
        if self._connection is not None and self._connection.bound:
            return self._connection

        try:
            connection = Connection(
                self._create_server(),
                user=self.user,
                password=self._get_password(),
                auto_bind=True,
                receive_timeout=self.timeout,
                raise_exceptions=False,
            )
        except LDAPException as e:
            logger.error(f"❌ LDAP connection failed: {e}")
            raise QueryFailedError(f"Connection to {self.server_hostname} failed: {e}")

        if not connection.bound:
            raise QueryFailedError(f"Failed to bind to {self.server_hostname}")

        logger.info(f"✅ Connected to {self.server_hostname}")
        self._connection = connection
        return connection

    def test_connection(self) -> bool:
        """Bind and run a minimal base-scope search against the search base."""
        try:
            conn = self.connection
            success = conn.search(
                search_base=self.search_base,
                search_filter="(objectClass=*)",
                search_scope=BASE,
                attributes=["1.1"],
            )
            if not success:
                logger.warning(f"Connection test search failed: {conn.result}")
            return bool(success)
        except DirectoryError as e:
            logger.error(f"LDAP connection test failed: {e}")
            return False

    def close(self) -> None:
        if self._connection is not None:
            try:
                self._connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
        self._connection = None
        self._dn_cache.clear()

    def __repr__(self) -> str:
        return (
            f"LDAPDirectoryAdapter(server='{self.server_hostname}', port={self.port}, "
            f"use_ssl={self.use_ssl}, search_base='{self.search_base}', "
            f"user='{self.user}')"
        )

    # Query side

    @property
    def domain_root(self) -> str:
        """Domain naming context derived from the DC components of the search base."""
        components = [rdn for rdn in to_dn(self.search_base) if rdn.lower().startswith("dc=")]
        if not components:
            raise ValidationFailedError(
                f"Search base '{self.search_base}' has no DC components"
            )
        return ",".join(components)

    def _scope_arguments(self, search_scope: SearchScope, search_base: Optional[str]):
        if search_scope == SearchScope.WHOLE_DOMAIN:
            return self.domain_root, SUBTREE
        base_dn = search_base if search_base is not None else self.search_base
        try:
            parse_dn(base_dn)
        except LDAPException as e:
            raise ValidationFailedError(f"Invalid search base '{base_dn}': {e}")
        return base_dn, LEVEL if search_scope == SearchScope.SINGLE_LEVEL else SUBTREE

    def _paged_search(self, base_dn: str, search_filter: str, scope, attributes) -> List[Dict]:
        with self._lock:
            return self._locked_paged_search(base_dn, search_filter, scope, attributes)

    def _locked_paged_search(self, base_dn: str, search_filter: str, scope, attributes) -> List[Dict]:
        """
        Run a paged search and return every entry, or raise.

        Raises:
            ObjectNotFoundError: If the search base itself does not exist
            DirectoryTimeoutError: If the server stopped answering mid-search
            QueryFailedError: If any page fails; partial results are discarded
        """
        conn = self.connection
        try:
            responses = conn.extend.standard.paged_search(
                search_base=base_dn,
                search_filter=search_filter,
                search_scope=scope,
                attributes=attributes,
                paged_size=self.default_page_size,
                generator=False,
            )
        except LDAPNoSuchObjectResult:
            raise ObjectNotFoundError(f"'{base_dn}' does not exist")
        except (LDAPResponseTimeoutError, LDAPCommunicationError) as e:
            self._connection = None
            raise DirectoryTimeoutError(f"Search under '{base_dn}' timed out: {e}")
        except LDAPException as e:
            logger.error(f"❌ LDAP search failed: {e}")
            raise QueryFailedError(f"Search '{search_filter}' under '{base_dn}' failed: {e}")

        result = conn.result or {}
        if result.get("result") == RESULT_NO_SUCH_OBJECT:
            raise ObjectNotFoundError(f"'{base_dn}' does not exist")
        if result.get("result", RESULT_SUCCESS) != RESULT_SUCCESS:
            raise QueryFailedError(
                f"Search '{search_filter}' under '{base_dn}' failed: "
                f"{result.get('description')} {result.get('message', '')}".strip()
            )

        return [
            response
            for response in responses or []
            if isinstance(response, dict) and response.get("type") == "searchResEntry"
        ]

    def query(
        self,
        query_filter: QueryFilter,
        search_scope: SearchScope = SearchScope.SUBTREE,
        search_base: Optional[str] = None,
    ) -> List[ObjectRecord]:
        search_scope = SearchScope.parse(search_scope)
        base_dn, scope = self._scope_arguments(search_scope, search_base)
        search_filter = query_filter.to_ldap()

        logger.debug(
            f"Executing query: filter='{search_filter}', base='{base_dn}', scope='{search_scope.value}'"
        )
        try:
            entries = self._paged_search(base_dn, search_filter, scope, self.attributes)
        except (ObjectNotFoundError, DirectoryTimeoutError) as e:
            raise QueryFailedError(str(e))

        records = []
        for entry in entries:
            record = self._to_record(entry.get("dn", ""), entry.get("attributes", {}))
            if record is None:
                logger.debug(f"Skipping entry without {self.identifier_attribute}: {entry.get('dn')}")
                continue
            self._dn_cache[record.identifier.lower()] = record.distinguished_path
            records.append(record)

        logger.info(f"Query completed: {len(records)} records returned")
        return records

    def _to_record(self, dn: str, attributes: Dict[str, Any]) -> Optional[ObjectRecord]:
        identifier = attributes.get(self.identifier_attribute)
        if isinstance(identifier, list):
            identifier = identifier[0] if identifier else None
        if not identifier:
            return None

        member_of = attributes.get("memberOf") or []
        if isinstance(member_of, str):
            member_of = [member_of]

        snapshot = {
            name: value
            for name, value in attributes.items()
            if value not in (None, [], "")
        }
        return ObjectRecord.build(
            identifier=str(identifier),
            distinguished_path=dn,
            attributes=snapshot,
            memberships={group_identifier(group_dn) for group_dn in member_of},
        )

    def resolve_well_known_rids(self, rids: Iterable[int]) -> Dict[int, str]:
        """
        Resolve well-known accounts by SID so renamed built-ins are still found.

        Reads the domain SID from the domain head object and searches for
        ``<domain SID>-<rid>`` for each requested RID.
        """
        rids = list(rids)
        if not rids:
            return {}

        try:
            heads = self._paged_search(self.domain_root, "(objectClass=domain)", BASE, ["objectSid"])
            if not heads:
                raise QueryFailedError(f"Domain head {self.domain_root} not readable")
            domain_sid = heads[0].get("attributes", {}).get("objectSid")
            if not domain_sid:
                raise QueryFailedError(f"Domain head {self.domain_root} has no objectSid")

            sid_filter = "(|" + "".join(f"(objectSid={domain_sid}-{rid})" for rid in rids) + ")"
            entries = self._paged_search(
                self.domain_root, sid_filter, SUBTREE, ["objectSid", self.identifier_attribute]
            )
        except (ObjectNotFoundError, DirectoryTimeoutError) as e:
            raise QueryFailedError(str(e))

        resolved = {}
        for entry in entries:
            attrs = entry.get("attributes", {})
            sid = str(attrs.get("objectSid", ""))
            identifier = attrs.get(self.identifier_attribute)
            if sid and identifier:
                resolved[int(sid.rsplit("-", 1)[-1])] = str(identifier)

        logger.debug(f"Resolved well-known accounts: {resolved}")
        return resolved

    # Mutation side

    def _resolve_dn(self, identifier: str, object_class: Optional[str] = None) -> str:
        """
        Find the DN of an object by identifier, using the per-run cache.

        Raises:
            ObjectNotFoundError: If no object carries the identifier any more
        """
        key = identifier.lower()
        if object_class is None and key in self._dn_cache:
            return self._dn_cache[key]

        value = escape_filter_chars(identifier)
        if object_class == "group":
            search_filter = f"(&(objectClass=group)(|({self.identifier_attribute}={value})(cn={value})))"
        else:
            search_filter = f"({self.identifier_attribute}={value})"

        entries = self._paged_search(self.domain_root, search_filter, SUBTREE, ["1.1"])
        if not entries:
            kind = "group" if object_class == "group" else "object"
            raise ObjectNotFoundError(f"No {kind} named '{identifier}' in {self.domain_root}")

        dn = entries[0]["dn"]
        if object_class is None:
            self._dn_cache[key] = dn
        return dn

    def _apply(self, description: str, operation, tolerated=()) -> MutationResult:
        with self._lock:
            return self._locked_apply(description, operation, tolerated)

    def _locked_apply(self, description: str, operation, tolerated=()) -> MutationResult:
        """
        Run one ldap3 write and translate the outcome.

        Args:
            description: Human readable action for log lines
            operation: Callable issuing the write on the shared connection
            tolerated: Result codes meaning "already in the requested state"
        """
        try:
            operation(self.connection)
        except DirectoryError as e:
            return MutationResult.from_error(e)
        except (LDAPResponseTimeoutError, LDAPCommunicationError) as e:
            logger.warning(f"{description}: directory call timed out or dropped: {e}")
            self._connection = None
            return MutationResult.failed(ErrorKind.TIMEOUT, f"{description}: {e}")
        except LDAPException as e:
            return MutationResult.failed(ErrorKind.PROVIDER_ERROR, f"{description}: {e}")

        result = self._connection.result if self._connection else {}
        code = result.get("result", RESULT_SUCCESS)
        if code == RESULT_SUCCESS:
            return MutationResult.applied(description)
        if code in tolerated:
            logger.debug(f"{description}: already in requested state ({result.get('description')})")
            return MutationResult.unchanged(description)
        return MutationResult.failed(
            translate_result_code(code),
            f"{description}: {result.get('description')} {result.get('message', '')}".strip(),
        )

    def add_to_group(self, identifier: str, group_id: str) -> MutationResult:
        try:
            member_dn = self._resolve_dn(identifier)
            group_dn = self._resolve_dn(group_id, object_class="group")
        except DirectoryError as e:
            return MutationResult.from_error(e)
        return self._apply(
            f"add {identifier} to {group_id}",
            lambda conn: conn.modify(group_dn, {"member": [(MODIFY_ADD, [member_dn])]}),
            tolerated=(RESULT_ENTRY_ALREADY_EXISTS, RESULT_ATTRIBUTE_OR_VALUE_EXISTS),
        )

    def remove_from_group(self, identifier: str, group_id: str) -> MutationResult:
        try:
            member_dn = self._resolve_dn(identifier)
            group_dn = self._resolve_dn(group_id, object_class="group")
        except DirectoryError as e:
            return MutationResult.from_error(e)
        # AD answers unwillingToPerform when the value is not a member
        return self._apply(
            f"remove {identifier} from {group_id}",
            lambda conn: conn.modify(group_dn, {"member": [(MODIFY_DELETE, [member_dn])]}),
            tolerated=(RESULT_NO_SUCH_ATTRIBUTE, RESULT_UNWILLING_TO_PERFORM),
        )

    def clear_attribute(self, identifier: str, attribute: str) -> MutationResult:
        try:
            dn = self._resolve_dn(identifier)
        except DirectoryError as e:
            return MutationResult.from_error(e)
        return self._apply(
            f"clear {attribute} on {identifier}",
            lambda conn: conn.modify(dn, {attribute: [(MODIFY_DELETE, [])]}),
            tolerated=(RESULT_NO_SUCH_ATTRIBUTE,),
        )

    def disable(self, identifier: str) -> MutationResult:
        try:
            dn = self._resolve_dn(identifier)
            entries = self._paged_search(dn, "(objectClass=*)", BASE, ["userAccountControl"])
        except DirectoryError as e:
            return MutationResult.from_error(e)
        if not entries:
            return MutationResult.failed(ErrorKind.OBJECT_NOT_FOUND, f"{identifier} disappeared")

        current = int(entries[0].get("attributes", {}).get("userAccountControl") or 0)
        if current & ACCOUNTDISABLE:
            return MutationResult.unchanged(f"{identifier} already disabled")
        return self._apply(
            f"disable {identifier}",
            lambda conn: conn.modify(
                dn, {"userAccountControl": [(MODIFY_REPLACE, [current | ACCOUNTDISABLE])]}
            ),
        )

    def delete(self, identifier: str) -> MutationResult:
        try:
            dn = self._resolve_dn(identifier)
        except DirectoryError as e:
            return MutationResult.from_error(e)
        result = self._apply(
            f"delete {identifier}",
            lambda conn: conn.delete(dn, controls=[TREE_DELETE_CONTROL]),
        )
        if result.success:
            self._dn_cache.pop(identifier.lower(), None)
        return result


def group_identifier(group_dn: str) -> str:
    """Group identifier used in memberships: the value of the leading RDN."""
    try:
        return parse_dn(group_dn)[0][1]
    except (LDAPException, IndexError):
        return group_dn


def translate_result_code(code: int) -> ErrorKind:
    """Map an LDAP result code onto the provider-independent error kinds."""
    if code == RESULT_NO_SUCH_OBJECT:
        return ErrorKind.OBJECT_NOT_FOUND
    if code == RESULT_INSUFFICIENT_ACCESS_RIGHTS:
        return ErrorKind.ACCESS_DENIED
    if code in (RESULT_TIME_LIMIT_EXCEEDED, RESULT_BUSY, RESULT_UNAVAILABLE):
        return ErrorKind.TIMEOUT
    return ErrorKind.PROVIDER_ERROR
