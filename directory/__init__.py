from .adapters.base_directory_adapter import BaseDirectoryAdapter
from .adapters.ldap_adapter import LDAPDirectoryAdapter
from .adapters.memory_adapter import InMemoryDirectoryAdapter
from .exceptions import (
    AccessDeniedError,
    DirectoryError,
    DirectoryTimeoutError,
    ErrorKind,
    ObjectNotFoundError,
    QueryFailedError,
    ValidationFailedError,
)
from .models import MutationResult, ObjectRecord, QueryFilter, SearchScope

__all__ = [
    'AccessDeniedError',
    'BaseDirectoryAdapter',
    'DirectoryError',
    'DirectoryTimeoutError',
    'ErrorKind',
    'InMemoryDirectoryAdapter',
    'LDAPDirectoryAdapter',
    'MutationResult',
    'ObjectNotFoundError',
    'ObjectRecord',
    'QueryFailedError',
    'QueryFilter',
    'SearchScope',
    'ValidationFailedError',
]
