from .base_directory_adapter import BaseDirectoryAdapter
from .ldap_adapter import LDAPDirectoryAdapter
from .memory_adapter import InMemoryDirectoryAdapter

__all__ = ['BaseDirectoryAdapter', 'LDAPDirectoryAdapter', 'InMemoryDirectoryAdapter']
