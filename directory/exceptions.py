from enum import Enum


class ErrorKind(str, Enum):
    """Provider-independent error kinds reported by directory adapters."""

    QUERY_FAILED = "QueryFailed"
    OBJECT_NOT_FOUND = "ObjectNotFound"
    ACCESS_DENIED = "AccessDenied"
    TIMEOUT = "Timeout"
    VALIDATION_FAILED = "ValidationFailed"
    PROVIDER_ERROR = "ProviderError"


class DirectoryError(Exception):
    """Base exception for directory service errors."""

    kind = ErrorKind.PROVIDER_ERROR


class QueryFailedError(DirectoryError):
    """Raised when the directory cannot be reached or rejects a query."""

    kind = ErrorKind.QUERY_FAILED


class ValidationFailedError(DirectoryError, ValueError):
    """Raised when an input is structurally invalid before any directory call."""

    kind = ErrorKind.VALIDATION_FAILED


class ObjectNotFoundError(DirectoryError):
    """Raised when a target object no longer exists."""

    kind = ErrorKind.OBJECT_NOT_FOUND


class AccessDeniedError(DirectoryError):
    """Raised when the bound account lacks rights on the target object."""

    kind = ErrorKind.ACCESS_DENIED


class DirectoryTimeoutError(DirectoryError):
    """Raised when a directory call exceeds its deadline."""

    kind = ErrorKind.TIMEOUT
