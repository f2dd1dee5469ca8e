from dataclasses import dataclass
from typing import Optional

from ..exceptions import DirectoryError, ErrorKind


@dataclass(frozen=True)
class MutationResult:
    """Standardized outcome of a single directory mutation."""

    success: bool
    changed: bool = False
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    def __post_init__(self):
        if not self.success and self.error_kind is None:
            object.__setattr__(self, "error_kind", ErrorKind.PROVIDER_ERROR)

    @classmethod
    def applied(cls, message: str = "") -> "MutationResult":
        return cls(success=True, changed=True, message=message)

    @classmethod
    def unchanged(cls, message: str = "") -> "MutationResult":
        """The object was already in the requested state."""
        return cls(success=True, changed=False, message=message)

    @classmethod
    def failed(cls, kind: ErrorKind, message: str) -> "MutationResult":
        return cls(success=False, changed=False, error_kind=kind, message=message)

    @classmethod
    def from_error(cls, error: DirectoryError) -> "MutationResult":
        return cls.failed(error.kind, str(error))
