from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from ..models.mutation_result import MutationResult
from ..models.object_record import ObjectRecord, SearchScope
from ..models.query_filter import QueryFilter


class BaseDirectoryAdapter(ABC):
    """
    Abstract base class for directory service adapters.

    An adapter exposes read verbs (query, well-known account lookup) and one
    mutation verb per corrective action. Mutations never raise for per-object
    problems: they return a MutationResult carrying an ErrorKind so callers
    do not depend on provider-specific exception types. Only fatal problems
    (QueryFailedError, ValidationFailedError) are raised.
    """

    @abstractmethod
    def query(
        self,
        query_filter: QueryFilter,
        search_scope: SearchScope = SearchScope.SUBTREE,
        search_base: Optional[str] = None,
    ) -> List[ObjectRecord]:
        """Return a complete, fresh snapshot of the matching objects."""
        pass

    @abstractmethod
    def resolve_well_known_rids(self, rids: Iterable[int]) -> Dict[int, str]:
        """Map domain-relative identifiers (e.g. 502) to account identifiers."""
        pass

    @abstractmethod
    def add_to_group(self, identifier: str, group_id: str) -> MutationResult:
        pass

    @abstractmethod
    def remove_from_group(self, identifier: str, group_id: str) -> MutationResult:
        pass

    @abstractmethod
    def clear_attribute(self, identifier: str, attribute: str) -> MutationResult:
        pass

    @abstractmethod
    def disable(self, identifier: str) -> MutationResult:
        pass

    @abstractmethod
    def delete(self, identifier: str) -> MutationResult:
        pass

    def test_connection(self) -> bool:
        """Check the directory answers before a run starts."""
        return True

    def close(self) -> None:
        """Release any held connection. Default adapters hold nothing."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
