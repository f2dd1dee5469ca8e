from .mutation_result import MutationResult
from .object_record import ACCOUNTDISABLE, ObjectRecord, SearchScope
from .query_filter import Predicate, QueryFilter

__all__ = [
    "ACCOUNTDISABLE",
    "MutationResult",
    "ObjectRecord",
    "Predicate",
    "QueryFilter",
    "SearchScope",
]
