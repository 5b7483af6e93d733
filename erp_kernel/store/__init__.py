"""Document store adapters."""

from erp_kernel.store.base import (
    DEFAULT_MAX_ATTEMPTS,
    ArrayUnion,
    DocumentPath,
    DocumentStore,
    FieldFilter,
    Increment,
    Snapshot,
    Transaction,
)
from erp_kernel.store.memory import InMemoryDocumentStore

__all__ = [
    "ArrayUnion",
    "DEFAULT_MAX_ATTEMPTS",
    "DocumentPath",
    "DocumentStore",
    "FieldFilter",
    "InMemoryDocumentStore",
    "Increment",
    "Snapshot",
    "Transaction",
]
