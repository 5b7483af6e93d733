"""
Module: erp_kernel.selectors.base
Responsibility: Base class for read-only selectors over the document store.
    Selectors form the "Q" side of the service/selector split: they answer
    list and count questions and never write.
Architecture position: Kernel > Selectors.  May import from domain/ and
    store/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors call ``DocumentStore.get`` and
      ``query_group`` only; they never open a transaction.
    - DTO return convention: selectors return frozen dataclasses, never raw
      snapshots.
"""

from erp_kernel.domain.documents import DEFAULT_LAYOUT, CollectionLayout
from erp_kernel.store.base import DocumentStore


class BaseSelector:
    """
    Base class for all selectors.

    Contract:
        Selectors accept a ``DocumentStore`` from the caller, perform
        read-only queries, and return DTOs.
    """

    def __init__(self, store: DocumentStore, layout: CollectionLayout = DEFAULT_LAYOUT):
        self.store = store
        self.layout = layout
