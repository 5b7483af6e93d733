"""
DocumentService -- common base for services that write request documents.

Responsibility:
    Holds the injected store, clock and collection layout, and resolves
    request / employee document paths so every service addresses documents
    the same way.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Services never write outside a store transaction.  Each public
      operation runs as one ``DocumentStore.run_transaction`` call.
"""

from __future__ import annotations

from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.documents import DEFAULT_LAYOUT, CollectionLayout, DocumentKind
from erp_kernel.domain.request import ApprovalRequest
from erp_kernel.exceptions import RequestNotFoundError
from erp_kernel.store.base import DEFAULT_MAX_ATTEMPTS, DocumentPath, DocumentStore, Transaction


class DocumentService:
    """Base class for write-side services over the document store."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock | None = None,
        layout: CollectionLayout = DEFAULT_LAYOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self._store = store
        self._clock = clock if clock is not None else SystemClock()
        self._layout = layout
        self._max_attempts = max_attempts

    def _request_path(self, kind: DocumentKind, owner: str, request_id: str) -> DocumentPath:
        binding = self._layout.binding(kind)
        return DocumentPath.of(binding.collection, owner, binding.subcollection, request_id)

    def _employee_path(self, identity: str) -> DocumentPath:
        return DocumentPath.of(self._layout.employee_collection, identity)

    def _load_request(
        self,
        txn: Transaction,
        kind: DocumentKind,
        owner: str,
        request_id: str,
    ) -> ApprovalRequest:
        """Read and normalize a request inside ``txn``.

        Raises:
            RequestNotFoundError: no such document.
            UnknownStatusError: stored status cannot be normalized.
        """
        snap = txn.read(self._request_path(kind, owner, request_id))
        if not snap.exists:
            raise RequestNotFoundError(kind.value, request_id, owner)
        return ApprovalRequest.from_document(kind, request_id, snap.data, owner=owner)
