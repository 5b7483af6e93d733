"""
InMemoryDocumentStore -- thread-safe store for tests and single-process use.

Every committed write stamps the document with a value from one global,
monotonically increasing counter.  A transaction records the version of
every document it reads (0 for "absent") and ``commit`` re-checks them under
the store lock before applying any write.  A deleted then recreated document
therefore never looks unchanged.
"""

from __future__ import annotations

import copy
import threading
from typing import Any

from erp_kernel.exceptions import DocumentNotFoundError, OptimisticLockError
from erp_kernel.logging_config import get_logger
from erp_kernel.store.base import (
    DocumentPath,
    DocumentStore,
    FieldFilter,
    Snapshot,
    Transaction,
    apply_field_updates,
    matches_all,
)

logger = get_logger("store.memory")


class _Entry:
    __slots__ = ("data", "version")

    def __init__(self, data: dict[str, Any], version: int):
        self.data = data
        self.version = version


class InMemoryTransaction(Transaction):
    """Transaction over an ``InMemoryDocumentStore``."""

    def __init__(self, store: InMemoryDocumentStore):
        super().__init__()
        self._store = store
        self._read_versions: dict[DocumentPath, int] = {}

    def read(self, path: DocumentPath | str) -> Snapshot:
        path = DocumentPath.parse(path)
        snap = self._store._snapshot(path)
        self._read_versions.setdefault(path, snap.version)
        return snap

    def commit(self) -> None:
        if self._closed:
            raise RuntimeError("Transaction is already closed")
        try:
            self._store._apply(self._read_versions, self._writes)
        finally:
            self._closed = True


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed document store with optimistic concurrency."""

    def __init__(self) -> None:
        self._docs: dict[DocumentPath, _Entry] = {}
        self._lock = threading.RLock()
        self._sequence = 0

    def begin(self) -> InMemoryTransaction:
        return InMemoryTransaction(self)

    def get(self, path: DocumentPath | str) -> Snapshot:
        return self._snapshot(DocumentPath.parse(path))

    def query_group(self, subcollection: str, *filters: FieldFilter) -> list[Snapshot]:
        with self._lock:
            return [
                Snapshot(path, copy.deepcopy(entry.data), entry.version)
                for path, entry in self._docs.items()
                if path.collection_group == subcollection
                and matches_all(entry.data, filters)
            ]

    def _snapshot(self, path: DocumentPath) -> Snapshot:
        with self._lock:
            entry = self._docs.get(path)
            if entry is None:
                return Snapshot(path, None, 0)
            return Snapshot(path, copy.deepcopy(entry.data), entry.version)

    def _apply(self, read_versions, writes) -> None:
        with self._lock:
            for path, version in read_versions.items():
                entry = self._docs.get(path)
                current = entry.version if entry is not None else 0
                if current != version:
                    raise OptimisticLockError(str(path))

            # Stage against a working copy so a failing write leaves the
            # store untouched.
            working: dict[DocumentPath, dict[str, Any] | None] = {}

            def current_data(p: DocumentPath) -> dict[str, Any] | None:
                if p in working:
                    return working[p]
                entry = self._docs.get(p)
                return entry.data if entry is not None else None

            for write in writes:
                existing = current_data(write.path)
                if write.kind == "update":
                    if existing is None:
                        raise DocumentNotFoundError(str(write.path))
                    working[write.path] = apply_field_updates(existing, write.fields)
                elif write.kind == "merge":
                    working[write.path] = apply_field_updates(existing, write.fields)
                elif write.kind == "set":
                    working[write.path] = apply_field_updates(None, write.fields)
                else:
                    working[write.path] = None

            for path, data in working.items():
                if data is None:
                    self._docs.pop(path, None)
                else:
                    self._sequence += 1
                    self._docs[path] = _Entry(data, self._sequence)

        logger.debug(
            "memory_transaction_committed",
            extra={"writes": len(writes), "reads": len(read_versions)},
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._docs)
