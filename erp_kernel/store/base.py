"""
Document store contract (``erp_kernel.store.base``).

Responsibility
--------------
Defines the hierarchical document store the approval core runs on:
paths, snapshots, write sentinels, field filters, the ``Transaction`` and
``DocumentStore`` interfaces, and the bounded retry loop shared by every
implementation.

Architecture position
---------------------
**Kernel > Store** -- the only layer that touches persistence.  Services
receive a ``DocumentStore`` by constructor injection and never know which
implementation is behind it.

Invariants enforced
-------------------
* Document-level serializability -- a transaction that read a document
  fails to commit with ``OptimisticLockError`` if that document changed
  after the read.
* All-or-nothing commit -- every staged write of a transaction is applied,
  or none is.
* Bounded retry -- ``run_transaction`` recomputes the whole transaction
  function from a fresh read on conflict, at most ``max_attempts`` times,
  then raises ``TransientStoreError``.

Failure modes
-------------
* ``DocumentNotFoundError`` -- ``update`` on a missing document (at commit).
* ``OptimisticLockError`` -- read-set conflict at commit.
* ``TransientStoreError`` -- retries exhausted, or the backend failed.
"""

from __future__ import annotations

import copy
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, TypeVar

from erp_kernel.exceptions import OptimisticLockError, TransientStoreError
from erp_kernel.logging_config import get_logger

logger = get_logger("store")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


# =========================================================================
# Paths and snapshots
# =========================================================================


@dataclass(frozen=True)
class DocumentPath:
    """
    Slash-separated path with an even number of segments.

    ``approvals/alice/userApprovals/abc123`` -> collection group
    ``userApprovals``, parent ``approvals/alice/userApprovals``.
    """

    segments: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.segments or len(self.segments) % 2:
            raise ValueError(
                f"Document path needs an even number of segments: {self.segments!r}"
            )
        for seg in self.segments:
            if not seg or "/" in seg:
                raise ValueError(f"Invalid path segment {seg!r}")

    @classmethod
    def of(cls, *segments: str) -> DocumentPath:
        return cls(tuple(segments))

    @classmethod
    def parse(cls, path: str | DocumentPath) -> DocumentPath:
        if isinstance(path, DocumentPath):
            return path
        return cls(tuple(path.strip("/").split("/")))

    @property
    def document_id(self) -> str:
        return self.segments[-1]

    @property
    def collection_group(self) -> str:
        return self.segments[-2]

    @property
    def parent(self) -> str:
        return "/".join(self.segments[:-1])

    @property
    def root_owner(self) -> str:
        """Second segment: the owner document of a nested collection."""
        return self.segments[1]

    def child(self, collection: str, document_id: str) -> DocumentPath:
        return DocumentPath(self.segments + (collection, document_id))

    def __str__(self) -> str:
        return "/".join(self.segments)


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time read of one document. ``data`` is a private copy."""

    path: DocumentPath
    data: dict[str, Any] | None
    version: int = 0

    @property
    def exists(self) -> bool:
        return self.data is not None

    @property
    def id(self) -> str:
        return self.path.document_id

    def get(self, dotted: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return get_field(self.data, dotted, default)


# =========================================================================
# Write sentinels
# =========================================================================


class ArrayUnion:
    """Append each value not already present in the array field."""

    __slots__ = ("values",)

    def __init__(self, *values: Any):
        self.values = values

    def __repr__(self) -> str:
        return f"ArrayUnion{self.values!r}"


class Increment:
    """Atomically add ``amount`` to a numeric field (missing counts as 0)."""

    __slots__ = ("amount",)

    def __init__(self, amount: int | float):
        self.amount = amount

    def __repr__(self) -> str:
        return f"Increment({self.amount!r})"


def get_field(data: Mapping[str, Any], dotted: str, default: Any = None) -> Any:
    node: Any = data
    for part in dotted.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


def _resolve(current: Any, value: Any) -> Any:
    if isinstance(value, Increment):
        base = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
        return base + value.amount
    if isinstance(value, ArrayUnion):
        out = list(current) if isinstance(current, list) else []
        for item in value.values:
            if item not in out:
                out.append(copy.deepcopy(item))
        return out
    return copy.deepcopy(value)


def apply_field_updates(
    data: Mapping[str, Any] | None,
    fields: Mapping[str, Any],
) -> dict[str, Any]:
    """
    Return a copy of ``data`` with ``fields`` applied.

    Keys may be dotted paths into nested maps.  ``ArrayUnion`` and
    ``Increment`` values are resolved against the current field value.
    """
    result = copy.deepcopy(dict(data or {}))
    for dotted, value in fields.items():
        parts = dotted.split(".")
        node = result
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = _resolve(node.get(parts[-1]), value)
    return result


# =========================================================================
# Queries
# =========================================================================


@dataclass(frozen=True)
class FieldFilter:
    """
    Predicate on one (possibly dotted) field.

    Operators: ``==``, ``in`` (field value is one of ``value``),
    ``array-contains`` (array field contains ``value``).
    """

    field: str
    op: str
    value: Any

    OPERATORS = frozenset({"==", "in", "array-contains"})

    def __post_init__(self) -> None:
        if self.op not in self.OPERATORS:
            raise ValueError(f"Unsupported filter operator {self.op!r}")

    def matches(self, data: Mapping[str, Any]) -> bool:
        missing = object()
        current = get_field(data, self.field, missing)
        if current is missing:
            return False
        if self.op == "==":
            return current == self.value
        if self.op == "in":
            return current in self.value
        return isinstance(current, list) and self.value in current


def matches_all(data: Mapping[str, Any], filters: Iterable[FieldFilter]) -> bool:
    return all(f.matches(data) for f in filters)


# =========================================================================
# Interfaces
# =========================================================================


@dataclass
class _StagedWrite:
    kind: str  # "update" | "set" | "merge" | "delete"
    path: DocumentPath
    fields: dict[str, Any] = field(default_factory=dict)


class Transaction(ABC):
    """
    One unit of work against the store.

    Contract:
        Reads see committed data.  Writes are staged and applied at
        ``commit()`` together with read-set validation.  After ``commit``
        or ``rollback`` the transaction is closed; ``rollback`` on a closed
        transaction is a no-op.
    """

    def __init__(self) -> None:
        self._writes: list[_StagedWrite] = []
        self._closed = False

    @abstractmethod
    def read(self, path: DocumentPath | str) -> Snapshot:
        """Read a document and add it to the read set."""

    def update(self, path: DocumentPath | str, fields: Mapping[str, Any]) -> None:
        """Apply field updates to an existing document."""
        self._stage("update", path, fields)

    def set(
        self,
        path: DocumentPath | str,
        data: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        """Create or overwrite a document; with ``merge`` apply as updates."""
        self._stage("merge" if merge else "set", path, data)

    def delete(self, path: DocumentPath | str) -> None:
        self._stage("delete", path, {})

    @abstractmethod
    def commit(self) -> None:
        """Validate the read set and apply every staged write atomically."""

    def rollback(self) -> None:
        self._writes.clear()
        self._closed = True

    @property
    def pending_writes(self) -> int:
        return len(self._writes)

    def _stage(self, kind: str, path: DocumentPath | str, fields: Mapping[str, Any]) -> None:
        if self._closed:
            raise RuntimeError("Transaction is already closed")
        self._writes.append(_StagedWrite(kind, DocumentPath.parse(path), dict(fields)))


class DocumentStore(ABC):
    """Hierarchical document store with optimistic transactions."""

    @abstractmethod
    def begin(self) -> Transaction:
        ...

    @abstractmethod
    def get(self, path: DocumentPath | str) -> Snapshot:
        """Read a committed document outside any transaction."""

    @abstractmethod
    def query_group(self, subcollection: str, *filters: FieldFilter) -> list[Snapshot]:
        """All documents of a collection group matching every filter."""

    def new_document_id(self) -> str:
        return uuid.uuid4().hex[:20]

    def run_transaction(
        self,
        fn: Callable[[Transaction], T],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> T:
        """
        Run ``fn`` in a transaction, retrying on transient failures.

        Optimistic conflicts and ``TransientStoreError`` from reads or the
        commit are retried; ``fn`` must be free of side effects outside the
        transaction, it is re-run from scratch on every attempt.

        Raises:
            TransientStoreError: ``max_attempts`` failures in a row.
            Any other exception raised by ``fn`` (not retried).
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        last_error: TransientStoreError | None = None
        for attempt in range(1, max_attempts + 1):
            txn = self.begin()
            try:
                result = fn(txn)
                txn.commit()
                return result
            except TransientStoreError as exc:
                txn.rollback()
                last_error = exc
                logger.warning(
                    "transaction_conflict"
                    if isinstance(exc, OptimisticLockError)
                    else "transaction_transient_failure",
                    extra={
                        "path": getattr(exc, "path", None),
                        "error_code": exc.code,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                    },
                )
            except Exception:
                txn.rollback()
                raise

        raise TransientStoreError(
            last_error.reason if last_error else "conflict",
            attempts=max_attempts,
        ) from last_error
