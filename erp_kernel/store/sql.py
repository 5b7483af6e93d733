"""
SqlDocumentStore -- document store over one SQLAlchemy ``documents`` table.

Responsibility:
    Production implementation of ``DocumentStore`` for PostgreSQL (SQLite
    in tests).  Each transaction owns one ORM session.

Architecture position:
    Kernel > Store.  Imports from db/ and models/.

Invariants enforced:
    - Every document in the read set (written or not) is re-checked
      against its stored version just before the writes are flushed.
    - Models loaded by ``read`` are held by the transaction, so a write
      goes through the instance that was read.  ``DocumentModel.version``
      is the mapper's ``version_id_col``: an UPDATE/DELETE of an instance
      changed underneath matches no row and raises ``StaleDataError``.
    - A document read as missing that another writer created in the
      meantime is a conflict, never silently overwritten.

Failure modes:
    - ``StaleDataError`` / ``IntegrityError`` -> ``OptimisticLockError``.
    - ``OperationalError`` (lock timeout, lost connection) ->
      ``TransientStoreError``, on reads as well as on commit.
    - ``DocumentNotFoundError`` on ``update`` of a missing document.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from erp_kernel.db.engine import get_session_factory
from erp_kernel.exceptions import (
    DocumentNotFoundError,
    OptimisticLockError,
    TransientStoreError,
)
from erp_kernel.logging_config import get_logger
from erp_kernel.models.document import DocumentModel
from erp_kernel.store import codec
from erp_kernel.store.base import (
    DocumentPath,
    DocumentStore,
    FieldFilter,
    Snapshot,
    Transaction,
    _StagedWrite,
    apply_field_updates,
    matches_all,
)

logger = get_logger("store.sql")


def _to_snapshot(path: DocumentPath, model: DocumentModel | None) -> Snapshot:
    if model is None:
        return Snapshot(path, None, 0)
    return Snapshot(path, codec.decode(model.data), model.version)


class SqlTransaction(Transaction):
    """Transaction backed by one ORM session."""

    def __init__(self, session: Session):
        super().__init__()
        self._session = session
        self._read_versions: dict[DocumentPath, int] = {}
        # strong references; the session identity map is weak
        self._loaded: dict[DocumentPath, DocumentModel] = {}

    def read(self, path: DocumentPath | str) -> Snapshot:
        path = DocumentPath.parse(path)
        model = self._loaded.get(path)
        if model is None:
            try:
                model = self._session.get(DocumentModel, str(path))
            except OperationalError as exc:
                raise TransientStoreError(str(exc.orig)) from exc
            if model is not None:
                self._loaded[path] = model
        snap = _to_snapshot(path, model)
        self._read_versions.setdefault(path, snap.version)
        return snap

    def commit(self) -> None:
        if self._closed:
            raise RuntimeError("Transaction is already closed")
        current: DocumentPath | None = None
        try:
            for path, version in self._read_versions.items():
                current = path
                stored = self._session.scalar(
                    select(DocumentModel.version).where(
                        DocumentModel.path == str(path)
                    )
                )
                if (stored or 0) != version:
                    raise OptimisticLockError(str(path))

            for write in self._writes:
                current = write.path
                self._apply(write)
                self._session.flush()

            self._session.commit()
            logger.debug(
                "sql_transaction_committed",
                extra={"writes": len(self._writes)},
            )
        except (StaleDataError, IntegrityError) as exc:
            self._session.rollback()
            raise OptimisticLockError(str(current)) from exc
        except OperationalError as exc:
            self._session.rollback()
            raise TransientStoreError(str(exc.orig)) from exc
        except Exception:
            self._session.rollback()
            raise
        finally:
            self._closed = True
            self._session.close()

    def rollback(self) -> None:
        if not self._closed:
            self._session.rollback()
            self._session.close()
        super().rollback()

    def _apply(self, write: _StagedWrite) -> None:
        key = str(write.path)
        model = self._loaded.get(write.path)
        if model is None:
            model = self._session.get(DocumentModel, key)
            if model is not None and self._read_versions.get(write.path) == 0:
                raise OptimisticLockError(key)

        if write.kind == "delete":
            if model is not None:
                self._session.delete(model)
                self._loaded.pop(write.path, None)
            return

        if write.kind == "update" and model is None:
            raise DocumentNotFoundError(key)

        base: dict[str, Any] | None = None
        if write.kind in ("update", "merge") and model is not None:
            base = codec.decode(model.data)
        data = codec.encode(apply_field_updates(base, write.fields))

        if model is None:
            model = DocumentModel(
                path=key,
                collection_group=write.path.collection_group,
                parent_path=write.path.parent,
                data=data,
            )
            self._session.add(model)
            self._loaded[write.path] = model
        else:
            model.data = data


class SqlDocumentStore(DocumentStore):
    """
    ``DocumentStore`` on the ``documents`` table.

    Args:
        session_factory: defaults to the module-level factory from
            ``erp_kernel.db.engine`` (engine must be initialized).
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        if session_factory is None:
            session_factory = get_session_factory()
        self._session_factory = session_factory

    def begin(self) -> SqlTransaction:
        return SqlTransaction(self._session_factory())

    def get(self, path: DocumentPath | str) -> Snapshot:
        path = DocumentPath.parse(path)
        try:
            with self._session_factory() as session:
                return _to_snapshot(path, session.get(DocumentModel, str(path)))
        except OperationalError as exc:
            raise TransientStoreError(str(exc.orig)) from exc

    def query_group(self, subcollection: str, *filters: FieldFilter) -> list[Snapshot]:
        try:
            with self._session_factory() as session:
                models = session.scalars(
                    select(DocumentModel).where(
                        DocumentModel.collection_group == subcollection
                    )
                ).all()
                snapshots = [
                    _to_snapshot(DocumentPath.parse(m.path), m) for m in models
                ]
        except OperationalError as exc:
            raise TransientStoreError(str(exc.orig)) from exc
        return [s for s in snapshots if matches_all(s.data, filters)]
