"""
Module: erp_kernel.models.document
Responsibility: ORM persistence for hierarchical documents.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per document path (primary key).
    - ``version`` is the mapper's ``version_id_col``: every UPDATE and
      DELETE is qualified by the version that was loaded, so a write based
      on a stale read raises ``StaleDataError`` instead of overwriting.

Failure modes:
    - IntegrityError on inserting a path that already exists.
    - StaleDataError on updating/deleting a row changed since it was loaded.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import Base


class DocumentModel(Base):
    """One stored document; ``data`` is codec-encoded JSON."""

    __tablename__ = "documents"

    __table_args__ = (
        # Collection-group queries (pending / shared / decided-on lists)
        Index("ix_documents_collection_group", "collection_group"),
        Index("ix_documents_parent_path", "parent_path"),
    )

    path: Mapped[str] = mapped_column(String(512), primary_key=True)
    collection_group: Mapped[str] = mapped_column(String(200), nullable=False)
    parent_path: Mapped[str] = mapped_column(String(512), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Document {self.path} v{self.version}>"
