"""ORM models for the ERP kernel."""

from erp_kernel.models.document import DocumentModel

__all__ = ["DocumentModel"]
