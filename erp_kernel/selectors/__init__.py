"""Selectors for the ERP kernel (read side)."""

from erp_kernel.selectors.notification_selector import (
    NotificationRecord,
    NotificationSelector,
)
from erp_kernel.selectors.pending_selector import (
    ItemRole,
    PendingSelector,
    RequestSummary,
    classify,
)

__all__ = [
    "ItemRole",
    "NotificationRecord",
    "NotificationSelector",
    "PendingSelector",
    "RequestSummary",
    "classify",
]
