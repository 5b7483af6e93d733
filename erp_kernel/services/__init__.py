"""Services for the ERP kernel (write side)."""

from erp_kernel.services.approval_coordinator import ApprovalCoordinator, ApprovalResult
from erp_kernel.services.notification_dispatcher import (
    EmailMessage,
    EmailSender,
    NotificationDispatcher,
    NullEmailSender,
    SmtpEmailSender,
    StagedNotification,
)
from erp_kernel.services.request_service import (
    CancelResult,
    RequestService,
    SubmittedRequest,
)

__all__ = [
    "ApprovalCoordinator",
    "ApprovalResult",
    "CancelResult",
    "EmailMessage",
    "EmailSender",
    "NotificationDispatcher",
    "NullEmailSender",
    "RequestService",
    "SmtpEmailSender",
    "StagedNotification",
    "SubmittedRequest",
]
