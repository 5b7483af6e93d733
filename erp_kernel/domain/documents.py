"""
Document kinds and collection layout (``erp_kernel.domain.documents``).

Responsibility
--------------
Names the approval-bearing document kinds and where each one lives in the
hierarchical document store.  Requests are partitioned by owner:
``{collection}/{ownerIdentity}/{subcollection}/{documentId}``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  The concrete
collection names come from configuration through
``erp_config.bridges.build_collection_layout``; ``DEFAULT_LAYOUT`` mirrors
the packaged defaults so tests and scripts can run without a config file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class DocumentKind(str, Enum):
    """Approval-bearing document kinds."""

    APPROVAL = "approval"  # purchase / sales / vehicle / expense
    REPORT = "report"
    VACATION = "vacation"


class LinkRoute(str, Enum):
    """Where a notification link should take its target."""

    PENDING_INBOX = "pending_inbox"
    SHARED_INBOX = "shared_inbox"
    REQUEST_DETAIL = "request_detail"


# Display labels used when composing notification messages.
KIND_LABELS: dict[DocumentKind, str] = {
    DocumentKind.APPROVAL: "Approval",
    DocumentKind.REPORT: "Report",
    DocumentKind.VACATION: "Vacation",
}

APPROVAL_TYPE_LABELS: dict[str, str] = {
    "purchase": "Purchase approval",
    "sales": "Sales approval",
    "vehicle": "Vehicle request",
    "expense": "Expense report",
}


def kind_label(kind: DocumentKind, approval_type: str | None = None) -> str:
    """Human label for a request, refined by ``approvalType`` when present."""
    if kind is DocumentKind.APPROVAL and approval_type:
        return APPROVAL_TYPE_LABELS.get(approval_type, KIND_LABELS[kind])
    return KIND_LABELS[kind]


@dataclass(frozen=True)
class CollectionBinding:
    """Storage location and detail page for one document kind."""

    kind: DocumentKind
    collection: str
    subcollection: str
    detail_link: str  # format string with {request_id}


@dataclass(frozen=True)
class LinkSettings:
    """Inbox links shared by every document kind."""

    pending_inbox: str = "/main/my-approval/pending"
    shared_inbox: str = "/main/my-approval/shared"


@dataclass(frozen=True)
class CollectionLayout:
    """
    Resolves document kinds to store locations.

    Contract:
        Exactly one binding per ``DocumentKind``; subcollection names are
        unique so a collection-group query identifies the kind.
    """

    bindings: tuple[CollectionBinding, ...]
    notifications_collection: str = "notifications"
    notifications_subcollection: str = "userNotifications"
    employee_collection: str = "employee"
    links: LinkSettings = field(default_factory=LinkSettings)

    def binding(self, kind: DocumentKind) -> CollectionBinding:
        for b in self.bindings:
            if b.kind is kind:
                return b
        raise KeyError(f"No collection binding for document kind {kind.value!r}")

    @property
    def kinds(self) -> tuple[DocumentKind, ...]:
        return tuple(b.kind for b in self.bindings)

    def render_link(
        self,
        route: LinkRoute,
        kind: DocumentKind,
        request_id: str,
    ) -> str:
        """Render a link route into the URL stored on a notification."""
        if route is LinkRoute.PENDING_INBOX:
            return self.links.pending_inbox
        if route is LinkRoute.SHARED_INBOX:
            return self.links.shared_inbox
        return self.binding(kind).detail_link.format(request_id=request_id)


DEFAULT_LAYOUT = CollectionLayout(
    bindings=(
        CollectionBinding(
            kind=DocumentKind.APPROVAL,
            collection="approvals",
            subcollection="userApprovals",
            detail_link="/main/workoutside/approvals/{request_id}",
        ),
        CollectionBinding(
            kind=DocumentKind.REPORT,
            collection="reports",
            subcollection="userReports",
            detail_link="/main/report/{request_id}",
        ),
        CollectionBinding(
            kind=DocumentKind.VACATION,
            collection="vacation",
            subcollection="requests",
            detail_link="/main/vacation/{request_id}",
        ),
    ),
)
