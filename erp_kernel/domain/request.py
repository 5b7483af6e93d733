"""
ApprovalRequest -- domain view of a stored request document.

Built from raw document data at the read boundary.  The stored status is
normalized through ``normalize_status`` here, so services and selectors only
ever handle canonical ``ApprovalState`` values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from erp_kernel.domain.approval import ApprovalState, ApproverLine
from erp_kernel.domain.documents import DocumentKind
from erp_kernel.domain.status_labels import coerce_timestamp, normalize_status


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of one approval-bearing document."""

    request_id: str
    kind: DocumentKind
    owner: str
    title: str
    approvers: ApproverLine
    state: ApprovalState
    content: str = ""
    history: tuple[Mapping[str, Any], ...] = ()
    created_at: datetime | None = None
    last_approved_at: datetime | None = None
    approval_type: str | None = None
    days_used: float | None = None
    fields: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(
        cls,
        kind: DocumentKind,
        request_id: str,
        data: Mapping[str, Any],
        *,
        owner: str | None = None,
    ) -> ApprovalRequest:
        """
        Build from stored data.

        ``owner`` falls back to the stored ``ownerIdentity`` (legacy
        documents used ``userName``).

        Raises:
            UnknownStatusError: stored status cannot be normalized.
        """
        approvers = ApproverLine.from_mapping(data.get("approvers"))
        state = normalize_status(
            data.get("status"),
            approvers,
            rejected_by=data.get("rejectedBy"),
            request_id=request_id,
        )
        days = data.get("daysUsed")
        return cls(
            request_id=request_id,
            kind=kind,
            owner=owner or data.get("ownerIdentity") or data.get("userName") or "",
            title=data.get("title") or "",
            content=data.get("content") or "",
            approvers=approvers,
            state=state,
            history=tuple(data.get("approvalHistory") or ()),
            created_at=coerce_timestamp(data.get("createdAt")),
            last_approved_at=coerce_timestamp(data.get("lastApprovedAt")),
            approval_type=data.get("approvalType"),
            days_used=(
                float(days)
                if isinstance(days, (int, float)) and not isinstance(days, bool)
                else None
            ),
            fields=dict(data),
        )

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal
