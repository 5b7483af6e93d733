"""NotificationSelector -- an identity's in-app notifications, newest first."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from erp_kernel.domain.status_labels import coerce_timestamp
from erp_kernel.selectors.base import BaseSelector
from erp_kernel.store.base import FieldFilter, Snapshot


@dataclass(frozen=True)
class NotificationRecord:
    notification_id: str
    target: str
    from_identity: str
    type: str
    message: str
    link: str
    is_read: bool
    created_at: datetime | None
    source_request_id: str | None = None
    document_kind: str | None = None

    @classmethod
    def from_snapshot(cls, snap: Snapshot) -> NotificationRecord:
        data = snap.data or {}
        return cls(
            notification_id=snap.id,
            target=data.get("targetIdentity") or snap.path.root_owner,
            from_identity=data.get("fromIdentity", ""),
            type=data.get("type", ""),
            message=data.get("message", ""),
            link=data.get("link", ""),
            is_read=bool(data.get("isRead", False)),
            created_at=coerce_timestamp(data.get("createdAt")),
            source_request_id=data.get("sourceRequestId"),
            document_kind=data.get("documentKind"),
        )


class NotificationSelector(BaseSelector):

    def list_notifications(
        self,
        identity: str,
        unread_only: bool = False,
    ) -> list[NotificationRecord]:
        filters = [FieldFilter("targetIdentity", "==", identity)]
        if unread_only:
            filters.append(FieldFilter("isRead", "==", False))
        snaps = self.store.query_group(
            self.layout.notifications_subcollection, *filters,
        )
        records = [NotificationRecord.from_snapshot(s) for s in snaps]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(records, key=lambda r: r.created_at or epoch, reverse=True)

    def unread_count(self, identity: str) -> int:
        return len(self.list_notifications(identity, unread_only=True))
