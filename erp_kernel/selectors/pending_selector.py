"""
PendingSelector -- "what is waiting on me" and related approval lists.

Responsibility:
    Unions the per-tier and owner queries across every document kind,
    normalizes legacy statuses, and classifies each in-flight request for
    the asking identity:

    * ACTION_REQUIRED -- the identity's acting tier (first tier listing
      them) is the authoritative tier.
    * MONITORING -- the identity sits in a tier after the authoritative
      one, or is the submitter.  The members of the last tier therefore
      see a request from the moment it is submitted.

    Approvers whose turn has passed are not listed.  Results are
    de-duplicated by (kind, id) and sorted newest first.

Architecture position:
    Kernel > Selectors -- read-only.

Failure modes:
    Documents whose status cannot be normalized are skipped with a
    warning; one corrupt legacy record never hides the rest of the list.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Iterable

from erp_kernel.domain.approval import TIER_ORDER, ApprovalStatus
from erp_kernel.domain.documents import DocumentKind
from erp_kernel.domain.request import ApprovalRequest
from erp_kernel.domain.status_labels import coerce_timestamp
from erp_kernel.exceptions import UnknownStatusError
from erp_kernel.logging_config import get_logger
from erp_kernel.selectors.base import BaseSelector
from erp_kernel.store.base import FieldFilter, Snapshot

logger = get_logger("selectors.pending")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ItemRole(str, Enum):
    ACTION_REQUIRED = "action_required"
    MONITORING = "monitoring"


@dataclass(frozen=True)
class RequestSummary:
    """One row of an approval list."""

    request: ApprovalRequest
    role: ItemRole | None = None

    @property
    def request_id(self) -> str:
        return self.request.request_id

    @property
    def kind(self) -> DocumentKind:
        return self.request.kind

    @property
    def status(self) -> ApprovalStatus:
        return self.request.state.status

    @property
    def created_at(self) -> datetime | None:
        return self.request.created_at


def classify(request: ApprovalRequest, identity: str) -> ItemRole | None:
    """Role of ``identity`` on an in-flight request, or None if not listed."""
    if request.is_terminal:
        return None
    authoritative = request.state.authoritative_tier
    line = request.approvers

    if authoritative is not None and line.tier_of(identity) is authoritative:
        return ItemRole.ACTION_REQUIRED

    if authoritative is not None:
        position = TIER_ORDER.index(authoritative)
        if any(TIER_ORDER.index(t) > position for t in line.tiers_of(identity)):
            return ItemRole.MONITORING

    if identity == request.owner:
        return ItemRole.MONITORING
    return None


def _newest_first(items: list[RequestSummary]) -> list[RequestSummary]:
    return sorted(items, key=lambda s: s.created_at or _EPOCH, reverse=True)


class PendingSelector(BaseSelector):
    """Approval lists for one identity across all document kinds."""

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _kinds(self, kinds: Iterable[DocumentKind | str] | None) -> tuple[DocumentKind, ...]:
        if kinds is None:
            return self.layout.kinds
        return tuple(DocumentKind(k) for k in kinds)

    def _collect(
        self,
        kinds: Iterable[DocumentKind | str] | None,
        filter_sets: Iterable[tuple[FieldFilter, ...]],
    ) -> list[ApprovalRequest]:
        """Run every filter set per kind, de-duplicate by (kind, id)."""
        filter_sets = list(filter_sets)
        seen: dict[tuple[DocumentKind, str], ApprovalRequest | None] = {}
        for kind in self._kinds(kinds):
            group = self.layout.binding(kind).subcollection
            for filters in filter_sets:
                for snap in self.store.query_group(group, *filters):
                    key = (kind, snap.id)
                    if key not in seen:
                        seen[key] = self._to_request(kind, snap)
        return [r for r in seen.values() if r is not None]

    def _to_request(self, kind: DocumentKind, snap: Snapshot) -> ApprovalRequest | None:
        try:
            return ApprovalRequest.from_document(
                kind, snap.id, snap.data, owner=snap.path.root_owner,
            )
        except UnknownStatusError as exc:
            logger.warning(
                "request_skipped_unknown_status",
                extra={"path": str(snap.path), "raw_status": exc.raw_status},
            )
            return None

    @staticmethod
    def _approver_filters(identity: str) -> list[tuple[FieldFilter, ...]]:
        return [
            (FieldFilter(f"approvers.{tier.value}", "array-contains", identity),)
            for tier in TIER_ORDER
        ]

    @staticmethod
    def _owner_filters(identity: str) -> list[tuple[FieldFilter, ...]]:
        # Older documents recorded the owner as ``userName``.
        return [
            (FieldFilter("ownerIdentity", "==", identity),),
            (FieldFilter("userName", "==", identity),),
        ]

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def list_pending(
        self,
        identity: str,
        kinds: Iterable[DocumentKind | str] | None = None,
    ) -> list[RequestSummary]:
        """In-flight requests the identity must act on or is watching."""
        requests = self._collect(
            kinds, self._approver_filters(identity) + self._owner_filters(identity),
        )
        items = []
        for request in requests:
            role = classify(request, identity)
            if role is not None:
                items.append(RequestSummary(request, role))
        return _newest_first(items)

    def list_action_required(
        self,
        identity: str,
        kinds: Iterable[DocumentKind | str] | None = None,
    ) -> list[RequestSummary]:
        return [
            s for s in self.list_pending(identity, kinds)
            if s.role is ItemRole.ACTION_REQUIRED
        ]

    def list_completed(
        self,
        identity: str,
        kinds: Iterable[DocumentKind | str] | None = None,
    ) -> list[RequestSummary]:
        """The identity's own requests that reached a terminal status."""
        requests = self._collect(kinds, self._owner_filters(identity))
        return _newest_first([RequestSummary(r) for r in requests if r.is_terminal])

    def list_shared(
        self,
        identity: str,
        kinds: Iterable[DocumentKind | str] | None = None,
    ) -> list[RequestSummary]:
        """Requests that list the identity as a shared (cc) member."""
        requests = self._collect(
            kinds, [(FieldFilter("approvers.shared", "array-contains", identity),)],
        )
        return _newest_first([RequestSummary(r) for r in requests])

    def list_decided_on(
        self,
        identity: str,
        day: date,
        kinds: Iterable[DocumentKind | str] | None = None,
        tz: tzinfo = timezone.utc,
    ) -> list[RequestSummary]:
        """Requests on which the identity recorded a decision during ``day``."""
        requests = self._collect(kinds, self._approver_filters(identity))
        items = [
            RequestSummary(r) for r in requests
            if _decided_on(r, identity, day, tz)
        ]
        return _newest_first(items)

    def count_decided_on(
        self,
        identity: str,
        day: date,
        kinds: Iterable[DocumentKind | str] | None = None,
        tz: tzinfo = timezone.utc,
    ) -> int:
        return len(self.list_decided_on(identity, day, kinds, tz))


def _decided_on(request: ApprovalRequest, identity: str, day: date, tz: tzinfo) -> bool:
    for entry in request.history:
        if entry.get("approver") != identity:
            continue
        at = coerce_timestamp(entry.get("approvedAt"))
        if at is not None and at.astimezone(tz).date() == day:
            return True
    return False
