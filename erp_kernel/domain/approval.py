"""
Approval domain types and state machine (``erp_kernel.domain.approval``).

Responsibility
--------------
Pure decision logic for tiered document approval.  Maps
(current state, approver line, actor, action) to the next state, the history
entry to append, and the notification fan-out plan.  Also plans the
notifications sent when a request is first submitted.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects and functions.  ZERO I/O.
No imports from ``db/``, ``store/``, ``services/``, ``selectors/``.  May
import only from ``domain/documents`` and ``exceptions``.

Invariants enforced
-------------------
* Tier skip -- ``next_tier`` is the only definition of "a tier with zero
  members is skipped".  Every caller (this module, request creation, legacy
  normalization, the pending selector) goes through it.
* Monotonic lifecycle -- ``APPROVAL_TRANSITIONS`` lists the only valid
  status changes: forward along the tier chain, or to REJECTED.  Terminal
  states have no outgoing edges.
* Single authoritative tier -- each non-terminal status names exactly one
  tier whose members may act.
* First-match tie-break -- an identity listed in several tiers acts at the
  first of them (first -> second -> third); membership in a later tier never
  grants early action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping

from erp_kernel.domain.documents import DocumentKind, LinkRoute, kind_label
from erp_kernel.exceptions import (
    InvalidActionError,
    InvalidRequestError,
    NotAuthorizedError,
    OutOfOrderError,
)


# =========================================================================
# Tiers and statuses
# =========================================================================


class ApprovalTier(str, Enum):
    """Ordered approval stages."""

    FIRST = "first"
    SECOND = "second"
    THIRD = "third"

    @property
    def number(self) -> int:
        return TIER_ORDER.index(self) + 1


TIER_ORDER: tuple[ApprovalTier, ...] = (
    ApprovalTier.FIRST,
    ApprovalTier.SECOND,
    ApprovalTier.THIRD,
)


class ApprovalStatus(str, Enum):
    """Canonical approval lifecycle states (the only values ever written)."""

    TIER1_PENDING = "tier1_pending"
    TIER2_PENDING = "tier2_pending"
    TIER3_PENDING = "tier3_pending"
    FINAL_APPROVED = "final_approved"
    REJECTED = "rejected"


PENDING_STATUS_BY_TIER: dict[ApprovalTier, ApprovalStatus] = {
    ApprovalTier.FIRST: ApprovalStatus.TIER1_PENDING,
    ApprovalTier.SECOND: ApprovalStatus.TIER2_PENDING,
    ApprovalTier.THIRD: ApprovalStatus.TIER3_PENDING,
}

TIER_BY_PENDING_STATUS: dict[ApprovalStatus, ApprovalTier] = {
    status: tier for tier, status in PENDING_STATUS_BY_TIER.items()
}

TERMINAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.FINAL_APPROVED,
    ApprovalStatus.REJECTED,
})

APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.TIER1_PENDING: frozenset({
        ApprovalStatus.TIER2_PENDING,
        ApprovalStatus.TIER3_PENDING,
        ApprovalStatus.FINAL_APPROVED,
        ApprovalStatus.REJECTED,
    }),
    ApprovalStatus.TIER2_PENDING: frozenset({
        ApprovalStatus.TIER3_PENDING,
        ApprovalStatus.FINAL_APPROVED,
        ApprovalStatus.REJECTED,
    }),
    ApprovalStatus.TIER3_PENDING: frozenset({
        ApprovalStatus.FINAL_APPROVED,
        ApprovalStatus.REJECTED,
    }),
    ApprovalStatus.FINAL_APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
}


class ApprovalAction(str, Enum):
    """Actions an approver can take."""

    APPROVE = "approve"
    REJECT = "reject"


class HistoryDecision(str, Enum):
    """Decision label recorded in ``approvalHistory``."""

    TIER1_APPROVED = "tier1_approved"
    TIER2_APPROVED = "tier2_approved"
    TIER3_APPROVED = "tier3_approved"
    REJECTED = "rejected"


_APPROVED_DECISION_BY_TIER: dict[ApprovalTier, HistoryDecision] = {
    ApprovalTier.FIRST: HistoryDecision.TIER1_APPROVED,
    ApprovalTier.SECOND: HistoryDecision.TIER2_APPROVED,
    ApprovalTier.THIRD: HistoryDecision.TIER3_APPROVED,
}


# =========================================================================
# Approver line
# =========================================================================


@dataclass(frozen=True)
class ApproverLine:
    """
    Fixed-shape record of approval tiers plus cc-only identities.

    ``shared`` members are notified of outcomes but never act.
    """

    first: tuple[str, ...] = ()
    second: tuple[str, ...] = ()
    third: tuple[str, ...] = ()
    shared: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> ApproverLine:
        """Build from a stored ``approvers`` map; missing tiers are empty."""
        data = data or {}
        return cls(
            first=tuple(data.get("first") or ()),
            second=tuple(data.get("second") or ()),
            third=tuple(data.get("third") or ()),
            shared=tuple(data.get("shared") or ()),
        )

    def to_mapping(self) -> dict[str, list[str]]:
        return {
            "first": list(self.first),
            "second": list(self.second),
            "third": list(self.third),
            "shared": list(self.shared),
        }

    def members(self, tier: ApprovalTier) -> tuple[str, ...]:
        return getattr(self, tier.value)

    def tier_of(self, identity: str) -> ApprovalTier | None:
        """First tier (in tier order) that lists ``identity``."""
        for tier in TIER_ORDER:
            if identity in self.members(tier):
                return tier
        return None

    def tiers_of(self, identity: str) -> tuple[ApprovalTier, ...]:
        return tuple(t for t in TIER_ORDER if identity in self.members(t))

    def last_tier(self) -> ApprovalTier | None:
        """The last tier with members; its approval is the final one."""
        for tier in reversed(TIER_ORDER):
            if self.members(tier):
                return tier
        return None

    @property
    def has_approvers(self) -> bool:
        return any(self.members(t) for t in TIER_ORDER)


def next_tier(
    approvers: ApproverLine,
    current: ApprovalTier | None,
) -> ApprovalTier | None:
    """
    The tier after ``current`` that has members, or None if there is none.

    ``current=None`` asks for the first tier with members.  This is the
    single definition of the skip-empty-tier policy.
    """
    start = 0 if current is None else TIER_ORDER.index(current) + 1
    for tier in TIER_ORDER[start:]:
        if approvers.members(tier):
            return tier
    return None


# =========================================================================
# State
# =========================================================================


@dataclass(frozen=True)
class ApprovalState:
    """
    Tagged status value.

    ``rejected_by`` is set only for REJECTED, carrying the rejecting actor
    (``REJECTED(actor)``).  Legacy records may have lost the actor, in which
    case it is None.
    """

    status: ApprovalStatus
    rejected_by: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def authoritative_tier(self) -> ApprovalTier | None:
        return TIER_BY_PENDING_STATUS.get(self.status)

    @property
    def label(self) -> str:
        if self.status is ApprovalStatus.REJECTED and self.rejected_by:
            return f"rejected({self.rejected_by})"
        return self.status.value

    @classmethod
    def pending(cls, tier: ApprovalTier) -> ApprovalState:
        return cls(PENDING_STATUS_BY_TIER[tier])


FINAL_APPROVED = ApprovalState(ApprovalStatus.FINAL_APPROVED)


def state_after(approvers: ApproverLine, tier: ApprovalTier | None) -> ApprovalState:
    """Pending state of the tier following ``tier``, or FINAL_APPROVED."""
    nxt = next_tier(approvers, tier)
    if nxt is None:
        return FINAL_APPROVED
    return ApprovalState.pending(nxt)


# =========================================================================
# Outputs
# =========================================================================


@dataclass(frozen=True)
class HistoryEntry:
    """One append-only ``approvalHistory`` element."""

    approver: str
    decision: HistoryDecision
    approved_at: datetime
    comment: str = ""

    def to_document(self) -> dict[str, Any]:
        return {
            "approver": self.approver,
            "decision": self.decision.value,
            "comment": self.comment,
            "approvedAt": self.approved_at,
        }


@dataclass(frozen=True)
class NotificationNotice:
    """A single planned notification. Links are rendered by the caller."""

    target: str
    route: LinkRoute
    message: str


@dataclass(frozen=True)
class ApprovalOutcome:
    """Result of a successful decision."""

    previous: ApprovalState
    state: ApprovalState
    acting_tier: ApprovalTier
    history_entry: HistoryEntry
    notices: tuple[NotificationNotice, ...] = field(default_factory=tuple)

    @property
    def completed(self) -> bool:
        """True when this decision brought the request to final approval."""
        return self.state.status is ApprovalStatus.FINAL_APPROVED


# =========================================================================
# Decision
# =========================================================================


def _unique(identities: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for identity in identities:
        if identity and identity not in seen:
            seen.add(identity)
            out.append(identity)
    return out


def _with_comment(message: str, comment: str) -> str:
    return f"{message} (comment: {comment})" if comment else message


def _request_message(label: str, tier: ApprovalTier, title: str, submitter: str) -> str:
    return f"[{label}/tier {tier.number}] {title}_{submitter}: approval request has arrived."


def resolve_acting_tier(
    state: ApprovalState,
    approvers: ApproverLine,
    actor: str,
    *,
    request_id: str = "",
) -> ApprovalTier:
    """
    Check that ``actor`` may act on a request in ``state``.

    Raises:
        InvalidActionError: state is terminal, or the authoritative tier has
            no members (data corruption).
        NotAuthorizedError: actor is in no approval tier.
        OutOfOrderError: actor's first tier is not the authoritative one.
    """
    if state.is_terminal:
        raise InvalidActionError(
            request_id, state.label, "request has already been decided",
        )

    authoritative = state.authoritative_tier
    if authoritative is None or not approvers.members(authoritative):
        raise InvalidActionError(
            request_id,
            state.label,
            f"tier {authoritative.value if authoritative else '?'} has no approvers",
        )

    acting = approvers.tier_of(actor)
    if acting is None:
        raise NotAuthorizedError(request_id, actor, state.label)
    if acting is not authoritative:
        raise OutOfOrderError(
            request_id, actor, state.label, acting.value, authoritative.value,
        )
    return acting


def decide(
    state: ApprovalState,
    approvers: ApproverLine,
    actor: str,
    action: ApprovalAction,
    *,
    now: datetime,
    submitter: str,
    title: str,
    kind: DocumentKind,
    request_id: str = "",
    comment: str | None = None,
    approval_type: str | None = None,
) -> ApprovalOutcome:
    """
    Apply ``action`` by ``actor`` to a request in ``state``.

    Postconditions:
        - ``outcome.state`` is a member of ``APPROVAL_TRANSITIONS[state.status]``.
        - Exactly one history entry is produced.
        - Notices are de-duplicated by target, in planning order.
    """
    acting = resolve_acting_tier(state, approvers, actor, request_id=request_id)
    comment = comment or ""
    label = kind_label(kind, approval_type)

    if action is ApprovalAction.REJECT:
        new_state = ApprovalState(ApprovalStatus.REJECTED, rejected_by=actor)
        decision = HistoryDecision.REJECTED
        message = _with_comment(
            f"[{label} rejected] {title}_{actor} rejected the request.", comment,
        )
        notices = (NotificationNotice(submitter, LinkRoute.REQUEST_DETAIL, message),)
    else:
        new_state = state_after(approvers, acting)
        decision = _APPROVED_DECISION_BY_TIER[acting]
        if new_state.status is ApprovalStatus.FINAL_APPROVED:
            message = _with_comment(
                f"[{label}/complete] {title}: approval has been completed.", comment,
            )
            notices = tuple(
                NotificationNotice(
                    target,
                    LinkRoute.REQUEST_DETAIL if target == submitter else LinkRoute.SHARED_INBOX,
                    message,
                )
                for target in _unique([submitter, *approvers.shared])
            )
        else:
            nxt = new_state.authoritative_tier
            message = _with_comment(
                _request_message(label, nxt, title, submitter), comment,
            )
            notices = tuple(
                NotificationNotice(target, LinkRoute.PENDING_INBOX, message)
                for target in _unique(approvers.members(nxt))
            )

    if new_state.status not in APPROVAL_TRANSITIONS[state.status]:
        raise InvalidActionError(
            request_id,
            state.label,
            f"transition to {new_state.label} is not allowed",
        )

    return ApprovalOutcome(
        previous=state,
        state=new_state,
        acting_tier=acting,
        history_entry=HistoryEntry(
            approver=actor,
            decision=decision,
            approved_at=now,
            comment=comment,
        ),
        notices=notices,
    )


# =========================================================================
# Submission
# =========================================================================


@dataclass(frozen=True)
class SubmissionPlan:
    """Initial state and notifications for a newly submitted request."""

    state: ApprovalState
    notices: tuple[NotificationNotice, ...]


def plan_submission(
    approvers: ApproverLine,
    *,
    submitter: str,
    title: str,
    kind: DocumentKind,
    approval_type: str | None = None,
) -> SubmissionPlan:
    """
    Initial state is the pending state of the first tier with members.

    That tier's members are asked to act; members of later tiers and shared
    identities get a preview pointing at the request, unless they were
    already notified.

    Raises:
        InvalidRequestError: the line has no approver in any tier.
    """
    first = next_tier(approvers, None)
    if first is None:
        raise InvalidRequestError("approver line has no approvers")

    label = kind_label(kind, approval_type)
    asked = _unique(approvers.members(first))
    notices = [
        NotificationNotice(
            target, LinkRoute.PENDING_INBOX,
            _request_message(label, first, title, submitter),
        )
        for target in asked
    ]

    later: list[str] = []
    tier = next_tier(approvers, first)
    while tier is not None:
        later.extend(approvers.members(tier))
        tier = next_tier(approvers, tier)
    preview = f"[shared/upcoming] {title}_{submitter}: approval request was submitted."
    notices.extend(
        NotificationNotice(target, LinkRoute.REQUEST_DETAIL, preview)
        for target in _unique([*later, *approvers.shared])
        if target not in asked
    )

    return SubmissionPlan(state=ApprovalState.pending(first), notices=tuple(notices))
