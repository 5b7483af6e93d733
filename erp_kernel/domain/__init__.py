"""
Pure domain layer.

This module contains value objects and decision logic with NO
dependencies on:
- ORM (SQLAlchemy)
- Document store
- Time/clock (except through the injected Clock)
- I/O

All domain objects are immutable and deterministic.
"""

from erp_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    TERMINAL_STATUSES,
    TIER_ORDER,
    ApprovalAction,
    ApprovalOutcome,
    ApprovalState,
    ApprovalStatus,
    ApprovalTier,
    ApproverLine,
    HistoryDecision,
    HistoryEntry,
    NotificationNotice,
    SubmissionPlan,
    decide,
    next_tier,
    plan_submission,
    resolve_acting_tier,
    state_after,
)
from erp_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from erp_kernel.domain.documents import (
    DEFAULT_LAYOUT,
    CollectionBinding,
    CollectionLayout,
    DocumentKind,
    LinkRoute,
    LinkSettings,
)
from erp_kernel.domain.request import ApprovalRequest
from erp_kernel.domain.status_labels import coerce_timestamp, normalize_status

__all__ = [
    "APPROVAL_TRANSITIONS",
    "ApprovalAction",
    "ApprovalOutcome",
    "ApprovalRequest",
    "ApprovalState",
    "ApprovalStatus",
    "ApprovalTier",
    "ApproverLine",
    "Clock",
    "CollectionBinding",
    "CollectionLayout",
    "DEFAULT_LAYOUT",
    "DeterministicClock",
    "DocumentKind",
    "HistoryDecision",
    "HistoryEntry",
    "LinkRoute",
    "LinkSettings",
    "NotificationNotice",
    "SubmissionPlan",
    "SystemClock",
    "TERMINAL_STATUSES",
    "TIER_ORDER",
    "coerce_timestamp",
    "decide",
    "next_tier",
    "normalize_status",
    "plan_submission",
    "resolve_acting_tier",
    "state_after",
]
