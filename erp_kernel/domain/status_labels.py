"""
Legacy status normalization (``erp_kernel.domain.status_labels``).

Historical documents carry free-text Korean status labels written by older
versions of the system.  This module maps them to canonical
``ApprovalState`` values at the read boundary.  Nothing downstream of
``normalize_status`` ever sees a legacy label, and writes always use the
canonical ``status`` / ``rejectedBy`` fields.

Pure functions, zero I/O.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Mapping

from erp_kernel.domain.approval import (
    ApprovalState,
    ApprovalStatus,
    ApprovalTier,
    ApproverLine,
    state_after,
)
from erp_kernel.exceptions import UnknownStatusError

# Exact legacy labels with a fixed canonical meaning.
LEGACY_STATUS_LABELS: dict[str, ApprovalStatus] = {
    "1차 결재 대기": ApprovalStatus.TIER1_PENDING,
    "2차 결재 대기": ApprovalStatus.TIER2_PENDING,
    "3차 결재 대기": ApprovalStatus.TIER3_PENDING,
    "최종 승인 완료": ApprovalStatus.FINAL_APPROVED,
    "반려": ApprovalStatus.REJECTED,
    # vacation-era spelling for "waiting on the first tier"
    "대기": ApprovalStatus.TIER1_PENDING,
}

# Vacation-era "first tier done"; the next state depends on the line.
LEGACY_TIER1_DONE = "1차 결재 완료"

_LEGACY_REJECTED_BY = re.compile(r"^반려됨\s*\((?P<actor>[^)]*)\)$")


def normalize_status(
    raw: Any,
    approvers: ApproverLine,
    *,
    rejected_by: str | None = None,
    request_id: str = "",
) -> ApprovalState:
    """
    Map a stored status value to a canonical ``ApprovalState``.

    ``rejected_by`` is the stored ``rejectedBy`` field, used when the status
    itself is canonical ``rejected`` or the bare legacy ``반려``.

    Raises:
        UnknownStatusError: ``raw`` is neither canonical nor a known label.
    """
    if isinstance(raw, ApprovalStatus):
        raw = raw.value
    if not isinstance(raw, str):
        raise UnknownStatusError(repr(raw), request_id)

    label = raw.strip()

    try:
        status = ApprovalStatus(label)
    except ValueError:
        status = LEGACY_STATUS_LABELS.get(label)

    if status is not None:
        if status is ApprovalStatus.REJECTED:
            return ApprovalState(status, rejected_by=rejected_by or None)
        return ApprovalState(status)

    if label == LEGACY_TIER1_DONE:
        return state_after(approvers, ApprovalTier.FIRST)

    match = _LEGACY_REJECTED_BY.match(label)
    if match:
        actor = match.group("actor").strip() or rejected_by
        return ApprovalState(ApprovalStatus.REJECTED, rejected_by=actor or None)

    raise UnknownStatusError(label, request_id)


def coerce_timestamp(value: Any) -> datetime | None:
    """
    Normalize legacy ``createdAt`` encodings to an aware ``datetime``.

    Accepts ``datetime`` (naive values are taken as UTC), epoch
    milliseconds, ISO-8601 strings and exported timestamp maps
    (``{"_seconds": ..., "_nanoseconds": ...}``).  Returns None for
    anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if isinstance(value, Mapping):
        seconds = value.get("_seconds", value.get("seconds"))
        if seconds is None:
            return None
        nanos = value.get("_nanoseconds", value.get("nanoseconds")) or 0
        return datetime.fromtimestamp(
            seconds + nanos / 1_000_000_000, tz=timezone.utc,
        )
    return None
