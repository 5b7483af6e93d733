"""
RequestService -- submission, cancellation and report edits.

Responsibility:
    Creates approval-bearing requests with their initial state and
    submission notifications, lets owners withdraw them, and lets report
    owners edit a report while it is still in flight.

Architecture position:
    Kernel > Services.  Uses ``plan_submission`` from the domain for the
    initial state so the skip-empty-tier rule has one definition.

Invariants enforced:
    - A new request starts in the pending state of its first non-empty
      tier with an empty history.
    - Only the owner may cancel or edit.
    - Cancelling a request that was never final moves no vacation balance.
      Cancelling a final vacation request (when allowed) refunds the days
      in the same transaction as the delete.
    - Rejected requests are kept as a record and cannot be cancelled.

Failure modes:
    - ``InvalidRequestError`` -- bad payload, empty approver line.
    - ``RequestNotFoundError`` -- unknown request.
    - ``NotAuthorizedError`` -- caller is not the owner.
    - ``InvalidActionError`` -- request is in a state that forbids the
      operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from erp_kernel.domain.approval import (
    ApprovalStatus,
    ApproverLine,
    plan_submission,
)
from erp_kernel.domain.clock import Clock
from erp_kernel.domain.documents import DEFAULT_LAYOUT, CollectionLayout, DocumentKind
from erp_kernel.exceptions import (
    InvalidActionError,
    InvalidRequestError,
    NotAuthorizedError,
)
from erp_kernel.logging_config import LogContext, get_logger
from erp_kernel.services.base import DocumentService
from erp_kernel.services.notification_dispatcher import (
    NotificationDispatcher,
    StagedNotification,
)
from erp_kernel.store.base import (
    DEFAULT_MAX_ATTEMPTS,
    DocumentStore,
    Increment,
    Transaction,
)

logger = get_logger("services.request_service")

# Fields owned by the approval workflow; callers may not supply them.
RESERVED_FIELDS = frozenset({
    "ownerIdentity",
    "documentKind",
    "title",
    "content",
    "approvers",
    "status",
    "rejectedBy",
    "approvalHistory",
    "createdAt",
    "lastApprovedAt",
})


@dataclass(frozen=True)
class SubmittedRequest:
    request_id: str
    kind: DocumentKind
    owner: str
    status: ApprovalStatus
    notified: tuple[str, ...]


@dataclass(frozen=True)
class CancelResult:
    request_id: str
    previous_status: ApprovalStatus
    refunded_days: float = 0.0


class RequestService(DocumentService):
    """Owner-side request lifecycle."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock,
        dispatcher: NotificationDispatcher,
        layout: CollectionLayout = DEFAULT_LAYOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        allow_cancel_after_final: bool = False,
    ):
        super().__init__(store, clock, layout, max_attempts)
        self._dispatcher = dispatcher
        self._allow_cancel_after_final = allow_cancel_after_final

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def submit(
        self,
        kind: DocumentKind | str,
        owner: str,
        title: str,
        content: str = "",
        approvers: ApproverLine | Mapping[str, Any] | None = None,
        fields: Mapping[str, Any] | None = None,
    ) -> SubmittedRequest:
        """
        Create a request and notify its approvers.

        When ``approvers`` is omitted the line is taken from the owner's
        employee record (``recipients.<kind>``).

        Raises:
            InvalidRequestError: missing title, reserved field, bad
                ``daysUsed`` or an approver line without approvers.
        """
        kind = DocumentKind(kind)
        fields = dict(fields or {})
        if not owner:
            raise InvalidRequestError("owner is required")
        if not title or not title.strip():
            raise InvalidRequestError("title is required")
        clash = RESERVED_FIELDS & fields.keys()
        if clash:
            raise InvalidRequestError(f"reserved fields supplied: {sorted(clash)}")
        if kind is DocumentKind.VACATION:
            days = fields.get("daysUsed")
            if isinstance(days, bool) or not isinstance(days, (int, float)) or days <= 0:
                raise InvalidRequestError("vacation requests need a positive daysUsed")

        if approvers is not None and not isinstance(approvers, ApproverLine):
            approvers = ApproverLine.from_mapping(approvers)

        request_id = self._store.new_document_id()
        path = self._request_path(kind, owner, request_id)

        def _create(txn: Transaction) -> tuple[SubmittedRequest, tuple[StagedNotification, ...]]:
            line = approvers
            employee = txn.read(self._employee_path(owner))
            if line is None:
                line = ApproverLine.from_mapping(
                    employee.get(f"recipients.{kind.value}")
                )
            plan = plan_submission(
                line,
                submitter=owner,
                title=title,
                kind=kind,
                approval_type=fields.get("approvalType"),
            )
            now = self._clock.now()
            document = {
                **fields,
                "ownerIdentity": owner,
                "documentKind": kind.value,
                "title": title,
                "content": content,
                "approvers": line.to_mapping(),
                "status": plan.state.status.value,
                "rejectedBy": None,
                "approvalHistory": [],
                "createdAt": now,
                "lastApprovedAt": None,
            }
            department = employee.get("department")
            if department and "department" not in document:
                document["department"] = department
            txn.set(path, document)
            staged = self._dispatcher.stage_all(
                txn, plan.notices, kind=kind, request_id=request_id, from_identity=owner,
            )
            return (
                SubmittedRequest(
                    request_id=request_id,
                    kind=kind,
                    owner=owner,
                    status=plan.state.status,
                    notified=tuple(n.target for n in plan.notices),
                ),
                staged,
            )

        with LogContext.bind(actor_id=owner, request_id=request_id, document_kind=kind.value):
            submitted, staged = self._store.run_transaction(_create, self._max_attempts)
            logger.info(
                "request_submitted",
                extra={
                    "status": submitted.status.value,
                    "notified": list(submitted.notified),
                },
            )
            self._dispatcher.deliver_emails(staged, title=title, submitter=owner)
        return submitted

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def cancel(
        self,
        kind: DocumentKind | str,
        request_id: str,
        owner: str,
        actor: str | None = None,
    ) -> CancelResult:
        """
        Withdraw (delete) a request.

        ``actor`` defaults to ``owner``; anyone else is refused.

        Raises:
            NotAuthorizedError: actor is not the owner.
            RequestNotFoundError: no such request.
            InvalidActionError: request was rejected, or is final and
                cannot be cancelled.
        """
        kind = DocumentKind(kind)
        actor = actor or owner

        def _cancel(txn: Transaction) -> CancelResult:
            request = self._load_request(txn, kind, owner, request_id)
            if actor != request.owner:
                raise NotAuthorizedError(request_id, actor, request.state.label)

            status = request.state.status
            refund = 0.0
            if status is ApprovalStatus.REJECTED:
                raise InvalidActionError(
                    request_id, request.state.label, "rejected requests cannot be cancelled",
                )
            if status is ApprovalStatus.FINAL_APPROVED:
                if kind is not DocumentKind.VACATION or not self._allow_cancel_after_final:
                    raise InvalidActionError(
                        request_id, request.state.label, "request is already final",
                    )
                refund = request.days_used or 0.0
                if refund > 0:
                    txn.set(
                        self._employee_path(request.owner),
                        {
                            "usedVacation": Increment(-refund),
                            "remainingVacation": Increment(refund),
                        },
                        merge=True,
                    )

            txn.delete(self._request_path(kind, owner, request_id))
            return CancelResult(request_id, status, refund)

        with LogContext.bind(actor_id=actor, request_id=request_id, document_kind=kind.value):
            result = self._store.run_transaction(_cancel, self._max_attempts)
            logger.info(
                "request_cancelled",
                extra={
                    "previous_status": result.previous_status.value,
                    "refunded_days": result.refunded_days,
                },
            )
        return result

    # ------------------------------------------------------------------
    # Edit
    # ------------------------------------------------------------------

    def edit_report(
        self,
        request_id: str,
        owner: str,
        title: str | None = None,
        content: str | None = None,
        actor: str | None = None,
    ) -> None:
        """
        Change a report's title / content while it is still in flight.

        Raises:
            InvalidRequestError: nothing to change.
            NotAuthorizedError: actor is not the owner.
            InvalidActionError: report already decided.
        """
        if title is None and content is None:
            raise InvalidRequestError("nothing to edit", request_id)
        if title is not None and not title.strip():
            raise InvalidRequestError("title cannot be empty", request_id)
        kind = DocumentKind.REPORT
        actor = actor or owner

        def _edit(txn: Transaction) -> None:
            request = self._load_request(txn, kind, owner, request_id)
            if actor != request.owner:
                raise NotAuthorizedError(request_id, actor, request.state.label)
            if request.is_terminal:
                raise InvalidActionError(
                    request_id, request.state.label, "decided reports cannot be edited",
                )
            changes: dict[str, Any] = {"updatedAt": self._clock.now()}
            if title is not None:
                changes["title"] = title
            if content is not None:
                changes["content"] = content
            txn.update(self._request_path(kind, owner, request_id), changes)

        with LogContext.bind(actor_id=actor, request_id=request_id, document_kind=kind.value):
            self._store.run_transaction(_edit, self._max_attempts)
            logger.info(
                "report_edited",
                extra={"title_changed": title is not None, "content_changed": content is not None},
            )
