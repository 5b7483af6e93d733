"""
ApprovalCoordinator -- transactional approve / reject.

Responsibility:
    The single write path for approval decisions.  Reads the request,
    normalizes its stored status, asks the pure state machine for the
    outcome, and writes status, history, notifications and (for vacation)
    balance changes in ONE store transaction.  Emails go out after commit.

Architecture position:
    Kernel > Services -- imperative shell around
    ``erp_kernel.domain.approval.decide``.

Invariants enforced:
    - Atomic transition: status, ``rejectedBy``, ``lastApprovedAt``, the
      appended history entry, every notification record and the vacation
      balance change commit together or not at all.
    - History is append-only (``ArrayUnion``); its length equals the number
      of successful decisions.
    - At most once: on an optimistic conflict the decision is recomputed
      from a fresh read, so the loser of a race is judged against the
      winner's result.
    - Email is strictly post-commit and best-effort.

Failure modes:
    - ``RequestNotFoundError`` -- no such request.
    - ``NotAuthorizedError`` / ``OutOfOrderError`` -- actor may not act now.
    - ``InvalidActionError`` -- terminal request, corrupt approver line,
      or unknown legacy status.
    - ``TransientStoreError`` -- conflicts exhausted the retry budget or
      the store failed.  Nothing was written.
"""

from __future__ import annotations

from dataclasses import dataclass

from erp_kernel.domain.approval import (
    ApprovalAction,
    ApprovalOutcome,
    ApprovalStatus,
    decide,
)
from erp_kernel.domain.clock import Clock
from erp_kernel.domain.documents import DEFAULT_LAYOUT, CollectionLayout, DocumentKind
from erp_kernel.domain.request import ApprovalRequest
from erp_kernel.exceptions import InvalidActionError, NotAuthorizedError
from erp_kernel.logging_config import LogContext, get_logger
from erp_kernel.services.base import DocumentService
from erp_kernel.services.notification_dispatcher import (
    NotificationDispatcher,
    StagedNotification,
)
from erp_kernel.store.base import (
    DEFAULT_MAX_ATTEMPTS,
    ArrayUnion,
    DocumentStore,
    Increment,
    Transaction,
)

logger = get_logger("services.approval_coordinator")


@dataclass(frozen=True)
class ApprovalResult:
    """What a successful decision changed."""

    request_id: str
    new_status: ApprovalStatus
    rejected_by: str | None
    history_length: int
    notified: tuple[str, ...]


@dataclass(frozen=True)
class _Committed:
    result: ApprovalResult
    request: ApprovalRequest
    outcome: ApprovalOutcome
    staged: tuple[StagedNotification, ...]


class ApprovalCoordinator(DocumentService):
    """
    Applies approve / reject decisions to stored requests.

    Contract:
        ``submit_approval`` either commits exactly one transition (and
        returns its ``ApprovalResult``) or raises and leaves the store
        unchanged.

    Non-goals:
        - Does NOT authenticate the actor; the caller supplies a trusted
          identity.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock,
        dispatcher: NotificationDispatcher,
        layout: CollectionLayout = DEFAULT_LAYOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        super().__init__(store, clock, layout, max_attempts)
        self._dispatcher = dispatcher

    def submit_approval(
        self,
        kind: DocumentKind | str,
        request_id: str,
        actor: str,
        submitter: str,
        action: ApprovalAction | str,
        comment: str | None = None,
    ) -> ApprovalResult:
        """
        Approve or reject ``request_id`` (owned by ``submitter``) as ``actor``.

        Raises:
            RequestNotFoundError, NotAuthorizedError, OutOfOrderError,
            InvalidActionError, TransientStoreError.
        """
        kind = DocumentKind(kind)
        action = ApprovalAction(action)

        with LogContext.bind(
            actor_id=actor, request_id=request_id, document_kind=kind.value,
        ):
            logger.info(
                "approval_submitted",
                extra={"action": action.value, "submitter": submitter},
            )

            def _attempt(txn: Transaction) -> _Committed:
                return self._decide_and_stage(
                    txn, kind, request_id, actor, submitter, action, comment,
                )

            try:
                committed = self._store.run_transaction(_attempt, self._max_attempts)
            except (NotAuthorizedError, InvalidActionError) as exc:
                logger.warning(
                    "approval_decision_refused",
                    extra={
                        "action": action.value,
                        "reason_code": exc.code,
                        "status": exc.status,
                    },
                )
                raise

            result = committed.result
            logger.info(
                "approval_decision_recorded",
                extra={
                    "action": action.value,
                    "previous_status": committed.outcome.previous.status.value,
                    "new_status": result.new_status.value,
                    "acting_tier": committed.outcome.acting_tier.value,
                    "history_length": result.history_length,
                    "notified": list(result.notified),
                },
            )

            self._dispatcher.deliver_emails(
                committed.staged,
                title=committed.request.title,
                submitter=committed.request.owner,
            )
            return result

    def _decide_and_stage(
        self,
        txn: Transaction,
        kind: DocumentKind,
        request_id: str,
        actor: str,
        submitter: str,
        action: ApprovalAction,
        comment: str | None,
    ) -> _Committed:
        request = self._load_request(txn, kind, submitter, request_id)
        now = self._clock.now()

        outcome = decide(
            request.state,
            request.approvers,
            actor,
            action,
            now=now,
            submitter=request.owner,
            title=request.title,
            kind=kind,
            request_id=request_id,
            comment=comment,
            approval_type=request.approval_type,
        )

        txn.update(
            self._request_path(kind, submitter, request_id),
            {
                "status": outcome.state.status.value,
                "rejectedBy": outcome.state.rejected_by,
                "lastApprovedAt": now,
                "approvalHistory": ArrayUnion(outcome.history_entry.to_document()),
            },
        )

        if kind is DocumentKind.VACATION and outcome.completed:
            self._charge_vacation(txn, request)

        staged = self._dispatcher.stage_all(
            txn, outcome.notices, kind=kind, request_id=request_id, from_identity=actor,
        )

        return _Committed(
            result=ApprovalResult(
                request_id=request_id,
                new_status=outcome.state.status,
                rejected_by=outcome.state.rejected_by,
                history_length=len(request.history) + 1,
                notified=tuple(n.target for n in outcome.notices),
            ),
            request=request,
            outcome=outcome,
            staged=staged,
        )

    def _charge_vacation(self, txn: Transaction, request: ApprovalRequest) -> None:
        days = request.days_used
        if not days or days <= 0:
            logger.warning(
                "vacation_balance_skipped",
                extra={"owner": request.owner, "days_used": days},
            )
            return
        txn.set(
            self._employee_path(request.owner),
            {
                "usedVacation": Increment(days),
                "remainingVacation": Increment(-days),
            },
            merge=True,
        )
