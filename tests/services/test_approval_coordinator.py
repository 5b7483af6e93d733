"""
Tests for ApprovalCoordinator -- transactional approve / reject.

Covers:
- end-to-end progression through tiers with notifications
- rejection with comment
- authorization gate and terminal immutability (nothing written)
- skip-empty-tier and legacy stored statuses
- vacation balance moved in the same transaction as final approval
- email delivery after commit, failures never undo the decision
- structured log events
"""

from datetime import timedelta

import pytest

from erp_kernel.domain.approval import ApprovalAction, ApprovalStatus
from erp_kernel.domain.documents import DocumentKind
from erp_kernel.exceptions import (
    InvalidActionError,
    NotAuthorizedError,
    OutOfOrderError,
    RequestNotFoundError,
    UnknownStatusError,
)
from erp_kernel.store.base import DocumentPath

APPROVE = ApprovalAction.APPROVE
REJECT = ApprovalAction.REJECT


@pytest.fixture
def decide(coordinator):
    """Call submit_approval with the seed defaults filled in."""

    def _decide(request_id, actor, action=APPROVE, *, kind=DocumentKind.APPROVAL,
                submitter="submitter", comment=None):
        return coordinator.submit_approval(
            kind, request_id, actor, submitter, action, comment=comment,
        )

    return _decide


def notification_targets(store, layout):
    return sorted(
        s.data["targetIdentity"]
        for s in store.query_group(layout.notifications_subcollection)
    )


# ---------------------------------------------------------------------------
# Progression
# ---------------------------------------------------------------------------


class TestEndToEnd:

    def test_two_tier_line_with_shared_member(
        self, seed_request, read_request, decide, notification_selector,
    ):
        rid = seed_request(approvers={"first": ["A"], "second": ["B"], "shared": ["C"]})

        first = decide(rid, "A")
        assert first.new_status is ApprovalStatus.TIER2_PENDING
        assert first.history_length == 1
        assert first.notified == ("B",)
        data = read_request(rid)
        assert [(h["approver"], h["decision"]) for h in data["approvalHistory"]] == [
            ("A", "tier1_approved"),
        ]
        assert notification_selector.unread_count("B") == 1

        second = decide(rid, "B")
        assert second.new_status is ApprovalStatus.FINAL_APPROVED
        assert second.notified == ("submitter", "C")
        assert len(read_request(rid)["approvalHistory"]) == 2

        with pytest.raises(InvalidActionError):
            decide(rid, "A")
        assert len(read_request(rid)["approvalHistory"]) == 2

    def test_three_tiers(self, seed_request, read_request, decide):
        rid = seed_request(approvers={"first": ["a"], "second": ["b"], "third": ["c"]})
        assert decide(rid, "a").new_status is ApprovalStatus.TIER2_PENDING
        assert decide(rid, "b").new_status is ApprovalStatus.TIER3_PENDING
        assert decide(rid, "c").new_status is ApprovalStatus.FINAL_APPROVED
        assert [h["decision"] for h in read_request(rid)["approvalHistory"]] == [
            "tier1_approved", "tier2_approved", "tier3_approved",
        ]

    def test_skip_empty_tier(self, seed_request, decide, notification_selector):
        rid = seed_request(approvers={"first": ["A"], "second": [], "third": ["C"]})
        result = decide(rid, "A")
        assert result.new_status is ApprovalStatus.TIER3_PENDING
        assert result.notified == ("C",)
        [note] = notification_selector.list_notifications("C")
        assert note.link == "/main/my-approval/pending"

    def test_any_member_of_tier_may_act(self, seed_request, decide):
        rid = seed_request(approvers={"first": ["a1", "a2"], "second": ["b"]})
        assert decide(rid, "a2").new_status is ApprovalStatus.TIER2_PENDING

    def test_last_approved_at_written(
        self, seed_request, read_request, decide, deterministic_clock,
    ):
        rid = seed_request()
        decide(rid, "alice")
        assert read_request(rid)["lastApprovedAt"] == deterministic_clock.now()

    def test_history_timestamps_follow_clock(
        self, seed_request, read_request, decide, deterministic_clock,
    ):
        rid = seed_request()
        t1 = deterministic_clock.now()
        decide(rid, "alice")
        deterministic_clock.advance(timedelta(hours=2))
        decide(rid, "bob")
        stamps = [h["approvedAt"] for h in read_request(rid)["approvalHistory"]]
        assert stamps == [t1, t1 + timedelta(hours=2)]

    def test_string_kind_and_action_accepted(self, coordinator, seed_request):
        rid = seed_request()
        result = coordinator.submit_approval("approval", rid, "alice", "submitter", "approve")
        assert result.new_status is ApprovalStatus.TIER2_PENDING


class TestRejection:

    def test_reject_with_comment(
        self, seed_request, read_request, decide, notification_selector,
    ):
        rid = seed_request(approvers={"first": ["A"], "second": ["B"], "shared": ["C"]})

        result = decide(rid, "A", REJECT, comment="missing budget")

        assert result.new_status is ApprovalStatus.REJECTED
        assert result.rejected_by == "A"
        assert result.notified == ("submitter",)
        data = read_request(rid)
        assert data["status"] == "rejected"
        assert data["rejectedBy"] == "A"
        [entry] = data["approvalHistory"]
        assert (entry["approver"], entry["decision"], entry["comment"]) == (
            "A", "rejected", "missing budget",
        )
        [note] = notification_selector.list_notifications("submitter")
        assert note.message.endswith("(comment: missing budget)")
        assert note.link == f"/main/workoutside/approvals/{rid}"
        assert notification_selector.list_notifications("B") == []
        assert notification_selector.list_notifications("C") == []

    def test_nobody_can_act_after_rejection(self, seed_request, read_request, decide):
        rid = seed_request(approvers={"first": ["A"], "second": ["B"]})
        decide(rid, "A", REJECT)
        before = read_request(rid)

        with pytest.raises(InvalidActionError):
            decide(rid, "B")
        assert read_request(rid) == before

    def test_second_tier_may_reject(self, seed_request, decide):
        rid = seed_request()
        decide(rid, "alice")
        assert decide(rid, "bob", REJECT).rejected_by == "bob"


# ---------------------------------------------------------------------------
# Refusals
# ---------------------------------------------------------------------------


class TestAuthorizationGate:

    def test_stranger_refused_nothing_written(
        self, seed_request, read_request, decide, store, layout,
    ):
        rid = seed_request()
        before = read_request(rid)

        with pytest.raises(NotAuthorizedError) as exc_info:
            decide(rid, "mallory")
        assert not isinstance(exc_info.value, OutOfOrderError)
        assert read_request(rid) == before
        assert notification_targets(store, layout) == []

    def test_later_tier_out_of_order(self, seed_request, read_request, decide):
        rid = seed_request()
        before = read_request(rid)
        with pytest.raises(OutOfOrderError):
            decide(rid, "bob")
        assert read_request(rid) == before

    def test_earlier_tier_cannot_approve_twice(self, seed_request, decide):
        rid = seed_request(approvers={"first": ["a"], "second": ["b"], "third": ["c"]})
        decide(rid, "a")
        with pytest.raises(OutOfOrderError):
            decide(rid, "a")

    def test_submitter_is_not_an_approver(self, seed_request, decide):
        rid = seed_request()
        with pytest.raises(NotAuthorizedError):
            decide(rid, "submitter")

    def test_unknown_request(self, decide):
        with pytest.raises(RequestNotFoundError) as exc_info:
            decide("does-not-exist", "alice")
        assert exc_info.value.code == "REQUEST_NOT_FOUND"

    def test_wrong_owner_is_not_found(self, seed_request, decide):
        rid = seed_request(owner="sam")
        with pytest.raises(RequestNotFoundError):
            decide(rid, "alice", submitter="kim")

    def test_refusal_logged(self, seed_request, decide, captured_logs):
        rid = seed_request()
        with pytest.raises(OutOfOrderError):
            decide(rid, "bob")

        [refused] = [r for r in captured_logs() if r["message"] == "approval_decision_refused"]
        assert refused["level"] == "WARNING"
        assert refused["reason_code"] == "OUT_OF_ORDER"
        assert refused["actor_id"] == "bob"
        assert refused["request_id"] == rid


class TestTerminalImmutability:

    @pytest.mark.parametrize("status", ["final_approved", "rejected"])
    @pytest.mark.parametrize("action", [APPROVE, REJECT])
    def test_terminal_request_unchanged(
        self, seed_request, read_request, decide, status, action,
    ):
        rid = seed_request(status=status, rejectedBy="alice" if status == "rejected" else None)
        before = read_request(rid)
        with pytest.raises(InvalidActionError):
            decide(rid, "alice", action)
        assert read_request(rid) == before


# ---------------------------------------------------------------------------
# Legacy documents
# ---------------------------------------------------------------------------


class TestLegacyStatuses:

    def test_legacy_tier_label(self, seed_request, read_request, decide):
        rid = seed_request(status="2차 결재 대기")
        result = decide(rid, "bob")
        assert result.new_status is ApprovalStatus.FINAL_APPROVED
        assert read_request(rid)["status"] == "final_approved"

    def test_legacy_waiting_label(self, seed_request, decide):
        rid = seed_request(status="대기")
        assert decide(rid, "alice").new_status is ApprovalStatus.TIER2_PENDING

    def test_legacy_rejected_label_is_terminal(self, seed_request, decide):
        rid = seed_request(status="반려됨 (alice)")
        with pytest.raises(InvalidActionError):
            decide(rid, "bob")

    def test_unknown_label_refused(self, seed_request, read_request, decide):
        rid = seed_request(status="보류")
        before = read_request(rid)
        with pytest.raises(UnknownStatusError):
            decide(rid, "alice")
        assert read_request(rid) == before


# ---------------------------------------------------------------------------
# Vacation balance
# ---------------------------------------------------------------------------


class TestVacationBalance:

    def test_final_approval_moves_balance(
        self, seed_request, seed_employee, decide, store, layout,
    ):
        seed_employee("sam", used=3, remaining=12)
        rid = seed_request(
            owner="sam", kind=DocumentKind.VACATION, title="Summer", daysUsed=2,
            approvers={"first": ["lead"]},
        )

        decide(rid, "lead", kind=DocumentKind.VACATION, submitter="sam")

        employee = store.get(DocumentPath.of(layout.employee_collection, "sam")).data
        assert employee["usedVacation"] == 5
        assert employee["remainingVacation"] == 10

    def test_intermediate_approval_leaves_balance(
        self, seed_request, seed_employee, decide, store, layout,
    ):
        seed_employee("sam", used=0, remaining=15)
        rid = seed_request(
            owner="sam", kind=DocumentKind.VACATION, daysUsed=1,
            approvers={"first": ["lead"], "second": ["hr"]},
        )
        decide(rid, "lead", kind=DocumentKind.VACATION, submitter="sam")

        employee = store.get(DocumentPath.of(layout.employee_collection, "sam")).data
        assert employee["usedVacation"] == 0
        assert employee["remainingVacation"] == 15

    def test_rejection_leaves_balance(
        self, seed_request, seed_employee, decide, store, layout,
    ):
        seed_employee("sam", used=0, remaining=15)
        rid = seed_request(
            owner="sam", kind=DocumentKind.VACATION, daysUsed=1,
            approvers={"first": ["lead"]},
        )
        decide(rid, "lead", REJECT, kind=DocumentKind.VACATION, submitter="sam")

        employee = store.get(DocumentPath.of(layout.employee_collection, "sam")).data
        assert employee["remainingVacation"] == 15

    def test_missing_days_skips_balance_with_warning(
        self, seed_request, seed_employee, decide, store, layout, captured_logs,
    ):
        seed_employee("sam", used=0, remaining=15)
        rid = seed_request(
            owner="sam", kind=DocumentKind.VACATION, approvers={"first": ["lead"]},
        )

        result = decide(rid, "lead", kind=DocumentKind.VACATION, submitter="sam")

        assert result.new_status is ApprovalStatus.FINAL_APPROVED
        employee = store.get(DocumentPath.of(layout.employee_collection, "sam")).data
        assert employee["remainingVacation"] == 15
        assert any(r["message"] == "vacation_balance_skipped" for r in captured_logs())

    def test_non_vacation_never_touches_balance(
        self, seed_request, seed_employee, decide, store, layout,
    ):
        seed_employee("submitter", used=0, remaining=15)
        rid = seed_request(approvers={"first": ["alice"]}, daysUsed=4)
        decide(rid, "alice")
        employee = store.get(DocumentPath.of(layout.employee_collection, "submitter")).data
        assert employee["remainingVacation"] == 15


# ---------------------------------------------------------------------------
# Notifications and email
# ---------------------------------------------------------------------------


class TestNotificationsAndEmail:

    def test_notification_record_fields(
        self, seed_request, decide, notification_selector, deterministic_clock,
    ):
        rid = seed_request()
        decide(rid, "alice")

        [note] = notification_selector.list_notifications("bob")
        assert note.from_identity == "alice"
        assert note.type == "approval"
        assert note.is_read is False
        assert note.source_request_id == rid
        assert note.created_at == deterministic_clock.now()
        assert note.message.startswith("[Approval/tier 2] Laptop purchase_submitter")

    def test_final_links(self, seed_request, decide, notification_selector):
        rid = seed_request(
            kind=DocumentKind.REPORT, approvers={"first": ["alice"], "shared": ["cc"]},
        )
        decide(rid, "alice", kind=DocumentKind.REPORT)

        [own] = notification_selector.list_notifications("submitter")
        [shared] = notification_selector.list_notifications("cc")
        assert own.link == f"/main/report/{rid}"
        assert shared.link == "/main/my-approval/shared"

    def test_email_sent_to_addresses_on_file(
        self, seed_request, seed_employee, decide, email_sender,
    ):
        seed_employee("bob", email="bob@example.com")
        rid = seed_request()
        decide(rid, "alice")

        [message] = email_sender.sent
        assert message.to == "bob@example.com"
        assert "https://erp.example.com/main/my-approval/pending" in message.html_body
        assert "Review now" in message.html_body

    def test_no_email_without_address(self, seed_request, seed_employee, decide, email_sender):
        seed_employee("bob")
        rid = seed_request()
        decide(rid, "alice")
        assert email_sender.sent == []

    def test_email_failure_does_not_undo_decision(
        self, seed_request, seed_employee, read_request, decide, email_sender,
        notification_selector, captured_logs,
    ):
        seed_employee("bob", email="bob@example.com")
        email_sender.fail_for.add("bob@example.com")
        rid = seed_request()

        result = decide(rid, "alice")

        assert result.new_status is ApprovalStatus.TIER2_PENDING
        assert read_request(rid)["status"] == "tier2_pending"
        assert notification_selector.unread_count("bob") == 1
        [failed] = [r for r in captured_logs() if r["message"] == "notification_email_failed"]
        assert failed["exc_code"] == "NOTIFICATION_DISPATCH_FAILED"

    def test_no_email_on_refusal(self, seed_request, seed_employee, decide, email_sender):
        seed_employee("bob", email="bob@example.com")
        rid = seed_request()
        with pytest.raises(OutOfOrderError):
            decide(rid, "bob")
        assert email_sender.sent == []

    def test_decision_logged(self, seed_request, decide, captured_logs):
        rid = seed_request()
        decide(rid, "alice")

        messages = [r["message"] for r in captured_logs()]
        assert messages.index("approval_submitted") < messages.index("approval_decision_recorded")
        [recorded] = [r for r in captured_logs() if r["message"] == "approval_decision_recorded"]
        assert recorded["previous_status"] == "tier1_pending"
        assert recorded["new_status"] == "tier2_pending"
        assert recorded["acting_tier"] == "first"
        assert recorded["notified"] == ["bob"]
        assert recorded["document_kind"] == "approval"


class TestSqlBackend:
    """The coordinator behaves the same on the SQL store."""

    @pytest.fixture
    def store(self, sql_store):
        return sql_store

    def test_end_to_end(self, seed_request, read_request, decide, notification_selector):
        rid = seed_request(approvers={"first": ["A"], "second": ["B"], "shared": ["C"]})
        decide(rid, "A")
        decide(rid, "B")

        data = read_request(rid)
        assert data["status"] == "final_approved"
        assert len(data["approvalHistory"]) == 2
        assert notification_selector.unread_count("C") == 1

    def test_refusal_writes_nothing(self, seed_request, read_request, decide):
        rid = seed_request()
        before = read_request(rid)
        with pytest.raises(NotAuthorizedError):
            decide(rid, "mallory")
        assert read_request(rid) == before

    def test_decision_committed_between_read_and_commit_wins(
        self, seed_request, read_request, decide, store, monkeypatch,
    ):
        rid = seed_request(approvers={"first": ["a1", "a2"], "second": ["b"]})
        original_begin = store.begin
        interleaved = {"done": False}

        def begin_with_competitor():
            txn = original_begin()
            original_read = txn.read

            def read(path):
                snap = original_read(path)
                if not interleaved["done"]:
                    interleaved["done"] = True
                    decide(rid, "a2")
                return snap

            txn.read = read
            return txn

        monkeypatch.setattr(store, "begin", begin_with_competitor)

        # a1's first attempt read tier1_pending; the retry sees a2's decision
        with pytest.raises(OutOfOrderError):
            decide(rid, "a1")

        data = read_request(rid)
        assert data["status"] == "tier2_pending"
        assert [h["approver"] for h in data["approvalHistory"]] == ["a2"]
