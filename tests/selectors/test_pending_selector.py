"""
Tests for PendingSelector and NotificationSelector.

Covers:
- ACTION_REQUIRED / MONITORING classification per tier position
- union across tiers, owner fields and document kinds with de-duplication
- newest-first ordering and legacy documents
- completed / shared / decided-on lists
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from erp_kernel.domain.approval import ApprovalStatus
from erp_kernel.domain.documents import DocumentKind
from erp_kernel.domain.request import ApprovalRequest
from erp_kernel.selectors.pending_selector import ItemRole, classify
from erp_kernel.store.base import DocumentPath

T0 = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
THREE = {"first": ["a"], "second": ["b"], "third": ["c"], "shared": ["cc"]}


def ids(items):
    return [s.request_id for s in items]


def roles(items):
    return {s.request_id: s.role for s in items}


class TestClassify:

    def _request(self, status, approvers=None, owner="sam"):
        return ApprovalRequest.from_document(
            DocumentKind.APPROVAL, "r1",
            {"status": status, "approvers": approvers or THREE},
            owner=owner,
        )

    def test_authoritative_member_must_act(self):
        assert classify(self._request("tier2_pending"), "b") is ItemRole.ACTION_REQUIRED

    def test_later_tier_is_monitoring(self):
        request = self._request("tier1_pending")
        assert classify(request, "b") is ItemRole.MONITORING
        assert classify(request, "c") is ItemRole.MONITORING

    def test_past_tier_not_listed(self):
        assert classify(self._request("tier3_pending"), "a") is None

    def test_owner_monitors(self):
        assert classify(self._request("tier1_pending"), "sam") is ItemRole.MONITORING

    def test_shared_member_not_listed(self):
        assert classify(self._request("tier1_pending"), "cc") is None

    @pytest.mark.parametrize("status", ["final_approved", "rejected"])
    def test_terminal_never_listed(self, status):
        assert classify(self._request(status), "sam") is None

    def test_first_match_decides_action(self):
        request = self._request("tier2_pending", {"first": ["x"], "second": ["x"]})
        # x acts at tier 1 only; tier 2 is not theirs to act on
        assert classify(request, "x") is None


class TestListPending:

    def test_classification_across_requests(self, seed_request, pending_selector):
        waiting = seed_request(status="tier2_pending", approvers=THREE)
        upcoming = seed_request(status="tier1_pending", approvers=THREE)
        passed = seed_request(status="tier3_pending", approvers=THREE)

        items = pending_selector.list_pending("b")

        assert roles(items) == {
            waiting: ItemRole.ACTION_REQUIRED,
            upcoming: ItemRole.MONITORING,
        }
        assert passed not in ids(items)

    def test_last_tier_sees_request_from_submission(self, seed_request, pending_selector):
        rid = seed_request(status="tier1_pending", approvers=THREE)
        [item] = pending_selector.list_pending("c")
        assert (item.request_id, item.role) == (rid, ItemRole.MONITORING)

    def test_action_required_only(self, seed_request, pending_selector):
        mine = seed_request(status="tier2_pending", approvers=THREE)
        seed_request(status="tier1_pending", approvers=THREE)
        assert ids(pending_selector.list_action_required("b")) == [mine]

    def test_owner_sees_own_in_flight(self, seed_request, pending_selector):
        rid = seed_request(owner="sam", status="tier2_pending")
        seed_request(owner="sam", status="final_approved")
        [item] = pending_selector.list_pending("sam")
        assert (item.request_id, item.role) == (rid, ItemRole.MONITORING)

    def test_across_kinds(self, seed_request, pending_selector):
        seed_request(kind=DocumentKind.APPROVAL, request_id="ap")
        seed_request(kind=DocumentKind.REPORT, request_id="rp")
        seed_request(kind=DocumentKind.VACATION, request_id="va")

        items = pending_selector.list_pending("alice")
        assert sorted(ids(items)) == ["ap", "rp", "va"]
        assert {s.kind for s in items} == set(DocumentKind)

    def test_kind_filter(self, seed_request, pending_selector):
        seed_request(kind=DocumentKind.APPROVAL, request_id="ap")
        seed_request(kind=DocumentKind.REPORT, request_id="rp")
        assert ids(pending_selector.list_pending("alice", kinds=["report"])) == ["rp"]

    def test_deduplicated_when_matched_twice(self, seed_request, pending_selector):
        seed_request(owner="x", approvers={"first": ["x"], "third": ["x"]}, request_id="dup")
        items = pending_selector.list_pending("x")
        assert ids(items) == ["dup"]
        assert items[0].role is ItemRole.ACTION_REQUIRED

    def test_same_id_in_two_kinds_kept_apart(self, seed_request, pending_selector):
        seed_request(kind=DocumentKind.APPROVAL, request_id="same")
        seed_request(kind=DocumentKind.REPORT, request_id="same")
        assert len(pending_selector.list_pending("alice")) == 2

    def test_newest_first(self, seed_request, pending_selector):
        seed_request(request_id="old", created_at=T0)
        seed_request(request_id="new", created_at=T0 + timedelta(days=2))
        seed_request(request_id="mid", created_at=T0 + timedelta(days=1))
        assert ids(pending_selector.list_pending("alice")) == ["new", "mid", "old"]

    def test_legacy_document(self, store, layout, pending_selector):
        path = DocumentPath.of("vacation", "kim", "requests", "legacy-1")
        store.run_transaction(lambda txn: txn.set(path, {
            "userName": "kim",
            "title": "Leave",
            "approvers": {"first": ["lead"]},
            "status": "대기",
            "createdAt": {"_seconds": 1_700_000_000, "_nanoseconds": 0},
        }))

        [item] = pending_selector.list_pending("lead")
        assert item.status is ApprovalStatus.TIER1_PENDING
        assert item.request.owner == "kim"
        assert ids(pending_selector.list_pending("kim")) == ["legacy-1"]

    def test_unknown_status_skipped_with_warning(
        self, seed_request, pending_selector, captured_logs,
    ):
        good = seed_request()
        seed_request(status="보류")

        assert ids(pending_selector.list_pending("alice")) == [good]
        [warning] = [
            r for r in captured_logs() if r["message"] == "request_skipped_unknown_status"
        ]
        assert warning["raw_status"] == "보류"

    def test_reflects_decisions(self, seed_request, coordinator, pending_selector):
        rid = seed_request()
        assert ids(pending_selector.list_action_required("alice")) == [rid]

        coordinator.submit_approval(DocumentKind.APPROVAL, rid, "alice", "submitter", "approve")

        assert pending_selector.list_pending("alice") == []
        assert ids(pending_selector.list_action_required("bob")) == [rid]


class TestOtherLists:

    def test_completed(self, seed_request, pending_selector):
        done = seed_request(owner="sam", status="final_approved", created_at=T0)
        rejected = seed_request(owner="sam", status="rejected", created_at=T0 + timedelta(1))
        seed_request(owner="sam", status="tier1_pending")
        seed_request(owner="kim", status="final_approved")

        assert ids(pending_selector.list_completed("sam")) == [rejected, done]

    def test_shared(self, seed_request, pending_selector):
        rid = seed_request(approvers={"first": ["a"], "shared": ["cc"]}, status="final_approved")
        seed_request(approvers={"first": ["a"]})
        assert ids(pending_selector.list_shared("cc")) == [rid]

    def test_decided_on_day(self, seed_request, pending_selector):
        today = seed_request(history=[
            {"approver": "a", "decision": "tier1_approved", "comment": "",
             "approvedAt": datetime(2024, 5, 2, 9, tzinfo=timezone.utc)},
        ], approvers=THREE, status="tier2_pending")
        seed_request(history=[
            {"approver": "a", "decision": "tier1_approved", "comment": "",
             "approvedAt": datetime(2024, 5, 1, 23, tzinfo=timezone.utc)},
        ], approvers=THREE, status="tier2_pending")
        seed_request(approvers=THREE)

        assert ids(pending_selector.list_decided_on("a", date(2024, 5, 2))) == [today]
        assert pending_selector.count_decided_on("a", date(2024, 5, 2)) == 1

    def test_decided_on_respects_timezone(self, seed_request, pending_selector):
        seed_request(history=[
            {"approver": "a", "decision": "rejected", "comment": "",
             "approvedAt": datetime(2024, 5, 1, 23, tzinfo=timezone.utc)},
        ], approvers=THREE, status="rejected", rejectedBy="a")
        seoul = timezone(timedelta(hours=9))

        assert pending_selector.count_decided_on("a", date(2024, 5, 2), tz=seoul) == 1
        assert pending_selector.count_decided_on("a", date(2024, 5, 2)) == 0


class TestNotificationSelector:

    def test_newest_first_and_unread(
        self, store, dispatcher, deterministic_clock, notification_selector,
    ):
        from erp_kernel.domain.approval import NotificationNotice
        from erp_kernel.domain.documents import LinkRoute

        def _stage(message):
            return store.run_transaction(lambda txn: dispatcher.stage(
                txn, NotificationNotice("bob", LinkRoute.REQUEST_DETAIL, message),
                kind=DocumentKind.APPROVAL, request_id="r1",
            ))

        first = _stage("first")
        deterministic_clock.advance(timedelta(minutes=5))
        _stage("second")
        dispatcher.mark_read("bob", first.notification_id)

        records = notification_selector.list_notifications("bob")
        assert [r.message for r in records] == ["second", "first"]
        assert [r.message for r in notification_selector.list_notifications(
            "bob", unread_only=True)] == ["second"]
        assert notification_selector.unread_count("bob") == 1
        assert notification_selector.list_notifications("alice") == []
