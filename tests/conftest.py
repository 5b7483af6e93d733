"""
Pytest fixtures for the ERP kernel test suite.

Provides:
- Structured logging capture
- Deterministic clock
- In-memory and SQLite-backed document stores
- Recording email sender
- Service / selector wiring and request / employee seed factories

The SQL store runs on a SQLite file under ``tmp_path`` so that separate
sessions (and threads) see each other's commits.
"""

import json
import logging
from io import StringIO

import pytest

from erp_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from erp_kernel.domain.approval import ApproverLine
from erp_kernel.domain.clock import DeterministicClock
from erp_kernel.domain.documents import DEFAULT_LAYOUT, DocumentKind
from erp_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from erp_kernel.selectors.notification_selector import NotificationSelector
from erp_kernel.selectors.pending_selector import PendingSelector
from erp_kernel.services.approval_coordinator import ApprovalCoordinator
from erp_kernel.services.notification_dispatcher import NotificationDispatcher
from erp_kernel.services.request_service import RequestService
from erp_kernel.store.base import DocumentPath
from erp_kernel.store.memory import InMemoryDocumentStore
from erp_kernel.store.sql import SqlDocumentStore


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture erp_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.submit_approval(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_decision_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    handler.setLevel(logging.DEBUG)
    root = logging.getLogger("erp_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Infrastructure
# =============================================================================


class RecordingEmailSender:
    """Collects messages instead of sending them; can be told to fail."""

    def __init__(self):
        self.sent = []
        self.fail_for: set[str] = set()

    def send(self, message):
        if message.to in self.fail_for:
            raise ConnectionError(f"smtp refused {message.to}")
        self.sent.append(message)

    @property
    def recipients(self) -> list[str]:
        return [m.to for m in self.sent]


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def memory_store():
    return InMemoryDocumentStore()


@pytest.fixture
def sql_store(tmp_path):
    """SQL document store on a throwaway SQLite file."""
    init_engine_from_url(f"sqlite:///{tmp_path / 'erp.db'}")
    create_tables()
    yield SqlDocumentStore(get_session_factory())
    reset_engine()


@pytest.fixture
def store(memory_store):
    """Default store for service tests."""
    return memory_store


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def layout():
    return DEFAULT_LAYOUT


@pytest.fixture
def dispatcher(store, deterministic_clock, layout, email_sender):
    return NotificationDispatcher(
        store, deterministic_clock, layout=layout, email_sender=email_sender,
        base_url="https://erp.example.com",
    )


@pytest.fixture
def coordinator(store, deterministic_clock, dispatcher, layout):
    return ApprovalCoordinator(store, deterministic_clock, dispatcher, layout=layout)


@pytest.fixture
def request_service(store, deterministic_clock, dispatcher, layout):
    return RequestService(store, deterministic_clock, dispatcher, layout=layout)


@pytest.fixture
def pending_selector(store, layout):
    return PendingSelector(store, layout)


@pytest.fixture
def notification_selector(store, layout):
    return NotificationSelector(store, layout)


# =============================================================================
# Seed data
# =============================================================================


@pytest.fixture
def seed_employee(store, layout):
    """Factory: write an employee directory record."""

    def _seed(identity, *, email=None, recipients=None, used=0, remaining=15, **extra):
        data = {"userName": identity, "usedVacation": used, "remainingVacation": remaining}
        if email:
            data["email"] = email
        if recipients:
            data["recipients"] = recipients
        data.update(extra)
        path = DocumentPath.of(layout.employee_collection, identity)
        store.run_transaction(lambda txn: txn.set(path, data))
        return path

    return _seed


@pytest.fixture
def seed_request(store, layout, deterministic_clock):
    """
    Factory: write a request document directly, bypassing submission.

    Lets tests start from any stored status, including legacy labels.
    Returns the request id.
    """
    counter = {"n": 0}

    def _seed(
        *,
        owner="submitter",
        approvers=None,
        status="tier1_pending",
        kind=DocumentKind.APPROVAL,
        title="Laptop purchase",
        history=None,
        created_at=None,
        request_id=None,
        **fields,
    ):
        counter["n"] += 1
        request_id = request_id or f"req-{counter['n']:03d}"
        line = approvers if isinstance(approvers, ApproverLine) else ApproverLine.from_mapping(
            approvers or {"first": ["alice"], "second": ["bob"]}
        )
        binding = layout.binding(kind)
        path = DocumentPath.of(binding.collection, owner, binding.subcollection, request_id)
        data = {
            "ownerIdentity": owner,
            "documentKind": kind.value,
            "title": title,
            "content": "",
            "approvers": line.to_mapping(),
            "status": status,
            "rejectedBy": None,
            "approvalHistory": list(history or []),
            "createdAt": created_at or deterministic_clock.now(),
            "lastApprovedAt": None,
        }
        data.update(fields)
        store.run_transaction(lambda txn: txn.set(path, data))
        return request_id

    return _seed


@pytest.fixture
def read_request(store, layout):
    """Factory: committed data of a request document (None if absent)."""

    def _read(request_id, *, owner="submitter", kind=DocumentKind.APPROVAL):
        binding = layout.binding(kind)
        return store.get(
            DocumentPath.of(binding.collection, owner, binding.subcollection, request_id)
        ).data

    return _read
