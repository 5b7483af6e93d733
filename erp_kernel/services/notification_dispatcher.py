"""
NotificationDispatcher -- in-app notification records and email fan-out.

Responsibility:
    Persists one unread notification per planned target inside the
    caller's transaction (``stage``), and after the caller has committed,
    sends a best-effort email to each target that has an address in the
    employee directory (``deliver_emails``).

Architecture position:
    Kernel > Services -- imperative shell.  Used by the approval
    coordinator and the request service.  Never commits a transaction it
    did not open itself (``mark_read`` is the only method that does).

Invariants enforced:
    - Notification records are write-once except ``isRead``.
    - Email happens strictly after commit; a failed email never undoes or
      blocks the state change that caused it.

Failure modes:
    - ``NotificationDispatchError``: wraps any email failure.  Logged at
      WARNING and swallowed inside ``deliver_emails``.
    - ``DocumentNotFoundError`` from ``mark_read`` for an unknown id.
"""

from __future__ import annotations

import html
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Iterable, Protocol

from erp_kernel.domain.approval import NotificationNotice
from erp_kernel.domain.clock import Clock
from erp_kernel.domain.documents import (
    DEFAULT_LAYOUT,
    CollectionLayout,
    DocumentKind,
    LinkRoute,
)
from erp_kernel.exceptions import DocumentNotFoundError, NotificationDispatchError
from erp_kernel.logging_config import get_logger
from erp_kernel.store.base import DocumentPath, DocumentStore, Transaction

logger = get_logger("services.notification_dispatcher")

SYSTEM_SENDER = "ERP System"


# =========================================================================
# Email transport
# =========================================================================


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html_body: str


class EmailSender(Protocol):
    """Sends one email. Raises on failure."""

    def send(self, message: EmailMessage) -> None:
        ...


class SmtpEmailSender:
    """SMTP delivery with STARTTLS and optional login."""

    def __init__(
        self,
        host: str,
        port: int,
        from_address: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.from_address = from_address
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, message: EmailMessage) -> None:
        msg = MIMEMultipart()
        msg["From"] = self.from_address
        msg["To"] = message.to
        msg["Subject"] = message.subject
        msg.attach(MIMEText(message.html_body, "html"))

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg, to_addrs=[message.to])


class NullEmailSender:
    """Drops every message. Used when email is disabled."""

    def send(self, message: EmailMessage) -> None:
        logger.debug("email_suppressed", extra={"to": message.to})


# =========================================================================
# Dispatcher
# =========================================================================


@dataclass(frozen=True)
class StagedNotification:
    """A notification written in a transaction, awaiting email delivery."""

    notification_id: str
    target: str
    message: str
    link: str
    route: LinkRoute
    kind: DocumentKind
    request_id: str


class NotificationDispatcher:
    """
    Writes notification records and sends the matching emails.

    Args:
        store: document store holding notifications and the employee
            directory.
        clock: source of ``createdAt``.
        layout: collection names and link routes.
        email_sender: transport; ``NullEmailSender`` when omitted.
        base_url: prefix for links inside email bodies.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock,
        layout: CollectionLayout = DEFAULT_LAYOUT,
        email_sender: EmailSender | None = None,
        base_url: str = "",
    ):
        self._store = store
        self._clock = clock
        self._layout = layout
        self._sender: EmailSender = (
            email_sender if email_sender is not None else NullEmailSender()
        )
        self._base_url = base_url.rstrip("/")

    def notification_path(self, target: str, notification_id: str) -> DocumentPath:
        return DocumentPath.of(
            self._layout.notifications_collection,
            target,
            self._layout.notifications_subcollection,
            notification_id,
        )

    def stage(
        self,
        txn: Transaction,
        notice: NotificationNotice,
        *,
        kind: DocumentKind,
        request_id: str,
        from_identity: str = SYSTEM_SENDER,
    ) -> StagedNotification:
        """Write an unread notification for ``notice.target`` into ``txn``."""
        notification_id = self._store.new_document_id()
        link = self._layout.render_link(notice.route, kind, request_id)
        txn.set(
            self.notification_path(notice.target, notification_id),
            {
                "targetIdentity": notice.target,
                "fromIdentity": from_identity,
                "type": kind.value,
                "message": notice.message,
                "link": link,
                "isRead": False,
                "createdAt": self._clock.now(),
                "sourceRequestId": request_id,
                "documentKind": kind.value,
            },
        )
        return StagedNotification(
            notification_id=notification_id,
            target=notice.target,
            message=notice.message,
            link=link,
            route=notice.route,
            kind=kind,
            request_id=request_id,
        )

    def stage_all(
        self,
        txn: Transaction,
        notices: Iterable[NotificationNotice],
        *,
        kind: DocumentKind,
        request_id: str,
        from_identity: str = SYSTEM_SENDER,
    ) -> tuple[StagedNotification, ...]:
        return tuple(
            self.stage(
                txn, n, kind=kind, request_id=request_id, from_identity=from_identity,
            )
            for n in notices
        )

    def deliver_emails(
        self,
        staged: Iterable[StagedNotification],
        *,
        title: str = "",
        submitter: str = "",
    ) -> int:
        """
        Send one email per committed notification. Best-effort.

        Returns the number of emails handed to the transport.  Targets
        without an address are skipped; failures are logged and swallowed.
        """
        sent = 0
        for item in staged:
            try:
                if self._send_one(item, title=title, submitter=submitter):
                    sent += 1
            except NotificationDispatchError:
                logger.warning(
                    "notification_email_failed",
                    exc_info=True,
                    extra={"target": item.target, "source_request_id": item.request_id},
                )
        return sent

    def _send_one(self, item: StagedNotification, *, title: str, submitter: str) -> bool:
        try:
            employee = self._store.get(
                DocumentPath.of(self._layout.employee_collection, item.target)
            )
            address = employee.get("email")
            if not address:
                logger.info(
                    "notification_email_skipped",
                    extra={"target": item.target, "reason": "no email address"},
                )
                return False
            self._sender.send(self._compose(item, address, title, submitter))
        except Exception as exc:
            raise NotificationDispatchError(item.target, str(exc)) from exc

        logger.info(
            "notification_email_sent",
            extra={"target": item.target, "source_request_id": item.request_id},
        )
        return True

    def _compose(
        self,
        item: StagedNotification,
        address: str,
        title: str,
        submitter: str,
    ) -> EmailMessage:
        button = "Review now" if item.route is LinkRoute.PENDING_INBOX else "Open"
        body = (
            '<div style="padding: 20px; font-family: sans-serif;">'
            f"<h2>{html.escape(item.message)}</h2>"
            f"<p><strong>Title:</strong> {html.escape(title)}</p>"
            f"<p><strong>Submitted by:</strong> {html.escape(submitter)}</p>"
            f'<a href="{html.escape(self._base_url + item.link)}">{button}</a>'
            '<p style="font-size: 12px; color: #999;">'
            "This message was sent automatically by the ERP system.</p>"
            "</div>"
        )
        return EmailMessage(to=address, subject=item.message, html_body=body)

    def mark_read(self, target: str, notification_id: str) -> None:
        """Flip ``isRead`` on one notification. The only allowed mutation."""
        path = self.notification_path(target, notification_id)

        def _mark(txn: Transaction) -> None:
            snap = txn.read(path)
            if not snap.exists:
                raise DocumentNotFoundError(str(path))
            txn.update(path, {"isRead": True})

        self._store.run_transaction(_mark)
        logger.info(
            "notification_marked_read",
            extra={"target": target, "notification_id": notification_id},
        )
