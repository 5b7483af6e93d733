"""
Config -> Kernel Bridges.

Functions that convert an ``ErpConfiguration`` into kernel-compatible
inputs.  These live in erp_config (the producer) because the kernel must
NEVER import erp_config.

Usage:
    from erp_config import get_active_config
    from erp_config.bridges import build_services

    config = get_active_config()
    services = build_services(config)
    services.coordinator.submit_approval(...)
"""

from __future__ import annotations

from dataclasses import dataclass

from erp_config.schema import ErpConfiguration
from erp_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.documents import (
    CollectionBinding,
    CollectionLayout,
    DocumentKind,
    LinkSettings,
)
from erp_kernel.selectors.notification_selector import NotificationSelector
from erp_kernel.selectors.pending_selector import PendingSelector
from erp_kernel.services.approval_coordinator import ApprovalCoordinator
from erp_kernel.services.notification_dispatcher import (
    EmailSender,
    NotificationDispatcher,
    NullEmailSender,
    SmtpEmailSender,
)
from erp_kernel.services.request_service import RequestService
from erp_kernel.store.base import DocumentStore
from erp_kernel.store.memory import InMemoryDocumentStore


def build_collection_layout(config: ErpConfiguration) -> CollectionLayout:
    """Map configured collections onto the kernel's ``CollectionLayout``."""
    return CollectionLayout(
        bindings=tuple(
            CollectionBinding(
                kind=DocumentKind(c.kind),
                collection=c.collection,
                subcollection=c.subcollection,
                detail_link=c.detail_link,
            )
            for c in config.collections
        ),
        notifications_collection=config.notifications_collection,
        notifications_subcollection=config.notifications_subcollection,
        employee_collection=config.employee_collection,
        links=LinkSettings(
            pending_inbox=config.links.pending_inbox,
            shared_inbox=config.links.shared_inbox,
        ),
    )


def build_document_store(config: ErpConfiguration) -> DocumentStore:
    """In-memory store, or the SQL store on a freshly initialized engine."""
    settings = config.store
    if settings.backend == "memory":
        return InMemoryDocumentStore()

    from erp_kernel.store.sql import SqlDocumentStore

    init_engine_from_url(
        settings.database_url,
        echo=settings.echo,
        pool_size=settings.pool_size,
    )
    if settings.create_schema:
        create_tables()
    return SqlDocumentStore(get_session_factory())


def build_email_sender(config: ErpConfiguration) -> EmailSender:
    email = config.email
    if not email.enabled:
        return NullEmailSender()
    return SmtpEmailSender(
        host=email.smtp_host,
        port=email.smtp_port,
        from_address=email.from_address,
        username=email.username,
        password=email.password,
        use_tls=email.use_tls,
        timeout=email.timeout,
    )


@dataclass(frozen=True)
class ErpServices:
    """Wired services and selectors sharing one store and clock."""

    store: DocumentStore
    layout: CollectionLayout
    dispatcher: NotificationDispatcher
    coordinator: ApprovalCoordinator
    requests: RequestService
    pending: PendingSelector
    notifications: NotificationSelector


def build_services(
    config: ErpConfiguration,
    *,
    clock: Clock | None = None,
    store: DocumentStore | None = None,
    email_sender: EmailSender | None = None,
) -> ErpServices:
    """Wire every service from configuration. Arguments override config."""
    if clock is None:
        clock = SystemClock()
    if store is None:
        store = build_document_store(config)
    if email_sender is None:
        email_sender = build_email_sender(config)
    layout = build_collection_layout(config)
    dispatcher = NotificationDispatcher(
        store,
        clock,
        layout=layout,
        email_sender=email_sender,
        base_url=config.email.base_url,
    )
    attempts = config.store.max_attempts
    return ErpServices(
        store=store,
        layout=layout,
        dispatcher=dispatcher,
        coordinator=ApprovalCoordinator(
            store, clock, dispatcher, layout=layout, max_attempts=attempts,
        ),
        requests=RequestService(
            store,
            clock,
            dispatcher,
            layout=layout,
            max_attempts=attempts,
            allow_cancel_after_final=config.vacation.allow_cancel_after_final,
        ),
        pending=PendingSelector(store, layout),
        notifications=NotificationSelector(store, layout),
    )
