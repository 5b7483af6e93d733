"""
ErpConfiguration schema.

Frozen dataclasses that YAML configuration is parsed into.  The loader
builds them, ``get_active_config`` validates them, and the bridges turn
them into kernel inputs.  Nothing here has behavior beyond defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StoreSettings:
    """Which document store to use and how hard to retry conflicts."""

    backend: str = "memory"  # "memory" | "sql"
    database_url: str | None = None
    max_attempts: int = 3
    echo: bool = False
    pool_size: int = 20
    create_schema: bool = True


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmailSettings:
    enabled: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 587
    from_address: str = "erp@localhost"
    username: str | None = None
    password: str | None = None
    use_tls: bool = True
    timeout: float = 10.0
    base_url: str = ""  # prefix for links inside email bodies


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LinkSettings:
    pending_inbox: str = "/main/my-approval/pending"
    shared_inbox: str = "/main/my-approval/shared"


@dataclass(frozen=True)
class CollectionDef:
    """Where one document kind lives: ``{collection}/{owner}/{subcollection}/{id}``."""

    kind: str
    collection: str
    subcollection: str
    detail_link: str


@dataclass(frozen=True)
class VacationSettings:
    # Owners may withdraw a fully approved vacation; the days are refunded.
    allow_cancel_after_final: bool = False


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ErpConfiguration:
    """Complete, validated runtime configuration."""

    config_id: str
    version: int
    collections: tuple[CollectionDef, ...]
    store: StoreSettings = field(default_factory=StoreSettings)
    email: EmailSettings = field(default_factory=EmailSettings)
    links: LinkSettings = field(default_factory=LinkSettings)
    vacation: VacationSettings = field(default_factory=VacationSettings)
    notifications_collection: str = "notifications"
    notifications_subcollection: str = "userNotifications"
    employee_collection: str = "employee"
    checksum: str = ""
