"""
Configuration Loader (``erp_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``erp_config.schema`` dataclasses, validates the result and computes its
checksum.  The single public entry point for runtime config is
``erp_config.get_active_config()``; this module is its implementation.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  configuration (secrets excluded) for identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Semantic problems are reported by ``validate_configuration``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from erp_config.schema import (
    CollectionDef,
    EmailSettings,
    ErpConfiguration,
    LinkSettings,
    StoreSettings,
    VacationSettings,
)

KNOWN_KINDS = frozenset({"approval", "report", "vacation"})
STORE_BACKENDS = frozenset({"memory", "sql"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_store(data: dict[str, Any]) -> StoreSettings:
    return StoreSettings(
        backend=data.get("backend", "memory"),
        database_url=data.get("database_url"),
        max_attempts=int(data.get("max_attempts", 3)),
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        create_schema=bool(data.get("create_schema", True)),
    )


def parse_email(data: dict[str, Any]) -> EmailSettings:
    return EmailSettings(
        enabled=bool(data.get("enabled", False)),
        smtp_host=data.get("smtp_host", "localhost"),
        smtp_port=int(data.get("smtp_port", 587)),
        from_address=data.get("from_address", "erp@localhost"),
        username=data.get("username"),
        password=data.get("password"),
        use_tls=bool(data.get("use_tls", True)),
        timeout=float(data.get("timeout", 10.0)),
        base_url=data.get("base_url") or "",
    )


def parse_links(data: dict[str, Any]) -> LinkSettings:
    defaults = LinkSettings()
    return LinkSettings(
        pending_inbox=data.get("pending_inbox", defaults.pending_inbox),
        shared_inbox=data.get("shared_inbox", defaults.shared_inbox),
    )


def parse_collection(data: dict[str, Any]) -> CollectionDef:
    """Parse one ``collections`` entry. All four keys are required."""
    return CollectionDef(
        kind=data["kind"],
        collection=data["collection"],
        subcollection=data["subcollection"],
        detail_link=data["detail_link"],
    )


def parse_configuration(data: dict[str, Any]) -> ErpConfiguration:
    """Parse a whole configuration document (checksum left empty)."""
    notifications = data.get("notifications") or {}
    vacation = data.get("vacation") or {}
    return ErpConfiguration(
        config_id=data["config_id"],
        version=int(data["version"]),
        collections=tuple(parse_collection(c) for c in data.get("collections") or ()),
        store=parse_store(data.get("store") or {}),
        email=parse_email(data.get("email") or {}),
        links=parse_links(data.get("links") or {}),
        vacation=VacationSettings(
            allow_cancel_after_final=bool(vacation.get("allow_cancel_after_final", False)),
        ),
        notifications_collection=notifications.get("collection", "notifications"),
        notifications_subcollection=notifications.get("subcollection", "userNotifications"),
        employee_collection=data.get("employee_collection", "employee"),
    )


def validate_configuration(config: ErpConfiguration) -> list[str]:
    """Return a list of problems; empty means valid."""
    errors: list[str] = []

    if config.store.backend not in STORE_BACKENDS:
        errors.append(f"unknown store backend {config.store.backend!r}")
    if config.store.backend == "sql" and not config.store.database_url:
        errors.append("store.database_url is required for the sql backend")
    if config.store.max_attempts < 1:
        errors.append("store.max_attempts must be >= 1")

    if not config.collections:
        errors.append("at least one collection must be configured")
    kinds = [c.kind for c in config.collections]
    for kind in kinds:
        if kind not in KNOWN_KINDS:
            errors.append(f"unknown document kind {kind!r}")
    if len(set(kinds)) != len(kinds):
        errors.append("each document kind may be configured only once")
    groups = [c.subcollection for c in config.collections]
    groups.append(config.notifications_subcollection)
    if len(set(groups)) != len(groups):
        errors.append("subcollection names must be unique")
    for c in config.collections:
        if not c.collection or not c.subcollection:
            errors.append(f"collection names for {c.kind!r} cannot be empty")
        if "{request_id}" not in c.detail_link:
            errors.append(f"detail_link for {c.kind!r} must contain {{request_id}}")

    if config.email.enabled and not config.email.smtp_host:
        errors.append("email.smtp_host is required when email is enabled")

    return errors


def compute_checksum(config: ErpConfiguration) -> str:
    """Deterministic SHA-256 over the parsed configuration, secrets removed."""
    payload = dataclasses.asdict(config)
    payload.pop("checksum", None)
    payload["email"].pop("password", None)
    canonical = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
