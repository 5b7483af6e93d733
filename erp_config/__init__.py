"""
erp_config -- single public entrypoint for ERP kernel configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component may read configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits above ``erp_kernel``.  The kernel MUST NEVER
    import from ``erp_config``; ``erp_config.bridges`` translates the
    configuration into kernel inputs (layout, store, email sender,
    services).

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation: the configuration must pass ``validate_configuration``
      before it is returned.
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- configured path does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ValueError`` -- validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``ERP_CONFIG_TRACE`` log entry with the config id, version, checksum,
    store backend and configured document kinds.
"""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path

from erp_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_configuration,
    validate_configuration,
)
from erp_config.schema import ErpConfiguration
from erp_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_PATH_ENV = "ERP_CONFIG_PATH"
DATABASE_URL_ENV = "ERP_DATABASE_URL"
SMTP_PASSWORD_ENV = "ERP_SMTP_PASSWORD"


def get_active_config(config_path: Path | str | None = None) -> ErpConfiguration:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: ``config_path`` argument, then
    ``ERP_CONFIG_PATH``, then the packaged ``defaults.yaml``.
    ``ERP_DATABASE_URL`` (when set) selects the SQL store at that URL;
    ``ERP_SMTP_PASSWORD`` supplies the SMTP password.

    Returns:
        ErpConfiguration with its checksum filled in.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If configuration validation fails.
    """
    path = Path(config_path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    config = parse_configuration(load_yaml_file(path))

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        config = dataclasses.replace(
            config,
            store=dataclasses.replace(config.store, backend="sql", database_url=database_url),
        )
    smtp_password = os.environ.get(SMTP_PASSWORD_ENV)
    if smtp_password:
        config = dataclasses.replace(
            config, email=dataclasses.replace(config.email, password=smtp_password),
        )

    errors = validate_configuration(config)
    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    config = dataclasses.replace(config, checksum=compute_checksum(config))

    _logger.info(
        "ERP_CONFIG_TRACE",
        extra={
            "trace_type": "ERP_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
            "store_backend": config.store.backend,
            "document_kinds": [c.kind for c in config.collections],
            "email_enabled": config.email.enabled,
        },
    )
    return config


__all__ = ["ErpConfiguration", "get_active_config"]
