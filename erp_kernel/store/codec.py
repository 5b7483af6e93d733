"""
JSON codec for document data stored in SQL.

JSON has no timestamp type, so datetimes are written as tagged maps
(``{"__datetime__": "<iso-8601>"}``) and restored on read.  Everything else
passes through unchanged.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

_DATETIME_TAG = "__datetime__"
_DATE_TAG = "__date__"


def encode(value: Any) -> Any:
    """Recursively convert a document value into plain JSON types."""
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, date):
        return {_DATE_TAG: value.isoformat()}
    if isinstance(value, dict):
        return {str(k): encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode(v) for v in value]
    return value


def decode(value: Any) -> Any:
    """Inverse of ``encode``."""
    if isinstance(value, dict):
        if len(value) == 1:
            if _DATETIME_TAG in value:
                return datetime.fromisoformat(value[_DATETIME_TAG])
            if _DATE_TAG in value:
                return date.fromisoformat(value[_DATE_TAG])
        return {k: decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode(v) for v in value]
    return value
