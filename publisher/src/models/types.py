"""
Platform vocabularies and custom SQLAlchemy types.

Supported values are kept as ordered tuples: the order is the canonical
output order used when manifests are assembled.
"""

import json
from typing import Any, Dict

from sqlalchemy import TypeDecorator, JSON
from sqlalchemy.dialects.postgresql import JSONB


SUPPORTED_OS = ("macos", "windows", "linux", "ios", "android")
SUPPORTED_ARCH = ("arm64", "x64", "x86")
SUPPORTED_BUILD_TYPES = ("patch", "installer")
SUPPORTED_CHANNELS = ("stable", "beta", "alpha")
SUPPORTED_DISTRIBUTIONS = ("direct", "store")

DEFAULT_CHANNEL = "stable"
DEFAULT_VARIANT = "default"
DEFAULT_ROLLOUT_PERCENTAGE = 100


class JSONBType(TypeDecorator):
    """
    Platform-independent JSONB type.

    Uses PostgreSQL's native JSONB type when available,
    otherwise falls back to JSON for SQLite.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB())
        else:
            return dialect.type_descriptor(JSON())


def parse_json_object(value: Any) -> Dict[str, Any]:
    """
    Read a stored JSON document as a dict, tolerating bad data.

    Documents are free-form and may predate the current schema, so a
    non-object value (or a string that does not decode to an object)
    reads as an empty dict instead of raising.

    Args:
        value: Raw column value (dict, JSON string, None, or anything else)

    Returns:
        A shallow copy of the object, or {}
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    if isinstance(value, dict):
        return dict(value)
    return {}
