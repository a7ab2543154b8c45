"""
External identifiers for versions and builds.

Rows carry a UUIDv7 column; callers only ever see it as a prefixed
Crockford Base32 string:

    ver_01hgw2bbg0000000000000000   AppVersion
    bld_01hgw2bbg0000000000000001   Build

Integer primary keys stay inside the service layer.
"""

import uuid as uuid_module
from typing import ClassVar, Optional

import base32_crockford
from sqlalchemy import Column, TypeDecorator, LargeBinary
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from uuid_extensions import uuid7


GUID_ENCODED_LENGTH = 26


def _as_uuid(value) -> uuid_module.UUID:
    if isinstance(value, uuid_module.UUID):
        return value
    if isinstance(value, bytes):
        return uuid_module.UUID(bytes=value)
    return uuid_module.UUID(str(value))


def encode_guid(prefix: str, value) -> str:
    """Render a UUID (or its 16 raw bytes) as ``{prefix}_{base32}``."""
    number = _as_uuid(value).int
    return f"{prefix}_{base32_crockford.encode(number).zfill(GUID_ENCODED_LENGTH).lower()}"


def decode_guid(prefix: str, guid: str) -> uuid_module.UUID:
    """
    Decode ``{prefix}_{base32}`` back to a UUID.

    The Base32 part is case-insensitive.

    Raises:
        ValueError: On an empty value, another prefix, a wrong length or
            characters outside the Crockford alphabet
    """
    if not guid:
        raise ValueError("GUID cannot be empty")

    head, sep, body = guid.partition("_")
    if not sep or head.lower() != prefix:
        raise ValueError(f"Invalid GUID prefix: expected '{prefix}', got '{head}'")
    if len(body) != GUID_ENCODED_LENGTH:
        raise ValueError(
            f"Invalid GUID length: expected {GUID_ENCODED_LENGTH} characters after "
            f"'{prefix}_', got {len(body)}"
        )

    try:
        number = base32_crockford.decode(body.upper())
        return uuid_module.UUID(bytes=number.to_bytes(16, "big"))
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Invalid GUID encoding: {e}") from e


class UUIDType(TypeDecorator):
    """UUID column: native on PostgreSQL, 16 raw bytes elsewhere (SQLite)."""

    impl = LargeBinary
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(LargeBinary(16))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = _as_uuid(value)
        return value if dialect.name == "postgresql" else value.bytes

    def process_result_value(self, value, dialect):
        return None if value is None else _as_uuid(value)


class GuidMixin:
    """
    Adds a UUIDv7 ``uuid`` column, filled on insert, plus the ``guid``
    property and ``parse_guid`` for a model-specific GUID_PREFIX.

        class Build(Base, GuidMixin):
            GUID_PREFIX = "bld"
    """

    GUID_PREFIX: ClassVar[str]

    uuid = Column(
        UUIDType(),
        nullable=False,
        unique=True,
        index=True,
        default=uuid7,
    )

    @property
    def guid(self) -> Optional[str]:
        """Prefixed GUID, or None until the row has been flushed."""
        if self.uuid is None:
            return None
        return encode_guid(self.GUID_PREFIX, self.uuid)

    @classmethod
    def parse_guid(cls, guid: str) -> uuid_module.UUID:
        """
        Decode a GUID of this model.

        Raises:
            ValueError: If the GUID is malformed or belongs to another model
        """
        return decode_guid(cls.GUID_PREFIX, guid)
