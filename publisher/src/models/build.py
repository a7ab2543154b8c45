"""
Build model: one downloadable artifact owned by one version.

Identity is (version_id, os, arch, type, distribution, variant); writes go
through the service layer as upserts on that tuple. ``platform_metadata``
may carry ``fallback_from`` (name of the version whose payload was copied)
and ``external`` (store listing, payload not hosted by us).
"""

import re
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    BigInteger, Column, DateTime, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from publisher.src.models import Base
from publisher.src.models.mixins import GuidMixin
from publisher.src.models.types import (
    DEFAULT_VARIANT, JSONBType, SUPPORTED_ARCH, SUPPORTED_BUILD_TYPES,
    SUPPORTED_DISTRIBUTIONS, SUPPORTED_OS, parse_json_object,
)


SHA256_PATTERN = re.compile(r"^[0-9a-f]{64}$")
SHA512_PATTERN = re.compile(r"^[0-9a-f]{128}$")
VARIANT_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,50}$")


def _check_member(field: str, value: Optional[str], allowed: tuple) -> str:
    if not value:
        raise ValueError(f"{field} is required")
    value = value.strip().lower()
    if value not in allowed:
        raise ValueError(
            f"Invalid {field.lower()} '{value}'. Must be one of: {', '.join(allowed)}"
        )
    return value


class Build(Base, GuidMixin):
    """
    Build artifact record.

    Attributes:
        id: Primary key (internal only)
        uuid / guid: External identifier (bld_xxx)
        version_id: FK to versions.id (CASCADE delete)
        os: macos, windows, linux, ios or android
        arch: arm64, x64 or x86
        type: patch or installer
        distribution: direct or store; NULL on legacy rows (inferred)
        variant: Free label separating co-existing builds (default "default")
        package_name: Artifact file name or store package label
        url: Download or store URL
        size: Payload size in bytes
        sha256_checksum / sha512_checksum: Lowercase hex digests
        platform_metadata_json: Free-form document (column "platform_metadata")
        created_at / updated_at: Timestamps

    Constraints:
        - (version_id, os, arch, type, distribution, variant) must be unique
    """

    __tablename__ = "builds"

    GUID_PREFIX = "bld"

    id = Column(Integer, primary_key=True, autoincrement=True)

    version_id = Column(
        Integer,
        ForeignKey("versions.id", ondelete="CASCADE"),
        nullable=False,
    )

    os = Column(String(20), nullable=False)
    arch = Column(String(20), nullable=False)
    type = Column(String(20), nullable=False)
    distribution = Column(String(20), nullable=True)
    variant = Column(String(50), nullable=False, default=DEFAULT_VARIANT)

    package_name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    size = Column(BigInteger, nullable=False, default=0)
    sha256_checksum = Column(String(64), nullable=True)
    sha512_checksum = Column(String(128), nullable=True)

    platform_metadata_json = Column("platform_metadata", JSONBType, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    version = relationship("AppVersion", back_populates="builds")

    __table_args__ = (
        UniqueConstraint(
            "version_id", "os", "arch", "type", "distribution", "variant",
            name="uq_builds_identity",
        ),
        Index("ix_builds_slot", "os", "arch", "type", "distribution", "variant"),
        Index("ix_builds_version_id", "version_id"),
    )

    @property
    def platform_metadata(self) -> Dict[str, Any]:
        """Platform metadata as a dict ({} when missing or malformed)."""
        return parse_json_object(self.platform_metadata_json)

    @property
    def fallback_from(self) -> Optional[str]:
        """Version name this build's payload was borrowed from, if any."""
        value = self.platform_metadata.get("fallback_from")
        return value if isinstance(value, str) and value else None

    @property
    def storage_path(self) -> Optional[str]:
        value = self.platform_metadata.get("storage_path")
        return value if isinstance(value, str) and value else None

    @validates("os")
    def validate_os(self, key: str, value: str) -> str:
        return _check_member("OS", value, SUPPORTED_OS)

    @validates("arch")
    def validate_arch(self, key: str, value: str) -> str:
        return _check_member("Arch", value, SUPPORTED_ARCH)

    @validates("type")
    def validate_type(self, key: str, value: str) -> str:
        return _check_member("Type", value, SUPPORTED_BUILD_TYPES)

    @validates("distribution")
    def validate_distribution(self, key: str, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _check_member("Distribution", value, SUPPORTED_DISTRIBUTIONS)

    @validates("variant")
    def validate_variant(self, key: str, value: Optional[str]) -> str:
        if value is None or not value.strip():
            return DEFAULT_VARIANT
        value = value.strip()
        if not VARIANT_PATTERN.match(value):
            raise ValueError(
                "Variant must be 1-50 characters of letters, digits, '-' or '_'"
            )
        return value

    @validates("sha256_checksum", "sha512_checksum")
    def validate_checksum(self, key: str, value: Optional[str]) -> Optional[str]:
        """Validate a hex digest; empty means "not provided" (store builds)."""
        if value is None or not value.strip():
            return None
        value = value.strip().lower()
        pattern = SHA256_PATTERN if key == "sha256_checksum" else SHA512_PATTERN
        if not pattern.match(value):
            expected = 64 if key == "sha256_checksum" else 128
            raise ValueError(f"{key} must be {expected} hex characters")
        return value

    @validates("size")
    def validate_size(self, key: str, value: Any) -> int:
        if value is None:
            return 0
        if isinstance(value, bool) or int(value) < 0:
            raise ValueError("Size must be a non-negative integer")
        return int(value)

    def __repr__(self) -> str:
        return (
            f"<Build(guid='{self.guid}', os='{self.os}', arch='{self.arch}', "
            f"type='{self.type}', distribution='{self.distribution}', "
            f"variant='{self.variant}')>"
        )
