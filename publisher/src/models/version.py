"""
AppVersion model: one release of the client application in one channel.

The same version number may exist independently in several channels, so
identity is (version_name, release_channel). The update policy lives in two
places: the relational rollout columns and the ``updatePolicy`` object of
the free-form metadata document. Both are written together by the service
layer; readers reconcile them through the policy resolver.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Float, Index, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from publisher.src.models import Base
from publisher.src.models.mixins import GuidMixin
from publisher.src.models.types import (
    DEFAULT_CHANNEL, DEFAULT_ROLLOUT_PERCENTAGE, JSONBType, SUPPORTED_CHANNELS,
    parse_json_object,
)


class AppVersion(Base, GuidMixin):
    """
    Release version record.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (ver_xxx, inherited from GuidMixin)
        version_name: Semantic version string (e.g., "1.4.0", "2.0.0-beta.1")
        release_channel: stable, beta or alpha
        manifest_version: Manifest format revision
        release_date: Release timestamp shown in manifests
        is_published: Whether clients may see this version
        is_mandatory: Whether the update must be installed
        release_notes: Short human-readable notes
        changelog: Full changelog text
        metadata_json: Free-form metadata document (column "metadata")
        min_supported_version: Oldest version allowed to skip this update
        rollout_percentage: Share of devices offered this version (0-100)
        rollout_start_at: Start of the rollout window (optional)
        rollout_end_at: End of the rollout window (optional)
        storage_key_prefix: Blob prefix, always releases/{channel}/{version_name}
        created_at: Creation timestamp
        updated_at: Last modification timestamp
        builds: Builds owned by this version

    Constraints:
        - (version_name, release_channel) must be unique
        - release_channel must be a supported channel
        - rollout_percentage between 0 and 100
        - rollout_end_at >= rollout_start_at when both are set
    """

    __tablename__ = "versions"

    GUID_PREFIX = "ver"

    id = Column(Integer, primary_key=True, autoincrement=True)

    version_name = Column(String(100), nullable=False)
    release_channel = Column(String(20), nullable=False, default=DEFAULT_CHANNEL)
    manifest_version = Column(Integer, nullable=False, default=1)
    release_date = Column(DateTime, default=datetime.utcnow, nullable=False)

    is_published = Column(Boolean, nullable=False, default=False)
    is_mandatory = Column(Boolean, nullable=False, default=False)

    release_notes = Column(Text, nullable=True)
    changelog = Column(Text, nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_json = Column("metadata", JSONBType, nullable=False, default=dict)

    # Update policy (relational home)
    min_supported_version = Column(String(100), nullable=True)
    rollout_percentage = Column(Float, nullable=False, default=DEFAULT_ROLLOUT_PERCENTAGE)
    rollout_start_at = Column(DateTime(timezone=True), nullable=True)
    rollout_end_at = Column(DateTime(timezone=True), nullable=True)

    storage_key_prefix = Column(String(255), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    builds = relationship(
        "Build",
        back_populates="version",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("version_name", "release_channel", name="uq_versions_name_channel"),
        CheckConstraint(
            "release_channel IN ('stable', 'beta', 'alpha')",
            name="ck_versions_release_channel",
        ),
        CheckConstraint(
            "rollout_percentage >= 0 AND rollout_percentage <= 100",
            name="ck_versions_rollout_percentage",
        ),
        CheckConstraint(
            "rollout_start_at IS NULL OR rollout_end_at IS NULL "
            "OR rollout_end_at >= rollout_start_at",
            name="ck_versions_rollout_window",
        ),
        Index("ix_versions_channel_published_created", "release_channel", "is_published", "created_at"),
    )

    @staticmethod
    def storage_prefix_for(channel: str, version_name: str) -> str:
        """Blob prefix for a version's artifacts and manifest."""
        return f"releases/{channel}/{version_name}"

    @property
    def metadata_doc(self) -> Dict[str, Any]:
        """Metadata document as a dict ({} when missing or malformed)."""
        return parse_json_object(self.metadata_json)

    @property
    def manifest_path(self) -> str:
        return f"{self.storage_key_prefix}/manifest.json"

    @validates("release_channel")
    def validate_release_channel(self, key: str, value: str) -> str:
        if not value:
            raise ValueError("Release channel is required")
        value = value.strip().lower()
        if value not in SUPPORTED_CHANNELS:
            raise ValueError(
                f"Invalid channel '{value}'. Must be one of: {', '.join(SUPPORTED_CHANNELS)}"
            )
        return value

    @validates("version_name")
    def validate_version_name(self, key: str, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Version name is required")
        return value.strip()

    @validates("rollout_percentage")
    def validate_rollout_percentage(self, key: str, value: Any) -> float:
        if value is None:
            return DEFAULT_ROLLOUT_PERCENTAGE
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("Rollout percentage must be a number")
        if value < 0 or value > 100:
            raise ValueError("Rollout percentage must be between 0 and 100")
        return value

    @validates("rollout_start_at", "rollout_end_at")
    def validate_rollout_bound(self, key: str, value: Any) -> Any:
        # stored as UTC wall-clock time; SQLite drops the offset
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone(timezone.utc)
        return value

    def __repr__(self) -> str:
        return (
            f"<AppVersion(guid='{self.guid}', version='{self.version_name}', "
            f"channel='{self.release_channel}', published={self.is_published})>"
        )
