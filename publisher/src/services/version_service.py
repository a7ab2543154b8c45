"""
Version lifecycle service.

Creates versions, mutates their update policy, lists them and deletes
them. Policy writes always update the relational columns and
``metadata.updatePolicy`` in the same commit so the two homes of the
policy cannot drift through this service.

Deletion order: relational rows first (authoritative), then best-effort
cleanup of the version's blob prefix and regeneration of the channel
manifest. Failures after the commit are returned as warnings, never
rolled back.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from publisher.src.models import AppVersion, Build
from publisher.src.models.types import DEFAULT_CHANNEL, DEFAULT_ROLLOUT_PERCENTAGE
from publisher.src.services.exceptions import (
    ConflictError, NotFoundError, ServiceError, ValidationError,
)
from publisher.src.services.manifest_service import ManifestService
from publisher.src.services.platforms import (
    validate_channel, validate_rollout_percentage, validate_rollout_window, validate_semver,
)
from publisher.src.services.policy import (
    UpdatePolicy, build_metadata_with_policy, normalize_date_like, resolve_policy,
)
from publisher.src.storage.base import BlobStore
from publisher.src.utils.logging_config import get_logger


logger = get_logger("services")

DEFAULT_PAGE_SIZE = 20

_UNSET: Any = object()


def regeneration_hint(version_name: str, channel: str) -> str:
    """Command an operator runs to retry a failed manifest regeneration."""
    return f"publisher manifest generate {version_name} --channel {channel}"


@dataclass
class DeletionResult:
    """
    Outcome of a delete.

    Attributes:
        deleted: Human-readable labels of the deleted records
        warnings: Degraded follow-up steps (blob cleanup, manifest regeneration)
        overridden_conflicts: Fallback references ignored because of force
    """
    deleted: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    overridden_conflicts: List[str] = field(default_factory=list)


def describe_build(build: Build, version_name: Optional[str] = None) -> str:
    """Label like "1.2.0 macos/arm64/installer/direct[default]"."""
    owner = version_name or (build.version.version_name if build.version else "?")
    distribution = build.distribution or "direct"
    return f"{owner} {build.os}/{build.arch}/{build.type}/{distribution}[{build.variant}]"


def find_fallback_references(
    db: Session,
    source_version: AppVersion,
    slot: Optional[Tuple[str, str, str]] = None,
) -> List[Build]:
    """
    Builds of other versions in the same channel whose payload was
    borrowed from *source_version*.

    Args:
        db: Database session
        source_version: Version that may be referenced
        slot: Restrict to one (os, arch, type)

    Returns:
        Referencing builds ordered by id
    """
    query = (
        db.query(Build)
        .join(AppVersion, Build.version_id == AppVersion.id)
        .filter(AppVersion.release_channel == source_version.release_channel)
        .filter(Build.version_id != source_version.id)
    )
    if slot is not None:
        os_name, arch, build_type = slot
        query = query.filter(Build.os == os_name, Build.arch == arch, Build.type == build_type)

    # fallback_from lives in a JSON document; filtered here for dialect independence
    return [
        build for build in query.order_by(Build.id).all()
        if build.fallback_from == source_version.version_name
    ]


class VersionService:
    """
    Service for version lifecycle operations.

    Usage:
        >>> service = VersionService(db_session, blob_store)
        >>> version = service.create_version("1.4.0", channel="beta", rollout_percentage=25)
        >>> service.set_policy("1.4.0", "beta", rollout_percentage=50)
    """

    def __init__(self, db: Session, store: Optional[BlobStore] = None, manifests: Optional[ManifestService] = None):
        self.db = db
        self.store = store
        self.manifests = manifests or ManifestService(db, store)

    def get_version(self, version_name: str, channel: str = DEFAULT_CHANNEL) -> AppVersion:
        """
        Get a version by name and channel.

        Raises:
            ValidationError: If channel is not supported
            NotFoundError: If the version does not exist
        """
        validate_channel(channel)
        return self.manifests.get_version(version_name, channel)

    def create_version(
        self,
        version_name: str,
        channel: str = DEFAULT_CHANNEL,
        min_supported_version: Optional[str] = None,
        rollout_percentage: Optional[float] = None,
        rollout_start_at: Optional[str] = None,
        rollout_end_at: Optional[str] = None,
        release_notes: Optional[str] = None,
        changelog: Optional[str] = None,
        is_mandatory: bool = False,
    ) -> AppVersion:
        """
        Create an unpublished version.

        Raises:
            ValidationError: On invalid semver, channel, min supported version,
                rollout percentage or rollout window
            ConflictError: If the version already exists in the channel
        """
        version_name = validate_semver(version_name)
        validate_channel(channel)
        if min_supported_version:
            min_supported_version = validate_semver(min_supported_version, field="min_supported_version")
        if rollout_percentage is None:
            rollout_percentage = DEFAULT_ROLLOUT_PERCENTAGE
        validate_rollout_percentage(rollout_percentage)
        start_at, end_at = validate_rollout_window(rollout_start_at, rollout_end_at)

        existing = (
            self.db.query(AppVersion)
            .filter(AppVersion.version_name == version_name)
            .filter(AppVersion.release_channel == channel)
            .first()
        )
        if existing:
            raise ConflictError(f"Version {version_name} ({channel}) already exists")

        version = AppVersion(
            version_name=version_name,
            release_channel=channel,
            min_supported_version=min_supported_version or None,
            rollout_percentage=rollout_percentage,
            rollout_start_at=start_at,
            rollout_end_at=end_at,
            storage_key_prefix=AppVersion.storage_prefix_for(channel, version_name),
            release_notes=release_notes,
            changelog=changelog,
            is_mandatory=is_mandatory,
            is_published=False,
        )
        version.metadata_json = build_metadata_with_policy({}, resolve_policy(version))

        self.db.add(version)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"Version {version_name} ({channel}) already exists")
        self.db.refresh(version)

        logger.info(
            f"Created version {version_name} ({channel})",
            extra={"event": "version.created", "version": version_name, "channel": channel, "guid": version.guid}
        )
        return version

    def set_policy(
        self,
        version_name: str,
        channel: str = DEFAULT_CHANNEL,
        target_channel: Optional[str] = None,
        min_supported_version: Any = _UNSET,
        rollout_percentage: Any = _UNSET,
        rollout_start_at: Any = _UNSET,
        rollout_end_at: Any = _UNSET,
        is_mandatory: Optional[bool] = None,
    ) -> AppVersion:
        """
        Overlay policy fields on the current resolved policy.

        Omitted fields keep their current value; passing None clears an
        optional field. Moving to *target_channel* also rewrites the
        storage prefix.

        Raises:
            ValidationError: On invalid input
            NotFoundError: If the version does not exist
            ConflictError: If the target channel already holds this version
        """
        validate_channel(channel)
        if target_channel is not None:
            validate_channel(target_channel)
        if min_supported_version not in (_UNSET, None, ""):
            min_supported_version = validate_semver(min_supported_version, field="min_supported_version")
        if rollout_percentage is not _UNSET:
            validate_rollout_percentage(rollout_percentage)

        version = self.get_version(version_name, channel)
        current = resolve_policy(version)

        start_raw = current.rollout_start_at if rollout_start_at is _UNSET else rollout_start_at
        end_raw = current.rollout_end_at if rollout_end_at is _UNSET else rollout_end_at
        start_at, end_at = validate_rollout_window(start_raw, end_raw)

        next_channel = target_channel or channel
        if next_channel != version.release_channel:
            clash = (
                self.db.query(AppVersion)
                .filter(AppVersion.version_name == version.version_name)
                .filter(AppVersion.release_channel == next_channel)
                .first()
            )
            if clash:
                raise ConflictError(
                    f"Version {version.version_name} already exists in channel {next_channel}",
                    conflicts=[clash.guid],
                )

        next_min_supported = (
            current.min_supported_version if min_supported_version is _UNSET else (min_supported_version or None)
        )
        next_percentage = current.rollout_percentage if rollout_percentage is _UNSET else rollout_percentage

        version.release_channel = next_channel
        version.min_supported_version = next_min_supported
        version.rollout_percentage = next_percentage
        version.rollout_start_at = start_at
        version.rollout_end_at = end_at
        version.storage_key_prefix = AppVersion.storage_prefix_for(next_channel, version.version_name)
        if is_mandatory is not None:
            version.is_mandatory = is_mandatory

        policy = UpdatePolicy(
            channel=next_channel,
            min_supported_version=next_min_supported,
            rollout_percentage=next_percentage,
            rollout_start_at=normalize_date_like(start_at),
            rollout_end_at=normalize_date_like(end_at),
        )
        version.metadata_json = build_metadata_with_policy(version.metadata_doc, policy)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"Version {version.version_name} already exists in channel {next_channel}")
        self.db.refresh(version)

        logger.info(
            f"Updated policy for {version.version_name} ({next_channel})",
            extra={
                "event": "version.policy_updated",
                "version": version.version_name,
                "channel": next_channel,
                "previous_channel": channel,
                "rollout_percentage": next_percentage,
            }
        )
        return version

    def list_versions(
        self,
        channel: Optional[str] = None,
        published_only: bool = False,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> Tuple[List[AppVersion], int]:
        """
        List versions, newest created first.

        Returns:
            (page of versions, total count matching the filters)
        """
        if channel is not None:
            validate_channel(channel)
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be >= 1 and offset >= 0", field="limit")

        query = self.db.query(AppVersion)
        if channel is not None:
            query = query.filter(AppVersion.release_channel == channel)
        if published_only:
            query = query.filter(AppVersion.is_published == True)  # noqa: E712

        total = query.count()
        versions = (
            query.order_by(AppVersion.created_at.desc(), AppVersion.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return versions, total

    def delete_version(
        self,
        version_name: str,
        channel: str = DEFAULT_CHANNEL,
        force: bool = False,
    ) -> DeletionResult:
        """
        Delete a version and its builds.

        Published versions and versions referenced as a fallback source by
        other versions' builds are only deleted with force.

        Raises:
            NotFoundError: If the version does not exist
            ConflictError: If blocked and force is False
        """
        version = self.get_version(version_name, channel)
        references = find_fallback_references(self.db, version)
        conflicts = [describe_build(build) for build in references]

        if not force:
            if version.is_published:
                raise ConflictError(
                    f"Version {version_name} ({channel}) is published; use force to delete it",
                    conflicts=[f"{version_name} ({channel}) is published"],
                )
            if conflicts:
                raise ConflictError(
                    f"Version {version_name} ({channel}) is used as a fallback by {len(conflicts)} build(s)",
                    conflicts=conflicts,
                )

        result = DeletionResult()
        if force and (conflicts or version.is_published):
            result.overridden_conflicts = conflicts
            logger.warning(
                f"Force-deleting version {version_name} ({channel})",
                extra={
                    "event": "version.force_delete",
                    "version": version_name,
                    "channel": channel,
                    "published": version.is_published,
                    "conflicts": conflicts,
                }
            )

        was_published = version.is_published
        prefix = version.storage_key_prefix
        build_count = len(version.builds)

        self.db.delete(version)
        self.db.commit()
        result.deleted.append(f"{version_name} ({channel}) with {build_count} build(s)")

        logger.info(
            f"Deleted version {version_name} ({channel})",
            extra={"event": "version.deleted", "version": version_name, "channel": channel, "builds": build_count}
        )

        if self.store is not None:
            try:
                self.store.delete_prefix(prefix)
            except ServiceError as e:
                result.warnings.append(f"Storage cleanup of {prefix} failed: {e}")
                logger.warning(
                    f"Storage cleanup failed for {prefix}",
                    extra={"event": "version.storage_cleanup_failed", "prefix": prefix, "error": str(e)}
                )

        if was_published:
            try:
                self.manifests.publish_latest_manifest(channel)
            except (ServiceError, RuntimeError) as e:
                result.warnings.append(
                    f"Version deleted but channel manifest regeneration failed: {e}. "
                    f"Run: {regeneration_hint('<version>', channel)}"
                )
                logger.warning(
                    f"Channel manifest regeneration failed for {channel}",
                    extra={"event": "manifest.regeneration_failed", "channel": channel, "error": str(e)}
                )

        return result
