"""
Publish flow and fallback assignment.

Before a version is published, every required installer slot should be
covered. Slots the version does not ship can be filled with a fallback: a
new build row owned by the version being published that points at the
payload (URL, size, checksums) of a build from another version in the same
channel, tagged ``platform_metadata.fallback_from = <source version>``.
Each fallback is an independent row, so every version manifest stays
self-contained and deleting one version's copy never touches another's.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from publisher.src.models import AppVersion, Build
from publisher.src.models.types import DEFAULT_CHANNEL
from publisher.src.services.build_service import BuildService
from publisher.src.services.exceptions import ConflictError, ServiceError, ValidationError
from publisher.src.services.manifest_service import ManifestService
from publisher.src.services.platforms import REQUIRED_INSTALLER_SLOTS, validate_channel
from publisher.src.services.source_selector import resolve_distribution
from publisher.src.services.version_service import regeneration_hint
from publisher.src.storage.base import BlobStore
from publisher.src.utils.logging_config import get_logger


logger = get_logger("services")

MAX_FALLBACK_CANDIDATES = 10

Slot = Tuple[str, str, str]


def slot_key(slot: Slot) -> str:
    """"macos/arm64/installer" form used in selections and reports."""
    return "/".join(slot)


def parse_slot_key(value: str) -> Slot:
    parts = value.split("/")
    if len(parts) != 3 or not all(parts):
        raise ValidationError(
            f"Invalid slot '{value}'. Expected os/arch/type",
            field="selections",
            value=value,
        )
    return parts[0], parts[1], parts[2]


@dataclass
class FallbackCandidate:
    """A build from another version that can fill a missing slot."""
    build: Build
    version_name: str

    @property
    def label(self) -> str:
        return f"{self.version_name} - {self.build.package_name}"


@dataclass
class SlotPlan:
    slot: Slot
    candidates: List[FallbackCandidate] = field(default_factory=list)


@dataclass
class PublishPlan:
    """Missing required slots of a version and their fallback candidates."""
    version: AppVersion
    missing: List[SlotPlan] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing


@dataclass
class PublishResult:
    version: AppVersion
    assigned: List[Build] = field(default_factory=list)
    skipped: List[Slot] = field(default_factory=list)
    manifest_paths: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class PublishService:
    """
    Service for the publish flow.

    Usage:
        >>> service = PublishService(db_session, blob_store)
        >>> plan = service.plan("1.4.0", "stable")
        >>> result = service.publish("1.4.0", "stable", auto_fallback=True)
    """

    def __init__(
        self,
        db: Session,
        store: Optional[BlobStore] = None,
        manifests: Optional[ManifestService] = None,
    ):
        self.db = db
        self.store = store
        self.manifests = manifests or ManifestService(db, store)
        self.builds = BuildService(db, store, settings=self.manifests.settings, manifests=self.manifests)

    def missing_slots(self, version: AppVersion) -> List[Slot]:
        """Required installer slots the version has no build for."""
        present = {
            (os_name, arch, build_type)
            for os_name, arch, build_type in (
                self.db.query(Build.os, Build.arch, Build.type)
                .filter(Build.version_id == version.id)
                .all()
            )
        }
        return [slot for slot in REQUIRED_INSTALLER_SLOTS if slot not in present]

    def fallback_candidates(
        self,
        version: AppVersion,
        slot: Slot,
        limit: int = MAX_FALLBACK_CANDIDATES,
    ) -> List[FallbackCandidate]:
        """Builds for *slot* from other versions of the channel, newest created first."""
        os_name, arch, build_type = slot
        rows = (
            self.db.query(Build, AppVersion.version_name)
            .join(AppVersion, Build.version_id == AppVersion.id)
            .filter(AppVersion.release_channel == version.release_channel)
            .filter(AppVersion.id != version.id)
            .filter(Build.os == os_name, Build.arch == arch, Build.type == build_type)
            .order_by(Build.created_at.desc(), Build.id.desc())
            .limit(limit)
            .all()
        )
        return [FallbackCandidate(build=build, version_name=name) for build, name in rows]

    def plan(self, version_name: str, channel: str = DEFAULT_CHANNEL) -> PublishPlan:
        """Compute the missing slots and candidates for a version."""
        validate_channel(channel)
        version = self.manifests.get_version(version_name, channel)
        return PublishPlan(
            version=version,
            missing=[
                SlotPlan(slot=slot, candidates=self.fallback_candidates(version, slot))
                for slot in self.missing_slots(version)
            ],
        )

    def assign_fallback(self, version: AppVersion, source: Build) -> Build:
        """
        Insert a fallback copy of *source* owned by *version*.

        Raises:
            ValidationError: If source is not a usable fallback for version
            ConflictError: If version already has a build with this identity
        """
        source_version = source.version
        if source_version is None or source_version.id == version.id:
            raise ValidationError("A version cannot fall back to its own build", field="selections")
        if source_version.release_channel != version.release_channel:
            raise ValidationError(
                f"Fallback source {source_version.version_name} is in channel "
                f"{source_version.release_channel}, not {version.release_channel}",
                field="selections",
            )

        metadata = {"fallback_from": source_version.version_name}
        if source.platform_metadata.get("external"):
            metadata["external"] = True

        fallback = Build(
            version_id=version.id,
            os=source.os,
            arch=source.arch,
            type=source.type,
            distribution=resolve_distribution(source.distribution, source.platform_metadata),
            variant=source.variant,
            package_name=source.package_name,
            url=source.url,
            size=source.size,
            sha256_checksum=source.sha256_checksum,
            sha512_checksum=source.sha512_checksum,
            platform_metadata_json=metadata,
        )
        self.db.add(fallback)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(
                f"Version {version.version_name} already has a "
                f"{source.os}/{source.arch}/{source.type} build with this distribution and variant"
            )
        self.db.refresh(fallback)

        logger.info(
            f"Assigned fallback {source.os}/{source.arch}/{source.type} from "
            f"{source_version.version_name} to {version.version_name}",
            extra={
                "event": "publish.fallback_assigned",
                "version": version.version_name,
                "channel": version.release_channel,
                "fallback_from": source_version.version_name,
                "slot": slot_key((source.os, source.arch, source.type)),
            }
        )
        return fallback

    def publish(
        self,
        version_name: str,
        channel: str = DEFAULT_CHANNEL,
        selections: Optional[Dict[str, Optional[str]]] = None,
        auto_fallback: bool = False,
    ) -> PublishResult:
        """
        Fill missing slots, mark the version published and upload manifests.

        Args:
            version_name: Version to publish
            channel: Its channel
            selections: "os/arch/type" -> source build GUID (None = skip)
            auto_fallback: Use the newest candidate for slots without a selection

        Raises:
            ValidationError: On invalid channel or selections
            NotFoundError: If the version or a selected build does not exist
            ConflictError: If a fallback cannot be inserted
        """
        selections = selections or {}
        validate_channel(channel)
        parsed_selections = {parse_slot_key(key): guid for key, guid in selections.items()}

        plan = self.plan(version_name, channel)
        version = plan.version
        missing = {slot_plan.slot: slot_plan for slot_plan in plan.missing}

        for slot in parsed_selections:
            if slot not in missing:
                raise ValidationError(
                    f"Slot {slot_key(slot)} is not missing from {version_name}",
                    field="selections",
                    value=slot_key(slot),
                )

        sources: Dict[Slot, Build] = {}
        for slot, slot_plan in missing.items():
            if slot in parsed_selections:
                guid = parsed_selections[slot]
                if guid is None:
                    continue
                source = self.builds.get_build(guid)
                if (source.os, source.arch, source.type) != slot:
                    raise ValidationError(
                        f"Build {guid} is not a {slot_key(slot)} build",
                        field="selections",
                        value=guid,
                    )
                sources[slot] = source
            elif auto_fallback and slot_plan.candidates:
                sources[slot] = slot_plan.candidates[0].build

        result = PublishResult(version=version)
        for slot in missing:
            if slot in sources:
                result.assigned.append(self.assign_fallback(version, sources[slot]))
            else:
                result.skipped.append(slot)

        version.is_published = True
        self.db.commit()
        self.db.refresh(version)

        logger.info(
            f"Published version {version_name} ({channel})",
            extra={
                "event": "publish.completed",
                "version": version_name,
                "channel": channel,
                "fallbacks": len(result.assigned),
                "skipped": [slot_key(slot) for slot in result.skipped],
            }
        )

        try:
            result.manifest_paths.append(self.manifests.publish_version_manifest(version_name, channel))
            result.manifest_paths.append(self.manifests.publish_latest_manifest(channel))
        except (ServiceError, RuntimeError) as e:
            result.warnings.append(
                f"Version published but manifest upload failed: {e}. "
                f"Run: {regeneration_hint(version_name, channel)}"
            )
            logger.warning(
                f"Manifest upload failed after publishing {version_name}",
                extra={"event": "manifest.regeneration_failed", "version": version_name, "channel": channel, "error": str(e)}
            )
        return result
