"""
Build registry service.

Registers builds for a version, either by uploading a package file
(direct distribution, checksums computed here) or by recording an
external URL (store listings). Writes are upserts on the build identity
(version, os, arch, type, distribution, variant).

Deleting builds checks for fallback copies in other versions that borrow
the payload, removes the blobs this build owns and regenerates manifests
of published versions. Post-commit failures are returned as warnings.
"""

import hashlib
import mimetypes
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from publisher.src.config.settings import AppSettings, get_settings
from publisher.src.models import AppVersion, Build
from publisher.src.models.types import DEFAULT_CHANNEL, DEFAULT_VARIANT
from publisher.src.services.exceptions import (
    ConflictError, NotFoundError, ServiceError, ValidationError,
)
from publisher.src.services.manifest_service import ManifestService
from publisher.src.services.platforms import (
    assert_valid_platform, validate_channel, validate_distribution, validate_variant,
)
from publisher.src.services.source_selector import resolve_distribution
from publisher.src.services.version_service import (
    DeletionResult, describe_build, find_fallback_references, regeneration_hint,
)
from publisher.src.storage.base import BlobStore
from publisher.src.utils.logging_config import get_logger


logger = get_logger("services")

CHUNK_SIZE = 1024 * 1024

PACKAGE_EXTENSIONS = ("tar.gz", "zip", "dmg", "msi", "AppImage", "deb", "rpm", "apk")
PATCH_EXTENSIONS = ("tar.gz", "zip")

CONTENT_TYPES = {
    ".msi": "application/x-msi",
    ".appimage": "application/x-appimage",
    ".dmg": "application/x-apple-diskimage",
    ".apk": "application/vnd.android.package-archive",
    ".tar.gz": "application/gzip",
    ".zip": "application/zip",
    ".rpm": "application/octet-stream",
    ".deb": "application/octet-stream",
}


@dataclass
class BuildWriteResult:
    """A created or updated build plus degraded follow-up steps."""
    build: Build
    created: bool
    warnings: List[str] = field(default_factory=list)


def parse_package_filename(filename: str, prefix: str) -> Optional[Tuple[str, str, str]]:
    """
    Parse ``{prefix}-{version}-{arch}-{os}.{ext}``.

    Archives (tar.gz, zip) are patches; everything else is an installer.

    Returns:
        (os, arch, type) or None when the name does not match
    """
    extensions = "|".join(re.escape(ext) for ext in PACKAGE_EXTENSIONS)
    pattern = rf"^{re.escape(prefix)}-[0-9A-Za-z.+-]+-([A-Za-z0-9_]+)-([A-Za-z0-9_]+)\.({extensions})$"
    match = re.match(pattern, filename)
    if not match:
        return None
    arch, os_name, ext = match.groups()
    build_type = "patch" if ext in PATCH_EXTENSIONS else "installer"
    return os_name, arch, build_type


def content_type_for(filename: str) -> str:
    lower = filename.lower()
    for suffix, content_type in CONTENT_TYPES.items():
        if lower.endswith(suffix):
            return content_type
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def build_storage_path(prefix: str, os: str, arch: str, variant: str, filename: str) -> str:
    """
    Blob key of an uploaded package.

    Non-default variants get their own directory so two variants
    uploaded from identically named files never share a key.
    """
    if variant and variant != DEFAULT_VARIANT:
        return f"{prefix}/{os}/{arch}/{variant}/{filename}"
    return f"{prefix}/{os}/{arch}/{filename}"


def owned_blob_path(build: Build) -> Optional[str]:
    """Blob key the build owns, or None for fallback copies and store listings."""
    if not build.storage_path or build.fallback_from:
        return None
    if resolve_distribution(build.distribution, build.platform_metadata) == "store":
        return None
    return build.storage_path


def compute_checksums(path: Path) -> Tuple[str, str, int]:
    """Stream a file once and return (sha256, sha512, size)."""
    sha256 = hashlib.sha256()
    sha512 = hashlib.sha512()
    size = 0
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            sha256.update(chunk)
            sha512.update(chunk)
            size += len(chunk)
    return sha256.hexdigest(), sha512.hexdigest(), size


class BuildService:
    """
    Service for registering, listing and deleting builds.

    Usage:
        >>> service = BuildService(db_session, blob_store)
        >>> result = service.upload_build("1.4.0", "dist/app-1.4.0-arm64-macos.dmg")
        >>> service.list_builds("1.4.0")
    """

    def __init__(
        self,
        db: Session,
        store: Optional[BlobStore] = None,
        settings: Optional[AppSettings] = None,
        manifests: Optional[ManifestService] = None,
    ):
        self.db = db
        self.store = store
        self.settings = settings or get_settings()
        self.manifests = manifests or ManifestService(db, store, self.settings)

    def _get_version(self, version_name: str, channel: str) -> AppVersion:
        validate_channel(channel)
        return self.manifests.get_version(version_name, channel)

    def get_build(self, guid: str) -> Build:
        """
        Get a build by GUID.

        Raises:
            ValidationError: If the GUID is malformed
            NotFoundError: If no build has this GUID
        """
        try:
            uuid_value = Build.parse_guid(guid)
        except ValueError as e:
            raise ValidationError(str(e), field="build", value=guid)
        build = self.db.query(Build).filter(Build.uuid == uuid_value).first()
        if not build:
            raise NotFoundError("Build", guid)
        return build

    def _upsert(
        self,
        version: AppVersion,
        identity: Dict[str, str],
        fields: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> Tuple[Build, bool, List[str]]:
        build = (
            self.db.query(Build)
            .filter(Build.version_id == version.id)
            .filter_by(**identity)
            .first()
        )
        created = build is None
        replaced_path = None
        if created:
            build = Build(version_id=version.id, platform_metadata_json=metadata, **identity, **fields)
            self.db.add(build)
        else:
            replaced_path = owned_blob_path(build)
            for name, value in fields.items():
                setattr(build, name, value)
            # metadata describes the current payload only
            build.platform_metadata_json = dict(metadata)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(
                f"Build {identity['os']}/{identity['arch']}/{identity['type']} was modified concurrently"
            )
        self.db.refresh(build)

        warnings = []
        if replaced_path and replaced_path != build.storage_path:
            warnings.extend(self._remove_blobs([replaced_path], "build update"))
        return build, created, warnings

    def _remove_blobs(self, paths: List[str], action: str) -> List[str]:
        if not paths or self.store is None:
            return []
        try:
            self.store.remove(paths)
        except ServiceError as e:
            logger.warning(
                f"Storage cleanup failed after {action}",
                extra={"event": "build.storage_cleanup_failed", "paths": paths, "error": str(e)}
            )
            return [f"Storage cleanup failed: {e}"]
        return []

    def _refresh_manifests(self, version: AppVersion, action: str) -> List[str]:
        if not version.is_published or self.store is None:
            return []
        try:
            self.manifests.regenerate(version.version_name, version.release_channel)
        except (ServiceError, RuntimeError) as e:
            logger.warning(
                f"Manifest regeneration failed after build {action}",
                extra={
                    "event": "manifest.regeneration_failed",
                    "version": version.version_name,
                    "channel": version.release_channel,
                    "error": str(e),
                }
            )
            return [
                f"Build {action} succeeded but manifest regeneration failed: {e}. "
                f"Run: {regeneration_hint(version.version_name, version.release_channel)}"
            ]
        return []

    def upload_build(
        self,
        version_name: str,
        file_path: str,
        channel: str = DEFAULT_CHANNEL,
        os: Optional[str] = None,
        arch: Optional[str] = None,
        build_type: Optional[str] = None,
        distribution: str = "direct",
        variant: Optional[str] = None,
    ) -> BuildWriteResult:
        """
        Upload a package file and register it as a build.

        os/arch/type are parsed from the file name unless given explicitly.

        Raises:
            ValidationError: On unsupported values or an unparseable file name
            NotFoundError: If the version or the file does not exist
            StorageError: If the upload fails
        """
        validate_distribution(distribution)
        variant = validate_variant(variant)
        if self.store is None:
            raise RuntimeError("BuildService needs a blob store to upload builds")

        path = Path(file_path)
        if not path.is_file():
            raise NotFoundError("File", file_path)

        version = self._get_version(version_name, channel)

        filename = path.name
        parsed = parse_package_filename(filename, self.settings.package_prefix)
        os = os or (parsed[0] if parsed else None)
        arch = arch or (parsed[1] if parsed else None)
        build_type = build_type or (parsed[2] if parsed else None)
        if not os or not arch or not build_type:
            raise ValidationError(
                "Could not determine os/arch/type from filename; pass them explicitly. "
                f"Expected: {self.settings.package_prefix}-{{version}}-{{arch}}-{{os}}.{{ext}}",
                field="filename",
                value=filename,
            )
        assert_valid_platform(os, arch, build_type)

        sha256, sha512, size = compute_checksums(path)
        storage_path = build_storage_path(version.storage_key_prefix, os, arch, variant, filename)
        self.store.upload_file(
            storage_path,
            path,
            content_type=content_type_for(filename),
            overwrite=True,
        )

        build, created, warnings = self._upsert(
            version,
            identity={"os": os, "arch": arch, "type": build_type, "distribution": distribution, "variant": variant},
            fields={
                "package_name": filename,
                "url": self.store.public_url(storage_path),
                "size": size,
                "sha256_checksum": sha256,
                "sha512_checksum": sha512,
            },
            metadata={"storage_path": storage_path},
        )

        logger.info(
            f"Uploaded build {filename} for {version_name} ({channel})",
            extra={
                "event": "build.uploaded",
                "version": version_name,
                "channel": channel,
                "os": os,
                "arch": arch,
                "type": build_type,
                "distribution": distribution,
                "variant": variant,
                "size": size,
                "was_created": created,
            }
        )
        warnings.extend(self._refresh_manifests(version, "upload"))
        return BuildWriteResult(build=build, created=created, warnings=warnings)

    def create_build(
        self,
        version_name: str,
        os: str,
        arch: str,
        build_type: str,
        url: str,
        channel: str = DEFAULT_CHANNEL,
        size: int = 0,
        sha256: Optional[str] = None,
        sha512: Optional[str] = None,
        package_name: Optional[str] = None,
        distribution: str = "store",
        variant: Optional[str] = None,
    ) -> BuildWriteResult:
        """
        Register a build hosted elsewhere (store listing or external URL).

        Raises:
            ValidationError: On unsupported values, a missing URL or bad checksums
            NotFoundError: If the version does not exist
        """
        validate_distribution(distribution)
        variant = validate_variant(variant)
        assert_valid_platform(os, arch, build_type)
        if not url or not url.strip():
            raise ValidationError("Build URL is required", field="url")
        if size is not None and size < 0:
            raise ValidationError("Size must not be negative", field="size", value=size)

        version = self._get_version(version_name, channel)

        try:
            build, created, warnings = self._upsert(
                version,
                identity={"os": os, "arch": arch, "type": build_type, "distribution": distribution, "variant": variant},
                fields={
                    "package_name": package_name or f"{os}-{arch}-{build_type}-external",
                    "url": url.strip(),
                    "size": size or 0,
                    "sha256_checksum": sha256 or None,
                    "sha512_checksum": sha512 or None,
                },
                metadata={"external": distribution == "store", "source": "manual"},
            )
        except ValueError as e:
            self.db.rollback()
            raise ValidationError(str(e))

        logger.info(
            f"Registered build {os}/{arch}/{build_type} for {version_name} ({channel})",
            extra={
                "event": "build.created",
                "version": version_name,
                "channel": channel,
                "os": os,
                "arch": arch,
                "type": build_type,
                "distribution": distribution,
                "variant": variant,
                "was_created": created,
            }
        )
        warnings.extend(self._refresh_manifests(version, "registration"))
        return BuildWriteResult(build=build, created=created, warnings=warnings)

    def list_builds(self, version_name: str, channel: str = DEFAULT_CHANNEL) -> List[Build]:
        """List the builds a version owns."""
        version = self._get_version(version_name, channel)
        return (
            self.db.query(Build)
            .filter(Build.version_id == version.id)
            .order_by(Build.os, Build.distribution, Build.arch, Build.type, Build.variant)
            .all()
        )

    def delete_build(
        self,
        version_name: str,
        os: str,
        arch: str,
        build_type: str,
        channel: str = DEFAULT_CHANNEL,
        distribution: Optional[str] = None,
        variant: Optional[str] = None,
        force: bool = False,
    ) -> DeletionResult:
        """
        Delete the builds of a slot, optionally narrowed by distribution/variant.

        Raises:
            ValidationError: On unsupported values
            NotFoundError: If the version or a matching build does not exist
            ConflictError: If other versions use this slot as a fallback and
                force is False
        """
        assert_valid_platform(os, arch, build_type)
        if distribution is not None:
            validate_distribution(distribution)
        if variant is not None:
            variant = validate_variant(variant)

        version = self._get_version(version_name, channel)

        query = (
            self.db.query(Build)
            .filter(Build.version_id == version.id)
            .filter(Build.os == os, Build.arch == arch, Build.type == build_type)
        )
        if distribution is not None:
            query = query.filter(Build.distribution == distribution)
        if variant is not None:
            query = query.filter(Build.variant == variant)
        builds = query.order_by(Build.id).all()
        if not builds:
            raise NotFoundError("Build", f"{os}/{arch}/{build_type} in {version_name} ({channel})")

        references = find_fallback_references(self.db, version, slot=(os, arch, build_type))
        conflicts = [describe_build(build) for build in references]
        if conflicts and not force:
            raise ConflictError(
                f"Build {os}/{arch}/{build_type} of {version_name} is used as a fallback "
                f"by {len(conflicts)} build(s) in other versions",
                conflicts=conflicts,
            )

        result = DeletionResult(overridden_conflicts=conflicts if force else [])
        if force and conflicts:
            logger.warning(
                f"Force-deleting build {os}/{arch}/{build_type} of {version_name} ({channel})",
                extra={
                    "event": "build.force_delete",
                    "version": version_name,
                    "channel": channel,
                    "conflicts": conflicts,
                }
            )

        owned_paths = []
        for build in builds:
            result.deleted.append(describe_build(build, version_name))
            path = owned_blob_path(build)
            if path:
                owned_paths.append(path)
            self.db.delete(build)
        self.db.commit()

        logger.info(
            f"Deleted {len(builds)} build(s) from {version_name} ({channel})",
            extra={
                "event": "build.deleted",
                "version": version_name,
                "channel": channel,
                "os": os,
                "arch": arch,
                "type": build_type,
                "count": len(builds),
            }
        )

        result.warnings.extend(self._remove_blobs(owned_paths, "build delete"))

        self.db.refresh(version)
        result.warnings.extend(self._refresh_manifests(version, "delete"))
        return result
