"""
Manifest builder service.

Produces the two manifest documents client updaters poll:

- Version manifest (``{storage_key_prefix}/manifest.json``): one version
  and the builds it owns.
- Channel manifest (``channels/{channel}/manifest.json``): the newest
  published build for every (os, arch, type, distribution) across all
  published versions of a channel, in semantic version order.

Manifests are derived artifacts. They are rebuilt from the database on
every publish, build mutation on a published version, or explicit request,
and never edited in place. Output is deterministic: platforms, archs and
types follow the order of the supported vocabularies, and sources within a
slot follow the manifest ranking of the source selector.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from publisher.src.config.settings import AppSettings, get_settings
from publisher.src.models import AppVersion, Build
from publisher.src.models.types import SUPPORTED_ARCH, SUPPORTED_BUILD_TYPES, SUPPORTED_OS
from publisher.src.services.exceptions import NotFoundError
from publisher.src.services.platforms import validate_channel
from publisher.src.services.policy import resolve_policy
from publisher.src.services.source_selector import (
    BuildSource, format_timestamp, group_by_slot, select_primary,
)
from publisher.src.storage.base import BlobStore
from publisher.src.utils.logging_config import get_logger
from publisher.src.utils.versioning import sort_versions_desc


logger = get_logger("services")

MANIFEST_CONTENT_TYPE = "application/json"


@dataclass
class ManifestDocument:
    """A built manifest and the blob path it is published at."""
    manifest: Dict[str, Any]
    path: str

    def serialize(self) -> bytes:
        return serialize_manifest(self.manifest)


def serialize_manifest(manifest: Dict[str, Any]) -> bytes:
    """UTF-8 JSON with two-space indentation."""
    return json.dumps(manifest, indent=2, ensure_ascii=False).encode("utf-8")


def channel_manifest_path(channel: str) -> str:
    return f"channels/{channel}/manifest.json"


def build_platforms(sources: Iterable[BuildSource]) -> List[Dict[str, Any]]:
    """
    Assemble the platforms tree from a flat list of sources.

    Returns:
        [{"os": ..., "builds": {arch: {type: leaf}}}] where each leaf is the
        primary source, with a "sources" list when the slot has alternatives
    """
    groups = group_by_slot(sources)
    platforms = []
    for os_name in SUPPORTED_OS:
        builds: Dict[str, Dict[str, Any]] = {}
        for arch in SUPPORTED_ARCH:
            types = {}
            for build_type in SUPPORTED_BUILD_TYPES:
                slot_sources = groups.get((os_name, arch, build_type))
                if slot_sources:
                    types[build_type] = select_primary(slot_sources).to_manifest_entry()
            if types:
                builds[arch] = types
        if builds:
            platforms.append({"os": os_name, "builds": builds})
    return platforms


def _newest_first(sources: Iterable[BuildSource]) -> List[BuildSource]:
    def key(source: BuildSource):
        created = source.created_at.isoformat() if source.created_at else ""
        return (created, source.build_id or 0)
    return sorted(sources, key=key, reverse=True)


def select_latest_sources(
    versions: Sequence[Tuple[str, Sequence[BuildSource]]],
) -> List[BuildSource]:
    """
    Pick the channel-latest source per (os, arch, type, distribution).

    Versions are walked in descending semantic version order; the first
    version that has a build for a key fills it and older versions never
    replace it. Within one version the newest build wins.

    Args:
        versions: (version_name, sources) pairs, in any order

    Returns:
        Selected sources, each tagged with its source_version
    """
    selected: Dict[Tuple[str, str, str, str], BuildSource] = {}
    for version_name, sources in sort_versions_desc(versions, lambda item: item[0]):
        for source in _newest_first(sources):
            key = (source.os, source.arch, source.type, source.distribution)
            if key not in selected:
                source.source_version = version_name
                selected[key] = source
    return list(selected.values())


def manifest_header(version: AppVersion, app_name: str) -> Dict[str, Any]:
    """Top-level manifest fields taken from one version row."""
    return {
        "name": app_name,
        "manifestVersion": version.manifest_version,
        "version": version.version_name,
        "channel": version.release_channel,
        "releaseDate": format_timestamp(version.release_date),
        "isMandatory": bool(version.is_mandatory),
        "releaseNotes": version.release_notes,
        "changelog": version.changelog,
        "updatePolicy": resolve_policy(version).to_dict(),
    }


class ManifestService:
    """
    Service for building and publishing manifests.

    Usage:
        >>> service = ManifestService(db_session, blob_store)
        >>> document = service.build_version_manifest("1.4.0", "stable")
        >>> service.publish_latest_manifest("stable")
    """

    def __init__(
        self,
        db: Session,
        store: Optional[BlobStore] = None,
        settings: Optional[AppSettings] = None,
    ):
        self.db = db
        self.store = store
        self.settings = settings or get_settings()

    def get_version(self, version_name: str, channel: str) -> AppVersion:
        """
        Get a version by (name, channel).

        Raises:
            NotFoundError: If the version does not exist in the channel
        """
        version = (
            self.db.query(AppVersion)
            .filter(AppVersion.version_name == version_name)
            .filter(AppVersion.release_channel == channel)
            .first()
        )
        if not version:
            raise NotFoundError("Version", f"{version_name} ({channel})")
        return version

    def _version_sources(self, version: AppVersion) -> List[BuildSource]:
        builds = (
            self.db.query(Build)
            .filter(Build.version_id == version.id)
            .order_by(Build.created_at.desc(), Build.id.desc())
            .all()
        )
        return [BuildSource.from_build(build) for build in builds]

    def build_version_manifest(self, version_name: str, channel: str) -> ManifestDocument:
        """
        Build the manifest of one version from its own builds.

        Raises:
            ValidationError: If channel is not supported
            NotFoundError: If the version does not exist
        """
        validate_channel(channel)
        version = self.get_version(version_name, channel)

        manifest = manifest_header(version, self.settings.app_name)
        manifest["platforms"] = build_platforms(self._version_sources(version))
        return ManifestDocument(manifest=manifest, path=version.manifest_path)

    def build_latest_manifest(self, channel: str) -> ManifestDocument:
        """
        Build the channel manifest across all published versions.

        Raises:
            ValidationError: If channel is not supported
            NotFoundError: If the channel has no published version
        """
        validate_channel(channel)
        versions = (
            self.db.query(AppVersion)
            .filter(AppVersion.release_channel == channel)
            .filter(AppVersion.is_published == True)  # noqa: E712
            .order_by(AppVersion.created_at.desc())
            .all()
        )
        if not versions:
            raise NotFoundError("Published versions for channel", channel)

        builds = (
            self.db.query(Build)
            .filter(Build.version_id.in_([version.id for version in versions]))
            .all()
        )
        sources_by_version: Dict[int, List[BuildSource]] = {version.id: [] for version in versions}
        for build in builds:
            sources_by_version[build.version_id].append(BuildSource.from_build(build))

        latest = sort_versions_desc(versions, lambda version: version.version_name)[0]
        selected = select_latest_sources(
            [(version.version_name, sources_by_version[version.id]) for version in versions]
        )

        manifest = manifest_header(latest, self.settings.app_name)
        manifest["platforms"] = build_platforms(selected)
        return ManifestDocument(manifest=manifest, path=channel_manifest_path(channel))

    def _upload(self, document: ManifestDocument) -> str:
        if self.store is None:
            raise RuntimeError("ManifestService needs a blob store to publish manifests")
        self.store.upload(
            document.path,
            document.serialize(),
            content_type=MANIFEST_CONTENT_TYPE,
            overwrite=True,
        )
        return document.path

    def publish_version_manifest(self, version_name: str, channel: str) -> str:
        """Build and upload a version manifest. Returns its blob path."""
        path = self._upload(self.build_version_manifest(version_name, channel))
        logger.info(
            f"Published version manifest {path}",
            extra={"event": "manifest.version_published", "version": version_name, "channel": channel, "path": path}
        )
        return path

    def publish_latest_manifest(self, channel: str) -> str:
        """Build and upload the channel manifest. Returns its blob path."""
        path = self._upload(self.build_latest_manifest(channel))
        logger.info(
            f"Published channel manifest {path}",
            extra={"event": "manifest.channel_published", "channel": channel, "path": path}
        )
        return path

    def regenerate(self, version_name: str, channel: str) -> List[str]:
        """
        Regenerate the manifests affected by a version.

        The version manifest is always rebuilt; the channel manifest only
        when the version is published.

        Returns:
            Blob paths written
        """
        version = self.get_version(version_name, channel)
        paths = [self.publish_version_manifest(version_name, channel)]
        if version.is_published:
            paths.append(self.publish_latest_manifest(channel))
        return paths
