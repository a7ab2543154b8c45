"""
Build source selection.

Two rankings live here:

- Manifest ranking (``sort_manifest_sources`` / ``select_primary``):
  store before direct, then newest first. The head of the list is the
  primary download source of an (os, arch, type) slot; the rest are kept
  as alternatives.
- Update ranking (``select_preferred_build``): patch before installer,
  then store before direct, then newest first.

Distribution is always read through ``resolve_distribution`` so that both
rankings agree on legacy rows without an explicit distribution.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from publisher.src.models.types import DEFAULT_VARIANT, parse_json_object


DISTRIBUTION_STORE = "store"
DISTRIBUTION_DIRECT = "direct"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def resolve_distribution(distribution: Optional[str], platform_metadata: Any) -> str:
    """
    Resolve the effective distribution of a build.

    An explicit "store"/"direct" value wins; otherwise a truthy
    ``platform_metadata.external`` means store and anything else direct.
    """
    if distribution in (DISTRIBUTION_STORE, DISTRIBUTION_DIRECT):
        return distribution
    return DISTRIBUTION_STORE if parse_json_object(platform_metadata).get("external") else DISTRIBUTION_DIRECT


def rank_distribution(distribution: str) -> int:
    return 0 if distribution == DISTRIBUTION_STORE else 1


def rank_build_type(build_type: str) -> int:
    return 0 if build_type == "patch" else 1


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 in UTC with a "Z" suffix; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _timestamp_key(value: Optional[datetime]) -> float:
    if value is None:
        return _EPOCH.timestamp()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


@dataclass
class BuildSource:
    """A build row reduced to what source selection and manifests need."""

    os: str
    arch: str
    type: str
    distribution: str
    package_name: str
    url: str
    size: int = 0
    variant: str = DEFAULT_VARIANT
    sha256: Optional[str] = None
    sha512: Optional[str] = None
    platform_metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    source_version: Optional[str] = None
    build_id: Optional[int] = None

    @classmethod
    def from_build(cls, build: Any, source_version: Optional[str] = None) -> "BuildSource":
        """Create a source from a Build row or an equivalent mapping."""
        if isinstance(build, Mapping):
            row = build
        else:
            row = {
                "id": build.id,
                "os": build.os,
                "arch": build.arch,
                "type": build.type,
                "distribution": build.distribution,
                "variant": build.variant,
                "package_name": build.package_name,
                "url": build.url,
                "size": build.size,
                "sha256_checksum": build.sha256_checksum,
                "sha512_checksum": build.sha512_checksum,
                "platform_metadata": build.platform_metadata_json,
                "created_at": build.created_at,
            }
        metadata = parse_json_object(row.get("platform_metadata"))
        return cls(
            os=row["os"],
            arch=row["arch"],
            type=row["type"],
            distribution=resolve_distribution(row.get("distribution"), metadata),
            variant=row.get("variant") or DEFAULT_VARIANT,
            package_name=row.get("package_name") or "",
            url=row.get("url") or "",
            size=row.get("size") or 0,
            sha256=row.get("sha256_checksum"),
            sha512=row.get("sha512_checksum"),
            platform_metadata=metadata,
            created_at=row.get("created_at"),
            source_version=source_version,
            build_id=row.get("id"),
        )

    @property
    def slot(self) -> Tuple[str, str, str]:
        return (self.os, self.arch, self.type)

    @property
    def fallback_from(self) -> Optional[str]:
        value = self.platform_metadata.get("fallback_from")
        return value if value else None

    @property
    def external(self) -> Any:
        return self.platform_metadata.get("external")

    def to_manifest_entry(self) -> Dict[str, Any]:
        """Manifest leaf for this source; optional keys appear only when set."""
        entry: Dict[str, Any] = {
            "url": self.url,
            "size": self.size,
            "packageName": self.package_name,
            "releaseDate": format_timestamp(self.created_at),
            "type": self.type,
            "distribution": self.distribution,
        }
        if self.source_version:
            entry["version"] = self.source_version
        entry["sha256"] = self.sha256
        entry["sha512"] = self.sha512
        if self.fallback_from:
            entry["fallbackFrom"] = self.fallback_from
        if self.external:
            entry["external"] = self.external
        if self.variant != DEFAULT_VARIANT:
            entry["variant"] = self.variant
        return entry


@dataclass
class SourceSelection:
    primary: BuildSource
    alternatives: List[BuildSource]

    @property
    def ordered(self) -> List[BuildSource]:
        return [self.primary] + self.alternatives

    def to_manifest_entry(self) -> Dict[str, Any]:
        """Primary leaf, plus a "sources" list when there is more than one candidate."""
        entry = self.primary.to_manifest_entry()
        if self.alternatives:
            entry["sources"] = [source.to_manifest_entry() for source in self.ordered]
        return entry


def _manifest_sort_key(source: BuildSource):
    return (
        rank_distribution(source.distribution),
        -_timestamp_key(source.created_at),
        source.variant,
        source.package_name,
        source.url,
    )


def sort_manifest_sources(sources: Iterable[BuildSource]) -> List[BuildSource]:
    """Order sources store-first, then newest first, then by stable labels."""
    return sorted(sources, key=_manifest_sort_key)


def select_primary(sources: Iterable[BuildSource]) -> SourceSelection:
    """
    Pick the primary source of a slot.

    Raises:
        ValueError: If *sources* is empty
    """
    ordered = sort_manifest_sources(sources)
    if not ordered:
        raise ValueError("Cannot select a primary source from an empty list")
    return SourceSelection(primary=ordered[0], alternatives=ordered[1:])


def group_by_slot(sources: Iterable[BuildSource]) -> Dict[Tuple[str, str, str], List[BuildSource]]:
    """Group sources by (os, arch, type), keeping input order inside a group."""
    groups: Dict[Tuple[str, str, str], List[BuildSource]] = {}
    for source in sources:
        groups.setdefault(source.slot, []).append(source)
    return groups


def select_preferred_build(
    sources: Iterable[BuildSource],
    os: str,
    arch: str,
) -> Optional[BuildSource]:
    """
    Pick the build a client on (os, arch) should download.

    Patch is preferred over installer, then store over direct, then the
    newest build. Returns None when no patch/installer build matches.
    """
    candidates = [
        source for source in sources
        if source.os == os and source.arch == arch and source.type in ("patch", "installer")
    ]
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda source: (
            rank_build_type(source.type),
            rank_distribution(source.distribution),
            -_timestamp_key(source.created_at),
            source.variant,
            source.package_name,
        ),
    )
