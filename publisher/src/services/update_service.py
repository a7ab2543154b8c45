"""
Update eligibility evaluation.

Answers "should this installed client update, and to what?" directly from
the database, independently of any published manifest. Published versions
of the requested channel are walked newest-semver-first and the first one
passing every gate is the target:

1. strictly greater than the installed version
2. not a pre-release, unless pre-releases are allowed
3. inside its rollout window
4. the device falls in its rollout percentage bucket
5. it has a patch or installer build for the client's os/arch
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from publisher.src.models import AppVersion, Build
from publisher.src.models.types import DEFAULT_CHANNEL
from publisher.src.services.exceptions import ValidationError
from publisher.src.services.platforms import assert_valid_platform, validate_channel
from publisher.src.services.policy import UpdatePolicy, resolve_policy
from publisher.src.services.source_selector import BuildSource, select_preferred_build
from publisher.src.utils.logging_config import get_logger
from publisher.src.utils.versioning import (
    is_device_in_rollout_bucket, is_prerelease, is_version_greater, is_version_less,
    is_within_rollout_window, normalize_semver, sort_versions_desc,
)


logger = get_logger("services")


@dataclass
class VersionCandidate:
    """A published version with its resolved policy and builds."""
    version_name: str
    is_mandatory: bool
    policy: UpdatePolicy
    sources: List[BuildSource] = field(default_factory=list)
    release_notes: Optional[str] = None


@dataclass
class UpdateResult:
    """
    Outcome of an update check.

    ``update_available`` is False when no version qualifies; every other
    target field is then None.
    """
    installed_version: str
    channel: str
    update_available: bool = False
    target_version: Optional[str] = None
    mandatory: bool = False
    policy: Optional[UpdatePolicy] = None
    build: Optional[BuildSource] = None
    release_notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "updateAvailable": self.update_available,
            "installedVersion": self.installed_version,
            "channel": self.channel,
        }
        if not self.update_available:
            return data
        data.update({
            "version": self.target_version,
            "mandatory": self.mandatory,
            "updatePolicy": self.policy.to_dict() if self.policy else None,
            "releaseNotes": self.release_notes,
            "build": self.build.to_manifest_entry() if self.build else None,
        })
        return data


def _has_compatible_build(sources: Sequence[BuildSource], os: str, arch: str) -> bool:
    return any(
        source.os == os and source.arch == arch and source.type in ("installer", "patch")
        for source in sources
    )


def evaluate_update(
    candidates: Sequence[VersionCandidate],
    installed_version: str,
    os: str,
    arch: str,
    channel: str = DEFAULT_CHANNEL,
    device_id: Optional[str] = None,
    allow_prerelease: bool = False,
    now: Optional[datetime] = None,
) -> UpdateResult:
    """
    Pick the update target among published versions.

    Pure function over already-loaded candidates; inputs are assumed
    validated (see UpdateService.check_for_update).

    Args:
        candidates: Published versions of the channel, in any order
        installed_version: Version currently installed on the device
        os: Client operating system
        arch: Client architecture
        channel: Requested channel (echoed in the result)
        device_id: Stable device identifier for percentage rollouts
        allow_prerelease: Whether pre-release versions may be offered
        now: Evaluation instant (defaults to the current UTC time)

    Returns:
        UpdateResult
    """
    moment = now or datetime.now(timezone.utc)

    for candidate in sort_versions_desc(candidates, lambda item: item.version_name):
        if not is_version_greater(candidate.version_name, installed_version):
            continue
        if not allow_prerelease and is_prerelease(candidate.version_name):
            continue
        if not is_within_rollout_window(candidate.policy, moment):
            continue
        if not is_device_in_rollout_bucket(device_id, candidate.policy.rollout_percentage):
            continue
        if not _has_compatible_build(candidate.sources, os, arch):
            continue

        min_supported = candidate.policy.min_supported_version
        blocked_by_min_version = bool(min_supported) and is_version_less(installed_version, min_supported)

        return UpdateResult(
            installed_version=installed_version,
            channel=channel,
            update_available=True,
            target_version=candidate.version_name,
            mandatory=bool(candidate.is_mandatory or blocked_by_min_version),
            policy=candidate.policy,
            build=select_preferred_build(candidate.sources, os, arch),
            release_notes=candidate.release_notes,
        )

    return UpdateResult(installed_version=installed_version, channel=channel)


class UpdateService:
    """
    Service for update eligibility checks.

    Usage:
        >>> service = UpdateService(db_session)
        >>> result = service.check_for_update("1.0.0", "macos", "arm64", channel="beta")
        >>> result.update_available
    """

    def __init__(self, db: Session):
        self.db = db

    def load_candidates(self, channel: str) -> List[VersionCandidate]:
        """Load the published versions of a channel with their builds."""
        versions = (
            self.db.query(AppVersion)
            .filter(AppVersion.release_channel == channel)
            .filter(AppVersion.is_published == True)  # noqa: E712
            .order_by(AppVersion.created_at.desc())
            .all()
        )
        if not versions:
            return []

        sources: Dict[int, List[BuildSource]] = {version.id: [] for version in versions}
        builds = (
            self.db.query(Build)
            .filter(Build.version_id.in_(list(sources)))
            .order_by(Build.created_at.desc())
            .all()
        )
        for build in builds:
            sources[build.version_id].append(BuildSource.from_build(build))

        return [
            VersionCandidate(
                version_name=version.version_name,
                is_mandatory=bool(version.is_mandatory),
                policy=resolve_policy(version),
                sources=sources[version.id],
                release_notes=version.release_notes,
            )
            for version in versions
        ]

    def check_for_update(
        self,
        installed_version: str,
        os: str,
        arch: str,
        channel: str = DEFAULT_CHANNEL,
        device_id: Optional[str] = None,
        allow_prerelease: bool = False,
        now: Optional[datetime] = None,
    ) -> UpdateResult:
        """
        Check whether an update is available for an installed client.

        Raises:
            ValidationError: If installed_version is not semver, or os/arch/channel
                are not supported (checked before any query)
        """
        if normalize_semver(installed_version) is None:
            raise ValidationError(
                f"Invalid installed version: '{installed_version}'",
                field="installed_version",
                value=installed_version,
            )
        assert_valid_platform(os, arch)
        validate_channel(channel)

        result = evaluate_update(
            self.load_candidates(channel),
            installed_version,
            os,
            arch,
            channel=channel,
            device_id=device_id,
            allow_prerelease=allow_prerelease,
            now=now,
        )

        logger.info(
            "Update check evaluated",
            extra={
                "event": "update.check",
                "installed_version": installed_version,
                "os": os,
                "arch": arch,
                "channel": channel,
                "update_available": result.update_available,
                "target_version": result.target_version,
            }
        )
        return result
