"""
Update policy resolution.

A version's update policy has two homes: the relational columns on the
``versions`` row and the ``updatePolicy`` object inside its metadata
document. Older rows may only have one of them, and metadata is free-form
JSON that may be malformed, so the canonical policy is computed field by
field:

    relational column (if valid) > metadata.updatePolicy (if valid) > default

Everything here is pure: no session, no I/O. Malformed input resolves to
the safe default for the field instead of raising.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from publisher.src.models.types import DEFAULT_CHANNEL, DEFAULT_ROLLOUT_PERCENTAGE, parse_json_object
from publisher.src.services.platforms import is_supported_channel
from publisher.src.utils.versioning import is_numeric, is_valid_semver


POLICY_KEY = "updatePolicy"


@dataclass(frozen=True)
class UpdatePolicy:
    """Canonical update policy of a version."""

    channel: str = DEFAULT_CHANNEL
    min_supported_version: Optional[str] = None
    rollout_percentage: float = DEFAULT_ROLLOUT_PERCENTAGE
    rollout_start_at: Optional[str] = None
    rollout_end_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Manifest/metadata form (camelCase keys, unset fields omitted)."""
        data: Dict[str, Any] = {
            "channel": self.channel,
            "minSupportedVersion": self.min_supported_version,
            "rolloutPercentage": self.rollout_percentage,
            "rolloutStartAt": self.rollout_start_at,
            "rolloutEndAt": self.rollout_end_at,
        }
        return {key: value for key, value in data.items() if value is not None}


def _clamp_percentage(value: float) -> float:
    value = min(max(value, 0), 100)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def normalize_date_like(value: Any) -> Optional[str]:
    """Return a non-empty timestamp string, or None."""
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return None


def parse_version_metadata(metadata: Any) -> Dict[str, Any]:
    """
    Parse a metadata document and normalise its ``updatePolicy`` object.

    Non-object input becomes ``{}``; every other top-level key is kept.

    Returns:
        New dict whose ``updatePolicy`` is the normalised policy dict
    """
    document = parse_json_object(metadata)
    raw_policy = document.get(POLICY_KEY)
    if not isinstance(raw_policy, dict):
        raw_policy = {}

    channel = raw_policy.get("channel")
    min_supported = raw_policy.get("minSupportedVersion")
    percentage = raw_policy.get("rolloutPercentage")
    start = raw_policy.get("rolloutStartAt")
    end = raw_policy.get("rolloutEndAt")

    policy = UpdatePolicy(
        channel=channel if isinstance(channel, str) and is_supported_channel(channel) else DEFAULT_CHANNEL,
        min_supported_version=(
            min_supported if isinstance(min_supported, str) and is_valid_semver(min_supported) else None
        ),
        rollout_percentage=(
            _clamp_percentage(percentage) if is_numeric(percentage) else DEFAULT_ROLLOUT_PERCENTAGE
        ),
        rollout_start_at=start if isinstance(start, str) else None,
        rollout_end_at=end if isinstance(end, str) else None,
    )
    document[POLICY_KEY] = policy.to_dict()
    return document


def parse_metadata_policy(metadata: Any) -> UpdatePolicy:
    """Read the policy stored in a metadata document (defaults where absent)."""
    raw = parse_version_metadata(metadata)[POLICY_KEY]
    return UpdatePolicy(
        channel=raw["channel"],
        min_supported_version=raw.get("minSupportedVersion"),
        rollout_percentage=raw["rolloutPercentage"],
        rollout_start_at=raw.get("rolloutStartAt"),
        rollout_end_at=raw.get("rolloutEndAt"),
    )


def merge_policy(relational: Mapping, metadata_policy: UpdatePolicy) -> UpdatePolicy:
    """
    Merge relational policy fields over a metadata policy.

    Args:
        relational: Mapping with any of release_channel, min_supported_version,
            rollout_percentage, rollout_start_at, rollout_end_at
        metadata_policy: Policy parsed from the metadata document

    Returns:
        Canonical UpdatePolicy
    """
    channel = relational.get("release_channel")
    if not (isinstance(channel, str) and is_supported_channel(channel)):
        channel = metadata_policy.channel

    min_supported = relational.get("min_supported_version")
    if not (isinstance(min_supported, str) and is_valid_semver(min_supported)):
        min_supported = metadata_policy.min_supported_version

    percentage = relational.get("rollout_percentage")
    if is_numeric(percentage):
        percentage = _clamp_percentage(percentage)
    else:
        percentage = metadata_policy.rollout_percentage

    return UpdatePolicy(
        channel=channel,
        min_supported_version=min_supported,
        rollout_percentage=percentage,
        rollout_start_at=(
            normalize_date_like(relational.get("rollout_start_at")) or metadata_policy.rollout_start_at
        ),
        rollout_end_at=(
            normalize_date_like(relational.get("rollout_end_at")) or metadata_policy.rollout_end_at
        ),
    )


_RELATIONAL_FIELDS = (
    "release_channel",
    "min_supported_version",
    "rollout_percentage",
    "rollout_start_at",
    "rollout_end_at",
)


def resolve_policy(source: Any) -> UpdatePolicy:
    """
    Resolve the canonical policy of a version.

    Args:
        source: An AppVersion row, or a mapping with the same column names
            plus an optional "metadata" document
    """
    if isinstance(source, Mapping):
        relational = {name: source.get(name) for name in _RELATIONAL_FIELDS}
        metadata = source.get("metadata")
    else:
        relational = {name: getattr(source, name, None) for name in _RELATIONAL_FIELDS}
        metadata = getattr(source, "metadata_json", None)
    return merge_policy(relational, parse_metadata_policy(metadata))


def build_metadata_with_policy(existing_metadata: Any, policy: UpdatePolicy) -> Dict[str, Any]:
    """
    Return a metadata document whose ``updatePolicy`` is replaced by *policy*.

    All other keys of the existing document are preserved; a malformed
    document is replaced by ``{}`` first.
    """
    document = parse_version_metadata(existing_metadata)
    document[POLICY_KEY] = policy.to_dict()
    return document
