"""
Semantic version and rollout gating utilities.

Provides safe semantic version parsing (strict SemVer 2.0.0, optional
leading 'v'), ordering helpers used by manifest generation and update
evaluation, and the staged-rollout gates: time window and device bucket.

Invalid versions never raise from the comparison helpers; they compare as
"not greater" and sort after every valid version.
"""

import math
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Any, Callable, Iterable, List, Optional, TypeVar

import semver

T = TypeVar("T")

# Number of buckets devices are spread over for percentage rollouts.
ROLLOUT_BUCKETS = 100

# Modulus of the rolling device-id accumulator.
_BUCKET_HASH_MODULUS = 1000


def parse_semver(value: Any) -> Optional[semver.Version]:
    """Parse a semantic version string, tolerating surrounding whitespace and a leading 'v'.

    Args:
        value: Candidate version such as "1.2.3", "v2.0.0-beta.1".

    Returns:
        A ``semver.Version`` or None when *value* is not a string or not
        a valid semantic version.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.startswith("v"):
        text = text[1:]
    try:
        return semver.Version.parse(text)
    except (ValueError, TypeError):
        return None


def is_valid_semver(value: Any) -> bool:
    """Check whether *value* is a valid semantic version string."""
    return parse_semver(value) is not None


def normalize_semver(value: Any) -> Optional[str]:
    """Return the canonical string form of a valid version ("v1.2.3" -> "1.2.3")."""
    parsed = parse_semver(value)
    return str(parsed) if parsed is not None else None


def is_version_greater(candidate: Any, current: Any) -> bool:
    """Strict semantic greater-than; False when either side is invalid."""
    parsed_candidate = parse_semver(candidate)
    parsed_current = parse_semver(current)
    if parsed_candidate is None or parsed_current is None:
        return False
    return parsed_candidate > parsed_current


def is_version_less(candidate: Any, reference: Any) -> bool:
    """Strict semantic less-than; False when either side is invalid."""
    parsed_candidate = parse_semver(candidate)
    parsed_reference = parse_semver(reference)
    if parsed_candidate is None or parsed_reference is None:
        return False
    return parsed_candidate < parsed_reference


def is_prerelease(value: Any) -> bool:
    """Check whether a valid version carries a pre-release component."""
    parsed = parse_semver(value)
    return parsed is not None and parsed.prerelease is not None


def sort_versions_desc(items: Iterable[T], pick_version: Callable[[T], Any]) -> List[T]:
    """Sort items by semantic version, newest first.

    Valid versions come first in descending order; items with invalid
    versions keep their relative input order after them.

    Args:
        items: Items to sort.
        pick_version: Returns the version string of an item.

    Returns:
        New sorted list.
    """
    def compare(a: T, b: T) -> int:
        version_a = parse_semver(pick_version(a))
        version_b = parse_semver(pick_version(b))
        if version_a is not None and version_b is not None:
            return version_b.compare(version_a)
        if version_a is not None:
            return -1
        if version_b is not None:
            return 1
        return 0

    return sorted(items, key=cmp_to_key(compare))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Naive values are assumed to be UTC. Offsets are converted to UTC.
    Unparseable values return None.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_within_rollout_window(policy: Any, at: datetime) -> bool:
    """Check that *at* lies inside the policy's [rollout_start_at, rollout_end_at].

    Missing or unparseable bounds are treated as unbounded on that side.

    Args:
        policy: Object exposing ``rollout_start_at`` and ``rollout_end_at``.
        at: Instant to test.
    """
    moment = parse_timestamp(at)

    start = parse_timestamp(getattr(policy, "rollout_start_at", None))
    if start is not None and moment < start:
        return False

    end = parse_timestamp(getattr(policy, "rollout_end_at", None))
    if end is not None and moment > end:
        return False

    return True


def _utf16_leading_units(text: str) -> Iterable[int]:
    """Yield one code unit per character: the code point, or its high surrogate above the BMP."""
    for char in text:
        code_point = ord(char)
        if code_point > 0xFFFF:
            yield 0xD800 + ((code_point - 0x10000) >> 10)
        else:
            yield code_point


def device_rollout_bucket(device_id: str) -> int:
    """Map a device identifier onto a stable bucket in [0, 100).

    The accumulator is deliberately simple; existing device assignments
    depend on it, so it must not change.
    """
    acc = 0
    for code in _utf16_leading_units(device_id):
        acc = (acc * 31 + code) % _BUCKET_HASH_MODULUS
    return acc % ROLLOUT_BUCKETS


def is_device_in_rollout_bucket(device_id: Optional[str], rollout_percentage: float) -> bool:
    """Decide whether a device is included in a percentage rollout.

    Args:
        device_id: Stable device identifier (None or empty = unknown device).
        rollout_percentage: Share of devices offered the update, 0-100.

    Returns:
        True for every device at 100% or more, False for every device at 0%
        or less and for unknown devices; otherwise True when the device's
        bucket is below the percentage.
    """
    if rollout_percentage >= 100:
        return True

    if rollout_percentage <= 0 or not device_id:
        return False

    return device_rollout_bucket(device_id) < rollout_percentage


def is_numeric(value: Any) -> bool:
    """True for int/float values other than bool and NaN."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and math.isnan(value))
