"""
Platform and build registry validation.

Membership checks against the supported OS / architecture / build type /
distribution / channel vocabularies. Every check raises ``ValidationError``
carrying the rejected value and the accepted set, so callers can report
both without re-deriving them.
"""

import re
from typing import Any, Optional, Tuple

from publisher.src.models.types import (
    DEFAULT_VARIANT, SUPPORTED_ARCH, SUPPORTED_BUILD_TYPES, SUPPORTED_CHANNELS,
    SUPPORTED_DISTRIBUTIONS, SUPPORTED_OS,
)
from publisher.src.services.exceptions import ValidationError
from publisher.src.utils.versioning import is_numeric, normalize_semver, parse_timestamp


# Installer slots every published version must cover, own build or fallback.
REQUIRED_INSTALLER_SLOTS: Tuple[Tuple[str, str, str], ...] = (
    ("macos", "arm64", "installer"),
    ("macos", "x64", "installer"),
    ("windows", "x64", "installer"),
    ("linux", "x64", "installer"),
    ("ios", "arm64", "installer"),
    ("android", "arm64", "installer"),
)

VARIANT_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,50}$")


def is_supported_os(value: Any) -> bool:
    return value in SUPPORTED_OS


def is_supported_arch(value: Any) -> bool:
    return value in SUPPORTED_ARCH


def is_supported_build_type(value: Any) -> bool:
    return value in SUPPORTED_BUILD_TYPES


def is_supported_distribution(value: Any) -> bool:
    return value in SUPPORTED_DISTRIBUTIONS


def is_supported_channel(value: Any) -> bool:
    return value in SUPPORTED_CHANNELS


def is_valid_variant(value: Any) -> bool:
    return isinstance(value, str) and bool(VARIANT_PATTERN.match(value))


def _require_member(field: str, value: Any, allowed: Tuple[str, ...]) -> str:
    if value not in allowed:
        raise ValidationError(
            f"Unsupported {field} '{value}'. Expected one of: {', '.join(allowed)}",
            field=field,
            value=value,
            allowed=allowed,
        )
    return value


def assert_valid_platform(os: str, arch: str, build_type: Optional[str] = None) -> None:
    """
    Validate a platform identifier.

    Args:
        os: Operating system
        arch: CPU architecture
        build_type: Build type; omitted when the caller does not know it yet
            (update checks)

    Raises:
        ValidationError: If any given value is not supported
    """
    _require_member("os", os, SUPPORTED_OS)
    _require_member("arch", arch, SUPPORTED_ARCH)
    if build_type is not None:
        _require_member("type", build_type, SUPPORTED_BUILD_TYPES)


def validate_channel(channel: Any) -> str:
    return _require_member("channel", channel, SUPPORTED_CHANNELS)


def validate_distribution(distribution: Any) -> str:
    return _require_member("distribution", distribution, SUPPORTED_DISTRIBUTIONS)


def validate_variant(variant: Optional[str]) -> str:
    """Validate a variant label, returning the default label for None/empty."""
    if variant is None or variant == "":
        return DEFAULT_VARIANT
    if not is_valid_variant(variant):
        raise ValidationError(
            f"Invalid variant '{variant}'. Use 1-50 letters, digits, '-' or '_'",
            field="variant",
            value=variant,
        )
    return variant


def validate_semver(value: Any, field: str = "version") -> str:
    """
    Validate a semantic version and return its canonical form.

    Raises:
        ValidationError: If the value is not a valid semantic version
    """
    normalized = normalize_semver(value)
    if normalized is None:
        raise ValidationError(
            f"Invalid semantic version for {field}: '{value}'",
            field=field,
            value=value,
        )
    return normalized


def validate_rollout_percentage(value: Any) -> float:
    """
    Validate a rollout percentage (numeric, 0-100 inclusive).

    Raises:
        ValidationError: If not numeric or out of range
    """
    if not is_numeric(value) or value < 0 or value > 100:
        raise ValidationError(
            f"Rollout percentage must be a number between 0 and 100, got '{value}'",
            field="rollout_percentage",
            value=value,
        )
    return value


def validate_rollout_window(start: Any, end: Any):
    """
    Parse and check a rollout window.

    Returns:
        (start, end) as aware UTC datetimes or None

    Raises:
        ValidationError: If a bound is not ISO-8601 or end precedes start
    """
    bounds = []
    for field, raw in (("rollout_start_at", start), ("rollout_end_at", end)):
        if raw is None or raw == "":
            bounds.append(None)
            continue
        parsed = parse_timestamp(raw)
        if parsed is None:
            raise ValidationError(
                f"Invalid ISO-8601 timestamp for {field}: '{raw}'",
                field=field,
                value=raw,
            )
        bounds.append(parsed)

    start_at, end_at = bounds
    if start_at is not None and end_at is not None and end_at < start_at:
        raise ValidationError(
            "Rollout end must not be before rollout start",
            field="rollout_end_at",
            value=end,
        )
    return start_at, end_at
