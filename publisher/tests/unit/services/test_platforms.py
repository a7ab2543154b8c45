"""
Unit tests for platform, channel and policy input validation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from publisher.src.services.exceptions import ValidationError
from publisher.src.services.platforms import (
    REQUIRED_INSTALLER_SLOTS,
    assert_valid_platform,
    is_valid_variant,
    validate_channel,
    validate_distribution,
    validate_rollout_percentage,
    validate_rollout_window,
    validate_semver,
    validate_variant,
)


class TestAssertValidPlatform:

    def test_accepts_supported_platform(self):
        assert_valid_platform("macos", "arm64", "installer")
        assert_valid_platform("windows", "x86")

    def test_rejects_unknown_os_with_allowed_values(self):
        with pytest.raises(ValidationError) as exc_info:
            assert_valid_platform("beos", "x64")
        assert exc_info.value.field == "os"
        assert exc_info.value.value == "beos"
        assert "macos" in exc_info.value.allowed

    def test_rejects_unknown_arch(self):
        with pytest.raises(ValidationError) as exc_info:
            assert_valid_platform("linux", "riscv")
        assert exc_info.value.field == "arch"

    def test_rejects_unknown_type(self):
        with pytest.raises(ValidationError) as exc_info:
            assert_valid_platform("linux", "x64", "delta")
        assert exc_info.value.field == "type"

    def test_required_slots_are_installers(self):
        assert len(REQUIRED_INSTALLER_SLOTS) == 6
        assert all(slot[2] == "installer" for slot in REQUIRED_INSTALLER_SLOTS)


class TestVocabularies:

    def test_channel(self):
        assert validate_channel("beta") == "beta"
        with pytest.raises(ValidationError):
            validate_channel("nightly")

    def test_distribution(self):
        assert validate_distribution("store") == "store"
        with pytest.raises(ValidationError):
            validate_distribution("torrent")

    def test_variant_defaults(self):
        assert validate_variant(None) == "default"
        assert validate_variant("") == "default"
        assert validate_variant("universal_2") == "universal_2"

    def test_invalid_variant(self):
        assert not is_valid_variant("has space")
        with pytest.raises(ValidationError):
            validate_variant("x" * 51)


class TestPolicyInputs:

    def test_semver_is_normalized(self):
        assert validate_semver("v2.1.0") == "2.1.0"

    def test_invalid_semver_reports_field(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_semver("2.1", field="min_supported_version")
        assert exc_info.value.field == "min_supported_version"

    @pytest.mark.parametrize("value", [0, 50.5, 100])
    def test_valid_percentages(self, value):
        assert validate_rollout_percentage(value) == value

    @pytest.mark.parametrize("value", [-1, 100.1, "50", None, True, float("nan")])
    def test_invalid_percentages(self, value):
        with pytest.raises(ValidationError):
            validate_rollout_percentage(value)

    def test_window_is_parsed(self):
        start, end = validate_rollout_window("2026-01-01T00:00:00Z", None)
        assert start == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert end is None

    def test_window_offsets_are_converted_to_utc(self):
        start, end = validate_rollout_window("2026-03-01T12:00:00+02:00", "2026-03-02T00:00:00-05:00")
        assert start.utcoffset() == timedelta(0)
        assert start == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert end.replace(tzinfo=None) == datetime(2026, 3, 2, 5, 0)

    def test_window_end_before_start(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_rollout_window("2026-02-01T00:00:00Z", "2026-01-01T00:00:00Z")
        assert exc_info.value.field == "rollout_end_at"

    def test_window_rejects_garbage(self):
        with pytest.raises(ValidationError):
            validate_rollout_window("soon", None)
