"""
Unit tests for update eligibility evaluation.

Tests the gate order (newer, pre-release, window, device bucket,
compatible build), mandatory escalation and input validation.
"""

from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from publisher.src.services.exceptions import ValidationError
from publisher.src.services.manifest_service import ManifestService
from publisher.src.services.policy import UpdatePolicy
from publisher.src.services.source_selector import BuildSource
from publisher.src.services.update_service import (
    UpdateService,
    VersionCandidate,
    evaluate_update,
)
from publisher.src.services.version_service import VersionService


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def update_service(test_db_session):
    return UpdateService(test_db_session)


def _candidate(name, policy=None, os="macos", arch="arm64", mandatory=False):
    return VersionCandidate(
        version_name=name,
        is_mandatory=mandatory,
        policy=policy or UpdatePolicy(),
        sources=[BuildSource(
            os=os, arch=arch, type="installer", distribution="direct",
            package_name=f"app-{name}", url=f"https://example.com/{name}",
        )],
    )


class TestEvaluateUpdate:
    """Tests for the pure evaluation over loaded candidates"""

    def test_picks_highest_eligible(self):
        result = evaluate_update(
            [_candidate("1.1.0"), _candidate("1.3.0"), _candidate("1.2.0")],
            "1.0.0", "macos", "arm64", now=NOW,
        )
        assert result.update_available
        assert result.target_version == "1.3.0"
        assert result.build.package_name == "app-1.3.0"

    def test_nothing_newer(self):
        result = evaluate_update([_candidate("1.0.0")], "1.0.0", "macos", "arm64", now=NOW)
        assert not result.update_available
        assert result.target_version is None
        assert result.build is None

    def test_prerelease_requires_opt_in(self):
        candidates = [_candidate("2.0.0-beta.1"), _candidate("1.1.0")]
        assert evaluate_update(candidates, "1.0.0", "macos", "arm64", now=NOW).target_version == "1.1.0"
        assert evaluate_update(
            candidates, "1.0.0", "macos", "arm64", allow_prerelease=True, now=NOW
        ).target_version == "2.0.0-beta.1"

    def test_window_gate_falls_back_to_older(self):
        future = UpdatePolicy(rollout_start_at="2026-04-01T00:00:00Z")
        result = evaluate_update(
            [_candidate("1.2.0", policy=future), _candidate("1.1.0")],
            "1.0.0", "macos", "arm64", now=NOW,
        )
        assert result.target_version == "1.1.0"

    def test_device_bucket_gate(self):
        half = UpdatePolicy(rollout_percentage=50)
        candidates = [_candidate("1.1.0", policy=half)]
        # "0" -> bucket 48, "abc" -> bucket 54
        assert evaluate_update(candidates, "1.0.0", "macos", "arm64", device_id="0", now=NOW).update_available
        assert not evaluate_update(candidates, "1.0.0", "macos", "arm64", device_id="abc", now=NOW).update_available
        assert not evaluate_update(candidates, "1.0.0", "macos", "arm64", now=NOW).update_available

    def test_requires_compatible_build(self):
        result = evaluate_update(
            [_candidate("1.2.0", os="windows", arch="x64"), _candidate("1.1.0")],
            "1.0.0", "macos", "arm64", now=NOW,
        )
        assert result.target_version == "1.1.0"

    def test_min_supported_version_forces_mandatory(self):
        policy = UpdatePolicy(min_supported_version="1.5.0")
        result = evaluate_update([_candidate("2.0.0", policy=policy)], "1.0.0", "macos", "arm64", now=NOW)
        assert result.mandatory

        result = evaluate_update([_candidate("2.0.0", policy=policy)], "1.6.0", "macos", "arm64", now=NOW)
        assert not result.mandatory

    def test_mandatory_flag(self):
        result = evaluate_update([_candidate("1.1.0", mandatory=True)], "1.0.0", "macos", "arm64", now=NOW)
        assert result.mandatory

    def test_to_dict_without_update(self):
        result = evaluate_update([], "1.0.0", "macos", "arm64", channel="beta", now=NOW)
        assert result.to_dict() == {
            "updateAvailable": False,
            "installedVersion": "1.0.0",
            "channel": "beta",
        }

    def test_to_dict_with_update(self):
        data = evaluate_update([_candidate("1.1.0")], "1.0.0", "macos", "arm64", now=NOW).to_dict()
        assert data["updateAvailable"] is True
        assert data["version"] == "1.1.0"
        assert data["mandatory"] is False
        assert data["updatePolicy"] == {"channel": "stable", "rolloutPercentage": 100}
        assert data["build"]["packageName"] == "app-1.1.0"


class TestUpdateService:
    """Tests for database-backed update checks"""

    def test_only_published_versions_are_offered(self, update_service, sample_version, sample_build):
        sample_build(sample_version("1.1.0", published=True))
        sample_build(sample_version("1.2.0", published=False))

        result = update_service.check_for_update("1.0.0", "macos", "arm64", now=NOW)

        assert result.target_version == "1.1.0"

    def test_channel_isolation(self, update_service, sample_version, sample_build):
        sample_build(sample_version("1.1.0", channel="beta", published=True))

        assert not update_service.check_for_update("1.0.0", "macos", "arm64", now=NOW).update_available
        assert update_service.check_for_update(
            "1.0.0", "macos", "arm64", channel="beta", now=NOW
        ).update_available

    def test_prefers_patch_build(self, update_service, sample_version, sample_build):
        version = sample_version("1.1.0", published=True)
        sample_build(version, distribution="store", minutes=10)
        sample_build(version, build_type="patch", package_name="app-1.1.0-arm64-macos.tar.gz")

        result = update_service.check_for_update("1.0.0", "macos", "arm64", now=NOW)

        assert result.build.type == "patch"

    def test_relational_rollout_window(self, update_service, sample_version, sample_build):
        sample_build(sample_version(
            "1.1.0", published=True,
            rollout_start_at=datetime(2026, 4, 1), rollout_end_at=datetime(2026, 5, 1),
        ))

        assert not update_service.check_for_update("1.0.0", "macos", "arm64", now=NOW).update_available
        assert update_service.check_for_update(
            "1.0.0", "macos", "arm64", now=datetime(2026, 4, 15, tzinfo=timezone.utc)
        ).update_available

    def test_offset_rollout_window_is_compared_in_utc(
        self, update_service, test_db_session, test_settings, sample_build
    ):
        manifests = ManifestService(test_db_session, None, test_settings)
        version = VersionService(test_db_session, manifests=manifests).create_version(
            "2.0.0", rollout_start_at="2026-03-01T12:00:00+02:00"
        )
        version.is_published = True
        test_db_session.commit()
        sample_build(version)

        assert version.rollout_start_at.replace(tzinfo=None) == datetime(2026, 3, 1, 10, 0)
        assert version.metadata_doc["updatePolicy"]["rolloutStartAt"] == "2026-03-01T10:00:00.000Z"

        before = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
        after = datetime(2026, 3, 1, 11, 0, tzinfo=timezone.utc)
        assert not update_service.check_for_update("1.0.0", "macos", "arm64", now=before).update_available
        result = update_service.check_for_update("1.0.0", "macos", "arm64", now=after)
        assert result.target_version == "2.0.0"

    @freeze_time("2026-04-15 12:00:00")
    def test_defaults_to_current_time(self, update_service, sample_version, sample_build):
        sample_build(sample_version("1.1.0", published=True, rollout_end_at=datetime(2026, 4, 1)))

        assert not update_service.check_for_update("1.0.0", "macos", "arm64").update_available

    def test_zero_rollout_offers_nothing(self, update_service, sample_version, sample_build):
        sample_build(sample_version("1.1.0", published=True, rollout_percentage=0))

        result = update_service.check_for_update("1.0.0", "macos", "arm64", device_id="0", now=NOW)

        assert not result.update_available

    @pytest.mark.parametrize("installed,os,arch,channel,field", [
        ("one", "macos", "arm64", "stable", "installed_version"),
        ("1.0.0", "beos", "arm64", "stable", "os"),
        ("1.0.0", "macos", "mips", "stable", "arch"),
        ("1.0.0", "macos", "arm64", "nightly", "channel"),
    ])
    def test_invalid_input(self, update_service, installed, os, arch, channel, field):
        with pytest.raises(ValidationError) as exc_info:
            update_service.check_for_update(installed, os, arch, channel=channel)
        assert exc_info.value.field == field
