"""
Unit tests for VersionService.

Tests version creation, policy updates (both policy homes written
together), listing and guarded deletion.
"""

import pytest

from publisher.src.models import AppVersion, Build
from publisher.src.services.exceptions import ConflictError, NotFoundError, ValidationError
from publisher.src.services.manifest_service import ManifestService
from publisher.src.services.policy import POLICY_KEY
from publisher.src.services.version_service import VersionService, describe_build


@pytest.fixture
def version_service(test_db_session, blob_store, test_settings):
    manifests = ManifestService(test_db_session, blob_store, test_settings)
    return VersionService(test_db_session, blob_store, manifests=manifests)


class TestCreateVersion:
    """Tests for create_version"""

    def test_creates_unpublished_version(self, version_service):
        version = version_service.create_version("v1.2.0", channel="beta", release_notes="Notes")

        assert version.version_name == "1.2.0"
        assert version.release_channel == "beta"
        assert version.is_published is False
        assert version.storage_key_prefix == "releases/beta/1.2.0"
        assert version.guid.startswith("ver_")
        assert version.release_notes == "Notes"

    def test_writes_policy_to_both_homes(self, version_service):
        version = version_service.create_version(
            "1.2.0",
            min_supported_version="1.0.0",
            rollout_percentage=25,
            rollout_start_at="2026-02-01T00:00:00Z",
        )

        assert version.rollout_percentage == 25
        assert version.min_supported_version == "1.0.0"
        assert version.metadata_json[POLICY_KEY] == {
            "channel": "stable",
            "minSupportedVersion": "1.0.0",
            "rolloutPercentage": 25,
            "rolloutStartAt": "2026-02-01T00:00:00.000Z",
        }

    def test_defaults_to_full_rollout(self, version_service):
        version = version_service.create_version("1.2.0")
        assert version.rollout_percentage == 100

    def test_duplicate_in_channel_conflicts(self, version_service):
        version_service.create_version("1.2.0")
        with pytest.raises(ConflictError):
            version_service.create_version("1.2.0")

    def test_same_version_in_other_channel(self, version_service):
        version_service.create_version("1.2.0")
        version = version_service.create_version("1.2.0", channel="alpha")
        assert version.release_channel == "alpha"

    @pytest.mark.parametrize("kwargs,field", [
        ({"version_name": "1.2"}, "version"),
        ({"version_name": "1.2.0", "channel": "nightly"}, "channel"),
        ({"version_name": "1.2.0", "min_supported_version": "old"}, "min_supported_version"),
        ({"version_name": "1.2.0", "rollout_percentage": 150}, "rollout_percentage"),
        ({"version_name": "1.2.0", "rollout_start_at": "2026-03-01T00:00:00Z",
          "rollout_end_at": "2026-02-01T00:00:00Z"}, "rollout_end_at"),
    ])
    def test_rejects_invalid_input(self, version_service, test_db_session, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            version_service.create_version(**kwargs)
        assert exc_info.value.field == field
        assert test_db_session.query(AppVersion).count() == 0


class TestSetPolicy:
    """Tests for set_policy"""

    def test_overlays_only_given_fields(self, version_service):
        version_service.create_version("1.2.0", min_supported_version="1.0.0", rollout_percentage=10)

        version = version_service.set_policy("1.2.0", rollout_percentage=50)

        assert version.rollout_percentage == 50
        assert version.min_supported_version == "1.0.0"
        assert version.metadata_json[POLICY_KEY]["rolloutPercentage"] == 50
        assert version.metadata_json[POLICY_KEY]["minSupportedVersion"] == "1.0.0"

    def test_none_clears_optional_field(self, version_service):
        version_service.create_version("1.2.0", min_supported_version="1.0.0")

        version = version_service.set_policy("1.2.0", min_supported_version=None)

        assert version.min_supported_version is None
        assert "minSupportedVersion" not in version.metadata_json[POLICY_KEY]

    def test_keeps_other_metadata_keys(self, version_service, test_db_session):
        version = version_service.create_version("1.2.0")
        version.metadata_json = {**version.metadata_json, "build": 42}
        test_db_session.commit()

        version = version_service.set_policy("1.2.0", is_mandatory=True)

        assert version.metadata_json["build"] == 42
        assert version.is_mandatory is True

    def test_moves_to_target_channel(self, version_service):
        version_service.create_version("1.2.0", channel="beta")

        version = version_service.set_policy("1.2.0", channel="beta", target_channel="stable")

        assert version.release_channel == "stable"
        assert version.storage_key_prefix == "releases/stable/1.2.0"
        assert version.metadata_json[POLICY_KEY]["channel"] == "stable"

    def test_move_onto_existing_version_conflicts(self, version_service):
        version_service.create_version("1.2.0", channel="beta")
        existing = version_service.create_version("1.2.0", channel="stable")

        with pytest.raises(ConflictError) as exc_info:
            version_service.set_policy("1.2.0", channel="beta", target_channel="stable")
        assert exc_info.value.conflicts == [existing.guid]

    def test_window_checked_against_current_bounds(self, version_service):
        version_service.create_version("1.2.0", rollout_start_at="2026-03-01T00:00:00Z")
        with pytest.raises(ValidationError):
            version_service.set_policy("1.2.0", rollout_end_at="2026-02-01T00:00:00Z")

    def test_unknown_version(self, version_service):
        with pytest.raises(NotFoundError):
            version_service.set_policy("9.9.9", rollout_percentage=10)


class TestListVersions:

    def test_filters_and_paginates(self, version_service, sample_version):
        from datetime import datetime
        for day, name in enumerate(["1.0.0", "1.1.0", "1.2.0"], start=1):
            sample_version(name, published=name != "1.2.0", created_at=datetime(2026, 1, day))
        sample_version("2.0.0", channel="beta")

        versions, total = version_service.list_versions(channel="stable", limit=2)
        assert total == 3
        assert [v.version_name for v in versions] == ["1.2.0", "1.1.0"]

        versions, total = version_service.list_versions(channel="stable", published_only=True)
        assert total == 2

        versions, total = version_service.list_versions()
        assert total == 4

    def test_rejects_bad_paging(self, version_service):
        with pytest.raises(ValidationError):
            version_service.list_versions(limit=0)


class TestDeleteVersion:
    """Tests for delete_version"""

    def test_deletes_draft_and_its_blobs(self, version_service, sample_version, sample_build,
                                         blob_store, test_db_session):
        version = sample_version("1.0.0")
        sample_build(version)
        blob_store.upload("releases/stable/1.0.0/macos/arm64/app.dmg", b"payload")

        result = version_service.delete_version("1.0.0")

        assert result.deleted == ["1.0.0 (stable) with 1 build(s)"]
        assert result.warnings == []
        assert test_db_session.query(AppVersion).count() == 0
        assert test_db_session.query(Build).count() == 0
        assert blob_store.list("releases/stable/1.0.0") == []

    def test_published_requires_force(self, version_service, sample_version):
        sample_version("1.0.0", published=True)
        with pytest.raises(ConflictError):
            version_service.delete_version("1.0.0")

    def test_fallback_source_requires_force(self, version_service, sample_version, sample_build):
        sample_version("1.0.0")
        newer = sample_version("1.1.0")
        sample_build(newer, os="windows", arch="x64", metadata={"fallback_from": "1.0.0"})

        with pytest.raises(ConflictError) as exc_info:
            version_service.delete_version("1.0.0")

        assert exc_info.value.conflicts == ["1.1.0 windows/x64/installer/direct[default]"]

    def test_force_reports_overridden_conflicts(self, version_service, sample_version, sample_build,
                                                test_db_session):
        sample_version("1.0.0")
        newer = sample_version("1.1.0")
        sample_build(newer, os="windows", arch="x64", metadata={"fallback_from": "1.0.0"})

        result = version_service.delete_version("1.0.0", force=True)

        assert result.overridden_conflicts == ["1.1.0 windows/x64/installer/direct[default]"]
        # the fallback copy is owned by 1.1.0 and survives
        assert test_db_session.query(Build).count() == 1

    def test_references_from_other_channels_do_not_block(self, version_service, sample_version,
                                                         sample_build):
        sample_version("1.0.0")
        beta = sample_version("1.1.0", channel="beta")
        sample_build(beta, metadata={"fallback_from": "1.0.0"})

        result = version_service.delete_version("1.0.0")

        assert result.overridden_conflicts == []

    def test_force_delete_published_regenerates_channel(self, version_service, sample_version,
                                                        blob_store):
        sample_version("1.0.0", published=True)
        sample_version("1.1.0", published=True)

        result = version_service.delete_version("1.1.0", force=True)

        assert result.warnings == []
        assert b'"version": "1.0.0"' in blob_store.read("channels/stable/manifest.json")

    def test_last_published_version_warns(self, version_service, sample_version):
        sample_version("1.0.0", published=True)

        result = version_service.delete_version("1.0.0", force=True)

        assert len(result.warnings) == 1
        assert "publisher manifest generate" in result.warnings[0]

    def test_unknown_version(self, version_service):
        with pytest.raises(NotFoundError):
            version_service.delete_version("9.9.9")


class TestDescribeBuild:

    def test_label(self, sample_version, sample_build):
        build = sample_build(sample_version("1.2.0"), variant="universal", distribution=None)
        assert describe_build(build) == "1.2.0 macos/arm64/installer/direct[universal]"
