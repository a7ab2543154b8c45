"""
Unit tests for the AppVersion and Build models.

Tests column validators, derived properties and database constraints.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from publisher.src.models import AppVersion, Build


class TestAppVersionModel:

    def test_storage_prefix_and_manifest_path(self, sample_version):
        version = sample_version("1.4.0", channel="beta")
        assert version.storage_key_prefix == "releases/beta/1.4.0"
        assert version.manifest_path == "releases/beta/1.4.0/manifest.json"

    def test_channel_is_normalized(self):
        version = AppVersion(release_channel=" Beta ")
        assert version.release_channel == "beta"

    @pytest.mark.parametrize("channel", ["", "nightly"])
    def test_invalid_channel(self, channel):
        with pytest.raises(ValueError):
            AppVersion(release_channel=channel)

    @pytest.mark.parametrize("value", [-1, 101, True, "50"])
    def test_invalid_rollout_percentage(self, value):
        with pytest.raises(ValueError):
            AppVersion(rollout_percentage=value)

    def test_none_rollout_means_full(self):
        assert AppVersion(rollout_percentage=None).rollout_percentage == 100

    def test_rollout_bounds_are_stored_in_utc(self):
        version = AppVersion(
            rollout_start_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))),
            rollout_end_at=datetime(2026, 3, 8, 12, 0),
        )
        assert version.rollout_start_at == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert version.rollout_start_at.utcoffset() == timedelta(0)
        # naive values are already UTC
        assert version.rollout_end_at == datetime(2026, 3, 8, 12, 0)

    def test_metadata_doc_tolerates_garbage(self, sample_version, test_db_session):
        version = sample_version()
        version.metadata_json = "not json"
        assert version.metadata_doc == {}

    def test_name_unique_per_channel(self, sample_version):
        sample_version("1.0.0")
        with pytest.raises(IntegrityError):
            sample_version("1.0.0")

    def test_repr(self, sample_version):
        assert "version='1.0.0'" in repr(sample_version())


class TestBuildModel:

    def test_vocabularies_are_normalized(self):
        build = Build(os="MacOS", arch=" ARM64 ", type="Installer", distribution="Store")
        assert (build.os, build.arch, build.type, build.distribution) == ("macos", "arm64", "installer", "store")

    @pytest.mark.parametrize("field,value", [
        ("os", "beos"),
        ("arch", "ppc"),
        ("type", "delta"),
        ("distribution", "torrent"),
        ("variant", "has space"),
        ("sha256_checksum", "abc"),
        ("sha512_checksum", "a" * 64),
        ("size", -1),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValueError):
            Build(**{field: value})

    def test_empty_values_default(self):
        build = Build(variant="  ", sha256_checksum="", size=None, distribution=None)
        assert build.variant == "default"
        assert build.sha256_checksum is None
        assert build.size == 0
        assert build.distribution is None

    def test_metadata_properties(self, sample_version, sample_build):
        build = sample_build(
            sample_version(),
            metadata={"fallback_from": "0.9.0", "storage_path": "releases/stable/0.9.0/a.dmg"},
        )
        assert build.fallback_from == "0.9.0"
        assert build.storage_path == "releases/stable/0.9.0/a.dmg"

    def test_metadata_properties_absent(self, sample_version, sample_build):
        build = sample_build(sample_version(), metadata={"fallback_from": ""})
        assert build.fallback_from is None
        assert build.storage_path is None

    def test_identity_unique(self, sample_version, sample_build):
        version = sample_version()
        sample_build(version)
        with pytest.raises(IntegrityError):
            sample_build(version)

    def test_builds_cascade_with_version(self, sample_version, sample_build, test_db_session):
        version = sample_version()
        sample_build(version)
        sample_build(version, os="linux", arch="x64")

        test_db_session.delete(version)
        test_db_session.commit()

        assert test_db_session.query(Build).count() == 0
