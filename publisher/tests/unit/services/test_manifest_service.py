"""
Unit tests for ManifestService.

Tests manifest assembly for a single version and for a channel, blob
publication, and deterministic output ordering.
"""

import json

import pytest

from publisher.src.services.exceptions import NotFoundError, ValidationError
from publisher.src.services.manifest_service import (
    ManifestService,
    channel_manifest_path,
    select_latest_sources,
    serialize_manifest,
)
from publisher.src.services.source_selector import BuildSource


@pytest.fixture
def manifest_service(test_db_session, blob_store, test_settings):
    return ManifestService(test_db_session, blob_store, test_settings)


def _source(os, arch, build_type="installer", distribution="direct", name="pkg"):
    return BuildSource(
        os=os, arch=arch, type=build_type, distribution=distribution,
        package_name=name, url=f"https://example.com/{name}",
    )


class TestVersionManifest:
    """Tests for build_version_manifest"""

    def test_header_fields(self, manifest_service, sample_version):
        sample_version("1.2.0", release_notes="Bug fixes", mandatory=True)

        document = manifest_service.build_version_manifest("1.2.0", "stable")

        manifest = document.manifest
        assert document.path == "releases/stable/1.2.0/manifest.json"
        assert manifest["name"] == "TestApp"
        assert manifest["manifestVersion"] == 1
        assert manifest["version"] == "1.2.0"
        assert manifest["channel"] == "stable"
        assert manifest["releaseDate"] == "2026-01-10T12:00:00Z"
        assert manifest["isMandatory"] is True
        assert manifest["releaseNotes"] == "Bug fixes"
        assert manifest["updatePolicy"] == {"channel": "stable", "rolloutPercentage": 100}
        assert manifest["platforms"] == []

    def test_platforms_follow_vocabulary_order(self, manifest_service, sample_version, sample_build):
        version = sample_version("1.2.0")
        sample_build(version, os="linux", arch="x64")
        sample_build(version, os="macos", arch="x64")
        sample_build(version, os="macos", arch="arm64", build_type="patch",
                     package_name="app-1.2.0-arm64-macos.tar.gz")

        platforms = manifest_service.build_version_manifest("1.2.0", "stable").manifest["platforms"]

        assert [p["os"] for p in platforms] == ["macos", "linux"]
        assert list(platforms[0]["builds"]) == ["arm64", "x64"]
        assert list(platforms[0]["builds"]["arm64"]) == ["patch"]

    def test_store_source_is_primary(self, manifest_service, sample_version, sample_build):
        version = sample_version("1.2.0")
        sample_build(version, distribution="direct", minutes=5)
        sample_build(version, distribution="store", url="https://apps.apple.com/app/id1",
                     package_name="store-listing")

        leaf = manifest_service.build_version_manifest("1.2.0", "stable") \
            .manifest["platforms"][0]["builds"]["arm64"]["installer"]

        assert leaf["distribution"] == "store"
        assert leaf["url"] == "https://apps.apple.com/app/id1"
        assert [s["distribution"] for s in leaf["sources"]] == ["store", "direct"]

    def test_unknown_version(self, manifest_service):
        with pytest.raises(NotFoundError):
            manifest_service.build_version_manifest("9.9.9", "stable")

    def test_invalid_channel(self, manifest_service):
        with pytest.raises(ValidationError):
            manifest_service.build_version_manifest("1.0.0", "nightly")


class TestLatestManifest:
    """Tests for build_latest_manifest"""

    def test_newest_version_fills_each_slot(self, manifest_service, sample_version, sample_build):
        old = sample_version("1.0.0", published=True)
        new = sample_version("1.1.0", published=True, release_notes="Newest")
        sample_build(old, os="macos", arch="arm64")
        sample_build(old, os="windows", arch="x64")
        sample_build(new, os="macos", arch="arm64")

        document = manifest_service.build_latest_manifest("stable")
        manifest = document.manifest

        assert document.path == "channels/stable/manifest.json"
        assert manifest["version"] == "1.1.0"
        assert manifest["releaseNotes"] == "Newest"

        by_os = {p["os"]: p["builds"] for p in manifest["platforms"]}
        assert by_os["macos"]["arm64"]["installer"]["version"] == "1.1.0"
        assert by_os["windows"]["x64"]["installer"]["version"] == "1.0.0"

    def test_semver_order_not_creation_order(self, manifest_service, sample_version, sample_build):
        from datetime import datetime
        newer = sample_version("1.10.0", published=True, created_at=datetime(2026, 1, 1))
        older = sample_version("1.9.0", published=True, created_at=datetime(2026, 1, 5))
        sample_build(newer)
        sample_build(older)

        manifest = manifest_service.build_latest_manifest("stable").manifest

        assert manifest["version"] == "1.10.0"
        assert manifest["platforms"][0]["builds"]["arm64"]["installer"]["version"] == "1.10.0"

    def test_ignores_unpublished_and_other_channels(self, manifest_service, sample_version, sample_build):
        published = sample_version("1.0.0", published=True)
        draft = sample_version("2.0.0", published=False)
        beta = sample_version("3.0.0", channel="beta", published=True)
        sample_build(published)
        sample_build(draft)
        sample_build(beta)

        manifest = manifest_service.build_latest_manifest("stable").manifest

        assert manifest["version"] == "1.0.0"
        assert manifest["platforms"][0]["builds"]["arm64"]["installer"]["version"] == "1.0.0"

    def test_channel_without_published_versions(self, manifest_service, sample_version):
        sample_version("1.0.0", published=False)
        with pytest.raises(NotFoundError):
            manifest_service.build_latest_manifest("stable")

    def test_select_latest_keeps_distributions_apart(self):
        store = _source("macos", "arm64", distribution="store", name="store")
        direct = _source("macos", "arm64", distribution="direct", name="direct")

        selected = select_latest_sources([("1.0.0", [store]), ("1.1.0", [direct])])

        assert {(s.distribution, s.source_version) for s in selected} == {
            ("store", "1.0.0"),
            ("direct", "1.1.0"),
        }


class TestManifestPublication:
    """Tests for writing manifests to the blob store"""

    def test_publish_version_manifest(self, manifest_service, sample_version, blob_store):
        sample_version("1.2.0")

        path = manifest_service.publish_version_manifest("1.2.0", "stable")

        written = json.loads(blob_store.read(path))
        assert written["version"] == "1.2.0"

    def test_regenerate_draft_skips_channel_manifest(self, manifest_service, sample_version):
        sample_version("1.2.0", published=False)

        paths = manifest_service.regenerate("1.2.0", "stable")

        assert paths == ["releases/stable/1.2.0/manifest.json"]

    def test_regenerate_published_writes_both(self, manifest_service, sample_version, blob_store):
        sample_version("1.2.0", published=True)

        paths = manifest_service.regenerate("1.2.0", "stable")

        assert paths == ["releases/stable/1.2.0/manifest.json", channel_manifest_path("stable")]
        assert json.loads(blob_store.read("channels/stable/manifest.json"))["version"] == "1.2.0"

    def test_publish_without_store(self, test_db_session, test_settings, sample_version):
        sample_version("1.2.0")
        service = ManifestService(test_db_session, None, test_settings)
        with pytest.raises(RuntimeError):
            service.publish_version_manifest("1.2.0", "stable")

    def test_serialization_is_indented_utf8(self):
        data = serialize_manifest({"name": "Café"})
        assert data == '{\n  "name": "Café"\n}'.encode("utf-8")
