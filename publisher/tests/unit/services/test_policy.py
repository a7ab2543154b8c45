"""
Unit tests for update policy resolution.

Covers metadata parsing, relational-over-metadata precedence, defaults for
malformed input and the metadata write path.
"""

from datetime import datetime, timedelta, timezone

import pytest

from publisher.src.services.policy import (
    POLICY_KEY,
    UpdatePolicy,
    build_metadata_with_policy,
    normalize_date_like,
    parse_metadata_policy,
    parse_version_metadata,
    resolve_policy,
)


class TestParseVersionMetadata:
    """Tests for tolerant metadata parsing."""

    def test_non_object_metadata_becomes_defaults(self):
        for raw in (None, "not json", "[1, 2]", 42, ["a"]):
            document = parse_version_metadata(raw)
            assert document == {POLICY_KEY: {"channel": "stable", "rolloutPercentage": 100}}

    def test_json_string_is_decoded(self):
        document = parse_version_metadata('{"updatePolicy": {"channel": "beta"}, "build": 7}')
        assert document["build"] == 7
        assert document[POLICY_KEY]["channel"] == "beta"

    def test_invalid_fields_fall_back_to_defaults(self):
        policy = parse_metadata_policy({
            POLICY_KEY: {
                "channel": "nightly",
                "minSupportedVersion": "one",
                "rolloutPercentage": "50",
                "rolloutStartAt": 17,
            }
        })
        assert policy == UpdatePolicy()

    def test_percentage_is_clamped(self):
        assert parse_metadata_policy({POLICY_KEY: {"rolloutPercentage": 250}}).rollout_percentage == 100
        assert parse_metadata_policy({POLICY_KEY: {"rolloutPercentage": -5}}).rollout_percentage == 0

    def test_nan_percentage_is_not_numeric(self):
        policy = parse_metadata_policy({POLICY_KEY: {"rolloutPercentage": float("nan")}})
        assert policy.rollout_percentage == 100


class TestResolvePolicy:
    """Tests for relational > metadata > default precedence."""

    def test_relational_wins_over_metadata(self):
        policy = resolve_policy({
            "release_channel": "beta",
            "rollout_percentage": 30,
            "min_supported_version": "1.2.0",
            "metadata": {
                POLICY_KEY: {
                    "channel": "alpha",
                    "rolloutPercentage": 80,
                    "minSupportedVersion": "1.0.0",
                }
            },
        })
        assert policy.channel == "beta"
        assert policy.rollout_percentage == 30
        assert policy.min_supported_version == "1.2.0"

    def test_metadata_fills_missing_relational_fields(self):
        policy = resolve_policy({
            "release_channel": None,
            "rollout_percentage": None,
            "metadata": {
                POLICY_KEY: {
                    "channel": "alpha",
                    "rolloutPercentage": 80,
                    "rolloutEndAt": "2026-05-01T00:00:00.000Z",
                }
            },
        })
        assert policy.channel == "alpha"
        assert policy.rollout_percentage == 80
        assert policy.rollout_end_at == "2026-05-01T00:00:00.000Z"

    def test_invalid_relational_values_are_ignored(self):
        policy = resolve_policy({
            "release_channel": "nightly",
            "min_supported_version": "not-semver",
            "rollout_percentage": True,
            "metadata": None,
        })
        assert policy == UpdatePolicy()

    def test_relational_datetimes_are_normalized(self):
        policy = resolve_policy({
            "rollout_start_at": datetime(2026, 4, 1, 8, 30),
            "metadata": {},
        })
        assert policy.rollout_start_at == "2026-04-01T08:30:00.000Z"

    def test_resolves_model_rows(self, sample_version):
        version = sample_version(
            version_name="1.3.0",
            channel="beta",
            rollout_percentage=25,
            min_supported_version="1.1.0",
        )
        policy = resolve_policy(version)
        assert policy.channel == "beta"
        assert policy.rollout_percentage == 25
        assert policy.min_supported_version == "1.1.0"


class TestPolicySerialization:

    def test_to_dict_omits_unset_fields(self):
        assert UpdatePolicy(channel="beta", rollout_percentage=50).to_dict() == {
            "channel": "beta",
            "rolloutPercentage": 50,
        }

    def test_build_metadata_preserves_other_keys(self):
        existing = {"notes": "keep me", POLICY_KEY: {"channel": "alpha"}}
        document = build_metadata_with_policy(existing, UpdatePolicy(channel="beta"))
        assert document["notes"] == "keep me"
        assert document[POLICY_KEY] == {"channel": "beta", "rolloutPercentage": 100}
        # input untouched
        assert existing[POLICY_KEY] == {"channel": "alpha"}

    def test_normalize_date_like(self):
        aware = datetime(2026, 4, 1, 10, 0, tzinfo=timezone.utc)
        assert normalize_date_like(aware) == "2026-04-01T10:00:00.000Z"
        assert normalize_date_like("  ") is None
        assert normalize_date_like("2026-04-01") == "2026-04-01"
        assert normalize_date_like(12) is None


PLUS_TWO = timezone(timedelta(hours=2))


class TestPolicyWriteBack:
    """Resolving, writing the policy into metadata and resolving again is stable."""

    @pytest.mark.parametrize("relational, metadata", [
        (
            {
                "release_channel": "beta",
                "min_supported_version": "1.2.0",
                "rollout_percentage": 150,
                "rollout_start_at": datetime(2026, 3, 1, 10, 0, tzinfo=PLUS_TWO),
                "rollout_end_at": datetime(2026, 3, 8, 12, 0),
            },
            {"notes": "keep", POLICY_KEY: {"channel": "alpha", "rolloutPercentage": -5}},
        ),
        (
            {},
            {
                POLICY_KEY: {
                    "channel": "alpha",
                    "minSupportedVersion": "1.0.0",
                    "rolloutPercentage": 250.0,
                    "rolloutStartAt": "2026-05-01T00:00:00.000Z",
                    "rolloutEndAt": "2026-05-31T00:00:00.000Z",
                },
            },
        ),
        (
            {"rollout_percentage": 12.5, "rollout_end_at": datetime(2026, 6, 1, tzinfo=timezone.utc)},
            "not json",
        ),
        (
            {"rollout_percentage": -20, "min_supported_version": "garbage"},
            {POLICY_KEY: {"minSupportedVersion": "2.0.0", "rolloutStartAt": "2026-01-01"}},
        ),
    ])
    def test_resolution_is_idempotent(self, relational, metadata):
        first = resolve_policy({**relational, "metadata": metadata})
        document = build_metadata_with_policy(metadata, first)

        assert resolve_policy({**relational, "metadata": document}) == first
        # metadata alone carries the whole policy
        assert resolve_policy({"metadata": document}) == first
        assert build_metadata_with_policy(document, first) == document

    def test_clamped_and_converted_values_survive_write_back(self):
        first = resolve_policy({
            "rollout_percentage": 150,
            "rollout_start_at": datetime(2026, 3, 1, 12, 0, tzinfo=PLUS_TWO),
            "metadata": {},
        })
        assert first.rollout_percentage == 100
        assert first.rollout_start_at == "2026-03-01T10:00:00.000Z"

        document = build_metadata_with_policy({}, first)
        assert document[POLICY_KEY]["rolloutPercentage"] == 100
        assert document[POLICY_KEY]["rolloutStartAt"] == "2026-03-01T10:00:00.000Z"
        assert resolve_policy({"metadata": document}) == first
