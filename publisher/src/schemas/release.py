"""
Pydantic schemas for release API request/response validation.

Provides data validation and serialization for:
- Version creation and policy update requests
- Build registration requests
- Publish requests and plans
- Version, build and update-check responses

Design:
- Vocabulary checks (os, arch, channel, ...) stay in the service layer so
  the API and the CLI report the same errors
- GUIDs are exposed, never internal IDs
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from publisher.src.models import AppVersion, Build
from publisher.src.models.types import DEFAULT_CHANNEL
from publisher.src.services.policy import resolve_policy
from publisher.src.services.source_selector import resolve_distribution


# ============================================================================
# Request Schemas
# ============================================================================


class VersionCreate(BaseModel):
    """
    Schema for creating a version.

    Example:
        >>> VersionCreate(version="1.4.0", channel="beta", rollout_percentage=25)
    """

    version: str = Field(..., min_length=1, max_length=100, description="Semantic version")
    channel: str = Field(default=DEFAULT_CHANNEL, description="Release channel")
    min_supported_version: Optional[str] = Field(
        default=None,
        description="Installed versions below this are forced to update",
    )
    rollout_percentage: Optional[float] = Field(default=None, description="0-100, default 100")
    rollout_start_at: Optional[str] = Field(default=None, description="ISO-8601 start of rollout")
    rollout_end_at: Optional[str] = Field(default=None, description="ISO-8601 end of rollout")
    release_notes: Optional[str] = Field(default=None, max_length=10000)
    changelog: Optional[str] = Field(default=None)
    is_mandatory: bool = Field(default=False)


class VersionPolicyUpdate(BaseModel):
    """
    Schema for updating a version's policy.

    Only fields present in the request body are changed; an explicit null
    clears an optional field.
    """

    target_channel: Optional[str] = Field(default=None, description="Move the version to this channel")
    min_supported_version: Optional[str] = None
    rollout_percentage: Optional[float] = None
    rollout_start_at: Optional[str] = None
    rollout_end_at: Optional[str] = None
    is_mandatory: Optional[bool] = None


class BuildCreate(BaseModel):
    """Schema for registering a build hosted elsewhere (store listing or external URL)."""

    os: str
    arch: str
    type: str
    url: str = Field(..., min_length=1)
    size: int = Field(default=0, ge=0)
    sha256: Optional[str] = None
    sha512: Optional[str] = None
    package_name: Optional[str] = Field(default=None, max_length=255)
    distribution: str = Field(default="store")
    variant: Optional[str] = None


class PublishRequest(BaseModel):
    """
    Schema for publishing a version.

    selections maps a missing slot ("macos/arm64/installer") to the GUID of
    the build to copy, or null to leave the slot empty.
    """

    selections: Dict[str, Optional[str]] = Field(default_factory=dict)
    auto_fallback: bool = False


# ============================================================================
# Response Schemas
# ============================================================================


class UpdatePolicyResponse(BaseModel):
    channel: str
    minSupportedVersion: Optional[str] = None
    rolloutPercentage: float
    rolloutStartAt: Optional[str] = None
    rolloutEndAt: Optional[str] = None


class VersionResponse(BaseModel):
    """Response schema for a version."""

    guid: str = Field(..., description="Version GUID (ver_xxx)")
    version: str
    channel: str
    manifest_version: int
    release_date: datetime
    is_published: bool
    is_mandatory: bool
    release_notes: Optional[str] = None
    changelog: Optional[str] = None
    storage_key_prefix: str
    update_policy: UpdatePolicyResponse
    created_at: datetime
    updated_at: datetime


class VersionListResponse(BaseModel):
    versions: List[VersionResponse]
    total_count: int
    limit: int
    offset: int


class BuildResponse(BaseModel):
    """Response schema for a build."""

    guid: str = Field(..., description="Build GUID (bld_xxx)")
    os: str
    arch: str
    type: str
    distribution: str = Field(..., description="Explicit or inferred distribution")
    variant: str
    package_name: str
    url: str
    size: int
    sha256: Optional[str] = None
    sha512: Optional[str] = None
    fallback_from: Optional[str] = None
    platform_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class BuildWriteResponse(BaseModel):
    build: BuildResponse
    created: bool
    warnings: List[str] = Field(default_factory=list)


class DeletionResponse(BaseModel):
    deleted: List[str]
    warnings: List[str] = Field(default_factory=list)
    overridden_conflicts: List[str] = Field(default_factory=list)


class FallbackCandidateResponse(BaseModel):
    build_guid: str
    version: str
    package_name: str
    distribution: str
    created_at: datetime


class SlotPlanResponse(BaseModel):
    slot: str
    candidates: List[FallbackCandidateResponse]


class PublishPlanResponse(BaseModel):
    version: str
    channel: str
    complete: bool
    missing: List[SlotPlanResponse]


class PublishResponse(BaseModel):
    version: VersionResponse
    assigned: List[BuildResponse]
    skipped: List[str]
    manifest_paths: List[str]
    warnings: List[str] = Field(default_factory=list)


class ManifestWriteResponse(BaseModel):
    paths: List[str]


# ============================================================================
# Helper Functions
# ============================================================================


def version_to_response(version: AppVersion) -> VersionResponse:
    """Convert an AppVersion row to its response schema."""
    return VersionResponse(
        guid=version.guid,
        version=version.version_name,
        channel=version.release_channel,
        manifest_version=version.manifest_version,
        release_date=version.release_date,
        is_published=version.is_published,
        is_mandatory=version.is_mandatory,
        release_notes=version.release_notes,
        changelog=version.changelog,
        storage_key_prefix=version.storage_key_prefix,
        update_policy=UpdatePolicyResponse(**resolve_policy(version).to_dict()),
        created_at=version.created_at,
        updated_at=version.updated_at,
    )


def build_to_response(build: Build) -> BuildResponse:
    """Convert a Build row to its response schema."""
    metadata = build.platform_metadata
    return BuildResponse(
        guid=build.guid,
        os=build.os,
        arch=build.arch,
        type=build.type,
        distribution=resolve_distribution(build.distribution, metadata),
        variant=build.variant,
        package_name=build.package_name,
        url=build.url,
        size=build.size,
        sha256=build.sha256_checksum,
        sha512=build.sha512_checksum,
        fallback_from=build.fallback_from,
        platform_metadata=metadata,
        created_at=build.created_at,
    )
