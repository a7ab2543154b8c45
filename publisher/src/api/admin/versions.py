"""
Admin release API endpoints.

Provides endpoints for the version lifecycle, the build registry, the
publish flow and manifest regeneration. Versions are addressed by
(channel, version name), builds by GUID or by their slot.

All endpoints require the X-Publisher-Key header when PUBLISHER_API_KEY is set.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from publisher.src.api.deps import get_manifest_service, get_store, require_publisher_key
from publisher.src.db.database import get_db
from publisher.src.schemas.release import (
    BuildCreate,
    BuildResponse,
    BuildWriteResponse,
    DeletionResponse,
    FallbackCandidateResponse,
    ManifestWriteResponse,
    PublishPlanResponse,
    PublishRequest,
    PublishResponse,
    SlotPlanResponse,
    VersionCreate,
    VersionListResponse,
    VersionPolicyUpdate,
    VersionResponse,
    build_to_response,
    version_to_response,
)
from publisher.src.services.build_service import BuildService
from publisher.src.services.exceptions import (
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from publisher.src.services.manifest_service import ManifestService
from publisher.src.services.publish_service import PublishService, slot_key
from publisher.src.services.source_selector import resolve_distribution
from publisher.src.services.version_service import VersionService
from publisher.src.storage import BlobStore
from publisher.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(
    prefix="/versions",
    tags=["Admin - Releases"],
    dependencies=[Depends(require_publisher_key)],
)


# ============================================================================
# Dependencies
# ============================================================================


def get_version_service(
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_store),
    manifests: ManifestService = Depends(get_manifest_service),
) -> VersionService:
    return VersionService(db, store, manifests)


def get_build_service(
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_store),
    manifests: ManifestService = Depends(get_manifest_service),
) -> BuildService:
    return BuildService(db, store, settings=manifests.settings, manifests=manifests)


def get_publish_service(
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_store),
    manifests: ManifestService = Depends(get_manifest_service),
) -> PublishService:
    return PublishService(db, store, manifests)


def _conflict(e: ConflictError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"message": e.message, "conflicts": e.conflicts},
    )


def _unprocessable(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=message)


# ============================================================================
# Version Endpoints
# ============================================================================


@router.post("", response_model=VersionResponse, status_code=status.HTTP_201_CREATED)
async def create_version(
    request: VersionCreate,
    service: VersionService = Depends(get_version_service),
) -> VersionResponse:
    """
    Create an unpublished version.

    Raises:
        409 Conflict: If the version already exists in the channel
        422 Unprocessable Entity: On invalid semver, channel or policy fields
    """
    try:
        version = service.create_version(
            version_name=request.version,
            channel=request.channel,
            min_supported_version=request.min_supported_version,
            rollout_percentage=request.rollout_percentage,
            rollout_start_at=request.rollout_start_at,
            rollout_end_at=request.rollout_end_at,
            release_notes=request.release_notes,
            changelog=request.changelog,
            is_mandatory=request.is_mandatory,
        )
    except ValidationError as e:
        logger.warning(f"Version validation failed: {e.message}")
        raise _unprocessable(e.message)
    except ConflictError as e:
        raise _conflict(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(
        f"Admin created version {version.version_name} ({version.release_channel})",
        extra={"event": "admin.version.created", "guid": version.guid},
    )
    return version_to_response(version)


@router.get("", response_model=VersionListResponse)
async def list_versions(
    channel: Optional[str] = Query(None, description="Filter by release channel"),
    published_only: bool = Query(False, description="Only published versions"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: VersionService = Depends(get_version_service),
) -> VersionListResponse:
    """List versions, newest created first."""
    try:
        versions, total = service.list_versions(
            channel=channel,
            published_only=published_only,
            limit=limit,
            offset=offset,
        )
    except ValidationError as e:
        raise _unprocessable(e.message)

    return VersionListResponse(
        versions=[version_to_response(v) for v in versions],
        total_count=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{channel}/{version}", response_model=VersionResponse)
async def get_version(
    channel: str,
    version: str,
    service: VersionService = Depends(get_version_service),
) -> VersionResponse:
    try:
        return version_to_response(service.get_version(version, channel))
    except ValidationError as e:
        raise _unprocessable(e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.patch("/{channel}/{version}/policy", response_model=VersionResponse)
async def update_version_policy(
    channel: str,
    version: str,
    request: VersionPolicyUpdate,
    service: VersionService = Depends(get_version_service),
) -> VersionResponse:
    """
    Update the rollout policy of a version.

    Only fields present in the body are changed; null clears an optional
    field. target_channel moves the version to another channel.

    Raises:
        404 Not Found: If the version does not exist
        409 Conflict: If the target channel already holds this version
        422 Unprocessable Entity: On invalid policy fields
    """
    updates = request.model_dump(exclude_unset=True)
    target_channel = updates.pop("target_channel", None)
    is_mandatory = updates.pop("is_mandatory", None)

    try:
        updated = service.set_policy(
            version,
            channel,
            target_channel=target_channel,
            is_mandatory=is_mandatory,
            **updates,
        )
    except ValidationError as e:
        logger.warning(f"Policy validation failed: {e.message}")
        raise _unprocessable(e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConflictError as e:
        raise _conflict(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(
        f"Admin updated policy of {updated.version_name} ({updated.release_channel})",
        extra={"event": "admin.version.policy_updated", "guid": updated.guid, "fields": sorted(request.model_fields_set)},
    )
    return version_to_response(updated)


@router.delete("/{channel}/{version}", response_model=DeletionResponse)
async def delete_version(
    channel: str,
    version: str,
    force: bool = Query(False, description="Delete even if published or referenced as a fallback"),
    service: VersionService = Depends(get_version_service),
) -> DeletionResponse:
    """
    Delete a version and its builds.

    Raises:
        404 Not Found: If the version does not exist
        409 Conflict: If the version is published or used as a fallback (without force)
    """
    try:
        result = service.delete_version(version, channel, force=force)
    except ValidationError as e:
        raise _unprocessable(e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConflictError as e:
        logger.warning(f"Version delete blocked: {e.message}", extra={"conflicts": e.conflicts})
        raise _conflict(e)

    return DeletionResponse(
        deleted=result.deleted,
        warnings=result.warnings,
        overridden_conflicts=result.overridden_conflicts,
    )


# ============================================================================
# Build Endpoints
# ============================================================================


@router.get("/{channel}/{version}/builds", response_model=List[BuildResponse])
async def list_builds(
    channel: str,
    version: str,
    service: BuildService = Depends(get_build_service),
):
    try:
        builds = service.list_builds(version, channel)
    except ValidationError as e:
        raise _unprocessable(e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return [build_to_response(build) for build in builds]


@router.post(
    "/{channel}/{version}/builds",
    response_model=BuildWriteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_build(
    channel: str,
    version: str,
    request: BuildCreate,
    service: BuildService = Depends(get_build_service),
) -> BuildWriteResponse:
    """
    Register a build hosted elsewhere (store listing or external URL).

    An existing build with the same os/arch/type/distribution/variant is
    updated in place.

    Raises:
        404 Not Found: If the version does not exist
        422 Unprocessable Entity: On unsupported platform values or bad checksums
    """
    try:
        result = service.create_build(
            version,
            os=request.os,
            arch=request.arch,
            build_type=request.type,
            url=request.url,
            channel=channel,
            size=request.size,
            sha256=request.sha256,
            sha512=request.sha512,
            package_name=request.package_name,
            distribution=request.distribution,
            variant=request.variant,
        )
    except ValidationError as e:
        logger.warning(f"Build validation failed: {e.message}")
        raise _unprocessable(e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConflictError as e:
        raise _conflict(e)

    return BuildWriteResponse(
        build=build_to_response(result.build),
        created=result.created,
        warnings=result.warnings,
    )


@router.delete("/{channel}/{version}/builds/{os}/{arch}/{build_type}", response_model=DeletionResponse)
async def delete_build(
    channel: str,
    version: str,
    os: str,
    arch: str,
    build_type: str,
    distribution: Optional[str] = Query(None),
    variant: Optional[str] = Query(None),
    force: bool = Query(False, description="Delete even if other versions fall back to this slot"),
    service: BuildService = Depends(get_build_service),
) -> DeletionResponse:
    """
    Delete the builds of a slot, optionally narrowed by distribution/variant.

    Raises:
        404 Not Found: If the version or a matching build does not exist
        409 Conflict: If other versions use this slot as a fallback (without force)
    """
    try:
        result = service.delete_build(
            version,
            os,
            arch,
            build_type,
            channel=channel,
            distribution=distribution,
            variant=variant,
            force=force,
        )
    except ValidationError as e:
        raise _unprocessable(e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConflictError as e:
        logger.warning(f"Build delete blocked: {e.message}", extra={"conflicts": e.conflicts})
        raise _conflict(e)

    return DeletionResponse(
        deleted=result.deleted,
        warnings=result.warnings,
        overridden_conflicts=result.overridden_conflicts,
    )


# ============================================================================
# Publish Endpoints
# ============================================================================


@router.get("/{channel}/{version}/publish-plan", response_model=PublishPlanResponse)
async def get_publish_plan(
    channel: str,
    version: str,
    service: PublishService = Depends(get_publish_service),
) -> PublishPlanResponse:
    """Missing required installer slots and their fallback candidates."""
    try:
        plan = service.plan(version, channel)
    except ValidationError as e:
        raise _unprocessable(e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return PublishPlanResponse(
        version=plan.version.version_name,
        channel=plan.version.release_channel,
        complete=plan.complete,
        missing=[
            SlotPlanResponse(
                slot=slot_key(slot_plan.slot),
                candidates=[
                    FallbackCandidateResponse(
                        build_guid=candidate.build.guid,
                        version=candidate.version_name,
                        package_name=candidate.build.package_name,
                        distribution=resolve_distribution(
                            candidate.build.distribution, candidate.build.platform_metadata
                        ),
                        created_at=candidate.build.created_at,
                    )
                    for candidate in slot_plan.candidates
                ],
            )
            for slot_plan in plan.missing
        ],
    )


@router.post("/{channel}/{version}/publish", response_model=PublishResponse)
async def publish_version(
    channel: str,
    version: str,
    request: Optional[PublishRequest] = None,
    service: PublishService = Depends(get_publish_service),
) -> PublishResponse:
    """
    Publish a version.

    Missing slots are filled from request.selections, or from the newest
    candidate when auto_fallback is set. Manifest upload failures are
    returned as warnings; the version stays published.

    Raises:
        404 Not Found: If the version or a selected build does not exist
        409 Conflict: If a fallback cannot be inserted
        422 Unprocessable Entity: On invalid selections
    """
    request = request or PublishRequest()
    try:
        result = service.publish(
            version,
            channel,
            selections=request.selections,
            auto_fallback=request.auto_fallback,
        )
    except ValidationError as e:
        logger.warning(f"Publish validation failed: {e.message}")
        raise _unprocessable(e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConflictError as e:
        raise _conflict(e)

    logger.info(
        f"Admin published {version} ({channel})",
        extra={"event": "admin.version.published", "fallbacks": len(result.assigned)},
    )
    return PublishResponse(
        version=version_to_response(result.version),
        assigned=[build_to_response(build) for build in result.assigned],
        skipped=[slot_key(slot) for slot in result.skipped],
        manifest_paths=result.manifest_paths,
        warnings=result.warnings,
    )


@router.post("/{channel}/{version}/manifest", response_model=ManifestWriteResponse)
async def regenerate_manifest(
    channel: str,
    version: str,
    service: ManifestService = Depends(get_manifest_service),
) -> ManifestWriteResponse:
    """
    Regenerate the version manifest (and the channel manifest when published).

    Raises:
        404 Not Found: If the version does not exist
        502 Bad Gateway: If the blob store rejects the upload
    """
    try:
        paths = service.regenerate(version, channel)
    except ValidationError as e:
        raise _unprocessable(e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StorageError as e:
        logger.error(f"Manifest upload failed: {e.message}", extra={"path": e.path})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    return ManifestWriteResponse(paths=paths)


