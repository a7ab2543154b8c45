"""
Public manifest endpoints.

Serves the channel and version manifests built on demand from the
database, in the same shape as the documents published to blob storage.
These endpoints are read-only; they never upload.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from publisher.src.api.deps import get_manifest_service
from publisher.src.services.exceptions import NotFoundError, ValidationError
from publisher.src.services.manifest_service import ManifestService


router = APIRouter(prefix="/manifests", tags=["Manifests"])


@router.get("/{channel}/latest")
async def get_channel_manifest(
    channel: str,
    service: ManifestService = Depends(get_manifest_service),
) -> Dict[str, Any]:
    """Newest published build of every slot across the channel's published versions."""
    try:
        return service.build_latest_manifest(channel).manifest
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/{channel}/{version}")
async def get_version_manifest(
    channel: str,
    version: str,
    service: ManifestService = Depends(get_manifest_service),
) -> Dict[str, Any]:
    try:
        return service.build_version_manifest(version, channel).manifest
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
