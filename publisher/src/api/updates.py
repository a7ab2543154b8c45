"""
Public update-check endpoint.

Client updaters call this with their installed version and platform to
learn whether an update is offered to them, and which build to download.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from publisher.src.db.database import get_db
from publisher.src.models.types import DEFAULT_CHANNEL
from publisher.src.services.exceptions import ValidationError
from publisher.src.services.update_service import UpdateService
from publisher.src.utils.logging_config import get_logger


logger = get_logger("api")

router = APIRouter(prefix="/updates", tags=["Updates"])


def get_update_service(db: Session = Depends(get_db)) -> UpdateService:
    return UpdateService(db)


@router.get("/check")
async def check_for_update(
    version: str = Query(..., description="Installed version"),
    os: str = Query(..., description="Client operating system"),
    arch: str = Query(..., description="Client architecture"),
    channel: str = Query(DEFAULT_CHANNEL, description="Release channel"),
    device_id: Optional[str] = Query(None, description="Stable device identifier for staged rollouts"),
    allow_prerelease: bool = Query(False),
    service: UpdateService = Depends(get_update_service),
) -> Dict[str, Any]:
    """
    Check whether an update is available.

    Returns:
        {"updateAvailable": false, ...} or the target version, its policy,
        whether it is mandatory and the preferred build

    Raises:
        422 Unprocessable Entity: On invalid version, os, arch or channel

    Example:
        GET /api/updates/check?version=1.2.0&os=macos&arch=arm64&device_id=abc
    """
    try:
        result = service.check_for_update(
            version,
            os,
            arch,
            channel=channel,
            device_id=device_id,
            allow_prerelease=allow_prerelease,
        )
    except ValidationError as e:
        logger.warning(f"Update check rejected: {e.message}", extra={"field": e.field})
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)

    return result.to_dict()
