"""
Shared FastAPI dependencies.

- get_app_settings / get_store: configuration and blob store (overridable in tests)
- get_manifest_service: ManifestService bound to the request's session and store
- require_publisher_key: X-Publisher-Key guard for admin endpoints
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from publisher.src.config.settings import AppSettings, get_settings
from publisher.src.db.database import get_db
from publisher.src.services.manifest_service import ManifestService
from publisher.src.storage import BlobStore, get_blob_store
from publisher.src.utils.logging_config import get_logger


logger = get_logger("api")


def get_app_settings() -> AppSettings:
    return get_settings()


def get_store(settings: AppSettings = Depends(get_app_settings)) -> BlobStore:
    return get_blob_store(settings)


def get_manifest_service(
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_store),
    settings: AppSettings = Depends(get_app_settings),
) -> ManifestService:
    return ManifestService(db, store, settings)


async def require_publisher_key(
    x_publisher_key: Optional[str] = Header(None, alias="X-Publisher-Key"),
    settings: AppSettings = Depends(get_app_settings),
) -> None:
    """
    Reject admin requests without the configured API key.

    The check is disabled when PUBLISHER_API_KEY is empty.

    Raises:
        HTTPException 401: Missing or wrong key
    """
    if not settings.api_key_configured:
        return
    if not x_publisher_key or not hmac.compare_digest(
        x_publisher_key.encode("utf-8"), settings.api_key.encode("utf-8")
    ):
        logger.warning("Rejected admin request with invalid API key", extra={"event": "auth.rejected"})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing X-Publisher-Key header",
        )
