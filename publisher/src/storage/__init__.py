"""
Blob storage backends for artifacts and manifests.

Backends:
- LocalBlobStore: Filesystem directory (development, tests)
- S3BlobStore: Amazon S3 or S3-compatible services (boto3)
"""

from typing import Optional

from publisher.src.config.settings import AppSettings, get_settings
from publisher.src.storage.base import BlobEntry, BlobStore
from publisher.src.storage.local_adapter import LocalBlobStore
from publisher.src.storage.s3_adapter import S3BlobStore


def get_blob_store(settings: Optional[AppSettings] = None) -> BlobStore:
    """
    Create the blob store selected by configuration.

    Args:
        settings: Settings to use (defaults to the cached application settings)
    """
    settings = settings or get_settings()
    if settings.storage_backend == "s3":
        return S3BlobStore(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            base_url=settings.cdn_url,
        )
    return LocalBlobStore(settings.storage_root, base_url=settings.cdn_url)


__all__ = [
    "BlobEntry",
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "get_blob_store",
]
