"""
Service layer for business logic.

- policy: Update policy resolution (pure)
- platforms: Platform/channel/variant validation (pure)
- source_selector: Download source ranking (pure)
- manifest_service: Version and channel manifests
- update_service: Update eligibility checks
- version_service: Version lifecycle
- build_service: Build registry
- publish_service: Publish flow and fallback assignment

Service classes are imported from their modules; only the exception
types are re-exported here so storage backends can import them without
pulling in the services themselves.
"""

from publisher.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    ConflictError,
    ValidationError,
    StorageError,
)

__all__ = [
    "ServiceError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "StorageError",
]
