"""
Admin API module.

Contains endpoints guarded by the publisher API key:
- Version lifecycle (create, list, policy, delete)
- Build registry (register, list, delete)
- Publish flow and manifest regeneration
"""

from publisher.src.api.admin.versions import router as versions_router

__all__ = ["versions_router"]
