"""
HTTP API routers.

- admin: release management (X-Publisher-Key guarded)
- updates: public update checks
- manifests: public read-only manifests
"""
