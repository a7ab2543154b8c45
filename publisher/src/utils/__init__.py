"""
Utility modules for the update publisher.

- logging_config: Structured logging setup and named loggers
- versioning: Semantic version comparison and rollout gating helpers
"""
