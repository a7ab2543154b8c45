"""
Model mixins for shared functionality across entities.
"""

from publisher.src.models.mixins.guid import GuidMixin

__all__ = ["GuidMixin"]
