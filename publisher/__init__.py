"""
update-publisher: release management backend for application auto-updates.

Tracks versioned builds per platform and release channel, resolves staged
rollout policies, and publishes the JSON manifests that client updaters poll.
"""

__version__ = "1.0.0"
