"""
Configuration module for the update publisher.
"""

from publisher.src.config.settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
