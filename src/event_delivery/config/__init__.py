"""
Package: config
Description: Environment-driven configuration for the delivery service.
"""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
