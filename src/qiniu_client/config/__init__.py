"""Configuration for the Qiniu HTTP client."""

from .settings import Settings, create_timeout, settings

__all__ = ["Settings", "create_timeout", "settings"]
