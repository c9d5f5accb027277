"""Configuration package for the storefront service."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
