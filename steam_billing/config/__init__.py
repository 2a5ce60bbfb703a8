"""Configuration package for steam billing."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
