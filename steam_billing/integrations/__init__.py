"""External integrations for steam billing."""
from .steam_client import PlatformError, PlatformErrorType, SteamClient

__all__ = ["PlatformError", "PlatformErrorType", "SteamClient"]
