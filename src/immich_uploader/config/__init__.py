"""Uploader configuration module.

Provides centralized configuration management using pydantic-settings.

Usage:
    from immich_uploader.config import get_settings

    settings = get_settings()
    print(settings.full_server_url)
"""

from functools import lru_cache

from immich_uploader.config.settings import Settings

__all__ = ["Settings", "get_settings"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Only the CLI edge calls this; library components receive a Settings
    instance or plain values from their caller.

    To reload settings, call get_settings.cache_clear() first.
    """
    return Settings()
