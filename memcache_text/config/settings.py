"""
memcache-text Configuration Settings

This module contains the configuration constants for the client.
Connection defaults can be overridden through environment variables.
"""

import os
from dataclasses import dataclass


@dataclass
class Settings:
    """Client configuration settings."""

    # Network settings
    HOST: str = os.environ.get("MEMCACHE_HOST", "127.0.0.1")
    PORT: int = int(os.environ.get("MEMCACHE_PORT", "11211"))
    CONNECT_TIMEOUT: float = float(os.environ.get("MEMCACHE_CONNECT_TIMEOUT", "5.0"))  # 0 disables
    READ_BUFFER_SIZE: int = 65536  # Longest response line the reader accepts

    # Value settings
    ENCODING: str = os.environ.get("MEMCACHE_ENCODING", "utf-8")

    # Protocol limits (enforced by the server, not by this client)
    MAX_KEY_LENGTH: int = 250
    RELATIVE_EXPTIME_LIMIT: int = 60 * 60 * 24 * 30  # Larger exptimes are Unix timestamps

    # Logging settings
    DEBUG: bool = os.environ.get("MEMCACHE_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("MEMCACHE_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
