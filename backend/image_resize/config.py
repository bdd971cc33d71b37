"""
Image Resize Server Configuration

All settings come from environment variables so the server can be configured
per deployment without code changes.
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ResizeServerConfig:
    """Runtime configuration for the resize server."""
    # Cache settings
    cache_enabled: bool = True
    cache_dir: str = "./image_cache"
    cache_max_bytes: int = 2 * 1024 * 1024 * 1024   # 2GB
    cache_max_age_seconds: int = 30 * 24 * 60 * 60  # 30 days
    sweep_interval_seconds: float = 300.0

    # Fetch settings
    connect_timeout: float = 5.0
    read_timeout: float = 15.0
    max_image_size_mb: int = 20

    # Request limits
    max_dimension: int = 2000

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    @property
    def max_image_size_bytes(self) -> int:
        return self.max_image_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "ResizeServerConfig":
        """Build a config from environment variables, falling back to defaults."""
        return cls(
            cache_enabled=_env_bool("ENABLE_CACHE", True),
            cache_dir=os.getenv("CACHE_DIR", "./image_cache"),
            cache_max_bytes=int(os.getenv("CACHE_MAX_BYTES", str(2 * 1024 * 1024 * 1024))),
            cache_max_age_seconds=int(os.getenv("CACHE_MAX_AGE_HOURS", "720")) * 3600,
            sweep_interval_seconds=float(os.getenv("CACHE_SWEEP_INTERVAL_SECONDS", "300")),
            connect_timeout=float(os.getenv("FETCH_CONNECT_TIMEOUT", "5.0")),
            read_timeout=float(os.getenv("FETCH_READ_TIMEOUT", "15.0")),
            max_image_size_mb=int(os.getenv("MAX_IMAGE_SIZE_MB", "20")),
            max_dimension=int(os.getenv("MAX_DIMENSION", "2000")),
            host=os.getenv("SERVER_HOST", "0.0.0.0"),
            port=int(os.getenv("SERVER_PORT", os.getenv("PORT", "8080"))),
        )
