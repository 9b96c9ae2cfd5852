"""Runtime settings loaded from environment variables."""

import os
from functools import lru_cache

from pydantic import BaseModel, Field

DEFAULT_BASE_URL = "https://simstudio.ai"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_LOOP_ITERATIONS = 1000
DEFAULT_USAGE_CACHE_TTL_SECONDS = 60.0


class Settings(BaseModel):
    """Process configuration.

    Every field maps to an environment variable of the same name in upper case
    (``api_key`` is read from ``STUDIO_API_KEY``, ``base_url`` from ``STUDIO_API_URL``).
    """

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = Field(DEFAULT_TIMEOUT_SECONDS, gt=0)
    app_url: str = "http://localhost:3000"
    database_path: str = "./data/studio.db"
    webhook_polling_secret: str | None = None
    max_loop_iterations: int = Field(DEFAULT_MAX_LOOP_ITERATIONS, ge=1)
    usage_cache_ttl_seconds: float = Field(DEFAULT_USAGE_CACHE_TTL_SECONDS, ge=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current environment."""
        return cls(
            api_key=os.getenv("STUDIO_API_KEY", ""),
            base_url=os.getenv("STUDIO_API_URL", DEFAULT_BASE_URL),
            timeout_seconds=float(
                os.getenv("STUDIO_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
            ),
            app_url=os.getenv("APP_URL", "http://localhost:3000"),
            database_path=os.getenv("DATABASE_PATH", "./data/studio.db"),
            webhook_polling_secret=os.getenv("WEBHOOK_POLLING_SECRET") or None,
            max_loop_iterations=int(
                os.getenv("MAX_LOOP_ITERATIONS", DEFAULT_MAX_LOOP_ITERATIONS)
            ),
            usage_cache_ttl_seconds=float(
                os.getenv("USAGE_CACHE_TTL_SECONDS", DEFAULT_USAGE_CACHE_TTL_SECONDS)
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings (cached after first read)."""
    return Settings.from_env()
