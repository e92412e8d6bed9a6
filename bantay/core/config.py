"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development; the GitHub
record store and production mode must be configured explicitly.

Usage:
    from bantay.core.config import settings
    print(settings.THREAT_THRESHOLD)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from bantay.core.errors import ConfigurationError

# Metro Manila bounding polygon (closed ring, [lat, lng])
METRO_MANILA_POLYGON: List[List[float]] = [
    [14.75, 120.90],
    [14.75, 121.15],
    [14.40, 121.15],
    [14.40, 120.90],
    [14.75, 120.90],
]


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Bantay-AI Threat Status"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RELOAD: bool = True  # auto-reload on file changes (dev only)

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Threat classification ──
    THREAT_THRESHOLD: float = 2.0  # water level (m) that raises a threat
    PRECIPITATION_THRESHOLD_MM: float = 2.0
    THREAT_POLYGON: List[List[float]] = METRO_MANILA_POLYGON
    THREAT_SOURCES: List[str] = ["Open-Meteo"]
    DEFAULT_STATUS_SOURCE: str = "PAGASA"

    # ── External data sources ──
    OPEN_METEO_URL: str = (
        "https://api.open-meteo.com/v1/forecast"
        "?latitude=14.60&longitude=120.98&hourly=precipitation"
    )
    SENSOR_FEED_URL: Optional[str] = None  # JSON list of water-level stations
    FETCH_TIMEOUT: float = 15.0  # seconds

    # ── Versioned record store ──
    STORE_BACKEND: str = "memory"  # memory | github
    STORE_BASE_URL: str = "https://api.github.com"
    STORE_TOKEN: Optional[str] = None
    STORE_OWNER: Optional[str] = None
    STORE_REPO: Optional[str] = None
    STORE_BRANCH: Optional[str] = None
    STORE_DATA_PREFIX: str = "_data"

    # ── Scheduling ──
    RECONCILE_SCHEDULE_ENABLED: bool = False  # in-process loop; else external trigger
    RECONCILE_INTERVAL_MINUTES: float = 10.0

    # ── Client ──
    CLIENT_API_BASE_URL: str = "http://localhost:8000/api/v1"
    CLIENT_POLL_INTERVAL_SECONDS: float = 300.0  # 5 minutes
    CLIENT_STATE_PATH: str = ".bantay/session.json"
    NEARBY_SENSOR_RADIUS_KM: float = 10.0

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    def validate_store(self) -> None:
        """
        Fail fast when the record store target is undefined.

        Raises ConfigurationError; called once at application startup.
        """
        backend = self.STORE_BACKEND.lower()
        if backend not in ("memory", "github"):
            raise ConfigurationError(
                f"Unknown STORE_BACKEND '{self.STORE_BACKEND}'",
                setting="STORE_BACKEND",
            )
        if backend == "github":
            missing = [
                name for name in ("STORE_OWNER", "STORE_REPO", "STORE_TOKEN")
                if not getattr(self, name)
            ]
            if missing:
                raise ConfigurationError(
                    f"GitHub record store requires {', '.join(missing)}",
                    setting=missing[0],
                    missing=missing,
                )
        elif self.is_production:
            raise ConfigurationError(
                "In-memory record store cannot be used in production",
                setting="STORE_BACKEND",
            )


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
