"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Threshold values here are raw inputs only; at startup they are frozen
into an ``EngineConfig`` (see ``core.thresholds``) which is what the
density, alerting and dispatch components actually receive.

Usage:
    from crowdwatch.app.core.config import settings
    print(settings.DATABASE_URL)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


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
    APP_NAME: str = "CrowdWatch Density Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 1
    RELOAD: bool = True  # dev only

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Document store ──
    STORE_BACKEND: str = "sql"  # sql | memory
    DATABASE_URL: str = "sqlite+aiosqlite:///./crowdwatch.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    # ── Redis (distributed alert dedup claims) ──
    REDIS_URL: str = "redis://localhost:6379/0"
    ALERT_DEDUP_DISTRIBUTED: bool = False

    # ── Push notifications ──
    PUSH_PROVIDER: str = "simulation"  # simulation | fcm
    FCM_PROJECT_ID: Optional[str] = None
    FCM_ACCESS_TOKEN: Optional[str] = None
    FCM_BASE_URL: str = "https://fcm.googleapis.com/v1"
    FCM_IID_URL: str = "https://iid.googleapis.com/iid/v1"
    PUSH_SEND_TIMEOUT_SECONDS: float = 10.0
    PUSH_CLICK_ACTION: str = "FLUTTER_NOTIFICATION_CLICK"

    # ── Scheduling ──
    SCHEDULER_ENABLED: bool = True
    AGGREGATION_INTERVAL_SECONDS: int = 60
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 3600

    # ── Density status breakpoints (people / m²) ──
    DENSITY_MODERATE: float = 1.6
    DENSITY_HIGH: float = 3.1
    DENSITY_CRITICAL: float = 4.6

    # ── Alerting ──
    ALERT_BASIS: str = "occupancy"  # occupancy | density
    OCCUPANCY_WARNING: float = 0.70
    OCCUPANCY_HIGH: float = 0.85
    OCCUPANCY_CRITICAL: float = 0.95
    DENSITY_ALERT_WARNING: float = 3.0
    DENSITY_ALERT_CRITICAL: float = 4.5
    ALERT_DEDUP_WINDOW_MINUTES: int = 30
    ALERT_TTL_HOURS: int = 2

    # ── Aggregation ──
    SAMPLE_LOOKBACK_SECONDS: int = 30
    SAMPLE_RETENTION_SECONDS: int = 300
    MIN_ZONE_AREA_SQM: float = 1.0
    AREA_PER_PERSON_SQM: float = 0.5

    # ── Incidents / onboarding ──
    INCIDENT_BODY_MAX_CHARS: int = 120
    PROFILE_POLL_ATTEMPTS: int = 3
    PROFILE_POLL_BASE_DELAY_SECONDS: float = 2.0

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
