"""Application configuration settings."""

import secrets
import typing as t

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "FoodBridge"
    app_version: str = "1.0.0"
    app_url: str = "http://localhost:8000"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./foodbridge.db"

    # Authentication
    secret_key: str = secrets.token_urlsafe(32)
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 24 hours
    registration_enabled: bool = True

    # Listing safety windows, keyed by freshness value
    freshness_windows_hours: t.Dict[str, float] = {
        "freshly_cooked": 4,
        "fresh": 8,
        "good": 12,
        "near_expiry": 2,
        "use_immediately": 1,
    }
    default_safety_window_hours: float = 6
    default_availability_hours: float = 12

    # Priority thresholds (hours left until safe_until at creation)
    urgent_priority_hours: float = 2
    high_priority_hours: float = 4

    # Pickup codes
    pickup_code_length: int = Field(6, ge=4, le=6)

    # Expiry sweeper
    sweep_interval_minutes: int = 15
    cron_secret_token: str = ""

    # CORS
    cors_origins: t.List[str] = ["*"]

    # Email notifications (optional)
    smtp_enabled: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "foodbridge@localhost"


SETTINGS = Settings()
