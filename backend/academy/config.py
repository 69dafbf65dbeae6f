"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Racing Academy API"
    APP_VERSION: str = "1.4.0"
    DEBUG: bool = False

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'academy.db'}"
    SEED_COURSES: bool = True

    # --- Security ---
    CORS_ORIGINS: list[str] = ["*"]

    # --- Enrollment & Payments ---
    DEFAULT_CURRENCY: str = "USD"
    STALE_PAYMENT_TIMEOUT_HOURS: int = 24
    NOTIFICATION_POLICY: str = "best_effort"   # best_effort | required
    PAYMENT_RATE_LIMIT: int = 5
    PAYMENT_RATE_WINDOW: int = 60

    # --- Email ---
    SUPPORT_EMAIL: str = "support@akwracing.com"
    WEBSITE_URL: str = "https://akwracing.com"

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
