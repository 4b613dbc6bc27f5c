"""App settings — loaded from environment."""
from __future__ import annotations

import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # API
    API_HOST = os.getenv("API_HOST", "0.0.0.0")
    API_PORT = int(os.getenv("API_PORT", "8000"))
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

    # Database (required, startup aborts without it)
    DATABASE_URL = os.getenv("DATABASE_URL", "")

    # Calendar dates ("today", snapshot keys) are derived in this zone
    TIMEZONE = os.getenv("TIMEZONE", "UTC")

    # Pay periods run from this day of one month to the day before it in the next
    PAY_PERIOD_START_DAY = int(os.getenv("PAY_PERIOD_START_DAY", "21"))

    # Analytics retention (days)
    DAILY_RETENTION_DAYS = int(os.getenv("DAILY_RETENTION_DAYS", "90"))
    WEEKLY_RETENTION_DAYS = int(os.getenv("WEEKLY_RETENTION_DAYS", "365"))
    MONTHLY_RETENTION_DAYS = int(os.getenv("MONTHLY_RETENTION_DAYS", str(3 * 365)))
    SNAPSHOT_RETENTION_DAYS = int(os.getenv("SNAPSHOT_RETENTION_DAYS", "90"))

    # Per-domain referrer log window
    ROLLING_WINDOW_HOURS = int(os.getenv("ROLLING_WINDOW_HOURS", "24"))

    # Scheduler
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    RUN_NOW_TIMEOUT_SECONDS = float(os.getenv("RUN_NOW_TIMEOUT_SECONDS", "120"))

    # Email (Mailtrap send API)
    MAILTRAP_API_KEY = os.getenv("MAILTRAP_API_KEY", "")
    MAILTRAP_API_BASE = os.getenv("MAILTRAP_API_BASE", "https://send.api.mailtrap.io")
    MAILTRAP_FROM_EMAIL = os.getenv("MAILTRAP_FROM_EMAIL", "noreply@rakuado.com")
    MAILTRAP_FROM_NAME = os.getenv("MAILTRAP_FROM_NAME", "Rakuado")
    EMAIL_SEND_DELAY_SECONDS = float(os.getenv("EMAIL_SEND_DELAY_SECONDS", "0.5"))

    # Admin API key (for protected admin endpoints)
    ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "")

    # CORS origins (comma-separated, or * for dev)
    CORS_ORIGINS = [
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")
    ]

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

    # Logging
    LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
