"""Startup validation — catch misconfigurations before the app serves traffic."""
from __future__ import annotations

import logging
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config.settings import settings

logger = logging.getLogger(__name__)


def require_database_url() -> str:
    """Return the configured database URL or abort the process.

    Called when the engine is built, so every entrypoint (API, scheduler,
    CLI, migrations) fails fast on a missing connection string.
    """
    if not settings.DATABASE_URL:
        logger.critical("DATABASE_URL is not set — cannot connect to the database.")
        sys.exit(1)
    return settings.DATABASE_URL


def validate_settings() -> list[str]:
    """Validate configuration. Returns list of warnings (empty = all good).

    Raises SystemExit for critical misconfigurations.
    """
    warnings: list[str] = []
    require_database_url()
    is_prod = settings.ENVIRONMENT == "production"

    try:
        ZoneInfo(settings.TIMEZONE)
    except ZoneInfoNotFoundError:
        logger.critical("TIMEZONE %r is not a known IANA zone.", settings.TIMEZONE)
        sys.exit(1)

    if not 1 <= settings.PAY_PERIOD_START_DAY <= 28:
        logger.critical("PAY_PERIOD_START_DAY must be between 1 and 28.")
        sys.exit(1)

    if is_prod and "*" in settings.CORS_ORIGINS:
        warnings.append("CORS_ORIGINS is set to * — restrict in production")

    if not settings.MAILTRAP_API_KEY:
        warnings.append("MAILTRAP_API_KEY not set — partner emails cannot be delivered")

    if not settings.ADMIN_API_KEY:
        warnings.append("ADMIN_API_KEY not set — admin endpoints are disabled")

    for w in warnings:
        logger.warning("⚠️  %s", w)

    if not warnings:
        logger.info("✅ All startup checks passed")

    return warnings
