"""
Auction Settings

Centralized runtime configuration for the auction backend.
All values are loaded from environment variables (.env is read on import).
"""
import os
import logging
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

load_dotenv(dotenv_path=ENV_FILE)

logger = logging.getLogger(__name__)


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on bad input."""
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {key}={raw!r}, using default {default}")
        return default


class AuctionSettings:
    """
    Settings for the auction service.

    To add a new setting:
    1. Add it here as a class attribute
    2. Load it from an environment variable
    3. Read it through the `settings` singleton
    """

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./cricket_auction.db")
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "")

    # Budget reservations
    AUCTION_RESERVATION_TTL_SECONDS: int = get_int_env("AUCTION_RESERVATION_TTL_SECONDS", 300)

    # Conflict retry (bounded, exponential backoff)
    AUCTION_MAX_CONFLICT_RETRIES: int = get_int_env("AUCTION_MAX_CONFLICT_RETRIES", 4)
    AUCTION_RETRY_BASE_DELAY_MS: int = get_int_env("AUCTION_RETRY_BASE_DELAY_MS", 10)
    AUCTION_RETRY_MAX_DELAY_MS: int = get_int_env("AUCTION_RETRY_MAX_DELAY_MS", 250)

    # Bid rules
    AUCTION_ENFORCE_SQUAD_RESERVE: bool = get_bool_env("AUCTION_ENFORCE_SQUAD_RESERVE", True)
    AUCTION_BID_RATE_LIMIT: str = os.getenv("AUCTION_BID_RATE_LIMIT", "120/minute")

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def cors_origins(self) -> list:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


# Singleton instance for easy importing
settings = AuctionSettings()
