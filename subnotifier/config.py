"""Configuration management from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    # Database
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "./data/subnotifier.db"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Engine
    TICK_INTERVAL: int = int(os.getenv("TICK_INTERVAL", "60"))
    SEND_TIMEOUT: float = float(os.getenv("SEND_TIMEOUT", "10"))

    # Empty means server-local wall clock
    TIMEZONE: str = os.getenv("TIMEZONE", "")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration."""
        if not cls.TELEGRAM_BOT_TOKEN:
            raise ValueError("TELEGRAM_BOT_TOKEN environment variable is required")

        if cls.TICK_INTERVAL <= 0 or cls.TICK_INTERVAL > 60:
            raise ValueError("TICK_INTERVAL must be between 1 and 60 seconds")

        if cls.SEND_TIMEOUT <= 0:
            raise ValueError("SEND_TIMEOUT must be positive")

        # Ensure database directory exists
        cls.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
