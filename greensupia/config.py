"""
Configuration management for the Greensupia security toolkit
"""
import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Config:
    """Application configuration loaded from environment variables"""

    # Encryption
    ENCRYPTION_KEY: str = field(default_factory=lambda: os.getenv("ENCRYPTION_KEY", ""))

    # Admin endpoints are disabled while this is empty
    ADMIN_TOKEN: str = field(default_factory=lambda: os.getenv("ADMIN_TOKEN", ""))

    # Rate Limits
    RATE_LIMIT_WINDOW_SECONDS: float = field(
        default_factory=lambda: float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    )
    RATE_LIMIT_MAX_REQUESTS: int = field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100"))
    )
    RATE_LIMIT_BLOCK_SECONDS: float = field(
        default_factory=lambda: float(os.getenv("RATE_LIMIT_BLOCK_SECONDS", "300"))
    )
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: float = field(
        default_factory=lambda: float(
            os.getenv("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "600")
        )
    )

    # Monitoring
    MONITORING_ENABLED: bool = field(
        default_factory=lambda: _env_bool("MONITORING_ENABLED", "true")
    )
    MONITORING_INTERVAL_SECONDS: float = field(
        default_factory=lambda: float(os.getenv("MONITORING_INTERVAL_SECONDS", "300"))
    )

    # Logging
    LOG_LEVEL: str = field(
        default_factory=lambda: os.getenv(
            "LOG_LEVEL", "DEBUG" if _env_bool("DEBUG", "false") else "INFO"
        ).upper()
    )
    LOG_FILE_PATH: str = field(default_factory=lambda: os.getenv("LOG_FILE_PATH", ""))
    LOG_MAX_BYTES: int = field(
        default_factory=lambda: int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))
    )
    LOG_BACKUP_COUNT: int = field(
        default_factory=lambda: int(os.getenv("LOG_BACKUP_COUNT", "5"))
    )

    # Server Settings
    PORT: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    DEBUG: bool = field(default_factory=lambda: _env_bool("DEBUG", "false"))

    def validate(self) -> List[str]:
        """Validate required configuration values"""
        errors = []

        if not self.ENCRYPTION_KEY:
            errors.append("ENCRYPTION_KEY is required")
        if self.RATE_LIMIT_MAX_REQUESTS <= 0:
            errors.append("RATE_LIMIT_MAX_REQUESTS must be positive")
        if self.RATE_LIMIT_WINDOW_SECONDS <= 0:
            errors.append("RATE_LIMIT_WINDOW_SECONDS must be positive")
        if self.RATE_LIMIT_BLOCK_SECONDS <= 0:
            errors.append("RATE_LIMIT_BLOCK_SECONDS must be positive")
        if self.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS <= 0:
            errors.append("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS must be positive")

        return errors


# Singleton instance
config = Config()
