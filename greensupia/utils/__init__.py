"""
Utility modules
"""

from .encryption import (
    EncryptionError,
    EncryptionService,
    decrypt,
    encrypt,
    generate_random_string,
    hash_password,
    verify_password,
)
from .logging_config import RecentLogBuffer, configure_logging
from .rate_limiter import (
    CleanupScheduler,
    RateLimiter,
    RateLimitExceeded,
    RateLimitStatus,
    rate_limited,
)

__all__ = [
    "EncryptionError",
    "EncryptionService",
    "encrypt",
    "decrypt",
    "hash_password",
    "verify_password",
    "generate_random_string",
    "configure_logging",
    "RecentLogBuffer",
    "CleanupScheduler",
    "RateLimiter",
    "RateLimitExceeded",
    "RateLimitStatus",
    "rate_limited",
]
