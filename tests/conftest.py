# tests/conftest.py
import pytest

from greensupia.config import Config
from greensupia.utils.rate_limiter import RateLimiter


class FakeClock:
    """Manually advanced replacement for ``time.time``"""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(clock=clock)


@pytest.fixture()
def test_config() -> Config:
    return Config(
        ENCRYPTION_KEY="test-encryption-key",
        ADMIN_TOKEN="test-admin-token",
        RATE_LIMIT_MAX_REQUESTS=100,
        MONITORING_ENABLED=False,
        LOG_LEVEL="INFO",
        LOG_FILE_PATH="",
    )
