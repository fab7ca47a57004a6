"""
Per-IP rate limiting with temporary blocking
"""
import logging
import threading
import time
from dataclasses import asdict, dataclass
from functools import wraps
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_REQUESTS = 100
DEFAULT_BLOCK_SECONDS = 300.0
DEFAULT_CLEANUP_INTERVAL_SECONDS = 600.0


@dataclass
class RateLimitRecord:
    """Request accounting for a single IP. Times are epoch seconds."""

    count: int
    reset_time: float
    blocked: bool = False
    block_expiry: float = 0.0


@dataclass
class RateLimitStatus:
    allowed: bool
    remaining: int
    reset_time: float
    blocked: bool
    block_expiry: float

    def to_dict(self) -> Dict:
        return asdict(self)


class RateLimitExceeded(Exception):
    """Raised by ``rate_limited`` when a call is denied"""

    def __init__(self, key: str, status: RateLimitStatus):
        super().__init__(f"Rate limit exceeded for {key}")
        self.key = key
        self.status = status


class RateLimiter:
    """
    A thread-safe, in-memory rate limiter keyed by client IP

    Each IP gets a fixed window of ``window_seconds``. Exceeding the limit
    blocks the IP for ``block_duration`` seconds; denied requests while
    blocked do not extend the block. State is per process.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        block_duration: float = DEFAULT_BLOCK_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the rate limiter

        Args:
            max_requests: Requests allowed per window when no limit is given
            window_seconds: Window length when none is given
            block_duration: How long an IP stays blocked after exceeding the limit
            clock: Returns the current time in seconds
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.block_duration = block_duration
        self.clock = clock
        self.requests: Dict[str, RateLimitRecord] = {}
        self.lock = threading.Lock()

    def is_allowed(
        self,
        ip: str,
        limit: Optional[int] = None,
        window: Optional[float] = None,
    ) -> bool:
        """
        Decide whether a request from ``ip`` may proceed

        Args:
            ip: Client IP address
            limit: Requests per window, defaults to ``max_requests``
            window: Window length in seconds, defaults to ``window_seconds``

        Returns:
            True if the request is allowed
        """
        limit = limit or self.max_requests
        window = window or self.window_seconds

        with self.lock:
            now = self.clock()
            record = self.requests.get(ip)

            if record is not None and record.blocked:
                if now < record.block_expiry:
                    return False
                # Block expired, evaluate as a fresh request below
                record.blocked = False
                record.count = 0
                logger.info(f"Rate limit block expired for {ip}")

            if record is None or now > record.reset_time:
                self.requests[ip] = RateLimitRecord(count=1, reset_time=now + window)
                return True

            if record.count >= limit:
                record.blocked = True
                record.block_expiry = now + self.block_duration
                logger.warning(
                    f"Blocking {ip} for {self.block_duration:.0f}s "
                    f"after {record.count} requests"
                )
                return False

            record.count += 1
            return True

    def get_status(self, ip: str, limit: Optional[int] = None) -> RateLimitStatus:
        """
        Get the current rate limit state for an IP without changing it

        Args:
            ip: Client IP address
            limit: Limit to report against, defaults to ``max_requests``

        Returns:
            RateLimitStatus, optimistic defaults for unseen IPs
        """
        limit = limit or self.max_requests

        with self.lock:
            now = self.clock()
            record = self.requests.get(ip)

            if record is None:
                return RateLimitStatus(
                    allowed=True,
                    remaining=limit,
                    reset_time=now + self.window_seconds,
                    blocked=False,
                    block_expiry=0.0,
                )

            is_blocked = record.blocked and now < record.block_expiry
            return RateLimitStatus(
                allowed=not is_blocked and record.count < limit,
                remaining=max(0, limit - record.count),
                reset_time=record.reset_time,
                blocked=is_blocked,
                block_expiry=record.block_expiry,
            )

    def unblock(self, ip: str) -> bool:
        """
        Lift a block and reset the counter for an IP

        Returns:
            True if the IP had a record
        """
        with self.lock:
            record = self.requests.get(ip)
            if record is None:
                return False

            record.blocked = False
            record.block_expiry = 0.0
            record.count = 0

        logger.info(f"Unblocked {ip}")
        return True

    def cleanup(self) -> int:
        """
        Drop records whose window and block period have both elapsed

        Returns:
            Number of records removed
        """
        with self.lock:
            now = self.clock()
            expired = [
                ip
                for ip, record in self.requests.items()
                if now > record.reset_time + self.block_duration
            ]
            for ip in expired:
                del self.requests[ip]

        if expired:
            logger.debug(f"Rate limiter cleanup removed {len(expired)} records")
        return len(expired)

    def get_stats(self) -> Dict[str, int]:
        """Get aggregate counts of tracked, blocked and active IPs"""
        with self.lock:
            now = self.clock()
            blocked = sum(
                1 for r in self.requests.values() if r.blocked and now < r.block_expiry
            )
            active = sum(1 for r in self.requests.values() if now <= r.reset_time)

            return {
                "total_ips": len(self.requests),
                "blocked_ips": blocked,
                "active_ips": active,
            }


class CleanupScheduler:
    """Runs ``RateLimiter.cleanup`` periodically on a daemon thread"""

    def __init__(
        self,
        limiter: RateLimiter,
        interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
    ):
        self.limiter = limiter
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            logger.warning("Rate limiter cleanup is already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="rate-limit-cleanup", daemon=True
        )
        self._thread.start()
        logger.info(f"Rate limiter cleanup scheduled every {self.interval:.0f}s")

    def stop(self) -> None:
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=5)
        self._thread = None
        logger.info("Rate limiter cleanup stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.limiter.cleanup()
            except Exception as e:
                logger.error(f"Rate limiter cleanup failed: {e}")


def rate_limited(limiter: RateLimiter, key_func: Callable = None) -> Callable:
    """
    Decorator to rate limit a function

    Args:
        limiter: RateLimiter instance to use
        key_func: Optional function to extract the rate limit key from args/kwargs

    Raises:
        RateLimitExceeded: When the limiter denies the call
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            if key_func:
                key = key_func(*args, **kwargs)
            else:
                key = "default"

            if not limiter.is_allowed(key):
                raise RateLimitExceeded(key, limiter.get_status(key))

            return func(*args, **kwargs)

        return wrapper

    return decorator
