"""
In-process system and request monitoring
"""
import logging
import os
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from greensupia.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

STATUS_HEALTHY = "healthy"
STATUS_WARNING = "warning"
STATUS_CRITICAL = "critical"
STATUS_UNKNOWN = "unknown"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PerformanceMetric:
    endpoint: str
    method: str
    response_time_ms: float
    status_code: int
    timestamp: str = field(default_factory=_utcnow_iso)
    ip: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class SystemMetrics:
    timestamp: str
    uptime: float
    memory_rss_mb: Optional[float]
    load_average: List[float]
    requests: Dict[str, int]
    errors: Dict


class MonitoringSystem:
    """
    Collects request timings, error counts and periodic system snapshots

    History is bounded; the oldest entries are dropped first.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        max_metrics: int = 50,
        max_performance_metrics: int = 25,
        slow_request_ms: float = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.rate_limiter = rate_limiter
        self.max_metrics = max_metrics
        self.max_performance_metrics = max_performance_metrics
        self.slow_request_ms = slow_request_ms
        self.clock = clock

        self.metrics: List[SystemMetrics] = []
        self.performance_metrics: List[PerformanceMetric] = []
        self.error_count = 0
        self.request_count = 0
        self.last_error: Optional[str] = None
        self.last_error_time: Optional[str] = None
        self.start_time = clock()

        self.lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_performance_metric(self, metric: PerformanceMetric) -> None:
        with self.lock:
            self.performance_metrics.append(metric)
            self.request_count += 1
            if len(self.performance_metrics) > self.max_performance_metrics:
                self.performance_metrics = self.performance_metrics[
                    -self.max_performance_metrics:
                ]

        if metric.response_time_ms > self.slow_request_ms:
            logger.warning(
                f"Slow request: {metric.method} {metric.endpoint} "
                f"took {metric.response_time_ms:.0f}ms (status {metric.status_code})"
            )

    def record_error(self, error: Exception, context: Optional[str] = None) -> None:
        with self.lock:
            self.error_count += 1
            self.last_error = type(error).__name__
            self.last_error_time = _utcnow_iso()
            count = self.error_count

        # Message carries the type only; exc_info carries the traceback
        logger.error(
            f"Error in {context or 'unknown context'}: {type(error).__name__} "
            f"(total errors: {count})",
            exc_info=error,
        )

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def _memory_rss_mb(self) -> Optional[float]:
        # Current resident set size; second field of statm is in pages
        try:
            with open("/proc/self/statm") as f:
                pages = int(f.read().split()[1])
            return round(pages * os.sysconf("SC_PAGE_SIZE") / (1024 * 1024), 2)
        except (OSError, ValueError, IndexError, AttributeError):
            return None

    def _load_average(self) -> List[float]:
        if hasattr(os, "getloadavg"):
            return list(os.getloadavg())
        return []

    def collect_system_metrics(self) -> SystemMetrics:
        """Take a snapshot and append it to the history"""
        stats = self.rate_limiter.get_stats()

        with self.lock:
            snapshot = SystemMetrics(
                timestamp=_utcnow_iso(),
                uptime=round(self.clock() - self.start_time, 3),
                memory_rss_mb=self._memory_rss_mb(),
                load_average=self._load_average(),
                requests={
                    "total": self.request_count,
                    "active": stats["active_ips"],
                    "blocked": stats["blocked_ips"],
                },
                errors={
                    "count": self.error_count,
                    "last_error": self.last_error,
                    "last_error_time": self.last_error_time,
                },
            )
            self.metrics.append(snapshot)
            if len(self.metrics) > self.max_metrics:
                self.metrics = self.metrics[-self.max_metrics:]

        logger.debug(f"Collected system metrics: {snapshot.requests}")
        return snapshot

    def get_current_status(self) -> Optional[SystemMetrics]:
        with self.lock:
            return self.metrics[-1] if self.metrics else None

    def get_metrics_history(self, limit: int = 50) -> List[SystemMetrics]:
        with self.lock:
            return self.metrics[-min(limit, self.max_metrics):] if limit > 0 else []

    def get_performance_history(self, limit: int = 25) -> List[PerformanceMetric]:
        with self.lock:
            if limit <= 0:
                return []
            return self.performance_metrics[-min(limit, self.max_performance_metrics):]

    def get_system_summary(self) -> Dict:
        """
        Summarize the latest snapshot into a health status

        Error rate is errors per recorded request, as a percentage.
        """
        current = self.get_current_status()
        if current is None:
            return {
                "status": STATUS_UNKNOWN,
                "uptime": 0,
                "error_rate": 0,
                "active_ips": 0,
                "blocked_ips": 0,
                "requests": 0,
            }

        with self.lock:
            error_rate = self.error_count / max(self.request_count, 1) * 100
            requests = self.request_count

        blocked = current.requests["blocked"]
        if error_rate > 10 or blocked > 50:
            status = STATUS_CRITICAL
        elif error_rate > 5 or blocked > 20:
            status = STATUS_WARNING
        else:
            status = STATUS_HEALTHY

        return {
            "status": status,
            "uptime": current.uptime,
            "error_rate": round(error_rate, 2),
            "active_ips": current.requests["active"],
            "blocked_ips": blocked,
            "requests": requests,
        }

    def check_alerts(self) -> Dict:
        summary = self.get_system_summary()

        if summary["status"] == STATUS_CRITICAL:
            logger.critical(f"System status is critical: {summary}")
        elif summary["status"] == STATUS_WARNING:
            logger.warning(f"System status needs attention: {summary}")

        return summary

    def export_metrics(self) -> Dict:
        """Export history and summary for external monitoring"""
        with self.lock:
            system = [asdict(m) for m in self.metrics]
            performance = [asdict(m) for m in self.performance_metrics]

        return {
            "system": system,
            "performance": performance,
            "summary": self.get_system_summary(),
        }

    def reset_metrics(self) -> None:
        with self.lock:
            self.metrics = []
            self.performance_metrics = []
            self.error_count = 0
            self.request_count = 0
            self.last_error = None
            self.last_error_time = None
            self.start_time = self.clock()

        logger.info("Monitoring metrics reset")

    # -------------------------------------------------------------------------
    # Background collection
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval: float = 300) -> None:
        """Collect a snapshot and check alerts every ``interval`` seconds"""
        if self.is_running:
            logger.warning("Monitoring is already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, args=(interval,), name="monitoring", daemon=True
        )
        self._thread.start()
        logger.info(f"Monitoring started, collecting every {interval:.0f}s")

    def stop(self) -> None:
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=5)
        self._thread = None
        logger.info("Monitoring stopped")

    def _run(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                self.collect_system_metrics()
                self.check_alerts()
            except Exception as e:
                logger.error(f"System metrics collection failed: {e}")
