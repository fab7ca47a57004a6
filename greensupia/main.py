"""
FastAPI server exposing rate limiting and monitoring for the Greensupia site
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import hmac
import logging
import math
import time

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from greensupia.config import Config, config as default_config
from greensupia.monitoring import MonitoringSystem, PerformanceMetric
from greensupia.utils.logging_config import RecentLogBuffer, configure_logging
from greensupia.utils.rate_limiter import CleanupScheduler, RateLimiter

logger = logging.getLogger(__name__)

RATE_LIMIT_EXEMPT_PATHS = {"/health"}
ADMIN_TOKEN_HEADER = "x-admin-token"


def get_client_ip(request: Request) -> str:
    """Resolve the client IP, preferring the first X-Forwarded-For entry"""
    forwarded = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    if forwarded:
        return forwarded
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RateLimitStatusResponse(BaseModel):
    ip: str
    allowed: bool
    remaining: int
    reset_time: float
    blocked: bool
    block_expiry: float


class RateLimitStatsResponse(BaseModel):
    total_ips: int
    blocked_ips: int
    active_ips: int


class UnblockResponse(BaseModel):
    ip: str
    unblocked: bool


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_config(request: Request) -> Config:
    return request.app.state.config


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_monitoring(request: Request) -> MonitoringSystem:
    return request.app.state.monitoring


def get_log_buffer(request: Request) -> RecentLogBuffer:
    return request.app.state.log_buffer


def require_admin(request: Request, cfg: Config = Depends(get_config)) -> None:
    """Reject admin requests without the configured X-Admin-Token"""
    if not cfg.ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Admin access disabled")
    token = request.headers.get(ADMIN_TOKEN_HEADER, "")
    if not hmac.compare_digest(token.encode(), cfg.ADMIN_TOKEN.encode()):
        logger.warning(f"Rejected admin request from {get_client_ip(request)}")
        raise HTTPException(status_code=401, detail="Invalid admin token")


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(
    cfg: Optional[Config] = None,
    rate_limiter: Optional[RateLimiter] = None,
    monitoring: Optional[MonitoringSystem] = None,
) -> FastAPI:
    """
    Build the application with its services

    Args:
        cfg: Configuration, defaults to the environment-loaded config
        rate_limiter: Limiter shared by all requests of this app
        monitoring: Monitoring system, built around ``rate_limiter`` if omitted

    Returns:
        Configured FastAPI app
    """
    cfg = cfg or default_config

    log_buffer = configure_logging(
        level=cfg.LOG_LEVEL,
        log_file=cfg.LOG_FILE_PATH or None,
        max_bytes=cfg.LOG_MAX_BYTES,
        backup_count=cfg.LOG_BACKUP_COUNT,
    )

    if rate_limiter is None:
        rate_limiter = RateLimiter(
            max_requests=cfg.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=cfg.RATE_LIMIT_WINDOW_SECONDS,
            block_duration=cfg.RATE_LIMIT_BLOCK_SECONDS,
        )
    if monitoring is None:
        monitoring = MonitoringSystem(rate_limiter)

    cleanup_scheduler = CleanupScheduler(
        rate_limiter, interval=cfg.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cleanup_scheduler.start()
        if cfg.MONITORING_ENABLED:
            monitoring.start(interval=cfg.MONITORING_INTERVAL_SECONDS)
        logger.info("Greensupia API ready")
        try:
            yield
        finally:
            monitoring.stop()
            cleanup_scheduler.stop()
            logger.info("Greensupia API stopped")

    app = FastAPI(
        title="Greensupia API",
        description="Rate limiting and monitoring for the Greensupia website",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = cfg
    app.state.rate_limiter = rate_limiter
    app.state.monitoring = monitoring
    app.state.cleanup_scheduler = cleanup_scheduler
    app.state.log_buffer = log_buffer

    @app.middleware("http")
    async def rate_limit_and_measure(request: Request, call_next):
        ip = get_client_ip(request)
        path = request.url.path
        started = time.perf_counter()

        if path not in RATE_LIMIT_EXEMPT_PATHS and not rate_limiter.is_allowed(ip):
            status = rate_limiter.get_status(ip)
            until = status.block_expiry if status.blocked else status.reset_time
            retry_after = max(0, math.ceil(until - rate_limiter.clock()))
            response = JSONResponse(
                status_code=429,
                content={"error": "Too many requests", "retry_after": retry_after},
                headers={"Retry-After": str(retry_after)},
            )
        else:
            try:
                response = await call_next(request)
            except Exception as e:
                monitoring.record_error(e, context=f"{request.method} {path}")
                response = JSONResponse(
                    status_code=500, content={"error": "Internal server error"}
                )

        monitoring.record_performance_metric(
            PerformanceMetric(
                endpoint=path,
                method=request.method,
                response_time_ms=(time.perf_counter() - started) * 1000,
                status_code=response.status_code,
                ip=ip,
                request_id=request.headers.get("x-request-id"),
            )
        )
        return response

    _register_routes(app)
    return app


# =============================================================================
# ROUTES
# =============================================================================

def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "greensupia",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/status")
    async def service_status(cfg: Config = Depends(get_config)):
        """Get service status with configuration validation"""
        errors = cfg.validate()
        return {
            "healthy": len(errors) == 0,
            "configuration_errors": errors,
            "encryption_configured": bool(cfg.ENCRYPTION_KEY),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get(
        "/rate-limit/stats",
        response_model=RateLimitStatsResponse,
        dependencies=[Depends(require_admin)],
    )
    async def rate_limit_stats(limiter: RateLimiter = Depends(get_rate_limiter)):
        """Aggregate rate limiter counts"""
        return limiter.get_stats()

    @app.get(
        "/rate-limit/status/{ip}",
        response_model=RateLimitStatusResponse,
        dependencies=[Depends(require_admin)],
    )
    async def rate_limit_status(ip: str, limiter: RateLimiter = Depends(get_rate_limiter)):
        """Current rate limit state of an IP"""
        return {"ip": ip, **limiter.get_status(ip).to_dict()}

    @app.post(
        "/rate-limit/unblock/{ip}",
        response_model=UnblockResponse,
        dependencies=[Depends(require_admin)],
    )
    async def rate_limit_unblock(ip: str, limiter: RateLimiter = Depends(get_rate_limiter)):
        """Lift a block on an IP"""
        if not limiter.unblock(ip):
            raise HTTPException(status_code=404, detail="IP not tracked")
        logger.info(f"Admin lifted rate limit block for {ip}")
        return {"ip": ip, "unblocked": True}

    @app.get("/monitoring", dependencies=[Depends(require_admin)])
    async def monitoring_report(
        log_limit: int = 50,
        monitoring: MonitoringSystem = Depends(get_monitoring),
        log_buffer: RecentLogBuffer = Depends(get_log_buffer),
    ):
        """Metrics history, health summary and recent logs"""
        return {
            **monitoring.export_metrics(),
            "recent_logs": log_buffer.get_recent(log_limit),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting uvicorn on port {default_config.PORT}")
    uvicorn.run(create_app(), host="0.0.0.0", port=default_config.PORT)
