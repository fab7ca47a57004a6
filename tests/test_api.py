# tests/test_api.py
"""Tests for the FastAPI surface: rate limiting middleware and admin endpoints."""

import logging

import pytest
from fastapi.testclient import TestClient

from greensupia.config import Config
from greensupia.main import create_app, get_client_ip
from greensupia.monitoring import MonitoringSystem
from greensupia.utils.logging_config import RecentLogBuffer
from greensupia.utils.rate_limiter import RateLimiter

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


@pytest.fixture()
def app_limiter(clock) -> RateLimiter:
    return RateLimiter(max_requests=3, clock=clock)


@pytest.fixture()
def app(test_config, app_limiter):
    return create_app(cfg=test_config, rate_limiter=app_limiter)


@pytest.fixture()
def client(app):
    return TestClient(app)


class TestHealth:
    """Health and status endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_is_not_rate_limited(self, client):
        for _ in range(10):
            assert client.get("/health").status_code == 200

    def test_status_reports_configuration(self, client):
        body = client.get("/status").json()

        assert body["healthy"] is True
        assert body["encryption_configured"] is True

    def test_status_with_missing_key(self, app_limiter):
        cfg = Config(ENCRYPTION_KEY="", MONITORING_ENABLED=False, LOG_FILE_PATH="")
        client = TestClient(create_app(cfg=cfg, rate_limiter=app_limiter))

        body = client.get("/status").json()

        assert body["healthy"] is False
        assert "ENCRYPTION_KEY is required" in body["configuration_errors"]


class TestRateLimitMiddleware:
    """429 handling per client IP."""

    def test_blocks_after_limit(self, client):
        headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
        for _ in range(3):
            assert client.get("/status", headers=headers).status_code == 200

        response = client.get("/status", headers=headers)

        assert response.status_code == 429
        assert response.json() == {"error": "Too many requests", "retry_after": 300}
        assert response.headers["Retry-After"] == "300"

    def test_other_clients_unaffected(self, client):
        blocked = {"X-Forwarded-For": "203.0.113.7"}
        for _ in range(4):
            client.get("/status", headers=blocked)

        assert client.get("/status").status_code == 200

    def test_block_expires(self, client, clock):
        headers = {"X-Forwarded-For": "203.0.113.7"}
        for _ in range(4):
            client.get("/status", headers=headers)

        clock.advance(300)
        assert client.get("/status", headers=headers).status_code == 200

    def test_requests_are_recorded(self, client, app):
        client.get("/health")
        client.get("/status")

        history = app.state.monitoring.get_performance_history()
        assert [m.endpoint for m in history] == ["/health", "/status"]
        assert history[0].status_code == 200

    def test_unhandled_error_returns_generic_500(self, app):
        @app.get("/boom")
        async def boom():
            raise RuntimeError("secret internal detail")

        client = TestClient(app)
        response = client.get("/boom")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert "secret" not in response.text
        assert app.state.monitoring.error_count == 1


class TestAdminAuth:
    """Admin endpoints require the configured token."""

    def _block(self, client, ip):
        headers = {"X-Forwarded-For": ip}
        for _ in range(4):
            client.get("/status", headers=headers)
        assert client.get("/status", headers=headers).status_code == 429

    def test_spoofed_forwarded_for_cannot_unblock(self, client):
        self._block(client, "198.51.100.1")

        # The blocked client rotates X-Forwarded-For to get past the limiter
        response = client.post(
            "/rate-limit/unblock/198.51.100.1",
            headers={"X-Forwarded-For": "192.0.2.200"},
        )

        assert response.status_code == 401
        blocked = {"X-Forwarded-For": "198.51.100.1"}
        assert client.get("/status", headers=blocked).status_code == 429

    def test_wrong_token_rejected(self, client):
        self._block(client, "198.51.100.1")

        response = client.post(
            "/rate-limit/unblock/198.51.100.1",
            headers={"X-Admin-Token": "guess", "X-Forwarded-For": "192.0.2.201"},
        )

        assert response.status_code == 401

    @pytest.mark.parametrize(
        "method, path",
        [
            ("get", "/rate-limit/stats"),
            ("get", "/rate-limit/status/192.0.2.1"),
            ("post", "/rate-limit/unblock/192.0.2.1"),
            ("get", "/monitoring"),
        ],
    )
    def test_admin_routes_require_token(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 401

    def test_disabled_without_configured_token(self, app_limiter):
        cfg = Config(
            ENCRYPTION_KEY="k", ADMIN_TOKEN="", MONITORING_ENABLED=False, LOG_FILE_PATH=""
        )
        client = TestClient(create_app(cfg=cfg, rate_limiter=app_limiter))

        response = client.get("/rate-limit/stats", headers={"X-Admin-Token": ""})

        assert response.status_code == 403

    def test_correct_token_accepted(self, client):
        self._block(client, "198.51.100.1")

        response = client.post("/rate-limit/unblock/198.51.100.1", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        blocked = {"X-Forwarded-For": "198.51.100.1"}
        assert client.get("/status", headers=blocked).status_code == 200


class TestRateLimitAdmin:
    """Status, stats and unblock endpoints."""

    def test_status_of_blocked_ip(self, client, clock):
        headers = {"X-Forwarded-For": "198.51.100.1"}
        for _ in range(4):
            client.get("/health/none", headers=headers)

        body = client.get("/rate-limit/status/198.51.100.1", headers=ADMIN_HEADERS).json()

        assert body["ip"] == "198.51.100.1"
        assert body["blocked"] is True
        assert body["remaining"] == 0
        assert body["block_expiry"] == pytest.approx(clock.now + 300)

    def test_status_of_unknown_ip(self, client):
        body = client.get("/rate-limit/status/192.0.2.55", headers=ADMIN_HEADERS).json()

        assert body["allowed"] is True
        assert body["remaining"] == 3

    def test_stats(self, client):
        client.get("/status", headers={"X-Forwarded-For": "192.0.2.1"})
        body = client.get("/rate-limit/stats", headers=ADMIN_HEADERS).json()

        assert body == {"total_ips": 2, "blocked_ips": 0, "active_ips": 2}

    def test_unblock(self, client):
        headers = {"X-Forwarded-For": "198.51.100.1"}
        for _ in range(4):
            client.get("/status", headers=headers)
        assert client.get("/status", headers=headers).status_code == 429

        response = client.post("/rate-limit/unblock/198.51.100.1", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"ip": "198.51.100.1", "unblocked": True}
        assert client.get("/status", headers=headers).status_code == 200

    def test_unblock_unknown_ip(self, client):
        response = client.post("/rate-limit/unblock/192.0.2.99", headers=ADMIN_HEADERS)

        assert response.status_code == 404


class TestMonitoringEndpoint:
    """Metrics export."""

    def test_monitoring_report(self, client, app):
        client.get("/health")
        app.state.monitoring.collect_system_metrics()

        body = client.get("/monitoring", headers=ADMIN_HEADERS).json()

        assert set(body) >= {"system", "performance", "summary", "recent_logs"}
        assert body["summary"]["status"] == "healthy"
        assert body["performance"][0]["endpoint"] == "/health"

    def test_recent_logs_come_from_app_buffer(self, client, app):
        assert isinstance(app.state.log_buffer, RecentLogBuffer)

        logging.getLogger("tests.api").warning("rate limit reached for 192.0.2.9")
        body = client.get("/monitoring", headers=ADMIN_HEADERS).json()

        assert body["recent_logs"][-1]["message"] == "rate limit reached for 192.0.2.9"

    def test_error_details_not_exposed(self, app):
        @app.get("/boom")
        async def boom():
            raise RuntimeError("secret internal detail")

        client = TestClient(app)
        client.get("/boom")
        app.state.monitoring.collect_system_metrics()

        response = client.get("/monitoring", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["system"][-1]["errors"]["last_error"] == "RuntimeError"
        assert "secret internal detail" not in response.text


class TestLifespan:
    """Background tasks follow the app lifecycle."""

    def test_schedulers_start_and_stop(self, app_limiter):
        cfg = Config(
            ENCRYPTION_KEY="k",
            MONITORING_ENABLED=True,
            MONITORING_INTERVAL_SECONDS=60,
            LOG_FILE_PATH="",
        )
        monitoring = MonitoringSystem(app_limiter)
        app = create_app(cfg=cfg, rate_limiter=app_limiter, monitoring=monitoring)

        with TestClient(app):
            assert app.state.cleanup_scheduler.is_running
            assert monitoring.is_running

        assert not app.state.cleanup_scheduler.is_running
        assert not monitoring.is_running

    def test_monitoring_disabled(self, app):
        with TestClient(app):
            assert app.state.cleanup_scheduler.is_running
            assert not app.state.monitoring.is_running


class TestClientIp:
    """Client IP resolution."""

    def test_forwarded_header_wins(self, client):
        # TestClient connects as "testclient"
        client.get("/status", headers={"X-Forwarded-For": " 192.0.2.8 , 10.0.0.1"})
        body = client.get("/rate-limit/status/192.0.2.8", headers=ADMIN_HEADERS).json()
        assert body["remaining"] == 2

    def test_get_client_ip_fallback(self):
        class _Request:
            headers = {}
            client = None

        assert get_client_ip(_Request()) == "unknown"
