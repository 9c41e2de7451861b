"""
Tests for pixelgate/main.py - FastAPI app creation, middleware, lifespan, and health routes.
"""
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from pixelgate import __version__
from pixelgate.main import CorrelationIdMiddleware, create_app, lifespan


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_mock_settings(**overrides):
    """Build a mock Settings object."""
    defaults = {
        "app_env": "test",
        "log_level": "WARNING",
        "encryption_key": "test_encryption_key",
        "admin_password": "test_admin_password",
        "sentry_dsn": "",
    }
    defaults.update(overrides)
    settings = MagicMock()
    for k, v in defaults.items():
        setattr(settings, k, v)
    return settings


def _make_app(**overrides) -> FastAPI:
    with (
        patch("pixelgate.main.get_settings", return_value=_make_mock_settings(**overrides)),
        patch("pixelgate.main.configure_structured_logging"),
    ):
        return create_app()


# ---------------------------------------------------------------------------
# create_app - application factory
# ---------------------------------------------------------------------------


class TestCreateApp:
    def test_returns_fastapi_instance(self):
        """create_app returns a FastAPI application."""
        assert isinstance(_make_app(), FastAPI)

    def test_app_metadata(self):
        """App has correct title and version."""
        app = _make_app()
        assert app.title == "pixelgate"
        assert app.version == __version__

    def test_configures_structured_logging(self):
        """create_app calls configure_structured_logging with the config log level."""
        with (
            patch("pixelgate.main.get_settings", return_value=_make_mock_settings(log_level="DEBUG")),
            patch("pixelgate.main.configure_structured_logging") as mock_log,
        ):
            create_app()

        mock_log.assert_called_once_with("DEBUG")

    def test_includes_routes(self):
        """App includes ingestion, admin and health routes."""
        route_paths = {route.path for route in _make_app().routes}
        assert "/api/v1/track" in route_paths
        assert "/api/v1/admin/logs" in route_paths
        assert "/api/v1/admin/shops/{shop_domain}/status" in route_paths
        assert "/health" in route_paths
        assert "/health/ready" in route_paths


# ---------------------------------------------------------------------------
# CorrelationIdMiddleware
# ---------------------------------------------------------------------------


class TestCorrelationIdMiddleware:
    def test_generates_correlation_id_when_missing(self):
        """Middleware generates a new correlation ID when not in request headers."""
        client = TestClient(_make_app(), raise_server_exceptions=False)
        response = client.get("/health")

        assert "x-correlation-id" in response.headers
        assert len(response.headers["x-correlation-id"]) == 32  # UUID4 hex is 32 chars

    def test_uses_existing_correlation_id(self):
        """Middleware uses X-Correlation-ID from request headers if provided."""
        client = TestClient(_make_app(), raise_server_exceptions=False)
        custom_cid = "abc123def456789012345678abcdef00"
        response = client.get("/health", headers={"X-Correlation-ID": custom_cid})

        assert response.headers["x-correlation-id"] == custom_cid

    def test_replaces_oversized_correlation_id(self):
        """An inbound ID wider than the audit column is replaced, not stored."""
        client = TestClient(_make_app(), raise_server_exceptions=False)
        response = client.get("/health", headers={"X-Correlation-ID": "c" * 65})

        cid = response.headers["x-correlation-id"]
        assert cid != "c" * 65
        assert len(cid) == 32

    def test_middleware_registered(self):
        app = _make_app()
        assert any(m.cls is CorrelationIdMiddleware for m in app.user_middleware)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_liveness(self):
        client = TestClient(_make_app(), raise_server_exceptions=False)
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["version"] == __version__

    def test_readiness_ok(self):
        from pixelgate.database import get_db

        app = _make_app()
        session = AsyncMock()

        async def _db():
            yield session

        app.dependency_overrides[get_db] = _db
        response = TestClient(app).get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"] == {"database": True}
        session.execute.assert_awaited_once()

    def test_readiness_database_down(self):
        from pixelgate.database import get_db

        app = _make_app()
        session = AsyncMock()
        session.execute.side_effect = ConnectionError("db down")

        async def _db():
            yield session

        app.dependency_overrides[get_db] = _db
        response = TestClient(app).get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "unavailable"


# ---------------------------------------------------------------------------
# lifespan - startup and shutdown
# ---------------------------------------------------------------------------


class TestLifespan:
    async def test_lifespan_warns_when_encryption_key_missing(self):
        """Lifespan logs a warning when ENCRYPTION_KEY is not set."""
        with (
            patch("pixelgate.main.get_settings", return_value=_make_mock_settings(encryption_key="")),
            patch("pixelgate.main.logger") as mock_logger,
            patch("pixelgate.main.dispose_engine", new_callable=AsyncMock),
        ):
            async with lifespan(MagicMock()):
                pass

        warning_calls = [c for c in mock_logger.warning.call_args_list if "ENCRYPTION_KEY" in str(c)]
        assert len(warning_calls) > 0

    async def test_lifespan_warns_when_admin_password_missing(self):
        with (
            patch("pixelgate.main.get_settings", return_value=_make_mock_settings(admin_password="")),
            patch("pixelgate.main.logger") as mock_logger,
            patch("pixelgate.main.dispose_engine", new_callable=AsyncMock),
        ):
            async with lifespan(MagicMock()):
                pass

        warning_calls = [c for c in mock_logger.warning.call_args_list if "ADMIN_PASSWORD" in str(c)]
        assert len(warning_calls) > 0

    async def test_lifespan_initializes_sentry_when_configured(self):
        """Lifespan initializes Sentry when sentry_dsn is set."""
        with (
            patch("pixelgate.main.get_settings", return_value=_make_mock_settings(sentry_dsn="https://sentry.io/test")),
            patch("pixelgate.main.logger"),
            patch("pixelgate.main.dispose_engine", new_callable=AsyncMock),
            patch("sentry_sdk.init") as mock_sentry_init,
        ):
            async with lifespan(MagicMock()):
                pass

        mock_sentry_init.assert_called_once()

    async def test_lifespan_skips_sentry_when_not_configured(self):
        """Lifespan skips Sentry when sentry_dsn is empty."""
        with (
            patch("pixelgate.main.get_settings", return_value=_make_mock_settings(sentry_dsn="")),
            patch("pixelgate.main.logger"),
            patch("pixelgate.main.dispose_engine", new_callable=AsyncMock),
            patch("sentry_sdk.init") as mock_sentry_init,
        ):
            async with lifespan(MagicMock()):
                pass

        mock_sentry_init.assert_not_called()

    async def test_lifespan_disposes_engine_on_shutdown(self):
        with (
            patch("pixelgate.main.get_settings", return_value=_make_mock_settings()),
            patch("pixelgate.main.logger"),
            patch("pixelgate.main.dispose_engine", new_callable=AsyncMock) as mock_dispose,
        ):
            async with lifespan(MagicMock()):
                mock_dispose.assert_not_awaited()

        mock_dispose.assert_awaited_once()
