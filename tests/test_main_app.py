"""
Tests for portalscore/main.py - app factory, correlation IDs and the
worker lifecycle in the lifespan.
"""
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from fastapi.routing import APIRoute

from portalscore.main import create_app, lifespan, run


def _make_mock_settings(**overrides):
    defaults = {
        "app_env": "test",
        "app_base_url": "http://localhost:8000",
        "log_level": "WARNING",
        "admin_api_key": "admin",
        "webhook_secret": "hook",
        "sentry_dsn": "",
        "pipeline_scorer_enabled": False,
        "performance_refresh_enabled": False,
    }
    defaults.update(overrides)
    settings = MagicMock()
    for k, v in defaults.items():
        setattr(settings, k, v)
    return settings


def _build_app(**overrides) -> FastAPI:
    with (
        patch("portalscore.main.get_settings", return_value=_make_mock_settings(**overrides)),
        patch("portalscore.main.configure_structured_logging"),
    ):
        return create_app()


# ---------------------------------------------------------------------------
# create_app
# ---------------------------------------------------------------------------

class TestCreateApp:
    def test_metadata(self):
        app = _build_app()
        assert app.title == "Portal Scoring"
        assert app.version == "1.0.0"

    def test_routes_registered(self):
        paths = {route.path for route in _build_app().routes if isinstance(route, APIRoute)}
        assert "/health" in paths
        assert "/api/v1/admin/pipeline/summary" in paths
        assert "/api/v1/admin/recommendations/{recommendation_id}/archive" in paths
        assert "/api/v1/admin/performance/{client_id}" in paths
        assert "/api/v1/cron/pipeline-scores" in paths
        assert "/api/v1/admin/pipeline/archive-analytics" in paths
        assert "/api/v1/webhooks/tracking" in paths

    def test_cors_preflight_allows_put(self):
        response = TestClient(_build_app()).options(
            "/api/v1/admin/pipeline/scoring-config",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "PUT",
                "Access-Control-Request-Headers": "X-Admin-Key",
            },
        )
        assert response.status_code == 200
        assert "PUT" in response.headers["access-control-allow-methods"]


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

class TestRun:
    def test_serves_on_configured_host_and_port(self):
        settings = _make_mock_settings(app_host="127.0.0.1", app_port=9100)
        with (
            patch("portalscore.main.get_settings", return_value=settings),
            patch("portalscore.main.uvicorn.run") as mock_run,
        ):
            run()

        mock_run.assert_called_once_with(
            "portalscore.main:app", host="127.0.0.1", port=9100, log_level="warning",
        )


# ---------------------------------------------------------------------------
# CorrelationIdMiddleware
# ---------------------------------------------------------------------------

class TestCorrelationId:
    def test_generated_when_missing(self):
        response = TestClient(_build_app()).get("/health")
        assert response.status_code == 200
        assert len(response.headers["X-Correlation-ID"]) == 32

    def test_echoes_incoming_header(self):
        response = TestClient(_build_app()).get("/health", headers={"X-Correlation-ID": "trace-42"})
        assert response.headers["X-Correlation-ID"] == "trace-42"

    def test_admin_route_requires_key(self):
        with patch("portalscore.api.auth.get_settings", return_value=_make_mock_settings()):
            response = TestClient(_build_app()).get("/api/v1/admin/pipeline/summary")
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# lifespan
# ---------------------------------------------------------------------------

class TestLifespan:
    async def test_starts_and_cancels_enabled_workers(self):
        settings = _make_mock_settings(pipeline_scorer_enabled=True)
        with (
            patch("portalscore.main.get_settings", return_value=settings),
            patch("portalscore.workers.pipeline_scorer.run_pipeline_scorer", new_callable=AsyncMock) as mock_scorer,
            patch("portalscore.workers.performance_refresh.run_performance_refresh", new_callable=AsyncMock) as mock_refresh,
        ):
            async with lifespan(MagicMock()):
                pass

        mock_scorer.assert_called_once()
        mock_refresh.assert_not_called()

    async def test_sentry_initialized_when_dsn_set(self):
        settings = _make_mock_settings(sentry_dsn="https://key@sentry.example.com/1")
        with (
            patch("portalscore.main.get_settings", return_value=settings),
            patch("sentry_sdk.init") as mock_init,
        ):
            async with lifespan(MagicMock()):
                pass

        mock_init.assert_called_once()
        assert mock_init.call_args.kwargs["environment"] == "test"

    async def test_engine_disposed_on_shutdown(self):
        with (
            patch("portalscore.main.get_settings", return_value=_make_mock_settings()),
            patch("portalscore.main.dispose_engine", new_callable=AsyncMock) as mock_dispose,
        ):
            async with lifespan(MagicMock()):
                mock_dispose.assert_not_awaited()

        mock_dispose.assert_awaited_once()
