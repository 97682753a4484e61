"""Tests for application wiring: health endpoints, middleware and startup checks."""

import httpx
import pytest

from src.smart_bookmarks.api.http.app import create_app, startup
from src.smart_bookmarks.api.http.app_data import ApplicationDependencies
from src.smart_bookmarks.runtime.config.config_data import (
    AppConfig,
    BackendConfig,
    ConfigData,
    CORSConfig,
)
from src.smart_bookmarks.runtime.context import with_context


class TestHealthEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, api_client):
        response = await api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_ready_when_provider_answers(self, api_client, fake_backend):
        response = await api_client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}
        assert len(fake_backend.calls("GET", "/auth/v1/health")) == 1

    @pytest.mark.asyncio
    async def test_not_ready_when_provider_unreachable(self, api_client, fake_backend):
        fake_backend.offline = True

        response = await api_client.get("/ready")

        assert response.status_code == 503
        assert response.json() == {"status": "unavailable"}


class TestMiddleware:
    @pytest.mark.asyncio
    async def test_security_headers(self, api_client):
        response = await api_client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Strict-Transport-Security" not in response.headers

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, api_client):
        response = await api_client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    @pytest.mark.asyncio
    async def test_request_id_is_generated(self, api_client):
        response = await api_client.get("/health")

        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_unhandled_error_becomes_500(self, app):
        @app.get("/boom")
        async def boom():
            raise RuntimeError("boom")

        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/boom", headers={"X-Request-ID": "req-500"})

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal Server Error", "request_id": "req-500"}


class TestCreateApp:
    def test_wildcard_cors_rejected_in_production(self):
        config = ConfigData(app=AppConfig(environment="production", cors=CORSConfig(origins=["*"])))
        with with_context(config):
            with pytest.raises(RuntimeError, match="CORS"):
                create_app()

    def test_docs_hidden_in_production(self):
        with with_context(ConfigData(app=AppConfig(environment="production"))):
            app = create_app()

        assert app.docs_url is None

    @pytest.mark.asyncio
    async def test_startup_requires_api_key_in_production(self):
        config = ConfigData(
            app=AppConfig(environment="production"),
            backend=BackendConfig(anon_key=""),
        )
        with with_context(config):
            app = create_app()
            with pytest.raises(RuntimeError, match="SUPABASE_ANON_KEY"):
                await startup(app)

    @pytest.mark.asyncio
    async def test_startup_builds_dependencies(self):
        app = create_app()
        assert app.state.app_dependencies is None

        await startup(app)

        assert isinstance(app.state.app_dependencies, ApplicationDependencies)
