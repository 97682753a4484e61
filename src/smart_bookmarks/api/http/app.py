"""FastAPI application factory and setup."""

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from src.smart_bookmarks.api.http.app_data import ApplicationDependencies
from src.smart_bookmarks.api.http.middleware.limiter import reset_rate_limits
from src.smart_bookmarks.api.http.routers.auth import router_auth
from src.smart_bookmarks.api.utils.app_startup import configure_logging
from src.smart_bookmarks.core.security import client_address
from src.smart_bookmarks.core.services import AuthClientService
from src.smart_bookmarks.runtime.context import get_config


# --- Security middleware ---
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault(
            "Referrer-Policy", "strict-origin-when-cross-origin"
        )
        response.headers.setdefault(
            "Permissions-Policy", "geolocation=(), microphone=()"
        )
        # HSTS only in prod
        if get_config().app.environment == "production":
            response.headers.setdefault(
                "Strict-Transport-Security",
                "max-age=31536000; includeSubDomains; preload",
            )
        return response


# --- Request logging middleware ---
async def log_requests(request: Request, call_next):
    # Correlation / tracing
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    client_ip = client_address(request)

    # query strings carry one-time auth codes; never log them
    base_ctx = {
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "client_ip": client_ip,
        "user_agent": request.headers.get("user-agent", "unknown"),
    }

    start = time.perf_counter()

    # Everything that logs within this block inherits base_ctx
    with logger.contextualize(**base_ctx):
        try:
            logger.info("request.start")
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start) * 1000
            logger.bind(
                status_code=response.status_code,
                duration_ms=round(duration_ms, 1),
            ).info("request.end")

            response.headers.setdefault("X-Request-ID", request_id)
            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.bind(
                status_code=500,
                duration_ms=round(duration_ms, 1),
                error_type=type(exc).__name__,
            ).exception("request.error")
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"X-Request-ID": request_id},
            )


# --- Lifecycle hooks ---
async def startup(app: FastAPI) -> None:
    config = get_config()
    logger.info("Starting up application in {} environment", config.app.environment)

    if not config.backend.anon_key:
        if config.app.environment == "production":
            raise RuntimeError("Backend API key (SUPABASE_ANON_KEY) is not configured")
        logger.warning("Backend API key is empty; sign-in will fail")

    if getattr(app.state, "app_dependencies", None) is None:
        app.state.app_dependencies = ApplicationDependencies(
            auth_client_service=AuthClientService()
        )


async def shutdown(app: FastAPI) -> None:
    logger.info("Shutting down application")
    reset_rate_limits()


def create_app(dependencies: ApplicationDependencies | None = None) -> FastAPI:
    """Build the web application.

    Args:
        dependencies: Pre-built services (tests pass ones wired to a fake
            backend). Built from configuration at startup when omitted.
    """
    config = get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await startup(app)
        try:
            yield
        finally:
            await shutdown(app)

    is_production = config.app.environment == "production"
    app = FastAPI(
        title="Smart Bookmarks",
        lifespan=lifespan,
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
    )
    app.state.app_dependencies = dependencies

    app.add_middleware(SecurityHeadersMiddleware)

    # --- CORS configuration ---
    if is_production and "*" in config.app.cors.origins:
        raise RuntimeError(
            "CORS misconfigured: cannot use '*' with allow_credentials=True in production"
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.app.cors.origins,
        allow_credentials=config.app.cors.allow_credentials,
        allow_methods=config.app.cors.allow_methods,
        allow_headers=config.app.cors.allow_headers,
    )

    app.middleware("http")(log_requests)

    # --- Router registration ---
    app.include_router(router_auth, prefix="/auth")

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness check."""
        return {"status": "healthy"}

    @app.get("/ready", response_model=None)
    async def readiness(request: Request) -> dict[str, str] | JSONResponse:
        """Readiness check: the identity provider must answer."""
        app_deps: ApplicationDependencies | None = request.app.state.app_dependencies
        if app_deps is None or not await app_deps.auth_client_service.health_check():
            return JSONResponse(
                status_code=503, content={"status": "unavailable"}
            )
        return {"status": "ready"}

    return app


def main() -> None:
    """Run the web server with uvicorn."""
    import uvicorn

    configure_logging()
    config = get_config()
    uvicorn.run(
        create_app(),
        host=config.app.host,
        port=config.app.port,
        access_log=False,  # We handle access logging in middleware
    )


if __name__ == "__main__":
    main()
