import uvicorn
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.containers import AppContainer
from api.middleware.error_handling import ErrorHandlingMiddleware, register_exception_handlers
from api.middleware.rate_limiting import RateLimitingMiddleware
from api.middleware.request_ids import RequestIdMiddleware
from api.routers import auth, market, orders, portfolio, user
from core.config.validator import validate_startup_configuration
from core.logging import configure_logging, get_api_logger_safe
from dashboard.middleware.security import DashboardSecurityMiddleware
from dashboard.routers import main as dashboard_main

logger = get_api_logger_safe("api.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    container = app.state.container
    settings = container.settings()
    logger.info("Starting SmartDesk API server", environment=settings.environment.value)

    if not await validate_startup_configuration(settings, check_connections=False):
        raise RuntimeError("Configuration validation failed")
    await container.db_manager().init()

    yield

    logger.info("Shutting down SmartDesk API server")
    try:
        await container.broker_gateway().close()
        await container.db_manager().shutdown()
        if settings.redis.cache_enabled:
            await container.redis_client().aclose()
    except Exception as e:
        logger.error("Error during API shutdown", error=str(e))


def _build_uvicorn_log_config() -> dict:
    """Minimal log config that leaves our structlog handlers in place.

    Only levels and propagation are set; a handler list here would replace
    the handlers already attached to the uvicorn loggers.
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "loggers": {
            "uvicorn": {"level": "INFO", "propagate": False},
            "uvicorn.error": {"level": "INFO", "propagate": False},
            "uvicorn.access": {"level": "INFO", "propagate": False},
            "fastapi": {"level": "INFO", "propagate": False},
        },
    }


def create_app(container: AppContainer = None) -> FastAPI:
    """Creates and configures the FastAPI application"""
    container = container or AppContainer()
    settings = container.settings()
    configure_logging(settings)

    app = FastAPI(
        title="SmartDesk API",
        version=settings.version,
        description="Portfolio, order and market data dashboard for Angel One SmartAPI accounts.",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
    )
    app.state.container = container

    container.wire(modules=[
        "api.dependencies",
        "api.routers.market",
    ])

    register_exception_handlers(app)

    # Last added runs first
    app.add_middleware(ErrorHandlingMiddleware)
    if settings.api.rate_limit_enabled:
        app.add_middleware(
            RateLimitingMiddleware,
            redis_client=container.redis_client() if settings.redis.cache_enabled else None,
            calls=settings.api.rate_limit_requests,
            period=settings.api.rate_limit_window_seconds,
        )
    app.add_middleware(RequestIdMiddleware, metrics=container.prometheus_metrics())
    if settings.dashboard.enabled:
        app.add_middleware(DashboardSecurityMiddleware)

    cors_origins = settings.api.cors_origins
    if settings.is_production and "*" in cors_origins:
        raise ValueError(
            "CORS wildcard (*) not allowed in production. "
            "Specify exact origins in API__CORS_ORIGINS environment variable."
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.api.cors_credentials,
        allow_methods=settings.api.cors_methods,
        allow_headers=settings.api.cors_headers,
    )

    prefix = settings.api.prefix
    app.include_router(auth.router, prefix=prefix)
    app.include_router(portfolio.router, prefix=prefix)
    app.include_router(orders.router, prefix=prefix)
    app.include_router(market.router, prefix=prefix)
    app.include_router(user.router, prefix=prefix)
    if settings.dashboard.enabled:
        app.include_router(dashboard_main.router, tags=["Dashboard UI"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        database_ok = await container.db_manager().verify_connection()
        return ORJSONResponse(
            status_code=200 if database_ok else 503,
            content={
                "status": "healthy" if database_ok else "unhealthy",
                "service": "smartdesk-api",
                "version": settings.version,
                "environment": settings.environment.value,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "checks": {"database": database_ok},
            },
        )

    @app.get("/metrics", tags=["Monitoring"])
    def metrics():
        data = generate_latest(container.prometheus_registry())
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


def run(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """Run the API server with uvicorn"""
    uvicorn.run(
        "api.main:create_app",
        factory=True,
        host=host,
        port=port,
        log_level="info",
        access_log=True,
        log_config=_build_uvicorn_log_config(),
        reload=reload,
    )


if __name__ == "__main__":
    run()
