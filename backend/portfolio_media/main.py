"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from portfolio_media.core.config import settings
from portfolio_media.core.logging import setup_logging
from portfolio_media.core.metrics import get_content_type, get_metrics, set_app_info
from portfolio_media.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
    TracingMiddleware,
)
from portfolio_media.core.tracing import setup_tracing, shutdown_tracing
from portfolio_media.modules.media.router import router as media_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    shutdown_tracing()


def create_app() -> FastAPI:
    """Build the application with logging, tracing and routers wired in."""
    environment = "development" if settings.DEBUG else "production"

    setup_logging(
        level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
        json_format=settings.LOG_JSON,
        include_stack_trace=True,
    )

    if settings.TRACING_ENABLED:
        setup_tracing(
            service_name=settings.PROJECT_NAME,
            service_version=settings.VERSION,
            otlp_endpoint=settings.OTLP_ENDPOINT,
            enable_console_export=settings.DEBUG,
        )

    set_app_info(version=settings.VERSION, environment=environment)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Portfolio video uploads with transcoding to bounded web video.",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Health check endpoints"},
            {"name": "media", "description": "Uploads and video transcoding"},
        ],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(TracingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=get_metrics(), media_type=get_content_type())

    app.include_router(media_router, prefix=settings.API_PREFIX)
    return app


app = create_app()
