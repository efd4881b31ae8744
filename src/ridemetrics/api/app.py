"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ridemetrics import __version__
from ridemetrics.api import cancellations, master_conversion, metadata, metrics
from ridemetrics.config import Settings, load_settings
from ridemetrics.errors import InvalidQueryError, QueryExecutionError
from ridemetrics.middleware.logging import RequestLoggingMiddleware, setup_logging
from ridemetrics.store import RideMetricsStore

logger = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None, store: RideMetricsStore | None = None) -> FastAPI:
    """Build the app. Tests pass a store wired to a fake client."""
    settings = settings or load_settings()
    store = store or RideMetricsStore.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(settings.log_level, settings.app_env)
        logger.info("application_starting", env=settings.app_env, port=settings.port)
        try:
            store.connect()
        except QueryExecutionError as exc:
            # keep serving; /health/clickhouse reports the outage and ping reconnects
            logger.error("clickhouse_unavailable_at_startup", error=str(exc))
        yield
        store.close()
        logger.info("application_shutting_down")

    app = FastAPI(
        title="ridemetrics",
        description="Ride-hailing operations dashboard API over ClickHouse",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(InvalidQueryError)
    async def invalid_query_handler(request: Request, exc: InvalidQueryError) -> JSONResponse:
        logger.warning("invalid_query", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request", "message": str(exc)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        logger.warning("validation_error", path=request.url.path, fields=fields)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request", "message": f"Invalid parameters: {fields}"},
        )

    @app.exception_handler(QueryExecutionError)
    async def query_error_handler(request: Request, exc: QueryExecutionError) -> JSONResponse:
        # details stay in the log, the client gets a generic message
        logger.error("query_execution_error", path=request.url.path, error=str(exc), sql=exc.sql)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "message": "Failed to fetch data"},
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/health/clickhouse")
    def health_clickhouse() -> JSONResponse:
        if store.ping():
            return JSONResponse({"status": "ok", "message": "ClickHouse connection successful"})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "error", "message": "ClickHouse connection failed"},
        )

    app.include_router(metrics.router)
    app.include_router(master_conversion.router)
    app.include_router(cancellations.router)
    app.include_router(metadata.router)

    return app
