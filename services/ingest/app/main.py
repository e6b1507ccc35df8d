from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.cors import CORSMiddleware

from .api.v1.routers.diagnostics import router as diagnostics_router
from .api.v1.routers.health import router as health_router
from .api.v1.routers.standardize import router as standardize_router
from .api.v1.routers.webhooks import CORS_HEADERS
from .api.v1.routers.webhooks import router as webhooks_router
from .core.config import get_settings, validate_settings
from .core.limiter import limiter
from .core.logging import configure_structlog, get_logger
from .core.observability import add_prometheus, add_tracing
from .db import dispose_engine, get_engine
from .middleware.logging import RequestLoggingMiddleware


def create_app() -> FastAPI:
    settings = get_settings()
    # Reliability: validate env/settings early
    try:
        validate_settings(settings)
    except Exception as exc:  # noqa: BLE001
        # Fail-fast with a clear error
        raise RuntimeError(f"Invalid configuration: {exc}")

    configure_structlog()
    logger = get_logger(__name__)

    app = FastAPI(title=settings.app_name, version=settings.app_version)

    # Operator routes are limited per client IP
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Field-level validation errors are safe to disclose."""
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg")}
            for err in exc.errors()
        ]
        logger.warning("request.validation_error", path=request.url.path, errors=errors)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Validation error", "errors": errors},
            headers=CORS_HEADERS,
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(
        request: Request, exc: SQLAlchemyError
    ) -> JSONResponse:
        logger.error(
            "request.database_error",
            path=request.url.path,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal error"},
            headers=CORS_HEADERS,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "request.unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal error"},
            headers=CORS_HEADERS,
        )

    # Middleware (order matters - later middleware wraps earlier ones)
    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    add_prometheus(app, app_name="ingest")

    if settings.otel_enabled:
        add_tracing(app, app_name="ingest", endpoint=settings.otel_exporter_otlp_endpoint)

    @app.on_event("startup")
    def on_startup() -> None:  # noqa: D401
        logger.info(
            "startup.init_db_pool",
            diagnostics_enabled=settings.diagnostics_enabled,
            fail_open=settings.availability_over_strict_security,
        )
        get_engine()

    @app.on_event("shutdown")
    def on_shutdown() -> None:  # noqa: D401
        logger.info("shutdown.dispose_db_pool")
        dispose_engine()

    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(standardize_router)
    app.include_router(diagnostics_router)

    @app.get("/")
    def root() -> dict:
        return {"service": "ingest", "status": "ok"}

    return app


app = create_app()
