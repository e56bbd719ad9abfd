"""
Main FastAPI application.

Payment orchestration API with:
- CORS configuration
- Error handling
- Correlation ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payment_service.config import Settings, get_settings
from payment_service.core.orchestrator import PaymentOrchestrator
from payment_service.database.connection import close_db, get_session_factory, init_db
from payment_service.database.sql_ledger import SqlLedgerStore
from payment_service.monitoring.health import HealthCheck
from payment_service.monitoring.logging import (
    bind_correlation_id,
    clear_correlation_id,
    setup_logging,
)
from payment_service.providers.registry import create_registry

from .routes import (
    monitoring_router,
    order_event_router,
    payment_method_router,
    payment_router,
)

logger = structlog.get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[PaymentOrchestrator] = None,
    health_check: Optional[HealthCheck] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    When ``orchestrator`` is given the lifespan skips database and provider
    setup and uses it as is.
    """
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
            test_mode=settings.is_test_mode,
        )

        owns_resources = app.state.orchestrator is None
        if owns_resources:
            try:
                await init_db()
                logger.info("database_initialized")
            except Exception as e:
                logger.error("database_initialization_failed", error=str(e))
                raise

            registry = create_registry(settings)
            session_factory = get_session_factory()
            app.state.orchestrator = PaymentOrchestrator(
                SqlLedgerStore(session_factory), registry, settings
            )
            app.state.health_check = HealthCheck(registry, session_factory)

        yield

        logger.info("application_shutdown")
        if owns_resources:
            try:
                await app.state.orchestrator.registry.aclose()
                await close_db()
                logger.info("database_connections_closed")
            except Exception as e:
                logger.error("shutdown_error", error=str(e))

    app = FastAPI(
        title="Payment Orchestration Service",
        description=(
            "Routes payments, refunds and saved payment methods to Stripe or PayPal. "
            "Features: duplicate-charge protection, refund balance enforcement, "
            "transactional outbox events and Prometheus metrics."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.health_check = health_check
    if orchestrator is not None and health_check is None:
        app.state.health_check = HealthCheck(orchestrator.registry)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_correlation_id_middleware(request: Request, call_next: Any) -> Response:
        """
        Assign a correlation id to every request.

        An incoming ``X-Correlation-ID`` header is reused; otherwise one is
        generated. The id is echoed on the response and bound to the log context.
        """
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        start_time = time.time()

        bind_correlation_id(correlation_id, request.headers.get("X-User-ID") or "system")
        structlog.contextvars.bind_contextvars(
            method=request.method,
            path=request.url.path,
        )

        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            response.headers[CORRELATION_HEADER] = correlation_id
            response.headers["X-Request-ID"] = correlation_id

            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            clear_correlation_id()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    app.include_router(payment_router)
    app.include_router(payment_method_router)
    app.include_router(monitoring_router)
    app.include_router(order_event_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": "1.0.0",
            "status": "operational",
            "environment": settings.app_env,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "payment_service.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
