from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from discogate.app.api import discogs_auth_router, discogs_router, upload_cover_router
from discogate.app.core.config import settings, validate_discogs_config
from discogate.app.core.http_client import init_http_clients
from discogate.app.core.logging import get_log_context, get_logger, setup_logging
from discogate.app.db.async_session import close_async_engine, get_async_engine, init_async_db
from discogate.app.exceptions import (
    CredentialExpired,
    GatewayException,
    NotConnected,
    RateLimitExceeded,
)
from discogate.app.middleware.rate_limit import get_app_rate_limiter
from discogate.app.middleware.request_id import RequestIdMiddleware, get_request_id
from discogate.app.services.rate_limiter import get_rate_limiter


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open the shared HTTP clients and the profile database.

        Missing Discogs settings are reported but do not stop startup; the
        affected routes answer 500 until they are configured.
        """
        async with init_http_clients():
            await init_async_db()
            app.state.rate_limiter = get_rate_limiter()
            configured = validate_discogs_config()

            logger.info(
                "Application startup complete",
                extra={
                    "discogs_configured": configured,
                    "rate_limit": settings.discogs_rate_limit_max_requests,
                    "debug_mode": settings.debug,
                },
            )
            yield

        await close_async_engine()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Discogate",
        description="Discogs API gateway with a shared rate budget and SSRF-safe cover uploads",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Last added = first executed
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "Retry-After",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
        max_age=600,
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(discogs_router)
    app.include_router(discogs_auth_router)
    app.include_router(upload_cover_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check with database status."""
        health_status: dict[str, Any] = {"status": "ok", "components": {}}

        try:
            async with get_async_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            health_status["components"]["database"] = {"status": "ok"}
        except Exception as e:
            health_status["status"] = "degraded"
            health_status["components"]["database"] = {
                "status": "error",
                "error": str(e)[:100],  # Truncate for security
            }

        limiter = get_app_rate_limiter(request)
        health_status["components"]["discogs_budget"] = {
            "used": limiter.current_count,
            "limit": limiter.max_requests,
        }
        return health_status

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """Render an exhausted upstream budget as 429 with Retry-After."""
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException) -> JSONResponse:
        """Render any GatewayException using its own status and body."""
        context = get_log_context(
            request_id=get_request_id(request),
            user_id=getattr(request.state, "user_id", None),
            endpoint=request.url.path,
            status_code=exc.status_code,
        )
        # NotConnected and CredentialExpired are logged where they are raised
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc}", extra=context)
        elif not isinstance(exc, (NotConnected, CredentialExpired)):
            logger.info(f"Rejected request: {exc}", extra=context)

        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback; debug mode adds the exception message.
        """
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
            },
        )

        content: dict[str, Any] = {
            "error": "Internal server error",
            "request_id": request_id,
        }
        if settings.debug:
            content["details"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
