"""Main FastAPI application for SkyGig."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException

from skygig import __version__
from skygig.config import settings
from skygig.core.errors import (
    Conflict, Forbidden, InvalidState, MarketplaceError, NotFound, ValidationError
)
from skygig.marketplace import Marketplace
from skygig.utils.logging import configure_logging, get_logger
from skygig.api.routes import all_routers
from skygig.api.models import ErrorResponse

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Checked in order, so subclasses come before their bases.
ERROR_STATUS = [
    (ValidationError, 422),
    (Forbidden, 403),
    (NotFound, 404),
    (Conflict, 409),
    (InvalidState, 409),
]


def status_for(exc: MarketplaceError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting SkyGig API")
    owned = app.state.marketplace is None
    if owned:
        app.state.marketplace = Marketplace(settings)
    logger.info("Application startup completed successfully", owned_marketplace=owned)

    yield

    # Shutdown
    logger.info("Shutting down SkyGig API")
    if owned:
        app.state.marketplace.close()
        app.state.marketplace = None
    logger.info("Application shutdown completed successfully")


def create_app(marketplace: Optional[Marketplace] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    A ``marketplace`` passed in is used as is and left open on shutdown;
    otherwise one is built at startup and closed on shutdown.
    """

    app = FastAPI(
        title="SkyGig API",
        description="Job, applicant, messaging and notification lifecycle for drone gigs",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan
    )
    app.state.marketplace = marketplace

    # Add middleware
    setup_middleware(app)

    # Add exception handlers
    setup_exception_handlers(app)

    # Include routers
    for router in all_routers:
        app.include_router(router, prefix="/api/v1")

    # Add root endpoint
    @app.get("/")
    async def root():
        return {
            "name": "SkyGig API",
            "version": __version__,
            "status": "running",
            "docs": "/docs" if settings.debug else "disabled"
        }

    return app


def setup_middleware(app: FastAPI) -> None:
    """Setup application middleware."""

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # Trusted host middleware
    if settings.allowed_hosts:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.allowed_hosts
        )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = asyncio.get_running_loop().time()

        logger.info(
            "Request started",
            method=request.method,
            url=str(request.url),
            caller_id=request.headers.get(settings.user_header),
            client_ip=request.client.host if request.client else None
        )

        try:
            response = await call_next(request)

            duration = asyncio.get_running_loop().time() - start_time
            logger.info(
                "Request completed",
                method=request.method,
                url=str(request.url),
                status_code=response.status_code,
                duration_seconds=duration
            )

            return response

        except Exception as e:
            duration = asyncio.get_running_loop().time() - start_time

            logger.error(
                "Request failed",
                method=request.method,
                url=str(request.url),
                error=str(e),
                duration_seconds=duration
            )
            raise


def _error_response(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            details=details,
            timestamp=datetime.now(timezone.utc)
        ).model_dump(mode="json")
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup global exception handlers."""

    @app.exception_handler(MarketplaceError)
    async def marketplace_exception_handler(request: Request, exc: MarketplaceError):
        status_code = status_for(exc)
        logger.info(
            "Operation rejected",
            error=exc.code,
            status_code=status_code,
            message=exc.message,
            url=str(request.url)
        )

        return _error_response(status_code, exc.code, exc.message, exc.details or None)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        logger.warning(
            "Validation error",
            errors=errors,
            url=str(request.url)
        )

        return _error_response(
            422, "validation_error", "Request validation failed", {"validation_errors": errors}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            url=str(request.url)
        )

        return _error_response(exc.status_code, "http_error", str(exc.detail))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            url=str(request.url)
        )

        return _error_response(
            500,
            "internal_error",
            "An unexpected error occurred",
            {"error_type": type(exc).__name__} if settings.debug else None
        )


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "skygig.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_config=None  # Use our custom logging
    )
