"""
FastAPI application entry point for the XSCard events backend.

This module initializes the FastAPI application with:
- Application state (payment gateway, background job registry)
- CORS middleware for frontend development
- Exception handlers for consistent error responses
- Lifespan handlers that start and stop the job schedulers
- Logging configuration

Environment Variables:
    XSCARD_DB_URL: Database URL
    XSCARD_ENV: Environment (production/development, default: development)
    XSCARD_LOG_LEVEL: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL, default: INFO)
    XSCARD_SCHEDULER_AUTOSTART: Run background jobs inside the API process
    PAYSTACK_SECRET_KEY: Enables paid registrations and trial expiration
"""

from contextlib import asynccontextmanager
from typing import Dict, Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from backend.src.config.settings import get_settings
from backend.src.db.database import SessionLocal
from backend.src.jobs import build_registry
from backend.src.services.identity_provider import NoopIdentityProvider
from backend.src.services.payment_gateway import PaystackGateway
from backend.src.utils.logging_config import init_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Handles startup and shutdown events:
    - Startup: Create the payment gateway and job registry, start schedulers
    - Shutdown: Stop schedulers, close the gateway's HTTP client

    Args:
        app: FastAPI application instance

    Yields:
        Control to the application
    """
    # Startup
    logger = get_logger("api")
    logger.info("Starting XSCard events backend")
    settings = get_settings()

    gateway = None
    if settings.paystack_configured:
        gateway = PaystackGateway.from_settings(settings)
        logger.info("Paystack gateway configured")
    else:
        logger.warning("PAYSTACK_SECRET_KEY not set, paid registrations are disabled")

    app.state.payment_gateway = gateway
    app.state.job_registry = build_registry(
        settings,
        SessionLocal,
        gateway=gateway,
        identity_provider=NoopIdentityProvider(),
    )

    if settings.scheduler_autostart:
        app.state.job_registry.start_all()
        logger.info(
            "Background jobs started",
            extra={"jobs": app.state.job_registry.names()}
        )

    logger.info("XSCard events backend started successfully")

    yield

    # Shutdown
    logger.info("Shutting down XSCard events backend")
    await app.state.job_registry.stop_all()
    if gateway is not None:
        await gateway.close()


# Initialize logging before creating app
init_logging()

# Create FastAPI application
app = FastAPI(
    title="XSCard Events API",
    description="Recurring events, instance materialization, registrations "
                "and background reconciliation jobs.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# Configure CORS middleware for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers


@app.exception_handler(ValidationError)
async def validation_exception_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Args:
        request: HTTP request
        exc: Pydantic ValidationError

    Returns:
        JSON response with validation error details
    """
    logger = get_logger("api")
    logger.warning(
        "Validation error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors(),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": exc.errors(include_url=False),
        }
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    """
    Handle SQLAlchemy database errors.

    Args:
        request: HTTP request
        exc: SQLAlchemy exception

    Returns:
        JSON response with database error message
    """
    logger = get_logger("db")
    logger.error(
        "Database error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error": str(exc),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Database Error",
            "message": "An error occurred while accessing the database. "
                      "Please try again later.",
        }
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Handle all other unhandled exceptions.

    Args:
        request: HTTP request
        exc: Unhandled exception

    Returns:
        JSON response with generic error message
    """
    logger = get_logger("api")
    logger.error(
        "Unhandled exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error": str(exc),
        },
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred. Please try again later.",
        }
    )


# Health check endpoint


@app.get("/health", tags=["Health"])
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns:
        Health status and application information
    """
    return {
        "status": "healthy",
        "service": "xscard-events-backend",
        "version": "1.0.0",
    }


# API routers
from backend.src.api import events, registrations, jobs

app.include_router(events.router, prefix="/api")
app.include_router(registrations.router, prefix="/api")
app.include_router(jobs.router, prefix="/api")


# Root endpoint


@app.get("/", tags=["Root"])
async def root() -> Dict[str, str]:
    """
    Root endpoint with API information.

    Returns:
        API metadata and documentation links
    """
    return {
        "message": "XSCard Events API",
        "version": "1.0.0",
        "docs": "/docs",
        "redoc": "/redoc",
        "openapi": "/openapi.json",
    }
