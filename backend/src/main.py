# pyright: reportMissingTypeStubs=false
"""
EV Service Booking Backend API

A FastAPI application providing the booking core for an electric-vehicle
service center.

Features:
- Appointment booking with slot capacity and technician assignment
- Appointment workflow with an append-only event log
- Cancellation requests with time-tiered refunds
- Parts-shortage decisions during service
- PostgreSQL database with SQLAlchemy ORM
"""

import logging
from contextlib import asynccontextmanager
import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import appointments, payments, slots, technicians
from core.constants import CORS_ORIGINS
from core.exceptions import (
    BookingError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PolicyViolationError,
    ResourceUnavailableError,
    ValidationError,
)
from services.no_show_service import start_no_show_scheduler, stop_no_show_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)
logger.info("🔧 EV Service Booking API starting...")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("🚀 Starting EV Service Booking Backend API")

    # Note: Database sessions are created fresh for each scheduler run
    try:
        await start_no_show_scheduler()
        logger.info("✅ No-show scheduler started")
    except Exception as e:
        logger.exception(f"❌ Failed to start no-show scheduler: {e}")

    yield

    try:
        await stop_no_show_scheduler()
        logger.info("🛑 No-show scheduler stopped")
    except Exception as e:
        logger.exception(f"❌ Error stopping no-show scheduler: {e}")

    logger.info("🛑 Shutting down EV Service Booking Backend API")


# Create FastAPI application
app = FastAPI(
    title="EV Service Booking Backend",
    description="Booking core for an electric-vehicle service center",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan,
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(
    appointments.router,
    prefix="/api",
    tags=["appointments"],
    responses={
        400: {"description": "Bad request"},
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Resource not found"},
        409: {"description": "Conflict"},
        422: {"description": "Policy violation"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    slots.router,
    prefix="/api",
    tags=["slots"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        409: {"description": "Conflict"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    technicians.router,
    prefix="/api",
    tags=["technicians"],
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    payments.router,
    prefix="/api",
    tags=["payments"],
    responses={
        400: {"description": "Bad request"},
        401: {"description": "Unauthorized"},
        404: {"description": "Resource not found"},
        422: {"description": "Policy violation"},
        500: {"description": "Internal server error"},
    },
)


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API information."""
    return {
        "message": "EV Service Booking Backend API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


def status_code_for(exc: BookingError) -> int:
    """HTTP status for a booking error; subclasses are checked before their bases."""
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, ForbiddenError):
        return 403
    if isinstance(exc, (InvalidTransitionError, ResourceUnavailableError)):
        return 409
    if isinstance(exc, PolicyViolationError):
        return 422
    return 400


# Global exception handlers
@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Map booking-core errors to HTTP responses."""
    status_code = status_code_for(exc)
    logger.warning(f"{exc.__class__.__name__} ({status_code}): {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle ValueError exceptions."""
    logger.warning(f"ValueError: {exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "type": "validation_error"},
    )


@app.exception_handler(httpx.HTTPStatusError)
async def http_status_error_handler(request: Request, exc: httpx.HTTPStatusError):
    """Handle HTTP status errors from external services."""
    logger.exception(f"External service error: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": "External service error", "type": "external_service_error"},
    )
