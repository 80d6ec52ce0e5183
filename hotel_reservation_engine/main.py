"""ASGI application: middleware stack, API routes and health endpoints."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hotel_reservation_engine.config import settings
from hotel_reservation_engine.api import api_router
from hotel_reservation_engine.database import init_database, close_database
from hotel_reservation_engine.schemas.common import HealthResponse
from hotel_reservation_engine.middleware import (
    ErrorHandlerMiddleware,
    LoggingMiddleware
)
from hotel_reservation_engine.utils.circuit_breaker import get_circuit_breaker_registry
from hotel_reservation_engine.utils.logging_config import setup_logging


setup_logging(
    log_level="DEBUG" if settings.debug else settings.log_level,
    log_file="logs/reservations.log" if settings.environment == "production" else None,
    enable_json_logging=settings.enable_json_logging or settings.environment == "production"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup and release it on shutdown."""
    logger.info("Starting Hotel Reservation Engine")
    await init_database()
    yield
    logger.info("Shutting down Hotel Reservation Engine")
    await close_database()


app = FastAPI(
    title="Hotel Reservation Engine API",
    description="""
    ## Hotel Reservation Engine

    Allocates hotel rooms across date ranges with a hold, pay and confirm flow
    that stays consistent under concurrent requests.

    ### Guarantees

    * No two active bookings of the same room overlap (stays are half-open,
      so a checkout and a check-in on the same day do not conflict)
    * Payment confirmations are idempotent; duplicate webhooks are no-ops
    * Every status change writes exactly one audit history row

    ### Authentication

    Bearer JWT issued by the identity provider: `Authorization: Bearer <token>`.
    The `sub` claim is the user id; `is_admin` or `role: admin` grants admin routes.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "bookings", "description": "Room reservation operations"},
        {"name": "rooms", "description": "Availability and pricing queries"},
        {"name": "payments", "description": "Checkout, gateway webhooks and refunds"},
        {"name": "health", "description": "System health and monitoring endpoints"},
    ],
    lifespan=lifespan,
)

# Added last runs outermost: CORS, then error handling, then request logging
if settings.enable_request_logging:
    app.add_middleware(LoggingMiddleware)

app.add_middleware(
    ErrorHandlerMiddleware,
    debug=settings.debug
)

if settings.debug:
    # Wildcard origins rule out credentials
    cors_origins = ["*"]
    cors_allow_credentials = False
else:
    cors_origins = settings.cors_origins
    cors_allow_credentials = settings.cors_allow_credentials

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=settings.cors_expose_headers
)

app.include_router(api_router)


@app.get("/", tags=["health"])
async def root():
    """Basic information about the API."""
    return {
        "message": "Hotel Reservation Engine API",
        "version": "1.0.0",
        "docs_url": "/docs",
        "status": "operational"
    }


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check():
    """Liveness probe."""
    return HealthResponse(status="healthy", service="hotel-reservation-engine")


@app.get("/metrics", tags=["health"])
async def get_metrics():
    """Circuit breaker statistics for external collaborators."""
    return {"circuit_breakers": get_circuit_breaker_registry().get_all_stats()}
